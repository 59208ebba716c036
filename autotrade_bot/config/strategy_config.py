"""
Strategy Configuration

Per-user strategy settings and the user file loader.

A strategy is a set of optional thresholds (zero or missing = no constraint),
a few boolean switches and the execution parameters used by the engine and
the position monitor. Users are stored as a YAML or JSON mapping:

    "123456789":
      wallet: <public key>
      secret: <signing secret, passed through untouched>
      active: true
      strategy:
        minMarketCap: 50000
        minLiquidity: 1000
        profitTargets: [20, 50]
        sellPercents: [50, 50]
        stopLossPercent: 15
        enabled: true
"""

import json
import math
import yaml
import logging
from typing import Dict, Any, Optional, List
from dataclasses import dataclass, field, asdict, fields
from pathlib import Path

from ..constants import (
    DEFAULT_BUY_AMOUNT_SOL, DEFAULT_PROFIT_TARGET1, DEFAULT_SELL_PERCENT1,
    DEFAULT_STOP_LOSS_PCT, DEFAULT_MAX_ACTIVE_TRADES,
)

logger = logging.getLogger(__name__)

# camelCase keys written by the strategy setup flow -> dataclass fields
_KEY_ALIASES = {
    "minVolume": "min_volume",
    "minHolders": "min_holders",
    "minAge": "min_age",
    "maxAge": "max_age",
    "minMarketCap": "min_market_cap",
    "minLiquidity": "min_liquidity",
    "minPrice": "min_price",
    "maxPrice": "max_price",
    "onlyVerified": "only_verified",
    "fastListing": "fast_listing",
    "buyAmount": "buy_amount",
    "maxActiveTrades": "max_active_trades",
    "profitTarget1": "profit_target1",
    "profitTarget2": "profit_target2",
    "sellPercent1": "sell_percent1",
    "sellPercent2": "sell_percent2",
    "stopLossPercent": "stop_loss_percent",
}

THRESHOLD_FIELDS = (
    "min_volume", "min_holders", "min_age", "max_age",
    "min_market_cap", "min_liquidity", "min_price", "max_price",
)


def to_number(value: Any) -> Optional[float]:
    """Coerce a loosely typed value to float; anything unusable becomes None."""
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(number) or math.isinf(number):
        return None
    return number


def to_flag(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() == "true"
    return bool(value)


@dataclass
class StrategyConfig:
    """One user's strategy"""
    # Thresholds (None / 0 = inert)
    min_volume: Optional[float] = None
    min_holders: Optional[float] = None
    min_age: Optional[float] = None        # minutes
    max_age: Optional[float] = None        # minutes
    min_market_cap: Optional[float] = None
    min_liquidity: Optional[float] = None
    min_price: Optional[float] = None
    max_price: Optional[float] = None

    # Switches
    only_verified: bool = False
    fast_listing: bool = False
    enabled: bool = False

    # Execution
    buy_amount: float = DEFAULT_BUY_AMOUNT_SOL
    max_active_trades: int = DEFAULT_MAX_ACTIVE_TRADES
    profit_target1: float = DEFAULT_PROFIT_TARGET1
    sell_percent1: float = DEFAULT_SELL_PERCENT1
    profit_target2: Optional[float] = None
    sell_percent2: Optional[float] = None
    stop_loss_percent: float = DEFAULT_STOP_LOSS_PCT

    def __post_init__(self):
        for name in THRESHOLD_FIELDS:
            setattr(self, name, to_number(getattr(self, name)))
        self.only_verified = to_flag(self.only_verified)
        self.fast_listing = to_flag(self.fast_listing)
        self.enabled = to_flag(self.enabled)

        self.buy_amount = to_number(self.buy_amount) or DEFAULT_BUY_AMOUNT_SOL
        self.max_active_trades = int(to_number(self.max_active_trades) or DEFAULT_MAX_ACTIVE_TRADES)
        self.profit_target1 = to_number(self.profit_target1) or DEFAULT_PROFIT_TARGET1
        self.sell_percent1 = to_number(self.sell_percent1) or DEFAULT_SELL_PERCENT1
        self.stop_loss_percent = abs(to_number(self.stop_loss_percent) or DEFAULT_STOP_LOSS_PCT)

        self.profit_target2 = to_number(self.profit_target2) or None
        self.sell_percent2 = to_number(self.sell_percent2) or None
        if self.profit_target2 and self.sell_percent2 is None:
            # Second target without an explicit size sells what stage 1 left
            remainder = 100.0 - self.sell_percent1
            self.sell_percent2 = remainder if remainder > 0 else None

    @property
    def stage2_configured(self) -> bool:
        return bool(self.profit_target2 and self.profit_target2 > 0
                    and self.sell_percent2 and self.sell_percent2 > 0)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary"""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "StrategyConfig":
        """Create from dictionary (snake_case or camelCase keys)"""
        data = dict(data or {})
        known = {f.name for f in fields(cls)}
        kwargs: Dict[str, Any] = {}

        # List form: profitTargets: [20, 50], sellPercents: [50, 50]
        targets = data.pop("profitTargets", None) or data.pop("profit_targets", None)
        percents = data.pop("sellPercents", None) or data.pop("sell_percents", None)
        if isinstance(targets, (list, tuple)):
            if len(targets) > 0:
                kwargs["profit_target1"] = targets[0]
            if len(targets) > 1:
                kwargs["profit_target2"] = targets[1]
        if isinstance(percents, (list, tuple)):
            if len(percents) > 0:
                kwargs["sell_percent1"] = percents[0]
            if len(percents) > 1:
                kwargs["sell_percent2"] = percents[1]

        for key, value in data.items():
            name = _KEY_ALIASES.get(key, key)
            if name in known:
                kwargs[name] = value
            else:
                logger.debug(f"Ignoring unknown strategy key: {key}")

        return cls(**kwargs)


@dataclass(frozen=True)
class Credential:
    """Opaque signing credential; only trade sources look inside."""
    secret: str
    public_key: str = ""

    def __repr__(self) -> str:
        return f"Credential(public_key={self.public_key[:8]}..., secret=***)"


@dataclass
class UserAccount:
    user_id: str
    strategy: StrategyConfig = field(default_factory=StrategyConfig)
    credential: Optional[Credential] = None
    active: bool = True

    @property
    def is_tradeable(self) -> bool:
        return bool(self.active and self.strategy.enabled
                    and self.credential and self.credential.secret)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"active": self.active, "strategy": self.strategy.to_dict()}
        if self.credential:
            data["wallet"] = self.credential.public_key
            data["secret"] = self.credential.secret
        return data

    @classmethod
    def from_dict(cls, user_id: str, data: Dict[str, Any]) -> "UserAccount":
        secret = data.get("secret")
        credential = Credential(secret=secret, public_key=data.get("wallet", "")) if secret else None
        return cls(
            user_id=str(user_id),
            strategy=StrategyConfig.from_dict(data.get("strategy")),
            credential=credential,
            active=to_flag(data.get("active", True)),
        )


class UserRegistry:
    """
    Loads and saves user accounts from a YAML or JSON file.

    Usage:
        registry = UserRegistry("users.yaml")
        accounts = registry.load()
        registry.save(accounts)
    """

    def __init__(self, path: str):
        self.path = Path(path)

    def load(self) -> Dict[str, UserAccount]:
        if not self.path.exists():
            logger.warning(f"Users file {self.path} not found, no accounts loaded")
            return {}

        with open(self.path, 'r', encoding='utf-8') as f:
            if self.path.suffix in ['.yaml', '.yml']:
                data = yaml.safe_load(f)
            else:
                data = json.load(f)

        accounts: Dict[str, UserAccount] = {}
        for user_id, record in (data or {}).items():
            if not isinstance(record, dict):
                logger.warning(f"Skipping malformed user record {user_id}")
                continue
            accounts[str(user_id)] = UserAccount.from_dict(user_id, record)
        logger.info(f"Loaded {len(accounts)} accounts from {self.path}")
        return accounts

    def save(self, accounts: Dict[str, UserAccount]):
        data = {user_id: account.to_dict() for user_id, account in accounts.items()}
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, 'w', encoding='utf-8') as f:
            if self.path.suffix in ['.yaml', '.yml']:
                yaml.dump(data, f, default_flow_style=False, sort_keys=False, allow_unicode=True)
            else:
                json.dump(data, f, indent=2, ensure_ascii=False)
        logger.info(f"Saved {len(accounts)} accounts to {self.path}")

    def validate(self, accounts: Dict[str, UserAccount]) -> List[str]:
        """Return a list of configuration problems"""
        errors = []
        for user_id, account in accounts.items():
            strategy = account.strategy
            if strategy.buy_amount <= 0:
                errors.append(f"{user_id}: buy_amount must be > 0")
            if strategy.max_active_trades < 1:
                errors.append(f"{user_id}: max_active_trades must be >= 1")
            if strategy.sell_percent1 > 100:
                errors.append(f"{user_id}: sell_percent1 must be <= 100")
            if strategy.stage2_configured and strategy.profit_target2 <= strategy.profit_target1:
                errors.append(f"{user_id}: profit_target2 must be above profit_target1")
        return errors


def load_users(path: str) -> Dict[str, UserAccount]:
    return UserRegistry(path).load()
