from __future__ import annotations

from dataclasses import dataclass, asdict, fields
from enum import Enum
from typing import Any


class Side(str, Enum):
    BUY = "buy"
    SELL = "sell"


class PositionState(str, Enum):
    OPEN = "OPEN"
    PARTIAL1 = "PARTIAL1"
    PARTIAL2 = "PARTIAL2"
    CLOSED = "CLOSED"
    STOPPED = "STOPPED"


TERMINAL_STATES = (PositionState.CLOSED, PositionState.STOPPED)


@dataclass
class TokenCandidate:
    """Normalized market snapshot; None means the feed did not provide the field."""
    address: str
    symbol: str = ""
    name: str = ""
    price_usd: float | None = None
    market_cap: float | None = None
    liquidity_usd: float | None = None
    volume_24h: float | None = None
    holders: float | None = None
    age_minutes: float | None = None
    verified: bool | None = None
    source: str = ""
    pair_address: str = ""


@dataclass
class TradeResult:
    tx_id: str
    source: str
    side: Side
    amount_in: float
    amount_out: float = 0.0
    # Unscaled quote outAmount; token base units on buys
    raw_out: int = 0
    route_only: bool = False


@dataclass
class Position:
    user_id: str
    address: str
    entry_price: float
    amount: float
    symbol: str = ""
    source: str = ""
    tx_id: str = ""
    opened_at: float = 0.0
    exited_stage1: bool = False
    exited_stage2: bool = False
    stopped: bool = False
    closed: bool = False
    stage1_sold: float = 0.0
    stage2_sold: float = 0.0
    stop_sold: float = 0.0
    last_price: float = 0.0
    token_amount_raw: int = 0
    raw_sold: int = 0

    @property
    def remaining(self) -> float:
        return max(0.0, self.amount - self.stage1_sold - self.stage2_sold - self.stop_sold)

    def sell_units(self, qty: float) -> float:
        """
        What to hand the router when selling `qty` of `amount`.

        With a known token balance this is the matching share of the raw units
        bought, and a sell of everything remaining takes all units left.
        Without one (paper fills) it is `qty` itself.
        """
        if self.token_amount_raw <= 0:
            return qty
        left = self.token_amount_raw - self.raw_sold
        if qty >= self.remaining:
            return left
        return min(left, round(self.token_amount_raw * qty / self.amount))

    @property
    def state(self) -> PositionState:
        if self.stopped:
            return PositionState.STOPPED
        if self.closed:
            return PositionState.CLOSED
        if self.exited_stage2:
            return PositionState.PARTIAL2
        if self.exited_stage1:
            return PositionState.PARTIAL1
        return PositionState.OPEN

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Position":
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})
