"""
Strategy Filter

Evaluates a user's strategy against a batch of candidate tokens.

Policy is "flexible": a threshold only rejects a token when it is configured
(non-zero) AND the token actually carries the corresponding field. Missing or
malformed market data never rejects a token and never raises.
"""

from typing import Iterable, List, Optional

from ..config.strategy_config import StrategyConfig, to_number
from ..constants import FAST_LISTING_MAX_AGE_MIN
from .models import TokenCandidate

# (strategy field, token attribute, is_minimum)
THRESHOLDS = (
    ("min_volume", "volume_24h", True),
    ("min_holders", "holders", True),
    ("min_age", "age_minutes", True),
    ("max_age", "age_minutes", False),
    ("min_market_cap", "market_cap", True),
    ("min_liquidity", "liquidity_usd", True),
    ("min_price", "price_usd", True),
    ("max_price", "price_usd", False),
)


def rejection_reason(token: TokenCandidate, cfg: StrategyConfig) -> Optional[str]:
    """Return why the token fails the strategy, or None when it passes."""
    if not cfg.enabled:
        return "strategy disabled"

    for cfg_field, token_field, is_minimum in THRESHOLDS:
        threshold = to_number(getattr(cfg, cfg_field, None))
        if not threshold:
            continue
        value = to_number(getattr(token, token_field, None))
        if value is None:
            continue
        if is_minimum and value < threshold:
            return f"{token_field}={value:g} < {cfg_field}={threshold:g}"
        if not is_minimum and value > threshold:
            return f"{token_field}={value:g} > {cfg_field}={threshold:g}"

    if cfg.only_verified and token.verified is not True:
        return "not verified"

    if cfg.fast_listing:
        age = to_number(token.age_minutes)
        if age is not None and age > FAST_LISTING_MAX_AGE_MIN:
            return f"age_minutes={age:g} too old for fast listing"

    return None


def passes(token: TokenCandidate, cfg: StrategyConfig) -> bool:
    return rejection_reason(token, cfg) is None


def filter_tokens(tokens: Iterable[TokenCandidate], cfg: StrategyConfig) -> List[TokenCandidate]:
    """Stable filter: keeps input order, never re-sorts."""
    if cfg is None or not cfg.enabled or tokens is None:
        return []
    return [token for token in tokens if passes(token, cfg)]
