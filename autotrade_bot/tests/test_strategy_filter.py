"""
Unit tests for the strategy filter

Tests core functionality:
1. Inert thresholds (unset / zero / unavailable)
2. min_* and max_* comparisons
3. Verified and fast-listing switches
4. Disabled strategy and stable ordering
"""

from dataclasses import replace

import pytest

from autotrade_bot.config.strategy_config import StrategyConfig
from autotrade_bot.core.models import TokenCandidate
from autotrade_bot.core.strategy_filter import THRESHOLDS, filter_tokens, passes, rejection_reason


def make_token(address="Mint1", **kwargs):
    return TokenCandidate(address=address, **kwargs)


class TestInertThresholds:
    """A threshold that is absent or zero never changes the outcome"""

    @pytest.mark.parametrize("cfg_field,token_field,is_minimum", THRESHOLDS)
    @pytest.mark.parametrize("threshold", [None, 0])
    def test_attribute_change_does_not_matter(self, cfg_field, token_field, is_minimum, threshold):
        cfg = StrategyConfig(enabled=True, **{cfg_field: threshold})
        outcomes = {
            passes(make_token(**{token_field: value}), cfg)
            for value in (None, 0, 0.5, 10, 1e9)
        }
        assert outcomes == {True}

    @pytest.mark.parametrize("cfg_field,token_field,is_minimum", THRESHOLDS)
    def test_unavailable_token_field_skips_threshold(self, cfg_field, token_field, is_minimum):
        cfg = StrategyConfig(enabled=True, **{cfg_field: 100})
        assert passes(make_token(), cfg)

    def test_malformed_values_are_inapplicable(self):
        cfg = StrategyConfig(enabled=True, min_holders="lots", min_volume=500)
        token = make_token(holders=3, volume_24h="n/a")
        assert cfg.min_holders is None
        assert passes(token, cfg)


class TestComparisons:
    """min_* rejects below, max_* rejects above"""

    def test_min_holders(self):
        cfg = StrategyConfig(enabled=True, min_holders=50)
        tokens = [
            make_token("A", holders=49),
            make_token("B", holders=50),
            make_token("C", holders=500),
            make_token("D"),
        ]
        result = filter_tokens(tokens, cfg)
        assert [t.address for t in result] == ["B", "C", "D"]
        assert all(t.holders is None or t.holders >= 50 for t in result)

    def test_max_price_and_max_age(self):
        cfg = StrategyConfig(enabled=True, max_price=2.0, max_age=60)
        assert passes(make_token(price_usd=2.0, age_minutes=60), cfg)
        assert not passes(make_token(price_usd=2.01), cfg)
        assert not passes(make_token(age_minutes=61), cfg)

    def test_every_threshold_independent(self):
        cfg = StrategyConfig(
            enabled=True, min_market_cap=50_000, min_liquidity=1_000, min_volume=500, min_age=10
        )
        token = make_token(market_cap=80_000, liquidity_usd=5_000, volume_24h=2_000, age_minutes=25)
        assert passes(token, cfg)
        assert not passes(replace(token, liquidity_usd=999), cfg)
        assert not passes(replace(token, age_minutes=9), cfg)

    def test_rejection_reason_names_field(self):
        cfg = StrategyConfig(enabled=True, min_liquidity=1_000)
        reason = rejection_reason(make_token(liquidity_usd=10), cfg)
        assert "liquidity_usd" in reason
        assert "min_liquidity" in reason


class TestSwitches:
    """only_verified and fast_listing"""

    def test_only_verified(self):
        cfg = StrategyConfig(enabled=True, only_verified=True)
        assert passes(make_token(verified=True), cfg)
        assert not passes(make_token(verified=False), cfg)
        assert not passes(make_token(verified=None), cfg)

    def test_only_verified_off_is_no_constraint(self):
        cfg = StrategyConfig(enabled=True, only_verified=False)
        assert passes(make_token(verified=False), cfg)

    def test_fast_listing(self):
        cfg = StrategyConfig(enabled=True, fast_listing=True)
        assert passes(make_token(age_minutes=5), cfg)
        assert passes(make_token(), cfg)
        assert not passes(make_token(age_minutes=120), cfg)


class TestStrategyState:
    def test_disabled_strategy_passes_nothing(self):
        cfg = StrategyConfig(enabled=False)
        assert filter_tokens([make_token("A"), make_token("B")], cfg) == []

    def test_stable_order(self):
        cfg = StrategyConfig(enabled=True, min_volume=10)
        tokens = [make_token(str(i), volume_24h=v) for i, v in enumerate([50, 5, 40, 30, 1, 20])]
        assert [t.address for t in filter_tokens(tokens, cfg)] == ["0", "2", "3", "5"]

    def test_empty_input(self):
        assert filter_tokens([], StrategyConfig(enabled=True)) == []
