"""Shared fakes for engine tests."""

import asyncio

import pytest

from autotrade_bot.config import Settings
from autotrade_bot.config.strategy_config import Credential, StrategyConfig, UserAccount
from autotrade_bot.core.models import Side, TokenCandidate, TradeResult
from autotrade_bot.core.price_feed import PriceFeed
from autotrade_bot.core.trade_sources import TradeSource
from autotrade_bot.core.telegram_notifier import LoggingNotifier
from autotrade_bot.exceptions import FeedUnavailable, SwapException


class FakeFeed(PriceFeed):
    name = "fake"

    def __init__(self, candidates=None, prices=None):
        self.candidates = list(candidates or [])
        self.prices = dict(prices or {})
        self.candidate_calls = 0
        self.fail_candidates = False

    async def fetch_candidates(self):
        self.candidate_calls += 1
        if self.fail_candidates:
            raise FeedUnavailable("feed down")
        return list(self.candidates)

    async def fetch_current_price(self, address):
        price = self.prices.get(address)
        if price is None:
            raise FeedUnavailable("no price", address=address)
        return price


class ScriptedSource(TradeSource):
    """Fills after `delay` seconds unless cancelled first, or fails with `error`."""

    def __init__(self, name, delay=0.0, error=None, sides=(Side.BUY, Side.SELL), raw_out=0):
        self.name = name
        self.raw_out = raw_out
        self.delay = delay
        self.error = error
        self.sides = sides
        self.calls = []
        self.events = []
        self.saw_cancel = False

    async def _run(self, side, token_address, amount, cancel_event):
        self.calls.append((side, token_address, amount))
        self.events.append(cancel_event)
        if self.delay:
            try:
                await asyncio.wait_for(cancel_event.wait(), timeout=self.delay)
                self.saw_cancel = True
                raise SwapException("Cancelled")
            except asyncio.TimeoutError:
                pass
        if self.error:
            raise SwapException(self.error)
        if not amount:
            return TradeResult(tx_id="", source=self.name, side=side, amount_in=0.0, route_only=True)
        return TradeResult(
            tx_id=f"{self.name}-tx-{len(self.calls)}",
            source=self.name,
            side=side,
            amount_in=amount,
            amount_out=amount,
            raw_out=self.raw_out if side is Side.BUY else 0,
        )

    async def buy(self, token_address, amount, credential, cancel_event):
        if Side.BUY not in self.sides:
            return await super().buy(token_address, amount, credential, cancel_event)
        return await self._run(Side.BUY, token_address, amount, cancel_event)

    async def sell(self, token_address, amount, credential, cancel_event):
        if Side.SELL not in self.sides:
            return await super().sell(token_address, amount, credential, cancel_event)
        return await self._run(Side.SELL, token_address, amount, cancel_event)


@pytest.fixture
def settings(tmp_path):
    return Settings(
        LOG_DIR=str(tmp_path / "logs"),
        POSITION_SNAPSHOT_PATH=str(tmp_path / "positions.json"),
        SCAN_INTERVAL_SEC=0.01,
        FEED_REFRESH_SEC=0.01,
        TOKEN_CACHE_TTL_SEC=60.0,
        MONITOR_POLL_SEC=0.01,
        SIM_LATENCY_SEC=0.0,
    )


@pytest.fixture
def notifier():
    return LoggingNotifier()


@pytest.fixture
def good_token():
    return TokenCandidate(
        address="GoodMint1111111111111111111111111111111111",
        symbol="GOOD",
        price_usd=1.0,
        market_cap=80_000,
        liquidity_usd=5_000,
        volume_24h=2_000,
        holders=120,
        age_minutes=25,
        verified=True,
    )


@pytest.fixture
def scenario_account():
    strategy = StrategyConfig(
        min_market_cap=50_000,
        min_liquidity=1_000,
        min_volume=500,
        min_age=10,
        enabled=True,
        buy_amount=0.01,
        max_active_trades=1,
        profit_target1=20,
        sell_percent1=100,
        stop_loss_percent=15,
    )
    return UserAccount(
        user_id="1001",
        strategy=strategy,
        credential=Credential(secret="paper-secret", public_key="PaperWallet111"),
    )
