"""
Unit tests for the execution router

Tests core functionality:
1. First successful source wins, the rest are signalled
2. Aggregate error when every source fails
3. Unsupported sides and zero-amount probes
"""

import asyncio

import pytest

from autotrade_bot.core.execution_router import ExecutionRouter
from autotrade_bot.core.models import Side
from autotrade_bot.core.trade_sources import PaperSource, TradeSource
from autotrade_bot.exceptions import ConfigurationException, RouteExhausted

from conftest import ScriptedSource


class TestRace:
    """First success wins"""

    @pytest.mark.asyncio
    async def test_fastest_success_wins(self):
        slow = ScriptedSource("slow", delay=0.5)
        fast = ScriptedSource("fast", delay=0.01)
        medium = ScriptedSource("medium", delay=0.2)
        router = ExecutionRouter([slow, fast, medium])

        result = await router.buy("Mint1", 0.01, None)

        assert result.source == "fast"
        assert result.tx_id.startswith("fast-tx")
        assert not fast.events[0].is_set()
        assert slow.events[0].is_set()
        assert medium.events[0].is_set()

    @pytest.mark.asyncio
    async def test_losers_observe_cancellation(self):
        slow = ScriptedSource("slow", delay=0.5)
        fast = ScriptedSource("fast", delay=0.01)
        router = ExecutionRouter([slow, fast])

        await router.sell("Mint1", 0.005, None)
        await asyncio.sleep(0.05)

        assert slow.saw_cancel

    @pytest.mark.asyncio
    async def test_failures_before_success_are_ignored(self):
        broken = ScriptedSource("broken", error="no liquidity")
        ok = ScriptedSource("ok", delay=0.05)
        router = ExecutionRouter([broken, ok])

        result = await router.buy("Mint1", 0.01, None)

        assert result.source == "ok"
        assert broken.events[0].is_set()

    @pytest.mark.asyncio
    async def test_late_result_is_discarded(self):
        fast = ScriptedSource("fast")

        class Stubborn(TradeSource):
            name = "stubborn"
            finished = False

            async def buy(self, token_address, amount, credential, cancel_event):
                await asyncio.sleep(0.05)
                Stubborn.finished = True
                return await ScriptedSource("stubborn").buy(token_address, amount, credential, cancel_event)

        router = ExecutionRouter([fast, Stubborn()])
        result = await router.buy("Mint1", 0.01, None)
        await asyncio.sleep(0.1)

        assert result.source == "fast"
        assert Stubborn.finished
        assert not router._stragglers


class TestExhausted:
    """Every source failing"""

    @pytest.mark.asyncio
    async def test_error_contains_every_reason(self):
        router = ExecutionRouter([
            ScriptedSource("jupiter", error="No route found"),
            ScriptedSource("raydium", delay=0.01, error="pool not found"),
        ])

        with pytest.raises(RouteExhausted) as exc_info:
            await router.buy("Mint1", 0.01, None)

        message = str(exc_info.value)
        assert "jupiter: No route found" in message
        assert "raydium: pool not found" in message
        assert exc_info.value.side == "buy"
        assert set(exc_info.value.errors) == {"jupiter", "raydium"}

    @pytest.mark.asyncio
    async def test_unsupported_side_is_a_failure(self):
        buy_only = ScriptedSource("buy-only", sides=(Side.BUY,))
        router = ExecutionRouter([buy_only])

        with pytest.raises(RouteExhausted) as exc_info:
            await router.sell("Mint1", 0.01, None)
        assert "sell not implemented" in exc_info.value.errors["buy-only"]

    @pytest.mark.asyncio
    async def test_unsupported_side_does_not_block_others(self):
        router = ExecutionRouter([
            ScriptedSource("buy-only", sides=(Side.BUY,)),
            ScriptedSource("both", delay=0.01),
        ])
        result = await router.sell("Mint1", 0.01, None)
        assert result.source == "both"

    def test_no_sources(self):
        with pytest.raises(ConfigurationException):
            ExecutionRouter([])


class TestProbe:
    """Zero amount only discovers a route"""

    @pytest.mark.asyncio
    async def test_zero_amount_probe(self):
        paper = PaperSource(name="paper", latency=0.0)
        router = ExecutionRouter([paper])

        result = await router.buy("Mint1", 0, None)

        assert result.route_only
        assert result.tx_id == ""
        assert paper.fills == []
