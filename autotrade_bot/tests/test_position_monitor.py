"""
Unit tests for the position monitor

Tests core functionality:
1. Staged take-profit exits
2. Stop-loss on the remaining amount
3. Failed sells retry without advancing
4. Task lifecycle
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from autotrade_bot.config.strategy_config import StrategyConfig
from autotrade_bot.core.models import Position, PositionState, Side, TradeResult
from autotrade_bot.core.position_monitor import PositionMonitor
from autotrade_bot.exceptions import RouteExhausted

from conftest import FakeFeed


def make_router():
    router = MagicMock()
    router.sell = AsyncMock(side_effect=lambda address, qty, cred: TradeResult(
        tx_id="tx-sell", source="jupiter", side=Side.SELL, amount_in=qty
    ))
    return router


def make_monitor(strategy, router=None, feed=None, notifier=None, **kwargs):
    position = Position(user_id="u1", address="Mint1", entry_price=1.0, amount=1.0, symbol="TST")
    notifier = notifier or MagicMock(notify=AsyncMock(return_value=True))
    return PositionMonitor(
        position=position,
        strategy=strategy,
        router=router or make_router(),
        price_feed=feed or FakeFeed(),
        notifier=notifier,
        poll_interval=0.01,
        **kwargs,
    )


class TestStageOne:
    @pytest.mark.asyncio
    async def test_stage1_triggers_once(self):
        strategy = StrategyConfig(enabled=True, profit_target1=20, sell_percent1=50,
                                  profit_target2=50, sell_percent2=50)
        monitor = make_monitor(strategy)

        for _ in range(3):
            state = await monitor.tick(1.25)

        assert state is PositionState.PARTIAL1
        assert monitor.router.sell.await_count == 1
        monitor.router.sell.assert_awaited_with("Mint1", 0.5, None)
        assert monitor.position.stage1_sold == pytest.approx(0.5)

    @pytest.mark.asyncio
    async def test_below_target_does_nothing(self):
        monitor = make_monitor(StrategyConfig(enabled=True, profit_target1=20))
        assert await monitor.tick(1.19) is PositionState.OPEN
        monitor.router.sell.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_stage1_alone_closes_without_target2(self):
        on_close = AsyncMock()
        strategy = StrategyConfig(enabled=True, profit_target1=20, sell_percent1=50)
        monitor = make_monitor(strategy, on_close=on_close)

        state = await monitor.tick(1.25)

        assert not strategy.stage2_configured
        assert state is PositionState.CLOSED
        on_close.assert_awaited_once_with(monitor.position)


class TestStageTwo:
    @pytest.mark.asyncio
    async def test_partial2_then_closed(self):
        strategy = StrategyConfig(enabled=True, profit_target1=20, sell_percent1=50,
                                  profit_target2=50, sell_percent2=50)
        monitor = make_monitor(strategy)

        assert await monitor.tick(1.3) is PositionState.PARTIAL1
        assert await monitor.tick(1.6) is PositionState.CLOSED
        assert monitor.position.stage2_sold == pytest.approx(0.5)
        assert monitor.position.remaining == pytest.approx(0.0)

    @pytest.mark.asyncio
    async def test_both_stages_in_one_tick(self):
        strategy = StrategyConfig(enabled=True, profit_target1=20, sell_percent1=30,
                                  profit_target2=50, sell_percent2=30)
        monitor = make_monitor(strategy)

        state = await monitor.tick(2.0)

        assert state is PositionState.CLOSED
        assert monitor.router.sell.await_count == 2
        assert monitor.position.exited_stage1 and monitor.position.exited_stage2

    @pytest.mark.asyncio
    async def test_stage2_sell_clamped_to_remaining(self):
        strategy = StrategyConfig(enabled=True, profit_target1=20, sell_percent1=80,
                                  profit_target2=50, sell_percent2=50)
        monitor = make_monitor(strategy)

        await monitor.tick(1.25)
        await monitor.tick(1.6)

        assert monitor.position.stage2_sold == pytest.approx(0.2)


class TestStopLoss:
    @pytest.mark.asyncio
    async def test_stop_from_open_sells_everything(self):
        monitor = make_monitor(StrategyConfig(enabled=True, stop_loss_percent=15))

        state = await monitor.tick(0.80)

        assert state is PositionState.STOPPED
        monitor.router.sell.assert_awaited_once_with("Mint1", 1.0, None)
        assert monitor.position.is_terminal

    @pytest.mark.asyncio
    async def test_stop_after_stage1_sells_remaining(self):
        strategy = StrategyConfig(enabled=True, profit_target1=20, sell_percent1=50,
                                  profit_target2=100, sell_percent2=50, stop_loss_percent=15)
        monitor = make_monitor(strategy)

        await monitor.tick(1.25)
        state = await monitor.tick(0.80)

        assert state is PositionState.STOPPED
        assert monitor.position.stop_sold == pytest.approx(0.5)
        assert monitor.router.sell.await_args_list[-1].args == ("Mint1", 0.5, None)

    @pytest.mark.asyncio
    async def test_negative_stop_loss_config_uses_magnitude(self):
        monitor = make_monitor(StrategyConfig(enabled=True, stop_loss_percent=-15))
        assert await monitor.tick(0.90) is PositionState.OPEN
        assert await monitor.tick(0.85) is PositionState.STOPPED


class TestTokenUnits:
    """Positions with a known raw token balance sell raw units, not SOL figures"""

    @pytest.mark.asyncio
    async def test_stages_sell_share_of_raw_balance(self):
        strategy = StrategyConfig(enabled=True, profit_target1=20, sell_percent1=50,
                                  profit_target2=100, sell_percent2=50, stop_loss_percent=15)
        monitor = make_monitor(strategy)
        monitor.position.amount = 0.01
        monitor.position.token_amount_raw = 300_000_000_000

        assert await monitor.tick(1.25) is PositionState.PARTIAL1
        monitor.router.sell.assert_awaited_with("Mint1", 150_000_000_000, None)

        assert await monitor.tick(0.80) is PositionState.STOPPED
        monitor.router.sell.assert_awaited_with("Mint1", 150_000_000_000, None)
        assert monitor.position.raw_sold == 300_000_000_000

    @pytest.mark.asyncio
    async def test_last_exit_takes_rounding_dust(self):
        strategy = StrategyConfig(enabled=True, profit_target1=20, sell_percent1=50,
                                  profit_target2=50, sell_percent2=50)
        monitor = make_monitor(strategy)
        monitor.position.token_amount_raw = 7

        await monitor.tick(1.3)
        await monitor.tick(1.6)

        assert [c.args[1] for c in monitor.router.sell.await_args_list] == [4, 3]
        assert monitor.position.state is PositionState.CLOSED


class TestFailures:
    @pytest.mark.asyncio
    async def test_failed_sell_keeps_flags_and_retries(self):
        router = make_router()
        router.sell.side_effect = [
            RouteExhausted("sell", {"jupiter": "timeout"}),
            TradeResult(tx_id="tx-2", source="jupiter", side=Side.SELL, amount_in=0.5),
        ]
        notifier = MagicMock(notify=AsyncMock(return_value=True))
        strategy = StrategyConfig(enabled=True, profit_target1=20, sell_percent1=50,
                                  profit_target2=50, sell_percent2=50)
        monitor = make_monitor(strategy, router=router, notifier=notifier)

        assert await monitor.tick(1.25) is PositionState.OPEN
        assert not monitor.position.exited_stage1
        failure_message = notifier.notify.await_args_list[0].args[1]
        assert "failed" in failure_message

        assert await monitor.tick(1.25) is PositionState.PARTIAL1
        assert router.sell.await_count == 2

    @pytest.mark.asyncio
    async def test_price_error_skips_tick(self):
        monitor = make_monitor(StrategyConfig(enabled=True), feed=FakeFeed(prices={}))
        assert await monitor.poll_once() is PositionState.OPEN
        monitor.router.sell.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_notifier_errors_are_swallowed(self):
        notifier = MagicMock(notify=AsyncMock(side_effect=RuntimeError("telegram down")))
        monitor = make_monitor(StrategyConfig(enabled=True), notifier=notifier)
        assert await monitor.tick(0.5) is PositionState.STOPPED


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_run_ends_on_terminal_state(self):
        feed = FakeFeed(prices={"Mint1": 1.0})
        on_close = AsyncMock()
        on_change = AsyncMock()
        monitor = make_monitor(StrategyConfig(enabled=True), feed=feed,
                               on_close=on_close, on_change=on_change)

        task = asyncio.create_task(monitor.run())
        await asyncio.sleep(0.05)
        assert not task.done()

        feed.prices["Mint1"] = 0.7
        state = await asyncio.wait_for(task, timeout=1.0)

        assert state is PositionState.STOPPED
        on_close.assert_awaited_once()
        on_change.assert_awaited()

    @pytest.mark.asyncio
    async def test_missing_entry_price_adopts_first_observation(self):
        monitor = make_monitor(StrategyConfig(enabled=True))
        monitor.position.entry_price = 0.0

        assert await monitor.tick(2.0) is PositionState.OPEN
        assert monitor.position.entry_price == 2.0
        monitor.router.sell.assert_not_awaited()
