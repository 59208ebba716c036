from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Awaitable, Callable, Optional

from autotrade_bot.config.strategy_config import Credential, StrategyConfig
from autotrade_bot.constants import MONITOR_POLL_SEC
from autotrade_bot.core.models import Position, PositionState
from autotrade_bot.exceptions import BotException, TransientSellFailure

if TYPE_CHECKING:
    from autotrade_bot.core.execution_router import ExecutionRouter
    from autotrade_bot.core.price_feed import PriceFeed
    from autotrade_bot.core.telegram_notifier import Notifier


PositionHook = Callable[[Position], Awaitable[None]]


class PositionMonitor:
    """
    Supervises one open position until it is fully exited.

    OPEN -> PARTIAL1 -> PARTIAL2 -> CLOSED, and any non-terminal state -> STOPPED.
    Each tick checks stage 1, then stage 2, then stop-loss. A failed sell leaves
    the flags untouched and is retried on the next tick.
    """

    def __init__(
        self,
        position: Position,
        strategy: StrategyConfig,
        router: "ExecutionRouter",
        price_feed: "PriceFeed",
        notifier: "Notifier",
        credential: Optional[Credential] = None,
        on_close: Optional[PositionHook] = None,
        on_change: Optional[PositionHook] = None,
        poll_interval: float = MONITOR_POLL_SEC,
    ) -> None:
        self.position = position
        self.strategy = strategy
        self.router = router
        self.price_feed = price_feed
        self.notifier = notifier
        self.credential = credential
        self.on_close = on_close
        self.on_change = on_change
        self.poll_interval = poll_interval
        self.logger = logging.getLogger("autotrade_bot.monitor")

    @property
    def state(self) -> PositionState:
        return self.position.state

    def change_pct(self, price: float) -> float:
        return (price - self.position.entry_price) / self.position.entry_price * 100.0

    async def run(self) -> PositionState:
        """Poll until terminal. The task ends by itself once the position is closed or stopped."""
        pos = self.position
        self.logger.info(
            "OPEN monitor %s (%s) entry=%.10g amount=%g",
            pos.symbol or pos.address[:8], pos.user_id, pos.entry_price, pos.amount,
        )
        while not pos.is_terminal:
            await self.poll_once()
            if pos.is_terminal:
                break
            await asyncio.sleep(self.poll_interval)
        return pos.state

    async def poll_once(self) -> PositionState:
        try:
            price = await self.price_feed.fetch_current_price(self.position.address)
        except Exception as e:
            self.logger.debug("Price unavailable for %s, skipping tick: %s", self.position.address[:8], e)
            return self.position.state
        return await self.tick(price)

    async def tick(self, price: float) -> PositionState:
        pos = self.position
        cfg = self.strategy
        if pos.is_terminal:
            return pos.state
        if not price or price <= 0:
            return pos.state
        if not pos.entry_price or pos.entry_price <= 0:
            # Bought without a quoted price: first observation becomes the entry
            pos.entry_price = price
            pos.last_price = price
            if self.on_change is not None:
                await self.on_change(pos)
            return pos.state

        pos.last_price = price
        change = self.change_pct(price)
        changed = False

        if not pos.exited_stage1 and change >= cfg.profit_target1:
            qty = min(pos.amount * cfg.sell_percent1 / 100.0, pos.remaining)
            if await self._exit(qty, "stage 1", change):
                pos.stage1_sold = qty
                pos.exited_stage1 = True
                changed = True

        if (
            cfg.stage2_configured
            and pos.exited_stage1
            and not pos.exited_stage2
            and change >= cfg.profit_target2
        ):
            qty = min(pos.amount * cfg.sell_percent2 / 100.0, pos.remaining)
            if await self._exit(qty, "stage 2", change):
                pos.stage2_sold = qty
                pos.exited_stage2 = True
                changed = True

        if not pos.stopped and change <= -abs(cfg.stop_loss_percent):
            qty = max(0.0, pos.amount - pos.stage1_sold - pos.stage2_sold)
            if await self._exit(qty, "stop-loss", change):
                pos.stop_sold = qty
                pos.stopped = True
                changed = True

        if not pos.stopped and self._fully_exited():
            pos.closed = True
            changed = True

        if changed and self.on_change is not None:
            await self.on_change(pos)
        if pos.is_terminal:
            await self._finish()
        return pos.state

    def _fully_exited(self) -> bool:
        pos = self.position
        if pos.remaining <= 0:
            return True
        return pos.exited_stage1 and (not self.strategy.stage2_configured or pos.exited_stage2)

    async def _exit(self, qty: float, label: str, change: float) -> bool:
        """Sell qty; True on fill. Nothing to sell counts as done."""
        pos = self.position
        if qty <= 0:
            return True
        units = pos.sell_units(qty)
        if units <= 0:
            return True
        try:
            result = await self.router.sell(pos.address, units, self.credential)
        except BotException as e:
            failure = TransientSellFailure(
                f"{label} sell failed", token=pos.address[:8], error=str(e)
            )
            self.logger.warning("SELL %s", failure)
            await self._notify(
                f"⚠️ {label} sell failed for {pos.symbol or pos.address} ({change:+.1f}%): {e}. Retrying."
            )
            return False

        if pos.token_amount_raw > 0:
            pos.raw_sold += int(units)
        tag = "STOP" if label == "stop-loss" else "SELL"
        self.logger.info(
            "%s %s %s qty=%g change=%+.1f%% via %s tx=%s",
            tag, label, pos.symbol or pos.address[:8], qty, change, result.source, result.tx_id,
        )
        await self._notify(
            f"{'🛑' if tag == 'STOP' else '💰'} {label} exit on {pos.symbol or pos.address} "
            f"({change:+.1f}%): sold {qty:g} via {result.source}\nTx: {result.tx_id}"
        )
        return True

    async def _finish(self) -> None:
        pos = self.position
        self.logger.info("EXIT %s %s", pos.symbol or pos.address[:8], pos.state.value)
        if pos.state is PositionState.CLOSED:
            await self._notify(f"✅ Position {pos.symbol or pos.address} fully closed.")
        if self.on_close is not None:
            await self.on_close(pos)

    async def _notify(self, message: str) -> None:
        try:
            await self.notifier.notify(self.position.user_id, message)
        except Exception as e:
            self.logger.debug("Notify failed: %s", e)
