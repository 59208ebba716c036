"""
Strategy Engine

Orchestrates the auto-trading cycle:
- shared token-cache refresh on its own timer
- per-user scan: filter, dedup, capacity and balance checks, race buy
- one PositionMonitor task per opened position

Nothing raised while handling one user, candidate or position stops the engine.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import TYPE_CHECKING, Dict, Iterable, List, Optional

from autotrade_bot.config import Settings
from autotrade_bot.config.strategy_config import UserAccount
from autotrade_bot.constants import MIN_RESERVE_SOL
from autotrade_bot.core.dedup_cache import DedupCache
from autotrade_bot.core.models import Position, TokenCandidate
from autotrade_bot.core.position_book import PositionBook
from autotrade_bot.core.position_monitor import PositionMonitor
from autotrade_bot.core.strategy_filter import filter_tokens
from autotrade_bot.exceptions import (
    BotException,
    CapacityExceeded,
    FeedUnavailable,
    InsufficientBalance,
    RouteExhausted,
)

if TYPE_CHECKING:
    from autotrade_bot.core.balance import BalanceProvider
    from autotrade_bot.core.execution_router import ExecutionRouter
    from autotrade_bot.core.position_store import PositionStore
    from autotrade_bot.core.price_feed import PriceFeed, TokenCache
    from autotrade_bot.core.telegram_notifier import Notifier


class StrategyEngine:
    def __init__(
        self,
        settings: Settings,
        token_cache: "TokenCache",
        router: "ExecutionRouter",
        price_feed: "PriceFeed",
        notifier: "Notifier",
        balance_provider: "BalanceProvider",
        users: Optional[Dict[str, UserAccount]] = None,
        dedup: Optional[DedupCache] = None,
        book: Optional[PositionBook] = None,
        store: Optional["PositionStore"] = None,
    ) -> None:
        self.settings = settings
        self.token_cache = token_cache
        self.router = router
        self.price_feed = price_feed
        self.notifier = notifier
        self.balance_provider = balance_provider
        self.users: Dict[str, UserAccount] = dict(users or {})
        self.dedup = dedup or DedupCache(
            ttl=settings.DEDUP_TTL_SEC,
            high_water=settings.DEDUP_HIGH_WATER,
            evict_batch=settings.DEDUP_EVICT_BATCH,
            hard_cap=settings.DEDUP_HARD_CAP,
        )
        self.book = book or PositionBook()
        self.store = store
        self.logger = logging.getLogger("autotrade_bot.engine")

        self.is_running = False
        self._loops: List[asyncio.Task] = []

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    async def add_user(self, account: UserAccount) -> int:
        """Register or replace a user; restarts monitors for positions left without one."""
        self.users[account.user_id] = account
        if not account.is_tradeable:
            return 0
        orphans = self.book.unmonitored(account.user_id)
        for position in orphans:
            await self.spawn_monitor(account, position)
        if orphans:
            self.logger.info("User %s re-added, %d monitor(s) restarted", account.user_id, len(orphans))
        return len(orphans)

    def eligible_users(self) -> List[UserAccount]:
        return [acc for acc in self.users.values() if acc.is_tradeable]

    async def deactivate_user(self, user_id: str) -> int:
        """Stop trading for a user and cancel all of their monitors."""
        account = self.users.get(user_id)
        if account is not None:
            account.active = False
        cancelled = await self.book.cancel_monitors(user_id)
        self.logger.info("User %s deactivated, %d monitor(s) cancelled", user_id, cancelled)
        return cancelled

    # ------------------------------------------------------------------
    # Scanning
    # ------------------------------------------------------------------

    async def scan_once(self) -> int:
        """One scan cycle across all eligible users. Returns positions opened."""
        try:
            tokens = await self.token_cache.get()
        except FeedUnavailable as e:
            self.logger.warning("SCAN skipped, feed unavailable: %s", e)
            return 0

        users = self.eligible_users()
        if not users:
            return 0

        results = await asyncio.gather(
            *(self.scan_user(account, tokens) for account in users), return_exceptions=True
        )
        opened = 0
        for account, result in zip(users, results):
            if isinstance(result, BaseException):
                if isinstance(result, asyncio.CancelledError):
                    raise result
                self.logger.error("SCAN failed for %s: %s", account.user_id, result, exc_info=result)
                continue
            opened += len(result)
        return opened

    async def scan_user(self, account: UserAccount, tokens: Iterable[TokenCandidate]) -> List[Position]:
        cfg = account.strategy
        user_id = account.user_id
        opened: List[Position] = []

        for token in filter_tokens(tokens, cfg):
            if self.dedup.seen(user_id, token.address) or self.book.is_open(user_id, token.address):
                continue
            try:
                if not await self.book.reserve(user_id, token.address, cfg.max_active_trades):
                    continue
            except CapacityExceeded as e:
                self.logger.debug("SKIP remaining candidates for %s: %s", user_id, e)
                break

            position = None
            try:
                position = await self._open_position(account, token)
            except InsufficientBalance as e:
                self.logger.info("SKIP %s for %s: %s", token.symbol or token.address[:8], user_id, e)
            except RouteExhausted as e:
                self.logger.warning("BUY failed for %s on %s: %s", user_id, token.address[:8], e)
                await self._notify(user_id, f"❌ Buy failed for {token.symbol or token.address}: {e}")
            except BotException as e:
                self.logger.error("BUY error for %s on %s: %s", user_id, token.address[:8], e)
                await self._notify(user_id, f"❌ Buy error for {token.symbol or token.address}: {e}")
            finally:
                if position is None:
                    await self.book.release(user_id, token.address)

            if position is not None:
                opened.append(position)
        return opened

    async def _open_position(self, account: UserAccount, token: TokenCandidate) -> Position:
        cfg = account.strategy
        user_id = account.user_id

        balance = await self.balance_provider.get_balance(account.credential)
        required = cfg.buy_amount + MIN_RESERVE_SOL
        if balance < required:
            raise InsufficientBalance(
                "Not enough SOL", balance=f"{balance:.4f}", required=f"{required:.4f}"
            )

        result = await self.router.buy(token.address, cfg.buy_amount, account.credential)

        entry_price = token.price_usd or 0.0
        if not entry_price:
            try:
                entry_price = await self.price_feed.fetch_current_price(token.address)
            except Exception as e:
                self.logger.debug("Entry price unavailable for %s: %s", token.address[:8], e)

        position = Position(
            user_id=user_id,
            address=token.address,
            entry_price=entry_price,
            amount=cfg.buy_amount,
            token_amount_raw=result.raw_out,
            symbol=token.symbol,
            source=result.source,
            tx_id=result.tx_id,
            opened_at=time.time(),
            last_price=entry_price,
        )
        await self.book.add(position)
        self.dedup.mark_seen(user_id, token.address)
        await self.spawn_monitor(account, position)
        self._persist()

        self.logger.info(
            "BUY %s (%s) for %s: %g SOL via %s tx=%s",
            token.symbol or "?", token.address[:8], user_id, cfg.buy_amount, result.source, result.tx_id,
        )
        await self._notify(
            user_id,
            f"🟢 Bought {token.symbol or token.address} for {cfg.buy_amount:g} SOL via {result.source}\n"
            f"Entry: {entry_price:.10g}\nTx: {result.tx_id}",
        )
        return position

    # ------------------------------------------------------------------
    # Monitors
    # ------------------------------------------------------------------

    async def spawn_monitor(self, account: UserAccount, position: Position) -> asyncio.Task:
        monitor = PositionMonitor(
            position=position,
            strategy=account.strategy,
            router=self.router,
            price_feed=self.price_feed,
            notifier=self.notifier,
            credential=account.credential,
            on_close=self._on_position_closed,
            on_change=self._on_position_changed,
            poll_interval=self.settings.MONITOR_POLL_SEC,
        )
        task = asyncio.create_task(
            self._supervise(monitor, account.user_id), name=f"monitor-{position.user_id}-{position.address[:8]}"
        )
        # No-op if the monitor already closed the position
        await self.book.attach_monitor(position.user_id, position.address, task)
        return task

    async def _supervise(self, monitor: PositionMonitor, user_id: str) -> None:
        pos = monitor.position
        try:
            await monitor.run()
        except asyncio.CancelledError:
            self.logger.info("Monitor for %s cancelled", pos.address[:8])
            raise
        except Exception as e:
            # Position stays booked; re-adding the user or a restart picks it up
            self.logger.exception("Monitor for %s crashed", pos.address[:8])
            await self.book.detach_monitor(user_id, pos.address, asyncio.current_task())
            await self._notify(
                user_id,
                f"🔥 Monitoring stopped for {pos.symbol or pos.address}: {e}. "
                f"Targets and stop-loss are not being checked.",
            )

    async def _on_position_closed(self, position: Position) -> None:
        await self.book.remove(position.user_id, position.address)
        self._persist()

    async def _on_position_changed(self, position: Position) -> None:
        self._persist()

    async def resume_positions(self, positions: Dict[str, List[Position]]) -> int:
        """Re-hydrate open positions and restart their monitors."""
        resumed = 0
        for user_id, user_positions in positions.items():
            account = self.users.get(user_id)
            if account is None:
                self.logger.warning("Skipping %d restored position(s) of unknown user %s", len(user_positions), user_id)
                continue
            for position in user_positions:
                if position.is_terminal or self.book.is_open(user_id, position.address):
                    continue
                await self.book.add(position)
                self.dedup.mark_seen(user_id, position.address)
                await self.spawn_monitor(account, position)
                resumed += 1
        if resumed:
            self.logger.info("Resumed %d position monitor(s)", resumed)
        return resumed

    def _persist(self) -> None:
        if self.store is None:
            return
        try:
            self.store.save(self.book.all_positions())
        except OSError as e:
            self.logger.error("Failed to write positions snapshot: %s", e)

    async def _notify(self, user_id: str, message: str) -> None:
        try:
            await self.notifier.notify(user_id, message)
        except Exception as e:
            self.logger.debug("Notify failed: %s", e)

    # ------------------------------------------------------------------
    # Loops
    # ------------------------------------------------------------------

    async def refresh_loop(self) -> None:
        while self.is_running:
            try:
                await self.token_cache.refresh()
            except FeedUnavailable as e:
                self.logger.warning("Feed refresh failed: %s", e)
            await asyncio.sleep(self.settings.FEED_REFRESH_SEC)

    async def scan_loop(self) -> None:
        while self.is_running:
            try:
                await self.scan_once()
            except Exception:
                self.logger.exception("SCAN cycle error")
            await asyncio.sleep(self.settings.SCAN_INTERVAL_SEC)

    async def run(self) -> None:
        self.is_running = True
        self.logger.info("Engine started for %d user(s)", len(self.eligible_users()))
        self._loops = [
            asyncio.create_task(self.refresh_loop(), name="feed-refresh"),
            asyncio.create_task(self.scan_loop(), name="strategy-scan"),
        ]
        try:
            await asyncio.gather(*self._loops)
        except asyncio.CancelledError:
            pass

    async def stop(self) -> None:
        """Stop both loops and every monitor; open positions stay in the snapshot."""
        self.is_running = False
        for task in self._loops:
            task.cancel()
        if self._loops:
            await asyncio.gather(*self._loops, return_exceptions=True)
        self._loops = []
        self._persist()
        for user_id in self.book.users():
            await self.book.cancel_monitors(user_id)
        self.logger.info("Engine stopped")
