"""
Execution Router

Races every trade source for a buy or sell and keeps the first success.

Each attempt runs as its own task with its own cancel event. When one attempt
succeeds the others are signalled through their events; they are not killed,
and anything they produce afterwards is logged and discarded. There are no
retries here, the caller decides whether to try again on a later cycle.
"""

import asyncio
import logging
from typing import Dict, List, Optional, Sequence

from ..config.strategy_config import Credential
from ..exceptions import RouteExhausted, ConfigurationException
from .models import Side, TradeResult
from .trade_sources import TradeSource

logger = logging.getLogger(__name__)


class ExecutionRouter:
    def __init__(self, sources: Sequence[TradeSource]):
        if not sources:
            raise ConfigurationException("ExecutionRouter needs at least one trade source")
        self.sources: List[TradeSource] = list(sources)
        # Losing attempts still running after a race was decided
        self._stragglers: set = set()

    async def buy(self, token_address: str, amount: float, credential: Optional[Credential]) -> TradeResult:
        return await self._race(Side.BUY, token_address, amount, credential)

    async def sell(self, token_address: str, amount: float, credential: Optional[Credential]) -> TradeResult:
        return await self._race(Side.SELL, token_address, amount, credential)

    async def _attempt(
        self,
        source: TradeSource,
        side: Side,
        token_address: str,
        amount: float,
        credential: Optional[Credential],
        cancel_event: asyncio.Event,
    ) -> TradeResult:
        method = source.buy if side is Side.BUY else source.sell
        return await method(token_address, amount, credential, cancel_event)

    async def _race(
        self,
        side: Side,
        token_address: str,
        amount: float,
        credential: Optional[Credential],
    ) -> TradeResult:
        events: Dict[asyncio.Task, asyncio.Event] = {}
        names: Dict[asyncio.Task, str] = {}
        for source in self.sources:
            event = asyncio.Event()
            task = asyncio.create_task(
                self._attempt(source, side, token_address, amount, credential, event)
            )
            events[task] = event
            names[task] = source.name

        errors: Dict[str, str] = {}
        pending = set(events)
        winner: Optional[TradeResult] = None
        winner_task: Optional[asyncio.Task] = None

        try:
            while pending and winner is None:
                done, pending = await asyncio.wait(pending, return_when=asyncio.FIRST_COMPLETED)
                for task in done:
                    if task.cancelled():
                        errors[names[task]] = "cancelled"
                        continue
                    exc = task.exception()
                    if exc is not None:
                        errors[names[task]] = str(exc) or type(exc).__name__
                        logger.debug(f"{side.value} via {names[task]} failed: {exc}")
                    elif winner is None:
                        winner, winner_task = task.result(), task
                    else:
                        self._discard_late(task, names[task], side)
        finally:
            # Every attempt but the winner is told to stand down
            for task, event in events.items():
                if task is not winner_task:
                    event.set()
            for task in pending:
                self._stragglers.add(task)
                task.add_done_callback(self._make_reaper(names[task], side))

        if winner is not None:
            logger.info(
                f"{side.value.upper()} {token_address[:8]}... won by {winner.source} "
                f"(tx: {winner.tx_id or 'route-only'})"
            )
            return winner

        raise RouteExhausted(side.value, errors, token=token_address[:8])

    def _make_reaper(self, name: str, side: Side):
        def _reap(task: asyncio.Task):
            self._stragglers.discard(task)
            if task.cancelled():
                return
            exc = task.exception()
            if exc is None:
                self._discard_late(task, name, side)
            else:
                logger.debug(f"Late {side.value} via {name} ended with: {exc}")
        return _reap

    @staticmethod
    def _discard_late(task: asyncio.Task, name: str, side: Side):
        result = task.result()
        logger.warning(
            f"Discarding late {side.value} result from {name} (tx: {result.tx_id or 'route-only'})"
        )

    async def close(self):
        for source in self.sources:
            await source.close()
