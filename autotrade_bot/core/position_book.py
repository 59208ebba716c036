"""
Position Book

Per-user open-position set and the monitor tasks that own those positions.
Every mutation goes through a per-user asyncio.Lock; users never share a lock.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from ..exceptions import CapacityExceeded
from .models import Position

logger = logging.getLogger(__name__)


@dataclass
class UserBook:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    positions: Dict[str, Position] = field(default_factory=dict)
    monitors: Dict[str, asyncio.Task] = field(default_factory=dict)
    # Addresses with a buy in flight, counted against capacity
    pending: set = field(default_factory=set)


def _key(address: str) -> str:
    return (address or "").strip().lower()


class PositionBook:
    def __init__(self):
        self._books: Dict[str, UserBook] = {}

    def _book(self, user_id: str) -> UserBook:
        book = self._books.get(user_id)
        if book is None:
            book = UserBook()
            self._books[user_id] = book
        return book

    async def reserve(self, user_id: str, address: str, max_active: int) -> bool:
        """
        Claim a slot for a buy.

        Raises CapacityExceeded when the user is at max_active. Returns False if
        the address is already open or being bought.
        """
        book = self._book(user_id)
        async with book.lock:
            key = _key(address)
            if key in book.positions or key in book.pending:
                return False
            if len(book.positions) + len(book.pending) >= max_active:
                raise CapacityExceeded(
                    "Max active trades reached", user=user_id, max_active=max_active
                )
            book.pending.add(key)
            return True

    async def release(self, user_id: str, address: str):
        book = self._book(user_id)
        async with book.lock:
            book.pending.discard(_key(address))

    async def add(self, position: Position, monitor: Optional[asyncio.Task] = None):
        book = self._book(position.user_id)
        async with book.lock:
            key = _key(position.address)
            book.pending.discard(key)
            book.positions[key] = position
            if monitor is not None:
                book.monitors[key] = monitor

    async def attach_monitor(self, user_id: str, address: str, monitor: asyncio.Task):
        book = self._book(user_id)
        async with book.lock:
            key = _key(address)
            if key in book.positions:
                book.monitors[key] = monitor

    async def detach_monitor(self, user_id: str, address: str, monitor: Optional[asyncio.Task]):
        """Forget a monitor that ended without closing its position."""
        book = self._book(user_id)
        async with book.lock:
            key = _key(address)
            if book.monitors.get(key) is monitor:
                del book.monitors[key]

    async def remove(self, user_id: str, address: str) -> Optional[Position]:
        book = self._book(user_id)
        async with book.lock:
            key = _key(address)
            book.monitors.pop(key, None)
            return book.positions.pop(key, None)

    def is_open(self, user_id: str, address: str) -> bool:
        book = self._books.get(user_id)
        return book is not None and _key(address) in book.positions

    def open_count(self, user_id: str) -> int:
        book = self._books.get(user_id)
        return len(book.positions) if book else 0

    def positions(self, user_id: str) -> List[Position]:
        book = self._books.get(user_id)
        return list(book.positions.values()) if book else []

    def unmonitored(self, user_id: str) -> List[Position]:
        """Open positions with no live monitor task."""
        book = self._books.get(user_id)
        if book is None:
            return []
        return [
            pos for key, pos in book.positions.items()
            if key not in book.monitors or book.monitors[key].done()
        ]

    def all_positions(self) -> Dict[str, List[Position]]:
        return {uid: list(b.positions.values()) for uid, b in self._books.items() if b.positions}

    def monitor_count(self, user_id: str) -> int:
        book = self._books.get(user_id)
        return len(book.monitors) if book else 0

    def users(self) -> List[str]:
        return list(self._books)

    async def cancel_monitors(self, user_id: str) -> int:
        """Cancel every monitor of a user and wait for them to exit. Positions stay recorded."""
        book = self._book(user_id)
        async with book.lock:
            tasks = list(book.monitors.values())
            book.monitors.clear()
        current = asyncio.current_task()
        tasks = [t for t in tasks if t is not current]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        logger.info(f"Cancelled {len(tasks)} monitor(s) for {user_id}")
        return len(tasks)
