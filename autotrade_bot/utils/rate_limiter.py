"""
Token bucket limiter for market-data API calls (DexScreener allows ~300 req/min).
"""

import asyncio
import logging
import time
from functools import wraps
from typing import Callable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar('T')


class TokenBucket:
    """
    Refills `rate` tokens per second up to `capacity`, so short bursts pass
    while the average stays under the rate.
    """

    def __init__(self, rate: float = 10.0, capacity: int = 20, clock: Callable[[], float] = time.monotonic):
        self.rate = rate
        self.capacity = capacity
        self._clock = clock
        self.tokens = float(capacity)
        self.updated_at = clock()
        self._lock = asyncio.Lock()

    def _top_up(self):
        now = self._clock()
        self.tokens = min(self.capacity, self.tokens + (now - self.updated_at) * self.rate)
        self.updated_at = now

    async def acquire(self, tokens: int = 1) -> float:
        """Take `tokens`, sleeping until they are available. Returns seconds slept."""
        slept = 0.0
        async with self._lock:
            self._top_up()
            while self.tokens < tokens:
                wait = (tokens - self.tokens) / self.rate
                logger.debug(f"Rate limited, waiting {wait:.2f}s")
                await asyncio.sleep(wait)
                slept += wait
                self._top_up()
            self.tokens -= tokens
        return slept


def rate_limited(get_limiter: Callable[..., TokenBucket]):
    """
    Await a bucket before each call. `get_limiter(self)` picks the bucket,
    so every client instance can own one.
    """
    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @wraps(func)
        async def wrapper(self, *args, **kwargs) -> T:
            await get_limiter(self).acquire()
            return await func(self, *args, **kwargs)
        return wrapper
    return decorator
