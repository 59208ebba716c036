"""
Retry decorator and circuit breaker for market-data and swap API calls.

- async_retry: exponential backoff for idempotent reads (token lists, prices)
- CircuitBreaker: stops a trade source from hammering an API that keeps failing
"""

import asyncio
import logging
import time
from functools import wraps
from typing import Callable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar('T')


def async_retry(
    max_attempts: int = 3,
    delay: float = 1.0,
    backoff: float = 2.0,
    exceptions: tuple = (Exception,)
):
    """
    Retry an async function with exponential backoff.

    Only the listed exceptions are retried; the last one is re-raised.

    Example:
        @async_retry(max_attempts=2, delay=0.5, exceptions=(aiohttp.ClientError,))
        async def fetch_token_list():
            ...
    """
    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @wraps(func)
        async def wrapper(*args, **kwargs) -> T:
            wait = delay
            for attempt in range(1, max_attempts + 1):
                try:
                    return await func(*args, **kwargs)
                except exceptions as e:
                    if attempt == max_attempts:
                        logger.error(f"{func.__name__} failed after {max_attempts} attempts: {e}")
                        raise
                    logger.warning(
                        f"{func.__name__} attempt {attempt}/{max_attempts} failed, retrying in {wait:.1f}s: {e}"
                    )
                    await asyncio.sleep(wait)
                    wait *= backoff

        return wrapper
    return decorator


class CircuitBreaker:
    """
    Per-source circuit breaker.

    CLOSED passes calls through. After `failure_threshold` consecutive failures
    it goes OPEN and rejects calls until `recovery_timeout` has passed, then
    HALF_OPEN lets calls probe the API again; one success closes it.
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        recovery_timeout: float = 30.0,
        name: str = "default",
        clock: Callable[[], float] = time.monotonic,
    ):
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.name = name
        self._clock = clock

        self.failures = 0
        self.opened_at = 0.0
        self.state = "CLOSED"

    def record_success(self):
        if self.state != "CLOSED":
            logger.info(f"Circuit breaker '{self.name}' closed")
        self.failures = 0
        self.state = "CLOSED"

    def record_failure(self):
        self.failures += 1
        if self.state == "HALF_OPEN" or self.failures >= self.failure_threshold:
            if self.state != "OPEN":
                logger.warning(f"Circuit breaker '{self.name}' OPENED after {self.failures} failures")
            self.state = "OPEN"
            self.opened_at = self._clock()

    def can_execute(self) -> bool:
        if self.state == "OPEN" and self._clock() - self.opened_at >= self.recovery_timeout:
            self.state = "HALF_OPEN"
            logger.info(f"Circuit breaker '{self.name}' entering HALF_OPEN state")
        return self.state != "OPEN"
