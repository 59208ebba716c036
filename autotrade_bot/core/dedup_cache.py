"""
Dedup Cache

Remembers which tokens were already surfaced to / bought for each user so the
engine never repeats itself.

- Keys are sha256 digests of the normalized (trimmed, lower-cased) address,
  so case and whitespace variants collapse to one record.
- Expiry is lazy: records older than the TTL are purged during lookups and
  inserts, there is no background sweeper.
- Size is bounded per user: crossing the high-water mark drops the oldest
  batch, and the hard cap is never exceeded.
- Each user has its own lock; different users never contend.

Usage:
    cache = DedupCache(ttl=86400)
    if not cache.seen(user_id, mint):
        ...
        cache.mark_seen(user_id, mint)
"""

import hashlib
import logging
import time
from collections import OrderedDict
from threading import Lock
from typing import Callable, Dict

from ..constants import DEDUP_TTL_SEC, DEDUP_HIGH_WATER, DEDUP_EVICT_BATCH, DEDUP_HARD_CAP

logger = logging.getLogger(__name__)


def hash_address(address: str) -> str:
    normalized = (address or "").strip().lower()
    return hashlib.sha256(normalized.encode("utf-8")).hexdigest()


class DedupCache:
    def __init__(
        self,
        ttl: float = DEDUP_TTL_SEC,
        high_water: int = DEDUP_HIGH_WATER,
        evict_batch: int = DEDUP_EVICT_BATCH,
        hard_cap: int = DEDUP_HARD_CAP,
        clock: Callable[[], float] = time.time,
    ):
        if evict_batch < 1 or high_water < 1 or hard_cap < 1:
            raise ValueError("dedup sizes must be positive")
        self.ttl = ttl
        self.high_water = high_water
        self.evict_batch = evict_batch
        self.hard_cap = hard_cap
        self._clock = clock

        # user_id -> OrderedDict[hash -> inserted_at], oldest first
        self._records: Dict[str, "OrderedDict[str, float]"] = {}
        self._user_locks: Dict[str, Lock] = {}
        self._registry_lock = Lock()

    def _lock_for(self, user_id: str) -> Lock:
        with self._registry_lock:
            lock = self._user_locks.get(user_id)
            if lock is None:
                lock = Lock()
                self._user_locks[user_id] = lock
                self._records[user_id] = OrderedDict()
            return lock

    def _purge_expired(self, records: "OrderedDict[str, float]", now: float) -> int:
        # Insertion order == age order, so stop at the first fresh record
        purged = 0
        while records:
            digest, inserted_at = next(iter(records.items()))
            if now - inserted_at <= self.ttl:
                break
            records.popitem(last=False)
            purged += 1
        return purged

    def seen(self, user_id: str, address: str) -> bool:
        """True if the address was marked for this user and has not expired."""
        digest = hash_address(address)
        with self._lock_for(user_id):
            records = self._records[user_id]
            self._purge_expired(records, self._clock())
            return digest in records

    def mark_seen(self, user_id: str, address: str):
        digest = hash_address(address)
        with self._lock_for(user_id):
            records = self._records[user_id]
            now = self._clock()
            self._purge_expired(records, now)

            # Re-marking refreshes the timestamp and moves it to the young end
            records.pop(digest, None)
            records[digest] = now

            if len(records) > self.high_water:
                for _ in range(min(self.evict_batch, len(records))):
                    records.popitem(last=False)
                logger.debug(f"Dedup cache for {user_id} crossed {self.high_water}, evicted oldest batch")

            while len(records) > self.hard_cap:
                records.popitem(last=False)

    def forget(self, user_id: str, address: str):
        with self._lock_for(user_id):
            self._records[user_id].pop(hash_address(address), None)

    def clear_user(self, user_id: str):
        with self._lock_for(user_id):
            self._records[user_id].clear()

    def size(self, user_id: str) -> int:
        with self._lock_for(user_id):
            return len(self._records[user_id])
