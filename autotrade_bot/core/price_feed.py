"""
Price Feed

Candidate discovery and point price lookups for Solana tokens.

Sources:
- DexScreener search (primary candidate batch, httpx)
- Jupiter verified token list + price API (verified flag, fallback price, aiohttp)

TokenCache sits in front of the feed so one refresh serves every user.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import replace, fields
from datetime import datetime, timezone
from typing import Any, Callable, Iterable

import aiohttp
import httpx

from autotrade_bot.config import Settings
from autotrade_bot.config.strategy_config import to_number
from autotrade_bot.constants import JUPITER_PRICE_API
from autotrade_bot.core.models import TokenCandidate
from autotrade_bot.exceptions import FeedUnavailable
from autotrade_bot.utils.rate_limiter import TokenBucket, rate_limited
from autotrade_bot.utils.retry import async_retry


def _age_minutes(created_at: Any, now: float) -> float | None:
    """Listing age in minutes from epoch millis/seconds or an ISO timestamp."""
    if created_at is None or created_at == "":
        return None
    created_ts = to_number(created_at)
    if created_ts is None:
        try:
            parsed = datetime.fromisoformat(str(created_at).replace("Z", "+00:00"))
        except ValueError:
            return None
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        created_ts = parsed.timestamp()
    elif created_ts > 1e11:
        created_ts /= 1000.0
    if created_ts <= 0:
        return None
    return max(0.0, (now - created_ts) / 60.0)


def normalize_pair(pair: dict[str, Any], now: float | None = None) -> TokenCandidate | None:
    """DexScreener pair -> TokenCandidate. Returns None when there is no address."""
    now = time.time() if now is None else now
    base = pair.get("baseToken") or {}
    address = (base.get("address") or pair.get("tokenAddress") or pair.get("address") or "").strip()
    if not address:
        return None
    liquidity = pair.get("liquidity")
    volume = pair.get("volume")
    verified = pair.get("verified")
    return TokenCandidate(
        address=address,
        symbol=base.get("symbol") or pair.get("symbol") or "",
        name=base.get("name") or pair.get("name") or "",
        price_usd=to_number(pair.get("priceUsd")),
        market_cap=to_number(pair.get("marketCap", pair.get("fdv"))),
        liquidity_usd=to_number(liquidity.get("usd") if isinstance(liquidity, dict) else liquidity),
        volume_24h=to_number(volume.get("h24") if isinstance(volume, dict) else volume),
        holders=to_number(pair.get("holders")),
        age_minutes=_age_minutes(pair.get("pairCreatedAt"), now),
        verified=verified if isinstance(verified, bool) else None,
        source="dexscreener",
        pair_address=pair.get("pairAddress") or "",
    )


def normalize_jupiter_token(token: dict[str, Any], now: float | None = None) -> TokenCandidate | None:
    now = time.time() if now is None else now
    address = (token.get("address") or "").strip()
    if not address:
        return None
    tags = token.get("tags") or []
    return TokenCandidate(
        address=address,
        symbol=token.get("symbol") or "",
        name=token.get("name") or "",
        price_usd=to_number(token.get("price")),
        volume_24h=to_number(token.get("daily_volume")),
        age_minutes=_age_minutes(token.get("created_at"), now),
        verified="verified" in tags,
        source="jupiter",
    )


class PriceFeed:
    """Market-data collaborator interface."""

    name = "feed"

    async def fetch_candidates(self) -> list[TokenCandidate]:
        raise NotImplementedError

    async def fetch_current_price(self, address: str) -> float:
        raise NotImplementedError

    async def close(self) -> None:
        return None


class DexScreenerFeed(PriceFeed):
    name = "dexscreener"

    def __init__(self, settings: Settings, client: httpx.AsyncClient | None = None) -> None:
        self.settings = settings
        self.base_url = settings.DEXSCREENER_API_BASE.rstrip("/")
        self.client = client or httpx.AsyncClient(timeout=settings.API_TIMEOUT_SEC)
        self.limiter = TokenBucket(rate=5.0, capacity=10)
        self.logger = logging.getLogger("autotrade_bot.dexscreener")

    async def close(self) -> None:
        await self.client.aclose()

    async def fetch_candidates(self) -> list[TokenCandidate]:
        url = f"{self.base_url}/latest/dex/search"
        payload = await self._request(url, params={"q": self.settings.DEXSCREENER_SEARCH_QUERY})
        if payload is None:
            raise FeedUnavailable("DexScreener search failed")
        pairs = payload.get("pairs") if isinstance(payload, dict) else payload
        now = time.time()
        candidates: list[TokenCandidate] = []
        seen: set[str] = set()
        for pair in pairs or []:
            if not isinstance(pair, dict):
                continue
            if str(pair.get("chainId", "")).lower() != "solana":
                continue
            candidate = normalize_pair(pair, now)
            if candidate is None or candidate.address.lower() in seen:
                continue
            seen.add(candidate.address.lower())
            candidates.append(candidate)
        return candidates

    async def fetch_current_price(self, address: str) -> float:
        url = f"{self.base_url}/latest/dex/tokens/{address}"
        payload = await self._request(url, log_level="debug")
        pairs = payload.get("pairs") if isinstance(payload, dict) else None
        if not pairs:
            raise FeedUnavailable("No DexScreener pairs", address=address[:8])
        best_pair = max(pairs, key=lambda p: to_number((p.get("liquidity") or {}).get("usd")) or 0.0)
        price = to_number(best_pair.get("priceUsd"))
        if not price:
            raise FeedUnavailable("DexScreener returned no price", address=address[:8])
        return price

    @rate_limited(lambda self: self.limiter)
    async def _request(
        self,
        url: str,
        params: dict[str, Any] | None = None,
        log_level: str = "warning",
    ) -> dict[str, Any] | list | None:
        max_retries = max(1, self.settings.DEXSCREENER_MAX_RETRIES)
        backoff = max(0.5, self.settings.DEXSCREENER_RETRY_BACKOFF_SEC)
        for attempt in range(max_retries):
            try:
                response = await self.client.get(url, params=params)
                if response.status_code == 429:
                    retry_after = response.headers.get("Retry-After")
                    delay = float(retry_after) if retry_after else backoff * (attempt + 1)
                    self.logger.warning("DexScreener rate limited, retrying in %.1fs", delay)
                    await asyncio.sleep(delay)
                    continue
                response.raise_for_status()
                return response.json()
            except (httpx.HTTPError, ValueError) as exc:
                if attempt < max_retries - 1:
                    await asyncio.sleep(backoff)
                    continue
                getattr(self.logger, log_level)("DexScreener request failed for %s: %s", url, exc)
                return None
        return None


class JupiterTokenFeed(PriceFeed):
    name = "jupiter"

    def __init__(self, settings: Settings, session: aiohttp.ClientSession | None = None) -> None:
        self.settings = settings
        self.token_list_url = settings.JUPITER_TOKEN_LIST_URL
        self.price_url = JUPITER_PRICE_API
        self._session = session
        self._owns_session = session is None
        self.logger = logging.getLogger("autotrade_bot.jupiter_feed")

    async def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.settings.API_TIMEOUT_SEC)
            )
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._owns_session and self._session and not self._session.closed:
            await self._session.close()

    @async_retry(max_attempts=2, delay=0.5, exceptions=(aiohttp.ClientError, asyncio.TimeoutError))
    async def _get_json(self, url: str, params: dict[str, Any] | None = None) -> Any:
        session = await self._ensure_session()
        async with session.get(url, params=params) as resp:
            resp.raise_for_status()
            return await resp.json()

    async def fetch_candidates(self) -> list[TokenCandidate]:
        try:
            data = await self._get_json(self.token_list_url)
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise FeedUnavailable(f"Jupiter token list failed: {exc}") from exc
        tokens = data if isinstance(data, list) else (data or {}).get("tokens", [])
        now = time.time()
        candidates = [normalize_jupiter_token(t, now) for t in tokens if isinstance(t, dict)]
        return [c for c in candidates if c is not None]

    async def fetch_current_price(self, address: str) -> float:
        try:
            data = await self._get_json(self.price_url, params={"ids": address})
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise FeedUnavailable(f"Jupiter price failed: {exc}", address=address[:8]) from exc
        token_data = ((data or {}).get("data") or {}).get(address) or {}
        price = to_number(token_data.get("price"))
        if not price:
            raise FeedUnavailable("Jupiter returned no price", address=address[:8])
        return price


def merge_candidates(primary: TokenCandidate, extra: TokenCandidate) -> TokenCandidate:
    """Fill fields the primary snapshot lacks from another source."""
    updates = {}
    for f in fields(TokenCandidate):
        if getattr(primary, f.name) in (None, "") and getattr(extra, f.name) not in (None, ""):
            updates[f.name] = getattr(extra, f.name)
    return replace(primary, **updates) if updates else primary


class CompositeFeed(PriceFeed):
    """
    Merges several feeds, first feed wins per address.

    Candidate fetch fails only if every feed fails; price lookups fall through
    the feeds in order.
    """

    name = "composite"

    def __init__(self, feeds: Iterable[PriceFeed]) -> None:
        self.feeds = list(feeds)
        self.logger = logging.getLogger("autotrade_bot.feed")

    async def fetch_candidates(self) -> list[TokenCandidate]:
        results = await asyncio.gather(
            *(feed.fetch_candidates() for feed in self.feeds), return_exceptions=True
        )
        merged: dict[str, TokenCandidate] = {}
        failures = []
        for feed, result in zip(self.feeds, results):
            if isinstance(result, Exception):
                failures.append(f"{feed.name}: {result}")
                self.logger.warning("Feed %s failed: %s", feed.name, result)
                continue
            for candidate in result:
                key = candidate.address.strip().lower()
                if key in merged:
                    merged[key] = merge_candidates(merged[key], candidate)
                else:
                    merged[key] = candidate
        if len(failures) == len(self.feeds):
            raise FeedUnavailable("All feeds failed: " + " | ".join(failures))
        return list(merged.values())

    async def fetch_current_price(self, address: str) -> float:
        errors = []
        for feed in self.feeds:
            try:
                return await feed.fetch_current_price(address)
            except FeedUnavailable as exc:
                errors.append(f"{feed.name}: {exc}")
        raise FeedUnavailable("No price from any feed: " + " | ".join(errors), address=address[:8])

    async def close(self) -> None:
        for feed in self.feeds:
            await feed.close()


class TokenCache:
    """
    Shared short-TTL cache of the candidate batch.

    Concurrent callers during a refresh wait for the same fetch instead of
    issuing their own.
    """

    def __init__(self, feed: PriceFeed, ttl: float, clock: Callable[[], float] = time.monotonic) -> None:
        self.feed = feed
        self.ttl = ttl
        self._clock = clock
        self._tokens: list[TokenCandidate] = []
        self._updated_at: float | None = None
        self._lock = asyncio.Lock()
        self.logger = logging.getLogger("autotrade_bot.token_cache")

    def _is_fresh(self) -> bool:
        return self._updated_at is not None and (self._clock() - self._updated_at) < self.ttl

    async def get(self) -> list[TokenCandidate]:
        if self._is_fresh():
            return list(self._tokens)
        async with self._lock:
            if self._is_fresh():
                return list(self._tokens)
            return await self._refresh_locked()

    async def refresh(self) -> list[TokenCandidate]:
        async with self._lock:
            return await self._refresh_locked()

    async def _refresh_locked(self) -> list[TokenCandidate]:
        try:
            tokens = await self.feed.fetch_candidates()
        except FeedUnavailable:
            raise
        except Exception as exc:
            raise FeedUnavailable(f"Candidate fetch failed: {exc}") from exc
        self._tokens = list(tokens)
        self._updated_at = self._clock()
        self.logger.info("SCAN feed refreshed: %d candidates", len(self._tokens))
        return list(self._tokens)
