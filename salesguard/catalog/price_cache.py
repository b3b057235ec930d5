from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Optional

from .schema import PriceData

logger = logging.getLogger("salesguard.pricing")

PriceFetcher = Callable[[str], Awaitable[Optional[PriceData]]]

STATE_EMPTY = "empty"
STATE_FETCHING = "fetching"
STATE_FRESH = "fresh"
STATE_STALE = "stale"


@dataclass(frozen=True)
class CacheEntry:
    data: PriceData
    fetched_at: float


class PriceCache:
    """TTL cache in front of the live price/stock lookup.

    Only successful lookups are stored. A stale entry behaves exactly like a
    missing one, and concurrent misses for the same SKU share one fetch.
    """

    def __init__(
        self,
        fetcher: PriceFetcher,
        ttl_seconds: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._fetcher = fetcher
        self._ttl = float(ttl_seconds)
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    def _fresh(self, sku: str) -> Optional[CacheEntry]:
        entry = self._entries.get(sku)
        if entry is None:
            return None
        if self._clock() - entry.fetched_at >= self._ttl:
            return None
        return entry

    async def get(self, sku: str) -> Optional[PriceData]:
        """Purpose: Return live price data for a SKU, fetching on miss or expiry.
        Inputs/Outputs: Input is a SKU; output is PriceData or None.
        Side Effects / State: Stores successful fetches; drops expired entries.
        Dependencies: The injected fetcher coroutine and clock.
        Failure Modes: Fetcher errors and empty results return None and are not
            cached, so the next call retries.
        If Removed: Every render would hit the storefront API.
        Testing Notes: Advance a fake clock past the TTL and assert a second fetch.
        """
        # Fast path without the lock, then re-check once the lock is held.
        entry = self._fresh(sku)
        if entry is not None:
            return entry.data

        lock = self._locks.setdefault(sku, asyncio.Lock())
        async with lock:
            entry = self._fresh(sku)
            if entry is not None:
                return entry.data
            self._entries.pop(sku, None)
            try:
                data = await self._fetcher(sku)
            except Exception as exc:
                logger.warning("price lookup failed sku=%s error=%s", sku, exc)
                return None
            if data is None:
                logger.debug("price lookup miss sku=%s", sku)
                return None
            self._entries[sku] = CacheEntry(data=data, fetched_at=self._clock())
            return data

    def state(self, sku: str) -> str:
        lock = self._locks.get(sku)
        if lock is not None and lock.locked():
            return STATE_FETCHING
        if sku not in self._entries:
            return STATE_EMPTY
        if self._fresh(sku) is None:
            return STATE_STALE
        return STATE_FRESH

    def clear(self) -> None:
        self._entries.clear()
