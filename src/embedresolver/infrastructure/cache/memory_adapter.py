"""In-process cache adapter (default backend, no external service)."""

from __future__ import annotations

import asyncio
import time
from collections import OrderedDict
from collections.abc import Callable
from typing import Any

import structlog

log = structlog.get_logger(__name__)


class _Slot:
    """Stored value with its monotonic expiry."""

    __slots__ = ("value", "expires_at")

    def __init__(self, value: Any, expires_at: float) -> None:
        self.value = value
        self.expires_at = expires_at


class MemoryCacheAdapter:
    """Bounded LRU dict with per-entry TTL.

    Expired entries are dropped on access and by a sweep every
    ``evict_interval`` writes. When ``max_entries`` is reached the least
    recently used entry is evicted.

    Args:
        ttl_seconds: Default TTL for ``set()`` without explicit value.
        max_entries: Upper bound on stored entries.
        evict_interval: Writes between expiry sweeps.
        clock: Monotonic time source (injectable for tests).
    """

    def __init__(
        self,
        ttl_seconds: int = 600,
        max_entries: int = 10_000,
        evict_interval: int = 500,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.default_ttl = ttl_seconds
        self._max_entries = max_entries
        self._evict_interval = evict_interval
        self._clock = clock
        self._data: OrderedDict[str, _Slot] = OrderedDict()
        self._lock = asyncio.Lock()
        self._writes = 0

    def __len__(self) -> int:
        return len(self._data)

    async def __aenter__(self) -> MemoryCacheAdapter:
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        self._data.clear()

    def _sweep(self, now: float) -> None:
        expired = [k for k, slot in self._data.items() if now >= slot.expires_at]
        for key in expired:
            del self._data[key]
        if expired:
            log.debug("memory_cache_swept", evicted=len(expired))

    async def get(self, key: str) -> Any | None:
        async with self._lock:
            slot = self._data.get(key)
            if slot is None:
                log.debug("cache_get", key=key, hit=False)
                return None
            if self._clock() >= slot.expires_at:
                del self._data[key]
                log.debug("cache_get", key=key, hit=False, expired=True)
                return None
            self._data.move_to_end(key)
            log.debug("cache_get", key=key, hit=True)
            return slot.value

    async def set(self, key: str, value: Any, *, ttl: int | None = None) -> None:
        expire_time = ttl if ttl is not None else self.default_ttl
        async with self._lock:
            now = self._clock()
            self._writes += 1
            if self._writes % self._evict_interval == 0:
                self._sweep(now)
            self._data[key] = _Slot(value, now + expire_time)
            self._data.move_to_end(key)
            while len(self._data) > self._max_entries:
                self._data.popitem(last=False)
            log.debug("cache_set", key=key, ttl=expire_time)

    async def delete(self, key: str) -> bool:
        async with self._lock:
            deleted = self._data.pop(key, None) is not None
            log.debug("cache_delete", key=key, deleted=deleted)
            return deleted

    async def clear(self) -> None:
        async with self._lock:
            self._data.clear()
            log.warning("cache_cleared", backend="memory")
