"""Resolution result repository backed by CachePort."""

from __future__ import annotations

import json
import time
from collections.abc import Callable

import structlog

from embedresolver.domain.entities import CacheEntry, ResolutionResult
from embedresolver.domain.ports.cache import CachePort

log = structlog.get_logger(__name__)


def _serialize_entry(entry: CacheEntry) -> str:
    return json.dumps(
        {
            "key": entry.key,
            "payload": entry.payload.to_dict(),
            "expiresAt": entry.expires_at,
        }
    )


def _deserialize_entry(data: str) -> CacheEntry:
    d = json.loads(data)
    return CacheEntry(
        key=d["key"],
        payload=ResolutionResult.from_dict(d["payload"]),
        expires_at=float(d["expiresAt"]),
    )


class CacheResolutionRepository:
    """Stores successful resolutions with an absolute expiry.

    The record's own ``expiresAt`` is authoritative: a record read after it
    is treated as a miss and deleted, whatever the backend's eviction says.
    Only results with ``ok`` and at least one URL are written.
    """

    def __init__(
        self,
        cache: CachePort,
        ttl_seconds: int = 600,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.cache = cache
        self.ttl = ttl_seconds
        self._clock = clock

    async def save(self, key: str, result: ResolutionResult) -> None:
        if not result.is_cacheable:
            log.debug("resolution_not_cached", key=key, ok=result.ok)
            return
        entry = CacheEntry(key=key, payload=result, expires_at=self._clock() + self.ttl)
        await self.cache.set(key, _serialize_entry(entry), ttl=self.ttl)
        log.debug("resolution_cached", key=key, urls=len(result.urls), ttl=self.ttl)

    async def get(self, key: str) -> ResolutionResult | None:
        data = await self.cache.get(key)
        if data is None:
            return None

        try:
            entry = _deserialize_entry(data)
        except (json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
            log.error("resolution_deserialize_error", key=key, error=str(e))
            await self.cache.delete(key)
            return None

        if entry.is_expired(self._clock()):
            log.debug("resolution_cache_stale", key=key)
            await self.cache.delete(key)
            return None
        return entry.payload
