"""Builds the configured cache adapter."""

from __future__ import annotations

import structlog

from embedresolver.domain.ports.cache import CachePort
from embedresolver.infrastructure.cache.diskcache_adapter import DiskcacheAdapter
from embedresolver.infrastructure.cache.memory_adapter import MemoryCacheAdapter
from embedresolver.infrastructure.cache.redis_adapter import RedisAdapter
from embedresolver.infrastructure.config.schema import CacheBackendName, CacheConfig

log = structlog.get_logger(__name__)

# Redis tolerates far more concurrent commands than SQLite.
_REDIS_MAX_CONCURRENT = 50


def create_cache(
    backend: CacheBackendName = "memory",
    *,
    directory: str = "./.cache/embedresolver",
    redis_url: str = "redis://localhost:6379/0",
    ttl_seconds: int = 600,
    max_concurrent: int = 10,
) -> CachePort:
    """Return an unopened adapter for *backend*; enter it with ``async with``.

    Raises:
        ValueError: Unknown backend name.
    """
    log.info("cache_factory_create", backend=backend, ttl=ttl_seconds)
    if backend == "memory":
        return MemoryCacheAdapter(ttl_seconds=ttl_seconds)
    if backend == "diskcache":
        return DiskcacheAdapter(
            directory=directory,
            ttl_seconds=ttl_seconds,
            max_concurrent=max_concurrent,
        )
    if backend == "redis":
        return RedisAdapter(
            url=redis_url,
            ttl_seconds=ttl_seconds,
            max_concurrent=_REDIS_MAX_CONCURRENT,
        )
    raise ValueError(
        f"Unknown cache backend: {backend!r}. "
        "Must be 'memory', 'diskcache' or 'redis'."
    )


def create_cache_from_config(config: CacheConfig) -> CachePort:
    return create_cache(
        config.backend,
        directory=str(config.directory),
        redis_url=config.redis_url,
        ttl_seconds=config.ttl_seconds,
        max_concurrent=config.max_concurrent,
    )
