"""Cache backends behind CachePort."""

from .cache_factory import create_cache, create_cache_from_config
from .diskcache_adapter import DiskcacheAdapter
from .memory_adapter import MemoryCacheAdapter
from .redis_adapter import RedisAdapter

__all__ = [
    "DiskcacheAdapter",
    "MemoryCacheAdapter",
    "RedisAdapter",
    "create_cache",
    "create_cache_from_config",
]
