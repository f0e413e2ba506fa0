from __future__ import annotations

from .load import load_config
from .schema import AppConfig, CacheConfig, EnvOverrides, ResolverConfig

__all__ = ["AppConfig", "CacheConfig", "EnvOverrides", "ResolverConfig", "load_config"]
