"""Application state container for FastAPI dependency injection."""

from __future__ import annotations

from typing import TYPE_CHECKING

import httpx
from starlette.datastructures import State

from embedresolver.infrastructure.config import AppConfig

if TYPE_CHECKING:
    from embedresolver.application.use_cases import ResolveSourceUseCase
    from embedresolver.domain.ports import CachePort, ResolutionCachePort
    from embedresolver.infrastructure.resolver import InFlightRegistry


class AppState(State):
    """FastAPI application state with all DI resources.

    Lifecycle managed by composition.py::lifespan().
    """

    # Configuration
    config: AppConfig

    # Infrastructure
    cache: CachePort
    http_client: httpx.AsyncClient
    inflight: InFlightRegistry

    # Domain Ports
    resolution_cache: ResolutionCachePort

    # Application Services
    resolve_uc: ResolveSourceUseCase
