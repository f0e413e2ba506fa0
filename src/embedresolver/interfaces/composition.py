"""Composition root: dependency injection via FastAPI lifespan."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator, cast

import httpx
import structlog
from fastapi import FastAPI

from embedresolver.application.use_cases import ResolveSourceUseCase
from embedresolver.infrastructure.cache.cache_factory import create_cache_from_config
from embedresolver.infrastructure.config.schema import AppConfig
from embedresolver.infrastructure.persistence.resolution_cache import (
    CacheResolutionRepository,
)
from embedresolver.infrastructure.resolver import (
    AttemptPolicy,
    ExtractionEngine,
    HttpxPageFetcher,
    InFlightRegistry,
    ProviderRanker,
    ResponseAssembler,
    UrlPolicy,
)
from embedresolver.interfaces.app_state import AppState

log = structlog.get_logger(__name__)


def build_http_client(config: AppConfig) -> httpx.AsyncClient:
    """Pooled client toward upstream embed hosts.

    Redirects are followed by the page fetcher itself so every hop can be
    checked, hence ``follow_redirects=False``.
    """
    return httpx.AsyncClient(
        verify=config.resolver.verify_tls,
        timeout=httpx.Timeout(config.resolver.fetch_timeout_seconds),
        limits=httpx.Limits(
            max_connections=config.http_max_connections,
            max_keepalive_connections=config.http_max_keepalive,
        ),
        follow_redirects=False,
    )


def build_resolve_use_case(
    config: AppConfig,
    *,
    http_client: httpx.AsyncClient,
    resolution_cache: CacheResolutionRepository | None,
    inflight: InFlightRegistry,
) -> ResolveSourceUseCase:
    rcfg = config.resolver
    policy = UrlPolicy.from_lists(
        allowed_ports=rcfg.allowed_ports,
        blocked_hosts=rcfg.blocked_hosts,
        max_length=rcfg.max_url_length,
    )
    ranker = ProviderRanker(rcfg.providers or None)
    return ResolveSourceUseCase(
        fetcher=HttpxPageFetcher(http_client, rcfg, policy=policy),
        engine=ExtractionEngine(rcfg, policy=policy),
        assembler=ResponseAssembler(ranker, proxy_endpoint=rcfg.proxy_endpoint),
        cache=resolution_cache,
        inflight=inflight,
        attempt_policy=AttemptPolicy.from_config(rcfg),
        ranker=ranker,
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Lifespan Hook: Initialize and cleanup all resources (DI Composition Root).

    Order matters:
        1. Cache (required by the resolution repository)
        2. HTTP client (required by the page fetcher)
        3. In-flight registry
        4. Resolve use case
    """
    state = cast(AppState, app.state)
    config = state.config

    # 1) Cache + resolution repository
    cache = create_cache_from_config(config.cache)
    await cache.__aenter__()
    state.cache = cache
    state.resolution_cache = CacheResolutionRepository(
        cache=cache,
        ttl_seconds=config.resolver.cache_ttl_seconds,
    )
    log.info("cache_initialized", backend=config.cache.backend)

    # 2) HTTP client
    state.http_client = build_http_client(config)
    log.info(
        "http_client_initialized",
        max_connections=config.http_max_connections,
        verify_tls=config.resolver.verify_tls,
    )

    # 3) In-flight dedup (process-wide, torn down below)
    state.inflight = InFlightRegistry()

    # 4) Use case
    state.resolve_uc = build_resolve_use_case(
        config,
        http_client=state.http_client,
        resolution_cache=state.resolution_cache,
        inflight=state.inflight,
    )
    log.info("app_startup_complete")

    try:
        yield
    finally:
        await state.inflight.aclose()
        await state.http_client.aclose()
        await state.cache.aclose()
        log.info("app_shutdown_complete")
