"""Resolve an embed page into ranked playable sources."""

from __future__ import annotations

import time
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

import structlog

from embedresolver.domain.entities import ResolutionRequest, ResolutionResult
from embedresolver.domain.exceptions import ResolveError
from embedresolver.domain.ports.page_fetcher import PageFetcherPort
from embedresolver.domain.ports.resolution_cache import ResolutionCachePort
from embedresolver.infrastructure.resolver.assembler import ResponseAssembler
from embedresolver.infrastructure.resolver.attempts import (
    ALL_FAILED_MESSAGE,
    AttemptPolicy,
    merge_results,
)
from embedresolver.infrastructure.resolver.extraction import ExtractionEngine
from embedresolver.infrastructure.resolver.inflight import InFlightRegistry
from embedresolver.infrastructure.resolver.providers import ProviderRanker
from embedresolver.infrastructure.resolver.url_codec import build_cache_key

log = structlog.get_logger(__name__)


@dataclass(frozen=True)
class ResolveResponse:
    """Use case response: the result plus cache/debug metadata."""

    result: ResolutionResult
    cache_hit: bool = False
    debug: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        body = self.result.to_dict()
        if self.debug is not None:
            body["debug"] = self.debug
        return body


class ResolveSourceUseCase:
    """Cache gate, in-flight dedup, fetch, extract, assemble.

    Flow for one target:
        1. Look up the cache key derived from (target, referer)
        2. Join an identical resolution already in flight, or start one
        3. Fetch the page under the SSRF policy and deadline
        4. Unpack, extract and validate candidates
        5. Dedup, rank and wrap sources; cache the result if it succeeded

    Never raises for resolution problems: every failure becomes a
    ``ResolutionResult`` with ``ok=False`` and a message.
    """

    def __init__(
        self,
        fetcher: PageFetcherPort,
        engine: ExtractionEngine,
        assembler: ResponseAssembler,
        *,
        cache: ResolutionCachePort | None = None,
        inflight: InFlightRegistry | None = None,
        attempt_policy: AttemptPolicy | None = None,
        ranker: ProviderRanker | None = None,
    ) -> None:
        self._fetcher = fetcher
        self._engine = engine
        self._assembler = assembler
        self._cache = cache
        self._inflight = inflight or InFlightRegistry()
        self._attempts = attempt_policy or AttemptPolicy()
        self._ranker = ranker or ProviderRanker()

    # ------------------------------------------------------------------
    # Single target
    # ------------------------------------------------------------------

    async def execute(self, request: ResolutionRequest) -> ResolveResponse:
        key = build_cache_key(request.target_url, request.referer)
        started = time.perf_counter()

        cached = await self._cache_read(key)
        if cached is not None:
            log.info("resolve_cache_hit", target=request.target_url, key=key)
            debug = None
            if request.debug:
                debug = {
                    "target": request.target_url,
                    "cacheHit": True,
                    "elapsedMs": _elapsed_ms(started),
                }
            return ResolveResponse(result=cached, cache_hit=True, debug=debug)

        if request.debug:
            # Debug traces are per call, so debug requests do not join others.
            result, trace = await self._resolve_and_store(
                key, request.target_url, request.referer
            )
            trace["cacheHit"] = False
            trace["elapsedMs"] = _elapsed_ms(started)
            return ResolveResponse(result=result, debug=trace)

        result, _ = await self._inflight.run(
            key,
            lambda: self._resolve_and_store(key, request.target_url, request.referer),
        )
        log.info(
            "resolve_finished",
            target=request.target_url,
            ok=result.ok,
            urls=len(result.urls),
            elapsed_ms=_elapsed_ms(started),
        )
        return ResolveResponse(result=result)

    async def _resolve_and_store(
        self,
        key: str,
        target_url: str,
        referer: str | None,
        timeout: float | None = None,
    ) -> tuple[ResolutionResult, dict[str, Any]]:
        result, trace = await self.resolve_once(target_url, referer, timeout=timeout)
        if result.is_cacheable:
            await self._cache_write(key, result)
        return result, trace

    async def resolve_once(
        self,
        target_url: str,
        referer: str | None = None,
        *,
        timeout: float | None = None,
    ) -> tuple[ResolutionResult, dict[str, Any]]:
        """One uncached fetch-extract-assemble pass.

        Returns:
            The result and a trace dict (bytes, packer blocks, candidate
            counts per pattern, stop reason).
        """
        trace: dict[str, Any] = {"target": target_url}
        try:
            page = await self._fetcher.fetch(
                target_url, referer=referer, timeout=timeout
            )
            trace["bytes"] = page.byte_count
            trace["finalUrl"] = page.url

            report = await self._engine.extract(page.text, page.url)
            trace.update(report.to_debug_dict())

            result = self._assembler.assemble(
                report.candidates,
                target_url=target_url,
                referer=referer,
                byte_count=page.byte_count,
            )
        except ResolveError as e:
            log.info(
                "resolve_failed",
                target=target_url,
                error_type=type(e).__name__,
                error=str(e),
            )
            result = ResolutionResult.failure(str(e))
        except Exception as e:
            log.exception("resolve_unexpected_error", target=target_url)
            result = ResolutionResult.failure(f"Error: {e}")
        return result, trace

    # ------------------------------------------------------------------
    # Candidate set
    # ------------------------------------------------------------------

    async def resolve_candidates(
        self, candidates: Sequence[str], referer: str | None = None
    ) -> ResolveResponse:
        """Try several embed pages (parallel first, then sequential)."""
        if not candidates:
            return ResolveResponse(result=ResolutionResult.failure("no candidates"))

        async def _attempt(candidate: str, timeout: float) -> ResolutionResult:
            key = build_cache_key(candidate, referer)
            cached = await self._cache_read(key)
            if cached is not None:
                return cached
            result, _ = await self._inflight.run(
                key,
                lambda: self._resolve_and_store(key, candidate, referer, timeout),
            )
            return result

        outcome = await self._attempts.run(candidates, _attempt)
        if outcome.ok:
            result = merge_results(
                outcome.successes,
                self._ranker,
                max_total=self._engine.config.max_total_urls,
            )
        else:
            result = ResolutionResult.failure(outcome.last_error or ALL_FAILED_MESSAGE)

        log.info(
            "resolve_candidates_finished",
            candidates=len(candidates),
            attempts=outcome.attempts,
            phase=outcome.phase,
            ok=result.ok,
            urls=len(result.urls),
        )
        return ResolveResponse(result=result)

    # ------------------------------------------------------------------
    # Cache helpers
    # ------------------------------------------------------------------

    async def _cache_read(self, key: str) -> ResolutionResult | None:
        """Read a cached result. Cache errors count as a miss."""
        if self._cache is None:
            return None
        try:
            return await self._cache.get(key)
        except Exception:
            log.warning("resolve_cache_read_error", key=key, exc_info=True)
            return None

    async def _cache_write(self, key: str, result: ResolutionResult) -> None:
        """Store a successful result. Silently ignores errors."""
        if self._cache is None:
            return
        try:
            await self._cache.save(key, result)
        except Exception:
            log.warning("resolve_cache_store_error", key=key, exc_info=True)


def _elapsed_ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)
