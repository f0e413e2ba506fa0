"""Escalating resolution over several embed-page candidates.

Phase 1 tries the first ``parallel_concurrency`` candidates concurrently
with a short timeout each. The first success is adopted; siblings that
finish within ``enrich_window`` are kept as well, the rest are cancelled.

Phase 2 runs only when phase 1 found nothing: candidates are tried one at a
time with the longer timeout, untried ones first, then the phase-1 ones
again. ``max_attempts`` bounds the attempts of both phases together.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field, replace

import structlog

from embedresolver.domain.entities import ResolutionResult, ValidatedSource
from embedresolver.infrastructure.config.schema import ResolverConfig
from embedresolver.infrastructure.resolver.providers import ProviderRanker

log = structlog.get_logger(__name__)

ALL_FAILED_MESSAGE = "all candidates failed"

# attempt(candidate_url, timeout_seconds) -> result (never raises by contract)
Attempt = Callable[[str, float], Awaitable[ResolutionResult]]


@dataclass
class AttemptOutcome:
    successes: list[ResolutionResult] = field(default_factory=list)
    attempts: int = 0
    phase: str = "none"
    last_error: str | None = None

    @property
    def ok(self) -> bool:
        return bool(self.successes)


@dataclass(frozen=True)
class AttemptPolicy:
    parallel_concurrency: int = 3
    parallel_timeout: float = 3.0
    sequential_timeout: float = 8.0
    max_attempts: int = 8
    enrich_window: float = 0.25

    @classmethod
    def from_config(cls, config: ResolverConfig) -> AttemptPolicy:
        return cls(
            parallel_concurrency=config.parallel_concurrency,
            parallel_timeout=config.parallel_timeout_seconds,
            sequential_timeout=config.sequential_timeout_seconds,
            max_attempts=config.max_attempts,
            enrich_window=config.enrich_window_seconds,
        )

    async def _guarded(
        self, attempt: Attempt, candidate: str, timeout: float
    ) -> ResolutionResult:
        try:
            return await asyncio.wait_for(attempt(candidate, timeout), timeout)
        except asyncio.TimeoutError:
            return ResolutionResult.failure(
                f"request timed out after {timeout:g}s"
            )
        except Exception as exc:  # noqa: BLE001
            log.warning("attempt_crashed", candidate=candidate, error=str(exc))
            return ResolutionResult.failure(f"Error: {exc}")

    async def _parallel(
        self, candidates: Sequence[str], attempt: Attempt, outcome: AttemptOutcome
    ) -> None:
        tasks = {
            asyncio.ensure_future(
                self._guarded(attempt, c, self.parallel_timeout)
            ): c
            for c in candidates
        }
        outcome.attempts += len(tasks)
        pending = set(tasks)
        try:
            while pending:
                done, pending = await asyncio.wait(
                    pending, return_when=asyncio.FIRST_COMPLETED
                )
                for task in done:
                    self._record(task.result(), tasks[task], outcome)
                if outcome.ok:
                    break

            if outcome.ok and pending:
                done, pending = await asyncio.wait(pending, timeout=self.enrich_window)
                for task in done:
                    self._record(task.result(), tasks[task], outcome)
        finally:
            for task in pending:
                task.cancel()
            if pending:
                log.debug("attempt_stragglers_cancelled", count=len(pending))

    @staticmethod
    def _record(
        result: ResolutionResult, candidate: str, outcome: AttemptOutcome
    ) -> None:
        if result.ok and result.urls:
            outcome.successes.append(result)
            log.debug("attempt_succeeded", candidate=candidate, urls=len(result.urls))
        else:
            outcome.last_error = result.message or outcome.last_error
            log.debug("attempt_failed", candidate=candidate, message=result.message)

    async def run(self, candidates: Sequence[str], attempt: Attempt) -> AttemptOutcome:
        """Try *candidates* (de-duplicated, order kept) until one succeeds."""
        unique = list(dict.fromkeys(c for c in candidates if c))
        outcome = AttemptOutcome()
        if not unique or self.max_attempts < 1:
            return outcome

        first_wave = unique[: min(self.parallel_concurrency, self.max_attempts)]
        outcome.phase = "parallel"
        await self._parallel(first_wave, attempt, outcome)
        if outcome.ok:
            return outcome

        outcome.phase = "sequential"
        retry_order = unique[len(first_wave) :] + first_wave
        for candidate in retry_order:
            if outcome.attempts >= self.max_attempts:
                log.info("attempt_budget_exhausted", attempts=outcome.attempts)
                break
            outcome.attempts += 1
            result = await self._guarded(attempt, candidate, self.sequential_timeout)
            self._record(result, candidate, outcome)
            if outcome.ok:
                break
        return outcome


def merge_results(
    successes: Sequence[ResolutionResult],
    ranker: ProviderRanker,
    max_total: int | None = None,
) -> ResolutionResult:
    """Combine successful results: dedup by ``url``, re-rank, cap at *max_total*."""
    if not successes:
        return ResolutionResult.failure(ALL_FAILED_MESSAGE)
    if len(successes) == 1:
        only = successes[0]
        if max_total is None or len(only.urls) <= max_total:
            return only
        return replace(only, urls=only.urls[:max_total])

    seen: set[str] = set()
    merged: list[ValidatedSource] = []
    for result in successes:
        for source in result.urls:
            if source.url not in seen:
                seen.add(source.url)
                merged.append(source)
    ranked = ranker.sort(merged)
    if max_total is not None:
        ranked = ranked[:max_total]
    return ResolutionResult(
        ok=True,
        urls=ranked,
        message=(
            f"Merged {len(successes)} candidates. Found {len(ranked)} unique "
            "video URLs, sorted by provider reliability."
        ),
    )
