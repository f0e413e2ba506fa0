"""Port for caching resolution results."""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from embedresolver.domain.entities import ResolutionResult


@runtime_checkable
class ResolutionCachePort(Protocol):
    """Async interface for storing and retrieving resolution results."""

    async def get(self, key: str) -> ResolutionResult | None: ...

    async def save(self, key: str, result: ResolutionResult) -> None: ...
