"""Port for fetching embed pages under the SSRF policy."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol, runtime_checkable


@dataclass(frozen=True)
class FetchedPage:
    """Body of a successfully fetched embed page."""

    url: str  # final URL after redirects
    text: str
    status_code: int
    byte_count: int


@runtime_checkable
class PageFetcherPort(Protocol):
    """Fetches one embed page with a hard deadline.

    Raises ``ValidationError`` when the target violates the SSRF policy,
    ``FetchError`` on non-2xx or transport failure and
    ``ResolveTimeoutError`` when the deadline expires.
    """

    async def fetch(
        self,
        url: str,
        *,
        referer: str | None = None,
        timeout: float | None = None,
    ) -> FetchedPage: ...
