"""Turns extraction candidates into the externally visible result."""

from __future__ import annotations

from collections.abc import Iterable
from urllib.parse import quote, urlsplit

import structlog

from embedresolver.domain.entities import (
    ExtractionCandidate,
    ResolutionResult,
    SourceType,
    ValidatedSource,
)
from embedresolver.domain.exceptions import ExtractionEmpty
from embedresolver.infrastructure.resolver.providers import ProviderRanker

log = structlog.get_logger(__name__)


def detect_source_type(url: str) -> SourceType:
    lowered = url.lower()
    if ".m3u8" in lowered:
        return SourceType.HLS
    if ".mp4" in lowered:
        return SourceType.MP4
    if ".webm" in lowered:
        return SourceType.WEBM
    return SourceType.UNKNOWN


def _origin(url: str) -> str:
    parts = urlsplit(url)
    if not parts.scheme or not parts.netloc:
        return ""
    return f"{parts.scheme}://{parts.netloc}"


def success_message(byte_count: int, source_count: int) -> str:
    return (
        f"Fetched {byte_count} bytes. Found {source_count} unique video URLs, "
        "sorted by provider reliability."
    )


class ResponseAssembler:
    """Dedups, classifies, ranks and wraps candidates in relay URLs."""

    def __init__(
        self,
        ranker: ProviderRanker | None = None,
        *,
        proxy_endpoint: str = "/api/proxy",
    ) -> None:
        self._ranker = ranker or ProviderRanker()
        self._proxy_endpoint = proxy_endpoint

    def proxied_url(self, url: str, *, target_url: str, referer: str | None) -> str:
        """Relay URL carrying the media URL, referer and embed origin."""
        return (
            f"{self._proxy_endpoint}"
            f"?url={quote(url, safe='')}"
            f"&referer={quote(referer or target_url, safe='')}"
            f"&origin={quote(_origin(target_url), safe='')}"
            "&rewrite=1"
        )

    def build_sources(
        self,
        candidates: Iterable[ExtractionCandidate],
        *,
        target_url: str,
        referer: str | None = None,
    ) -> list[ValidatedSource]:
        """Dedup by URL (first wins) and rank by provider reliability."""
        seen: set[str] = set()
        sources: list[ValidatedSource] = []
        for candidate in candidates:
            url = candidate.raw_url
            if url in seen:
                continue
            seen.add(url)
            sources.append(
                ValidatedSource(
                    type=detect_source_type(url),
                    url=url,
                    direct_url=url,
                    proxied_url=self.proxied_url(
                        url, target_url=target_url, referer=referer
                    ),
                    quality=candidate.quality,
                    provider=self._ranker.provider_info(url),
                )
            )
        return self._ranker.sort(sources)

    def assemble(
        self,
        candidates: Iterable[ExtractionCandidate],
        *,
        target_url: str,
        referer: str | None = None,
        byte_count: int = 0,
    ) -> ResolutionResult:
        """Build a successful result.

        Raises:
            ExtractionEmpty: No candidate survived.
        """
        sources = self.build_sources(
            candidates, target_url=target_url, referer=referer
        )
        if not sources:
            raise ExtractionEmpty()
        log.debug(
            "sources_assembled",
            target_url=target_url,
            count=len(sources),
            top_provider=sources[0].provider.hostname if sources[0].provider else None,
        )
        return ResolutionResult(
            ok=True,
            urls=sources,
            message=success_message(byte_count, len(sources)),
        )
