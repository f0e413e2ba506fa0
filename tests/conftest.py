"""Shared test fixtures for the embedresolver test suite."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from embedresolver.domain.entities import (
    ExtractionCandidate,
    PatternType,
    ProviderInfo,
    ResolutionResult,
    SourceType,
    ValidatedSource,
)
from embedresolver.domain.ports.page_fetcher import FetchedPage
from embedresolver.infrastructure.config.schema import ResolverConfig

EMBED_URL = "https://host.example/embed/abc"
HLS_URL = "https://cdn.example/v.m3u8"

# ---------------------------------------------------------------------------
# Configuration fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def resolver_config() -> ResolverConfig:
    """Resolver config without DNS lookups (tests never hit the network)."""
    return ResolverConfig(resolve_dns=False)


# ---------------------------------------------------------------------------
# Domain entity fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def hls_candidate() -> ExtractionCandidate:
    return ExtractionCandidate(pattern_type=PatternType.DIRECT, raw_url=HLS_URL)


@pytest.fixture()
def ok_result() -> ResolutionResult:
    """Successful, cacheable result with one HLS source."""
    return ResolutionResult(
        ok=True,
        urls=[
            ValidatedSource(
                type=SourceType.HLS,
                url=HLS_URL,
                direct_url=HLS_URL,
                proxied_url="/api/proxy?url=x",
                quality=None,
                provider=None,
            )
        ],
        message="Fetched 42 bytes. Found 1 unique video URLs, "
        "sorted by provider reliability.",
    )


@pytest.fixture()
def sibnet_source() -> ValidatedSource:
    url = "https://video.sibnet.ru/v/abc/1.mp4"
    return ValidatedSource(
        type=SourceType.MP4,
        url=url,
        direct_url=url,
        proxied_url="/api/proxy?url=y",
        quality="720p",
        provider=ProviderInfo(
            hostname="video.sibnet.ru", reliability=95, description="SibNet"
        ),
    )


@pytest.fixture()
def embed_page() -> FetchedPage:
    html = '<script>jwplayer("p").setup({sources: [{file: "%s"}]});</script>' % (
        HLS_URL
    )
    return FetchedPage(
        url=EMBED_URL, text=html, status_code=200, byte_count=len(html)
    )


# ---------------------------------------------------------------------------
# Infrastructure mocks
# ---------------------------------------------------------------------------


@pytest.fixture()
def mock_cache() -> AsyncMock:
    """Mock CachePort with async methods."""
    cache = AsyncMock()
    cache.get = AsyncMock(return_value=None)
    cache.set = AsyncMock()
    cache.delete = AsyncMock(return_value=True)
    cache.clear = AsyncMock()
    cache.aclose = AsyncMock()
    return cache


@pytest.fixture()
def mock_fetcher(embed_page: FetchedPage) -> AsyncMock:
    """Mock PageFetcherPort returning the embed page fixture."""
    fetcher = AsyncMock()
    fetcher.fetch = AsyncMock(return_value=embed_page)
    return fetcher


class FakeClock:
    """Manually advanced time source."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()
