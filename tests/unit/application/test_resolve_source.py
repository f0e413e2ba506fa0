"""Tests for ResolveSourceUseCase."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

import pytest

from embedresolver.application.use_cases.resolve_source import (
    ResolveResponse,
    ResolveSourceUseCase,
)
from embedresolver.domain.entities import ResolutionRequest, SourceType
from embedresolver.domain.exceptions import (
    FetchError,
    ResolveTimeoutError,
    ValidationError,
)
from embedresolver.domain.ports.page_fetcher import FetchedPage
from embedresolver.infrastructure.cache.memory_adapter import MemoryCacheAdapter
from embedresolver.infrastructure.config.schema import ResolverConfig
from embedresolver.infrastructure.persistence.resolution_cache import (
    CacheResolutionRepository,
)
from embedresolver.infrastructure.resolver import (
    ExtractionEngine,
    InFlightRegistry,
    ResponseAssembler,
    build_cache_key,
)

EMBED_URL = "https://host.example/embed/abc"
HLS_URL = "https://cdn.example/v.m3u8"


def _page(url: str, html: str) -> FetchedPage:
    return FetchedPage(url=url, text=html, status_code=200, byte_count=len(html))


def _make_uc(
    fetcher: AsyncMock,
    cache=None,
    config: ResolverConfig | None = None,
) -> ResolveSourceUseCase:
    config = config or ResolverConfig(resolve_dns=False)
    return ResolveSourceUseCase(
        fetcher=fetcher,
        engine=ExtractionEngine(config),
        assembler=ResponseAssembler(),
        cache=cache,
        inflight=InFlightRegistry(),
    )


# ---------------------------------------------------------------------------
# execute
# ---------------------------------------------------------------------------


class TestExecute:
    async def test_success(self, mock_fetcher: AsyncMock) -> None:
        uc = _make_uc(mock_fetcher)

        response = await uc.execute(ResolutionRequest(target_url=EMBED_URL))

        assert isinstance(response, ResolveResponse)
        assert response.cache_hit is False
        result = response.result
        assert result.ok is True
        assert len(result.urls) == 1
        source = result.urls[0]
        assert source.url == HLS_URL
        assert source.type is SourceType.HLS
        assert source.proxied_url.startswith("/api/proxy?url=")
        assert result.message.startswith("Fetched ")
        mock_fetcher.fetch.assert_awaited_once_with(
            EMBED_URL, referer=None, timeout=None
        )

    async def test_referer_forwarded(self, mock_fetcher: AsyncMock) -> None:
        uc = _make_uc(mock_fetcher)

        await uc.execute(
            ResolutionRequest(target_url=EMBED_URL, referer="https://site.example/")
        )

        assert mock_fetcher.fetch.call_args.kwargs["referer"] == (
            "https://site.example/"
        )

    async def test_fetch_error_becomes_failure(self, mock_cache: AsyncMock) -> None:
        fetcher = AsyncMock()
        fetcher.fetch = AsyncMock(
            side_effect=FetchError("Failed to fetch: 404 Not Found", status_code=404)
        )
        uc = _make_uc(fetcher, cache=CacheResolutionRepository(mock_cache))

        response = await uc.execute(ResolutionRequest(target_url=EMBED_URL))

        assert response.result.ok is False
        assert response.result.urls == []
        assert response.result.message == "Failed to fetch: 404 Not Found"
        mock_cache.set.assert_not_awaited()

    @pytest.mark.parametrize(
        ("error", "message"),
        [
            (ValidationError("Blocked hostname"), "Blocked hostname"),
            (
                ResolveTimeoutError("request timed out after 3s"),
                "request timed out after 3s",
            ),
        ],
    )
    async def test_resolve_errors_become_messages(
        self, error: Exception, message: str
    ) -> None:
        fetcher = AsyncMock()
        fetcher.fetch = AsyncMock(side_effect=error)

        response = await _make_uc(fetcher).execute(
            ResolutionRequest(target_url=EMBED_URL)
        )

        assert response.result.ok is False
        assert response.result.message == message

    async def test_unexpected_error_wrapped(self) -> None:
        fetcher = AsyncMock()
        fetcher.fetch = AsyncMock(side_effect=RuntimeError("boom"))

        response = await _make_uc(fetcher).execute(
            ResolutionRequest(target_url=EMBED_URL)
        )

        assert response.result.ok is False
        assert response.result.message == "Error: boom"

    async def test_no_urls_found(self) -> None:
        fetcher = AsyncMock()
        fetcher.fetch = AsyncMock(
            return_value=_page(EMBED_URL, "<html>nothing here</html>")
        )

        response = await _make_uc(fetcher).execute(
            ResolutionRequest(target_url=EMBED_URL)
        )

        assert response.result.ok is False
        assert response.result.message == "no urls found"


# ---------------------------------------------------------------------------
# Caching
# ---------------------------------------------------------------------------


class TestCaching:
    async def test_second_call_is_cache_hit(self, mock_fetcher: AsyncMock) -> None:
        cache = CacheResolutionRepository(MemoryCacheAdapter())
        uc = _make_uc(mock_fetcher, cache=cache)
        request = ResolutionRequest(target_url=EMBED_URL)

        first = await uc.execute(request)
        second = await uc.execute(request)

        assert first.cache_hit is False
        assert second.cache_hit is True
        assert second.result == first.result
        assert mock_fetcher.fetch.await_count == 1

    async def test_referer_is_part_of_key(self, mock_fetcher: AsyncMock) -> None:
        cache = CacheResolutionRepository(MemoryCacheAdapter())
        uc = _make_uc(mock_fetcher, cache=cache)

        await uc.execute(ResolutionRequest(target_url=EMBED_URL))
        await uc.execute(
            ResolutionRequest(target_url=EMBED_URL, referer="https://other/")
        )

        assert mock_fetcher.fetch.await_count == 2

    async def test_expired_entry_refetched(
        self, mock_fetcher: AsyncMock, clock
    ) -> None:
        backend = MemoryCacheAdapter(ttl_seconds=600, clock=clock)
        cache = CacheResolutionRepository(backend, ttl_seconds=600, clock=clock)
        uc = _make_uc(mock_fetcher, cache=cache)
        request = ResolutionRequest(target_url=EMBED_URL)

        await uc.execute(request)
        clock.advance(601)
        response = await uc.execute(request)

        assert response.cache_hit is False
        assert mock_fetcher.fetch.await_count == 2

    async def test_cache_read_error_is_a_miss(
        self, mock_fetcher: AsyncMock, mock_cache: AsyncMock
    ) -> None:
        mock_cache.get = AsyncMock(side_effect=ConnectionError("cache down"))
        uc = _make_uc(mock_fetcher, cache=CacheResolutionRepository(mock_cache))

        response = await uc.execute(ResolutionRequest(target_url=EMBED_URL))

        assert response.result.ok is True

    async def test_cache_write_error_ignored(
        self, mock_fetcher: AsyncMock, mock_cache: AsyncMock
    ) -> None:
        mock_cache.set = AsyncMock(side_effect=ConnectionError("cache down"))
        uc = _make_uc(mock_fetcher, cache=CacheResolutionRepository(mock_cache))

        response = await uc.execute(ResolutionRequest(target_url=EMBED_URL))

        assert response.result.ok is True

    async def test_cache_key_uses_target_and_referer(
        self, mock_fetcher: AsyncMock, mock_cache: AsyncMock
    ) -> None:
        uc = _make_uc(mock_fetcher, cache=CacheResolutionRepository(mock_cache))

        await uc.execute(ResolutionRequest(target_url=EMBED_URL, referer="r"))

        assert mock_cache.set.call_args.args[0] == build_cache_key(EMBED_URL, "r")


# ---------------------------------------------------------------------------
# In-flight de-duplication
# ---------------------------------------------------------------------------


class TestInFlight:
    async def test_concurrent_identical_requests_fetch_once(
        self, embed_page: FetchedPage
    ) -> None:
        release = asyncio.Event()

        async def slow_fetch(url: str, **kwargs) -> FetchedPage:
            await release.wait()
            return embed_page

        fetcher = AsyncMock()
        fetcher.fetch = AsyncMock(side_effect=slow_fetch)
        uc = _make_uc(fetcher)
        request = ResolutionRequest(target_url=EMBED_URL)

        tasks = [asyncio.ensure_future(uc.execute(request)) for _ in range(4)]
        await asyncio.sleep(0.01)
        release.set()
        responses = await asyncio.gather(*tasks)

        assert fetcher.fetch.await_count == 1
        assert all(r.result == responses[0].result for r in responses)

    async def test_debug_requests_not_shared(self, embed_page: FetchedPage) -> None:
        release = asyncio.Event()

        async def slow_fetch(url: str, **kwargs) -> FetchedPage:
            await release.wait()
            return embed_page

        fetcher = AsyncMock()
        fetcher.fetch = AsyncMock(side_effect=slow_fetch)
        uc = _make_uc(fetcher)

        tasks = [
            asyncio.ensure_future(
                uc.execute(ResolutionRequest(target_url=EMBED_URL, debug=True))
            )
            for _ in range(2)
        ]
        await asyncio.sleep(0.01)
        release.set()
        await asyncio.gather(*tasks)

        assert fetcher.fetch.await_count == 2


# ---------------------------------------------------------------------------
# Debug
# ---------------------------------------------------------------------------


class TestDebug:
    async def test_debug_trace(self, mock_fetcher: AsyncMock) -> None:
        uc = _make_uc(mock_fetcher)

        response = await uc.execute(
            ResolutionRequest(target_url=EMBED_URL, debug=True)
        )

        debug = response.debug
        assert debug is not None
        assert debug["target"] == EMBED_URL
        assert debug["cacheHit"] is False
        assert debug["finalUrl"] == EMBED_URL
        assert debug["packerBlocks"] == 0
        assert debug["stopReason"] == "exhausted"
        assert "elapsedMs" in debug
        assert response.to_dict()["debug"] == debug

    async def test_debug_on_cache_hit(self, mock_fetcher: AsyncMock) -> None:
        cache = CacheResolutionRepository(MemoryCacheAdapter())
        uc = _make_uc(mock_fetcher, cache=cache)
        await uc.execute(ResolutionRequest(target_url=EMBED_URL))

        response = await uc.execute(
            ResolutionRequest(target_url=EMBED_URL, debug=True)
        )

        assert response.cache_hit is True
        assert response.debug is not None
        assert response.debug["cacheHit"] is True

    async def test_no_debug_key_by_default(self, mock_fetcher: AsyncMock) -> None:
        response = await _make_uc(mock_fetcher).execute(
            ResolutionRequest(target_url=EMBED_URL)
        )
        assert "debug" not in response.to_dict()


# ---------------------------------------------------------------------------
# resolve_candidates
# ---------------------------------------------------------------------------


class TestResolveCandidates:
    async def test_empty(self, mock_fetcher: AsyncMock) -> None:
        response = await _make_uc(mock_fetcher).resolve_candidates([])
        assert response.result.ok is False
        assert response.result.message == "no candidates"

    async def test_first_working_candidate(self) -> None:
        good = "https://good.example/embed/1"

        async def fetch(url: str, **kwargs) -> FetchedPage:
            if url == good:
                return _page(url, f'<script>file: "{HLS_URL}"</script>')
            raise FetchError("Failed to fetch: 404 Not Found", status_code=404)

        fetcher = AsyncMock()
        fetcher.fetch = AsyncMock(side_effect=fetch)
        uc = _make_uc(fetcher)

        response = await uc.resolve_candidates(
            ["https://bad.example/embed/1", good]
        )

        assert response.result.ok is True
        assert [s.url for s in response.result.urls] == [HLS_URL]

    async def test_all_fail(self) -> None:
        fetcher = AsyncMock()
        fetcher.fetch = AsyncMock(
            side_effect=FetchError("Failed to fetch: 500 Internal Server Error")
        )
        config = ResolverConfig(resolve_dns=False, max_attempts=2)
        uc = _make_uc(fetcher, config=config)

        response = await uc.resolve_candidates(
            ["https://a.example/embed/1", "https://b.example/embed/1"]
        )

        assert response.result.ok is False
        assert response.result.message == "Failed to fetch: 500 Internal Server Error"

    async def test_cached_candidate_skips_fetch(
        self, mock_fetcher: AsyncMock
    ) -> None:
        cache = CacheResolutionRepository(MemoryCacheAdapter())
        uc = _make_uc(mock_fetcher, cache=cache)
        await uc.execute(ResolutionRequest(target_url=EMBED_URL))

        response = await uc.resolve_candidates([EMBED_URL])

        assert response.result.ok is True
        assert mock_fetcher.fetch.await_count == 1

    async def test_merged_sources_respect_total_cap(self) -> None:
        async def fetch(url: str, **kwargs) -> FetchedPage:
            host = url.split("/")[2]
            html = " ".join(f"https://{host}/v{i}.m3u8" for i in range(3))
            return _page(url, html)

        fetcher = AsyncMock()
        fetcher.fetch = AsyncMock(side_effect=fetch)
        config = ResolverConfig(resolve_dns=False, max_total_urls=3)
        uc = _make_uc(fetcher, config=config)

        response = await uc.resolve_candidates(
            [
                "https://a.example/embed/1",
                "https://b.example/embed/1",
                "https://c.example/embed/1",
            ]
        )

        assert fetcher.fetch.await_count == 3
        assert response.result.ok is True
        assert len(response.result.urls) == 3
