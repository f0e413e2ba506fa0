"""Tests for candidate extraction (matchers, caps, deep pass, streaming)."""

from __future__ import annotations

import base64

from embedresolver.domain.entities import PatternType
from embedresolver.infrastructure.config.schema import ResolverConfig
from embedresolver.infrastructure.resolver.extraction import (
    ExtractionEngine,
    StopReason,
    absolutize,
    embed_base_url,
)

EMBED_URL = "https://host.example/embed/abc"


def _engine(**overrides) -> ExtractionEngine:
    return ExtractionEngine(ResolverConfig(resolve_dns=False, **overrides))


def _urls(report) -> list[str]:
    return [c.raw_url for c in report.candidates]


# ---------------------------------------------------------------------------
# URL helpers
# ---------------------------------------------------------------------------


class TestEmbedBaseUrl:
    def test_strips_embed_segment(self) -> None:
        assert embed_base_url("https://h.example/x/embed/abc?t=1") == (
            "https://h.example/x"
        )

    def test_falls_back_to_origin(self) -> None:
        assert embed_base_url("https://h.example/watch/1") == "https://h.example"

    def test_empty(self) -> None:
        assert embed_base_url("") == ""


class TestAbsolutize:
    def test_absolute_unchanged(self) -> None:
        url = "https://cdn.example/v.mp4"
        assert absolutize(PatternType.QUOTED_VIDEO, url, EMBED_URL) == url

    def test_protocol_relative(self) -> None:
        assert absolutize(PatternType.JWPLAYER, "//cdn.example/v.m3u8") == (
            "https://cdn.example/v.m3u8"
        )

    def test_sibnet_relative(self) -> None:
        assert absolutize(PatternType.SIBNET_RELATIVE, "/v/abc/1.mp4") == (
            "https://video.sibnet.ru/v/abc/1.mp4"
        )

    def test_page_relative(self) -> None:
        assert absolutize(
            PatternType.OBFUSCATED_CONFIG, "/hls/master.m3u8", EMBED_URL
        ) == ("https://host.example/hls/master.m3u8")

    def test_page_relative_requires_media_hint(self) -> None:
        assert absolutize(PatternType.OBFUSCATED_CONFIG, "/player", EMBED_URL) == (
            "/player"
        )

    def test_other_types_not_resolved(self) -> None:
        assert absolutize(PatternType.JWPLAYER, "/x.m3u8", EMBED_URL) == "/x.m3u8"


# ---------------------------------------------------------------------------
# ExtractionEngine.extract
# ---------------------------------------------------------------------------


class TestExtract:
    async def test_finds_direct_urls_in_order(self) -> None:
        html = (
            '<script>var a = "https://cdn.example/a.m3u8"; '
            'var b = "https://cdn.example/b.m3u8"; '
            'var c = "https://cdn.example/c.mp4";</script>'
        )
        report = await _engine().extract(html, EMBED_URL)

        assert _urls(report) == [
            "https://cdn.example/a.m3u8",
            "https://cdn.example/b.m3u8",
            "https://cdn.example/c.mp4",
        ]
        assert all(c.pattern_type is PatternType.DIRECT for c in report.candidates)
        assert report.stop_reason is StopReason.EXHAUSTED
        assert report.counts == {"direct": 3}

    async def test_total_cap_stops_scan(self) -> None:
        html = " ".join(f'"https://cdn.example/v{i}.m3u8"' for i in range(12))
        report = await _engine().extract(html)

        assert len(report.candidates) == 10
        assert report.stop_reason is StopReason.TOTAL_CAP
        assert report.counts == {"direct": 5, "quoted": 5}

    async def test_per_type_cap(self) -> None:
        html = " ".join(f"https://cdn.example/v{i}.mp4" for i in range(4))
        report = await _engine(max_urls_per_type=2).extract(html)

        assert _urls(report) == [
            "https://cdn.example/v0.mp4",
            "https://cdn.example/v1.mp4",
        ]

    async def test_rejected_candidates_are_counted(self) -> None:
        html = '"http://127.0.0.1/a.m3u8" "https://cdn.example/b.m3u8"'
        report = await _engine().extract(html)

        assert _urls(report) == ["https://cdn.example/b.m3u8"]
        assert report.rejected >= 1

    async def test_sibnet_relative_path(self) -> None:
        html = 'player.src([{src: "/v/abc123/456.mp4", type: "video/mp4"}]);'
        report = await _engine().extract(html)

        assert len(report.candidates) == 1
        candidate = report.candidates[0]
        assert candidate.pattern_type is PatternType.SIBNET_RELATIVE
        assert candidate.raw_url == "https://video.sibnet.ru/v/abc123/456.mp4"

    async def test_obfuscated_relative_path(self) -> None:
        html = '<script>var cfg = {file:"/hls/master.m3u8"};</script>'
        report = await _engine().extract(html, EMBED_URL)

        assert _urls(report) == ["https://host.example/hls/master.m3u8"]
        assert report.candidates[0].pattern_type is PatternType.OBFUSCATED_CONFIG

    async def test_quality_parsed(self) -> None:
        report = await _engine().extract("https://cdn.example/movie_720p.mp4")
        assert report.candidates[0].quality == "720p"

    async def test_truncates_large_documents(self) -> None:
        html = "x" * 50 + " https://cdn.example/late.mp4"
        report = await _engine(max_html_size=40).extract(html)

        assert report.truncated is True
        assert report.candidates == []

    async def test_empty_document(self) -> None:
        report = await _engine().extract("")
        assert report.candidates == []
        assert report.stop_reason is StopReason.EXHAUSTED

    async def test_packed_script_is_unpacked(self) -> None:
        packed = (
            "eval(function(p,a,c,k,e,d){while(c--)if(k[c])"
            "p=p.replace(new RegExp('\\\\b'+c+'\\\\b','g'),k[c]);return p}"
            "('0({1:[{2:\"3://4.5/6.7\"}]})',10,8,"
            "'setup|sources|file|https|cdn|example|v|m3u8'.split('|'),0,{}))"
        )
        report = await _engine().extract(f"<script>{packed}</script>", EMBED_URL)

        assert report.packer_blocks == 1
        assert "https://cdn.example/v.m3u8" in _urls(report)

    async def test_timeout_stops_at_chunk_boundary(self) -> None:
        ticks = iter([0.0, 0.0, 10.0, 10.0, 10.0])

        def clock() -> float:
            return next(ticks, 10.0)

        config = ResolverConfig(
            resolve_dns=False, chunk_size=64, processing_timeout_seconds=1.0
        )
        engine = ExtractionEngine(config, clock=clock)
        html = " ".join(f"https://cdn.example/v{i}.mp4" for i in range(4))
        html = html + " " + "x " * 200
        report = await engine.extract(html)

        assert report.stop_reason is StopReason.TIMEOUT
        assert report.chunks_scanned == 1

    async def test_debug_dict(self) -> None:
        report = await _engine().extract("https://cdn.example/a.mp4")
        d = report.to_debug_dict()
        assert d["candidates"] == {"direct": 1}
        assert d["stopReason"] == "exhausted"
        assert d["packerBlocks"] == 0
        assert d["chunksScanned"] == 1


# ---------------------------------------------------------------------------
# Deep pass (VidMoly)
# ---------------------------------------------------------------------------


class TestDeepPass:
    async def test_loader_call(self) -> None:
        html = (
            "<!-- vidmoly player -->"
            '<script>loadVideo("https://vmcdn.vidmoly.example/x/master.m3u8")'
            "</script>"
        )
        report = await _engine().extract(html)

        assert report.candidates[0].pattern_type is PatternType.VIDMOLY_FUNCTION
        assert _urls(report) == ["https://vmcdn.vidmoly.example/x/master.m3u8"]

    async def test_base64_token(self) -> None:
        hidden = "https://cdn.vidmoly.example/v/master.m3u8"
        token = base64.b64encode(hidden.encode()).decode()
        html = f'<script>/* vidmoly */ var cfg = atob("{token}");</script>'
        report = await _engine().extract(html)

        assert _urls(report) == [hidden]
        assert report.candidates[0].pattern_type is PatternType.VIDMOLY_DECODED

    async def test_not_triggered_without_marker(self) -> None:
        html = 'loadVideo("https://cdn.example/x/master.m3u8")'
        report = await _engine().extract(html)

        assert report.candidates[0].pattern_type is PatternType.DIRECT


# ---------------------------------------------------------------------------
# CandidateStream
# ---------------------------------------------------------------------------


class TestCandidateStream:
    def test_iterates_lazily(self) -> None:
        html = " ".join(f"https://cdn.example/v{i}.mp4" for i in range(3))
        stream = _engine().candidate_stream(html)

        first = next(stream)
        assert first.raw_url == "https://cdn.example/v0.mp4"
        assert not stream.done

    def test_exhausts(self) -> None:
        stream = _engine().candidate_stream("https://cdn.example/a.mp4")
        assert [c.raw_url for c in stream] == ["https://cdn.example/a.mp4"]
        assert stream.stop_reason is StopReason.EXHAUSTED

    def test_stop_ends_stream(self) -> None:
        html = " ".join(f"https://cdn.example/v{i}.mp4" for i in range(3))
        stream = _engine().candidate_stream(html)
        next(stream)

        stream.stop()

        assert stream.done
        assert stream.stop_reason is StopReason.STOPPED
        assert list(stream) == []
        assert stream.next_batch() == []

    def test_chunks_break_on_whitespace(self) -> None:
        urls = [f"https://cdn.example/segment_{i:02d}.mp4" for i in range(6)]
        stream = _engine(chunk_size=50, max_urls_per_type=10).candidate_stream(
            " ".join(urls)
        )

        found = [c.raw_url for c in stream]

        assert found[:5] == urls[:5]
        assert stream.chunks_scanned > 1
