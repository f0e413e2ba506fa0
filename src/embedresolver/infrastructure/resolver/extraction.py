"""Candidate URL extraction from embed pages.

The page text is truncated, deobfuscated, and then scanned in chunks by an
ordered list of regex matchers (most specific first). Every hit is cleaned,
made absolute where the matcher is known to yield relative paths,
de-duplicated and validated before it counts towards the caps:

- ``max_urls_per_type``: a matcher is skipped once its type is full.
- ``max_total_urls``: the scan stops once reached.
- ``processing_timeout_seconds``: the scan stops at the next chunk boundary.

Pages that mention VidMoly additionally get a deep pass (base64 tokens,
player variables and loader calls) before the chunk scan. It feeds the
same counters.
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import re
import time
from collections import Counter, deque
from collections.abc import Callable, Iterator, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any
from urllib.parse import urlsplit

import structlog

from embedresolver.domain.entities import ExtractionCandidate, PatternType
from embedresolver.domain.exceptions import ValidationError
from embedresolver.infrastructure.config.schema import ResolverConfig
from embedresolver.infrastructure.resolver.packer import deobfuscate
from embedresolver.infrastructure.resolver.providers import parse_quality
from embedresolver.infrastructure.resolver.url_policy import UrlPolicy, strip_quotes

log = structlog.get_logger(__name__)

SIBNET_ORIGIN = "https://video.sibnet.ru"

_I = re.IGNORECASE


@dataclass(frozen=True)
class Matcher:
    """One ordered extraction rule. Group 1 is preferred over the full match."""

    pattern_type: PatternType
    regex: re.Pattern[str]


VIDEO_URL_MATCHERS: tuple[Matcher, ...] = (
    Matcher(
        PatternType.DIRECT,
        re.compile(r"https?://[^\s\"'<>]*\.(?:m3u8|mp4)[^\s\"'<>]*", _I),
    ),
    Matcher(
        PatternType.VIDEO,
        re.compile(
            r"https?://[^\s\"'<>]*\.(?:webm|mkv|avi|mov|flv)[^\s\"'<>]*", _I
        ),
    ),
    Matcher(
        PatternType.QUOTED,
        re.compile(
            r"[\"'](https?://[^\"']*"
            r"\.(?:m3u8|mp4|webm|mkv|avi|mov|flv)[^\"']*)[\"']",
            _I,
        ),
    ),
    Matcher(
        PatternType.JAVASCRIPT,
        re.compile(
            r"(?:var|const|let|window)\s+\w+\s*[:=]\s*"
            r"[\"'](https?://[^\"']*\.(?:m3u8|mp4)[^\"']*)[\"']",
            _I,
        ),
    ),
    Matcher(
        PatternType.JWPLAYER,
        re.compile(
            r"(?:hls4|hls3|hls2|file)\s*[:=]\s*"
            r"[\"']([^\"']+\.(?:m3u8|mp4)[^\"']*)[\"']",
            _I,
        ),
    ),
    Matcher(
        PatternType.JWPLAYER_SOURCES,
        re.compile(
            r"sources\s*:\s*\[\s*\{\s*file\s*:\s*"
            r"[\"']([^\"']+\.(?:m3u8|mp4)[^\"']*)[\"']",
            _I,
        ),
    ),
    Matcher(
        PatternType.OBFUSCATED_CONFIG,
        re.compile(r"(?:hls4|hls3|hls2|file)\s*[:=]\s*[\"']([^\"']+)[\"']", _I),
    ),
    Matcher(
        PatternType.QUOTED_VIDEO,
        re.compile(r"[\"']([^\"']*\.(?:m3u8|mp4|txt)[^\"']*)[\"']", _I),
    ),
    Matcher(
        PatternType.API,
        re.compile(
            r"[\"'](https?://[^\"']*"
            r"(?:api|source|video|stream|player|embed)[^\"']*)[\"']",
            _I,
        ),
    ),
    Matcher(
        PatternType.CDN,
        re.compile(
            r"[\"'](https?://[^\"']*\.(?:cdn|stream|video|media)\.[^\"']*"
            r"\.(?:mp4|m3u8)[^\"']*)[\"']",
            _I,
        ),
    ),
    Matcher(
        PatternType.VIDMOLY,
        re.compile(
            r"[\"'](https?://[^\"']*vidmoly[^\"']*\.(?:mp4|m3u8)[^\"']*)[\"']", _I
        ),
    ),
    Matcher(
        PatternType.SIBNET_RELATIVE,
        re.compile(r"src\s*:\s*[\"']([^\"']*/v/[^\"']*\.mp4)[\"']", _I),
    ),
)

# Relative paths from these matchers are resolved against the embed page.
_PAGE_RELATIVE_TYPES = frozenset(
    {PatternType.OBFUSCATED_CONFIG, PatternType.QUOTED_VIDEO}
)
_MEDIA_HINT_RE = re.compile(r"\.(?:m3u8|mp4|txt)", _I)
_EMBED_PATH_RE = re.compile(r"/embed/.*$", re.DOTALL)

# Deep pass
_DEEP_PASS_TRIGGER_RE = re.compile(r"vidmoly", _I)
_BASE64_TOKEN_RE = re.compile(r"[A-Za-z0-9+/=]{20,}")
_MEDIA_URL_RE = re.compile(r"https?://[^\s\"'<>]+\.(?:m3u8|mp4)[^\s\"'<>]*", _I)
_JS_VAR_RES = tuple(
    re.compile(rf"{name}\s*[:=]\s*[\"']([^\"']+)[\"']", _I)
    for name in ("videoUrl", "streamUrl", "file", "src")
)
_JS_CALL_RES = tuple(
    re.compile(rf"{name}\s*\(\s*[\"']([^\"']+)[\"']\s*\)", _I)
    for name in ("loadVideo", "playVideo", "setVideo")
)

_WHITESPACE = " \n\r\t"


class StopReason(str, Enum):
    """Why a candidate stream ended."""

    EXHAUSTED = "exhausted"
    TOTAL_CAP = "total_cap"
    TIMEOUT = "timeout"
    STOPPED = "stopped"


def embed_base_url(page_url: str) -> str:
    """Base for page-relative media paths.

    ``https://h/x/embed/abc`` -> ``https://h/x``; pages without an
    ``/embed/`` segment fall back to their origin.
    """
    if not page_url:
        return ""
    stripped = _EMBED_PATH_RE.sub("", page_url)
    if stripped != page_url:
        return stripped.rstrip("/")
    parts = urlsplit(page_url)
    if not parts.scheme or not parts.netloc:
        return ""
    return f"{parts.scheme}://{parts.netloc}"


def absolutize(pattern_type: PatternType, candidate: str, page_url: str = "") -> str:
    """Turn provider- or page-relative matches into absolute URLs."""
    if candidate.lower().startswith("http"):
        return candidate
    if candidate.startswith("//"):
        return f"https:{candidate}"
    if pattern_type is PatternType.SIBNET_RELATIVE:
        sep = "" if candidate.startswith("/") else "/"
        return f"{SIBNET_ORIGIN}{sep}{candidate}"
    if pattern_type in _PAGE_RELATIVE_TYPES and _MEDIA_HINT_RE.search(candidate):
        base = embed_base_url(page_url)
        if base:
            sep = "" if candidate.startswith("/") else "/"
            return f"{base}{sep}{candidate}"
    return candidate


def _pick(match: re.Match[str]) -> str:
    if match.re.groups and match.group(1):
        return match.group(1)
    return match.group(0)


@dataclass
class ScanState:
    """Counters and seen-set shared by the deep pass and the chunk scan."""

    policy: UrlPolicy
    max_per_type: int
    max_total: int
    seen: set[str] = field(default_factory=set)
    counts: Counter[PatternType] = field(default_factory=Counter)
    total: int = 0
    rejected: int = 0

    @property
    def total_reached(self) -> bool:
        return self.total >= self.max_total

    def type_full(self, pattern_type: PatternType) -> bool:
        return self.counts[pattern_type] >= self.max_per_type

    def offer(self, pattern_type: PatternType, raw: str) -> ExtractionCandidate | None:
        if self.total_reached or self.type_full(pattern_type):
            return None
        clean = strip_quotes(raw.strip())
        if not clean or clean in self.seen:
            return None
        self.seen.add(clean)

        try:
            url = self.policy.validate(clean)
        except ValidationError as exc:
            self.rejected += 1
            log.debug(
                "candidate_rejected",
                pattern=pattern_type.value,
                url=clean[:200],
                reason=str(exc),
            )
            return None

        self.counts[pattern_type] += 1
        self.total += 1
        return ExtractionCandidate(
            pattern_type=pattern_type,
            raw_url=url,
            quality=parse_quality(url),
        )


class CandidateStream:
    """Lazy, finite, non-restartable sequence of extraction candidates.

    Each :meth:`next_batch` call scans one chunk of the text. The stream
    ends on its own when the text is exhausted, the global cap is reached
    or the deadline passes; :meth:`stop` ends it early from outside.
    Iterating yields candidates one by one.
    """

    def __init__(
        self,
        text: str,
        matchers: Sequence[Matcher],
        state: ScanState,
        *,
        chunk_size: int,
        page_url: str = "",
        deadline: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._text = text
        self._matchers = matchers
        self._state = state
        self._chunk_size = chunk_size
        self._page_url = page_url
        self._deadline = deadline
        self._clock = clock
        self._pos = 0
        self._buffer: deque[ExtractionCandidate] = deque()
        self.chunks_scanned = 0
        self.stop_reason: StopReason | None = None

    @property
    def done(self) -> bool:
        return self.stop_reason is not None

    def stop(self) -> None:
        """End the stream now. Buffered candidates are discarded."""
        self._buffer.clear()
        self._finish(StopReason.STOPPED)

    def _finish(self, reason: StopReason) -> None:
        if self.stop_reason is None:
            self.stop_reason = reason

    def _next_chunk(self) -> str | None:
        length = len(self._text)
        if self._pos >= length:
            return None
        end = self._pos + self._chunk_size
        if end < length:
            # Break on whitespace so a URL is not split across chunks.
            cut = max(self._text.rfind(ch, self._pos + 1, end) for ch in _WHITESPACE)
            if cut > self._pos:
                end = cut + 1
        chunk = self._text[self._pos : end]
        self._pos = end
        return chunk

    def _scan(self, chunk: str) -> list[ExtractionCandidate]:
        state = self._state
        batch: list[ExtractionCandidate] = []
        for matcher in self._matchers:
            if state.total_reached:
                break
            if state.type_full(matcher.pattern_type):
                continue
            try:
                for match in matcher.regex.finditer(chunk):
                    raw = absolutize(matcher.pattern_type, _pick(match), self._page_url)
                    candidate = state.offer(matcher.pattern_type, raw)
                    if candidate is not None:
                        batch.append(candidate)
                    if state.total_reached or state.type_full(matcher.pattern_type):
                        break
            except Exception as exc:  # noqa: BLE001
                log.warning(
                    "extraction_pattern_failed",
                    pattern=matcher.pattern_type.value,
                    error=str(exc),
                )
        return batch

    def next_batch(self) -> list[ExtractionCandidate]:
        """Scan the next chunk. Returns ``[]`` once the stream is done."""
        if self.done:
            return []
        if self._state.total_reached:
            self._finish(StopReason.TOTAL_CAP)
            return []
        if self._deadline is not None and self._clock() > self._deadline:
            log.warning("extraction_timeout", chunks_scanned=self.chunks_scanned)
            self._finish(StopReason.TIMEOUT)
            return []

        chunk = self._next_chunk()
        if chunk is None:
            self._finish(StopReason.EXHAUSTED)
            return []

        self.chunks_scanned += 1
        batch = self._scan(chunk)
        if self._state.total_reached:
            self._finish(StopReason.TOTAL_CAP)
        return batch

    def __iter__(self) -> Iterator[ExtractionCandidate]:
        return self

    def __next__(self) -> ExtractionCandidate:
        while not self._buffer:
            if self.done:
                raise StopIteration
            self._buffer.extend(self.next_batch())
        return self._buffer.popleft()


@dataclass
class ExtractionReport:
    """Outcome of one extraction run."""

    candidates: list[ExtractionCandidate]
    stop_reason: StopReason
    packer_blocks: int = 0
    truncated: bool = False
    chunks_scanned: int = 0
    rejected: int = 0
    counts: dict[str, int] = field(default_factory=dict)

    def to_debug_dict(self) -> dict[str, Any]:
        return {
            "packerBlocks": self.packer_blocks,
            "truncated": self.truncated,
            "chunksScanned": self.chunks_scanned,
            "rejected": self.rejected,
            "candidates": dict(self.counts),
            "stopReason": self.stop_reason.value,
        }


def _decode_base64_token(token: str) -> str | None:
    padded = token + "=" * (-len(token) % 4)
    try:
        return base64.b64decode(padded).decode("utf-8", errors="ignore")
    except (binascii.Error, ValueError):
        return None


def _has_media_ext(value: str) -> bool:
    return ".m3u8" in value or ".mp4" in value


class ExtractionEngine:
    """Runs truncation, deobfuscation, deep pass and chunk scan."""

    def __init__(
        self,
        config: ResolverConfig,
        *,
        policy: UrlPolicy | None = None,
        matchers: Sequence[Matcher] = VIDEO_URL_MATCHERS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._config = config
        self._policy = policy or UrlPolicy.from_lists(
            allowed_ports=config.allowed_ports,
            blocked_hosts=config.blocked_hosts,
            max_length=config.max_url_length,
        )
        self._matchers = tuple(matchers)
        self._clock = clock

    @property
    def policy(self) -> UrlPolicy:
        return self._policy

    @property
    def config(self) -> ResolverConfig:
        return self._config

    def _new_state(self) -> ScanState:
        return ScanState(
            policy=self._policy,
            max_per_type=self._config.max_urls_per_type,
            max_total=self._config.max_total_urls,
        )

    def candidate_stream(
        self,
        text: str,
        page_url: str = "",
        *,
        deadline: float | None = None,
        state: ScanState | None = None,
    ) -> CandidateStream:
        """Stream over already-prepared text (no truncation or unpacking)."""
        return CandidateStream(
            text,
            self._matchers,
            state or self._new_state(),
            chunk_size=self._config.chunk_size,
            page_url=page_url,
            deadline=deadline,
            clock=self._clock,
        )

    def deep_pass(
        self, text: str, state: ScanState, deadline: float | None = None
    ) -> list[ExtractionCandidate]:
        """VidMoly-style analysis: base64 tokens, player vars, loader calls."""
        found: list[ExtractionCandidate] = []

        def _offer(pattern_type: PatternType, raw: str) -> None:
            candidate = state.offer(pattern_type, raw)
            if candidate is not None:
                found.append(candidate)

        for match in _BASE64_TOKEN_RE.finditer(text):
            if state.total_reached or state.type_full(PatternType.VIDMOLY_DECODED):
                break
            if deadline is not None and self._clock() > deadline:
                log.warning("deep_pass_timeout")
                return found
            decoded = _decode_base64_token(match.group(0))
            if not decoded or not _has_media_ext(decoded):
                continue
            for url in _MEDIA_URL_RE.findall(decoded):
                _offer(PatternType.VIDMOLY_DECODED, url)

        for pattern_type, regexes in (
            (PatternType.VIDMOLY_JS_VAR, _JS_VAR_RES),
            (PatternType.VIDMOLY_FUNCTION, _JS_CALL_RES),
        ):
            for regex in regexes:
                for match in regex.finditer(text):
                    if state.total_reached or state.type_full(pattern_type):
                        break
                    url = match.group(1)
                    if _has_media_ext(url):
                        _offer(pattern_type, url)

        if found:
            log.debug("deep_pass_found", count=len(found))
        return found

    async def extract(self, html: str, page_url: str = "") -> ExtractionReport:
        """Extract up to ``max_total_urls`` validated candidates from *html*."""
        deadline = self._clock() + self._config.processing_timeout_seconds

        truncated = len(html) > self._config.max_html_size
        if truncated:
            log.warning(
                "html_truncated", size=len(html), limit=self._config.max_html_size
            )
            html = html[: self._config.max_html_size]
        if not html:
            log.warning("html_empty", page_url=page_url)
            return ExtractionReport(candidates=[], stop_reason=StopReason.EXHAUSTED)

        text, packer_blocks = deobfuscate(
            html, deadline=deadline, clock=self._clock
        )
        state = self._new_state()
        candidates: list[ExtractionCandidate] = []

        if _DEEP_PASS_TRIGGER_RE.search(text):
            candidates.extend(self.deep_pass(text, state, deadline))

        stream = self.candidate_stream(text, page_url, deadline=deadline, state=state)
        while not stream.done:
            candidates.extend(stream.next_batch())
            # Let other requests run between chunks.
            await asyncio.sleep(0)

        report = ExtractionReport(
            candidates=candidates,
            stop_reason=stream.stop_reason or StopReason.EXHAUSTED,
            packer_blocks=packer_blocks,
            truncated=truncated,
            chunks_scanned=stream.chunks_scanned,
            rejected=state.rejected,
            counts={t.value: n for t, n in state.counts.items()},
        )
        log.debug(
            "extraction_finished",
            page_url=page_url,
            candidates=len(candidates),
            stop_reason=report.stop_reason.value,
            packer_blocks=packer_blocks,
        )
        return report
