"""Domain entities for embed page resolution.

Pure value objects without framework dependencies or I/O.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class PatternType(str, Enum):
    """Matcher that produced an extraction candidate (most → least specific)."""

    DIRECT = "direct"
    VIDEO = "video"
    QUOTED = "quoted"
    JAVASCRIPT = "javascript"
    JWPLAYER = "jwplayer"
    JWPLAYER_SOURCES = "jwplayer_sources"
    OBFUSCATED_CONFIG = "obfuscated_config"
    QUOTED_VIDEO = "quoted_video"
    API = "api"
    CDN = "cdn"
    VIDMOLY = "vidmoly"
    SIBNET_RELATIVE = "sibnet_relative"
    # Provider deep pass
    VIDMOLY_DECODED = "vidmoly_decoded"
    VIDMOLY_JS_VAR = "vidmoly_js_var"
    VIDMOLY_FUNCTION = "vidmoly_function"


class SourceType(str, Enum):
    """Playback format derived from the URL."""

    HLS = "hls"
    MP4 = "mp4"
    WEBM = "webm"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class ResolutionRequest:
    """One resolve call (ephemeral)."""

    target_url: str
    referer: str | None = None
    debug: bool = False


@dataclass(frozen=True)
class ExtractionCandidate:
    """A validated URL found in an embed page, tagged with its matcher."""

    pattern_type: PatternType
    raw_url: str
    quality: str | None = None


@dataclass(frozen=True)
class ProviderInfo:
    """Static reliability info for a hosting provider."""

    hostname: str
    reliability: int
    description: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "hostname": self.hostname,
            "reliability": self.reliability,
            "description": self.description,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ProviderInfo:
        return cls(
            hostname=data["hostname"],
            reliability=int(data["reliability"]),
            description=data.get("description", ""),
        )


@dataclass(frozen=True)
class ValidatedSource:
    """A playable source that passed the URL policy.

    ``url`` is unique within one ``ResolutionResult``.
    """

    type: SourceType
    url: str
    direct_url: str
    proxied_url: str
    quality: str | None = None
    provider: ProviderInfo | None = None

    @property
    def reliability(self) -> int:
        return self.provider.reliability if self.provider else 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type.value,
            "url": self.url,
            "directUrl": self.direct_url,
            "proxiedUrl": self.proxied_url,
            "quality": self.quality,
            "provider": self.provider.to_dict() if self.provider else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ValidatedSource:
        provider = data.get("provider")
        return cls(
            type=SourceType(data.get("type", "unknown")),
            url=data["url"],
            direct_url=data.get("directUrl", data["url"]),
            proxied_url=data.get("proxiedUrl", ""),
            quality=data.get("quality"),
            provider=ProviderInfo.from_dict(provider) if provider else None,
        )


@dataclass(frozen=True)
class ResolutionResult:
    """Externally visible outcome of a resolve call. Never raised."""

    ok: bool
    urls: list[ValidatedSource] = field(default_factory=list)
    message: str = ""

    @property
    def is_cacheable(self) -> bool:
        return self.ok and bool(self.urls)

    @classmethod
    def failure(cls, message: str) -> ResolutionResult:
        return cls(ok=False, urls=[], message=message)

    def to_dict(self) -> dict[str, Any]:
        return {
            "ok": self.ok,
            "urls": [s.to_dict() for s in self.urls],
            "message": self.message,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ResolutionResult:
        return cls(
            ok=bool(data["ok"]),
            urls=[ValidatedSource.from_dict(u) for u in data.get("urls", [])],
            message=data.get("message", ""),
        )


@dataclass(frozen=True)
class CacheEntry:
    """A cached result with its absolute expiry (epoch seconds)."""

    key: str
    payload: ResolutionResult
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at
