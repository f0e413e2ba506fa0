"""Pydantic configuration models with validation."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Literal, Optional

from pydantic import (
    AliasChoices,
    AliasPath,
    BaseModel,
    Field,
    field_validator,
    model_validator,
)
from pydantic_settings import BaseSettings, SettingsConfigDict

from .defaults import DEFAULT_PROVIDERS

Environment = Literal["dev", "test", "prod"]
LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR"]
LogFormat = Literal["json", "console"]
CacheBackendName = Literal["memory", "diskcache", "redis"]

DEFAULT_BROWSER_UA = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)


def _normalize_path(value: Any) -> Path:
    """
    Normalize a path-like value without causing filesystem side-effects.

    This function MUST NOT create directories or files.
    """
    if isinstance(value, Path):
        return value.expanduser()
    if isinstance(value, str):
        return Path(value).expanduser()
    raise TypeError(f"Expected path-like value, got: {type(value)!r}")


class CacheConfig(BaseSettings):
    """Cache configuration (backend-agnostic)."""

    backend: CacheBackendName = Field(
        default="memory",
        description="Cache backend: 'memory', 'diskcache' (SQLite) or 'redis'",
    )

    directory: Path = Field(
        default=Path("./.cache/embedresolver"),
        description="Diskcache SQLite DB path",
    )

    redis_url: str = Field(
        default="redis://localhost:6379/0",
        description="Redis connection URL (only when backend=redis)",
    )

    ttl_seconds: int = Field(
        default=600,
        description="Default TTL for cache entries (seconds)",
    )
    max_concurrent: int = Field(
        default=10,
        description="Max parallel cache ops (semaphore limit)",
    )

    model_config = SettingsConfigDict(
        env_prefix="CACHE_",  # Env vars: CACHE_BACKEND, CACHE_REDIS_URL, ...
        case_sensitive=False,
    )

    @field_validator("directory", mode="before")
    @classmethod
    def _validate_directory(cls, v: Any) -> Path:
        return _normalize_path(v)


class ProviderRule(BaseModel):
    """One row of the provider reliability table (substring match)."""

    match: str
    reliability: int
    description: str = ""


class ResolverConfig(BaseModel):
    """Budgets and policy for the resolution engine.

    All values configurable via YAML (resolver section).
    """

    fetch_timeout_seconds: float = Field(
        default=3.0,
        description="Hard deadline for one embed page fetch (incl. body read).",
    )
    processing_timeout_seconds: float = Field(
        default=3.0,
        description="Wall-clock budget for the whole extraction phase.",
    )
    max_html_size: int = Field(
        default=2 * 1024 * 1024,
        description="Documents are truncated to this many characters.",
    )
    chunk_size: int = Field(
        default=8192,
        description="Extraction chunk size (characters).",
    )
    max_urls_per_type: int = Field(
        default=5,
        description="Cap per pattern category.",
    )
    max_total_urls: int = Field(
        default=10,
        description="Global cap; the scan stops once reached.",
    )
    max_url_length: int = Field(default=2048)
    allowed_ports: list[int] = Field(default=[80, 443, 8080, 8443])
    blocked_hosts: list[str] = Field(
        default=["localhost", "127.0.0.1", "0.0.0.0", "::1"],
    )
    max_redirects: int = Field(
        default=5,
        description="Redirect hops followed (each hop re-validated).",
    )
    verify_tls: bool = Field(
        default=False,
        description="Verify upstream TLS certificates.",
    )
    resolve_dns: bool = Field(
        default=True,
        description="Resolve target hostnames and refuse internal addresses.",
    )
    block_private_networks: bool = Field(
        default=True,
        description="Also refuse private/link-local addresses after DNS lookup.",
    )
    user_agent: str = Field(default=DEFAULT_BROWSER_UA)
    proxy_endpoint: str = Field(
        default="/api/proxy",
        description="Relay endpoint used to build proxiedUrl.",
    )
    cache_ttl_seconds: int = Field(
        default=600,
        description="TTL for successful resolutions (seconds).",
    )

    # Candidate escalation (parallel → sequential)
    parallel_concurrency: int = Field(default=3)
    parallel_timeout_seconds: float = Field(default=3.0)
    sequential_timeout_seconds: float = Field(default=8.0)
    max_attempts: int = Field(
        default=8,
        description="Total candidate attempts across both phases.",
    )
    enrich_window_seconds: float = Field(
        default=0.25,
        description="Grace period to merge sibling results after first success.",
    )

    providers: list[ProviderRule] = Field(
        default_factory=lambda: [ProviderRule(**row) for row in DEFAULT_PROVIDERS],
        description="Ordered provider table. Empty = built-in defaults.",
    )

    @field_validator(
        "fetch_timeout_seconds",
        "processing_timeout_seconds",
        "parallel_timeout_seconds",
        "sequential_timeout_seconds",
    )
    @classmethod
    def _validate_timeouts(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("timeouts must be > 0")
        return v

    @field_validator(
        "max_html_size",
        "chunk_size",
        "max_urls_per_type",
        "max_total_urls",
        "parallel_concurrency",
        "max_attempts",
    )
    @classmethod
    def _validate_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("must be >= 1")
        return v

    @field_validator("blocked_hosts")
    @classmethod
    def _lowercase_hosts(cls, v: list[str]) -> list[str]:
        return [h.lower() for h in v]


class AppConfig(BaseModel):
    """
    Canonical application configuration (validated, final).

    Note:
    - YAML is expected to be sectioned (http/logging/cache/resolver/api).
    - Environment variables are handled by EnvOverrides(BaseSettings) to allow strict
      precedence control (defaults < YAML < ENV < CLI) in load.py.
    """

    app_name: str = Field(default="embedresolver", description="Application name.")
    environment: Environment = Field(
        default="dev",
        description="Runtime environment (affects defaults like log format).",
    )

    # HTTP client (YAML section: http.*)
    http_max_connections: int = Field(
        default=10,
        validation_alias=AliasChoices(
            "http_max_connections",
            AliasPath("http", "max_connections"),
        ),
        description="Connection pool size toward upstream hosts.",
    )
    http_max_keepalive: int = Field(
        default=5,
        validation_alias=AliasChoices(
            "http_max_keepalive",
            AliasPath("http", "max_keepalive"),
        ),
        description="Idle keep-alive connections kept in the pool.",
    )

    # API (YAML section: api.*)
    api_rate_limit_rpm: int = Field(
        default=120,
        validation_alias=AliasChoices(
            "api_rate_limit_rpm",
            AliasPath("api", "rate_limit_rpm"),
        ),
        description="Per-IP requests per minute. 0 = unlimited.",
    )

    # Logging (YAML section: logging.*)
    log_level: LogLevel = Field(
        default="INFO",
        validation_alias=AliasChoices(
            "log_level",
            AliasPath("logging", "level"),
        ),
        description="Log level.",
    )
    log_format: Optional[LogFormat] = Field(
        default=None,
        validation_alias=AliasChoices(
            "log_format",
            AliasPath("logging", "format"),
        ),
        description=(
            "Log renderer format (console/json). If unset, derived from environment."
        ),
    )

    resolver: ResolverConfig = Field(default_factory=ResolverConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)

    @field_validator("api_rate_limit_rpm")
    @classmethod
    def _validate_rpm(cls, v: int) -> int:
        if v < 0:
            raise ValueError("api_rate_limit_rpm must be >= 0")
        return v

    @model_validator(mode="after")
    def _derive_defaults(self) -> "AppConfig":
        # Default log format: console in dev/test, json in prod.
        if self.log_format is None:
            self.log_format = "json" if self.environment == "prod" else "console"
        return self

    def to_sectioned_dict(self) -> dict[str, Any]:
        """
        Dump configuration in the sectioned shape used by config.yaml/docs.
        """
        return {
            "app_name": self.app_name,
            "environment": self.environment,
            "http": {
                "max_connections": self.http_max_connections,
                "max_keepalive": self.http_max_keepalive,
            },
            "api": {"rate_limit_rpm": self.api_rate_limit_rpm},
            "logging": {"level": self.log_level, "format": self.log_format},
            "cache": {
                "backend": self.cache.backend,
                "directory": str(self.cache.directory),
                "redis_url": self.cache.redis_url,
                "ttl_seconds": self.cache.ttl_seconds,
                "max_concurrent": self.cache.max_concurrent,
            },
            "resolver": self.resolver.model_dump(),
        }


class EnvOverrides(BaseSettings):
    """
    Environment-variable overrides (all optional).

    Supported env var examples (flat, explicit):
    - EMBEDRESOLVER_ENVIRONMENT
    - EMBEDRESOLVER_LOG_LEVEL
    - EMBEDRESOLVER_FETCH_TIMEOUT_SECONDS
    - EMBEDRESOLVER_PROXY_ENDPOINT
    """

    model_config = SettingsConfigDict(
        env_prefix="EMBEDRESOLVER_",
        extra="ignore",
        case_sensitive=False,
    )

    app_name: Optional[str] = None
    environment: Optional[Environment] = None

    http_max_connections: Optional[int] = None
    api_rate_limit_rpm: Optional[int] = None

    log_level: Optional[LogLevel] = None
    log_format: Optional[LogFormat] = None

    fetch_timeout_seconds: Optional[float] = None
    processing_timeout_seconds: Optional[float] = None
    verify_tls: Optional[bool] = None
    proxy_endpoint: Optional[str] = None
    cache_ttl_seconds: Optional[int] = None

    def to_update_dict(self) -> dict[str, Any]:
        """
        Return only values that were actually provided (non-None), for merging.
        """
        return self.model_dump(exclude_none=True)
