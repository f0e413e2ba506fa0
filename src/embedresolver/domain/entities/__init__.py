from .resolution import (
    CacheEntry,
    ExtractionCandidate,
    PatternType,
    ProviderInfo,
    ResolutionRequest,
    ResolutionResult,
    SourceType,
    ValidatedSource,
)

__all__ = [
    "CacheEntry",
    "ExtractionCandidate",
    "PatternType",
    "ProviderInfo",
    "ResolutionRequest",
    "ResolutionResult",
    "SourceType",
    "ValidatedSource",
]
