"""Embed page resolution engine."""

from .assembler import ResponseAssembler, detect_source_type
from .attempts import AttemptOutcome, AttemptPolicy, merge_results
from .extraction import CandidateStream, ExtractionEngine, ExtractionReport, StopReason
from .inflight import InFlightRegistry
from .page_fetcher import HttpxPageFetcher
from .providers import DEFAULT_PROVIDER_RULES, ProviderRanker, parse_quality
from .url_codec import build_cache_key, decode_base64url, encode_base64url
from .url_policy import UrlPolicy, is_valid_url, validate_url

__all__ = [
    "DEFAULT_PROVIDER_RULES",
    "AttemptOutcome",
    "AttemptPolicy",
    "CandidateStream",
    "ExtractionEngine",
    "ExtractionReport",
    "HttpxPageFetcher",
    "InFlightRegistry",
    "ProviderRanker",
    "ResponseAssembler",
    "StopReason",
    "UrlPolicy",
    "build_cache_key",
    "decode_base64url",
    "detect_source_type",
    "encode_base64url",
    "is_valid_url",
    "merge_results",
    "parse_quality",
    "validate_url",
]
