"""Hosting provider classification and reliability ranking.

Scores come from the ordered provider table (config defaults, overridable
via ``resolver.providers``): the higher the score, the more consistently
the provider served a working stream. The first substring that matches the
hostname wins.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Sequence
from urllib.parse import urlsplit

from embedresolver.domain.entities import ProviderInfo, ValidatedSource
from embedresolver.infrastructure.config.defaults import DEFAULT_PROVIDERS
from embedresolver.infrastructure.config.schema import ProviderRule

_QUALITY_RE = re.compile(r"(\d+p|\d+x\d+|hd|fhd|uhd|4k|8k)", re.IGNORECASE)


DEFAULT_PROVIDER_RULES: tuple[ProviderRule, ...] = tuple(
    ProviderRule(**row) for row in DEFAULT_PROVIDERS
)


class ProviderRanker:
    """Maps hostnames to reliability scores and sorts sources by them."""

    def __init__(self, rules: Iterable[ProviderRule] | None = None) -> None:
        self._rules: tuple[ProviderRule, ...] = (
            tuple(rules) if rules else DEFAULT_PROVIDER_RULES
        )

    @property
    def rules(self) -> Sequence[ProviderRule]:
        return self._rules

    def provider_info(self, url: str) -> ProviderInfo | None:
        """Return provider info for *url*, ``None`` for unknown hosts."""
        try:
            hostname = (urlsplit(url).hostname or "").lower()
        except ValueError:
            return None
        if not hostname:
            return None
        for rule in self._rules:
            if rule.match.lower() in hostname:
                return ProviderInfo(
                    hostname=hostname,
                    reliability=rule.reliability,
                    description=rule.description,
                )
        return None

    def reliability(self, url: str) -> int:
        info = self.provider_info(url)
        return info.reliability if info else 0

    @staticmethod
    def sort(sources: Iterable[ValidatedSource]) -> list[ValidatedSource]:
        """Stable sort, best provider first (ties keep first-seen order)."""
        return sorted(sources, key=lambda s: s.reliability, reverse=True)


def parse_quality(url: str) -> str | None:
    """Extract a resolution/quality marker (``720p``, ``4k``, ``hd``)."""
    m = _QUALITY_RE.search(url)
    return m.group(1).lower() if m else None
