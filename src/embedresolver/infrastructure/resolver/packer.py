"""Dean Edwards packer detection and unpacking.

Format: ``eval(function(p,a,c,k,e,d){...}('payload',radix,count,'dict'.split('|')))``

The packer replaces every word of the payload with a radix-encoded index
into the ``|``-separated dictionary. Unpacking reverses that mapping.
Decoded payloads are appended after the original document so both forms
stay available for extraction.
"""

from __future__ import annotations

import re
import time
from collections.abc import Callable
from dataclasses import dataclass

import structlog

log = structlog.get_logger(__name__)

# Packer alphabet: 0-9, a-z for digits < 36, then A-Z (chr(c + 29)) up to 62.
_ALPHABET = "0123456789abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ"
_MAX_RADIX = len(_ALPHABET)

_EVAL_START_RE = re.compile(
    r"eval\s*\(\s*function\s*\(\s*p\s*,\s*a\s*,\s*c\s*,\s*k\s*,\s*e\s*,\s*[dr]\s*\)"
)
_ARGS_RE = re.compile(
    r"}\s*\(\s*'((?:[^'\\]|\\.)*)'\s*,\s*(\d+)\s*,\s*(\d+)\s*,"
    r"\s*'([^']*)'\s*\.split\(\s*'\|'\s*\)",
    re.DOTALL,
)
_WORD_RE = re.compile(r"\b\w+\b", re.ASCII)


@dataclass(frozen=True)
class PackedBlock:
    """Parsed arguments of one packer call."""

    payload: str
    radix: int
    count: int
    keywords: list[str]


class PackerError(ValueError):
    """Raised when a packer block cannot be parsed."""


def encode_radix(num: int, radix: int) -> str:
    """Encode *num* the way the packer's ``e(c)`` does."""
    if not 2 <= radix <= _MAX_RADIX:
        raise PackerError(f"unsupported radix {radix}")
    if num < radix:
        return _ALPHABET[num]
    return encode_radix(num // radix, radix) + _ALPHABET[num % radix]


def parse_block(packed: str) -> PackedBlock:
    """Parse payload, radix, count and dictionary from a packer call."""
    match = _ARGS_RE.search(packed)
    if not match:
        raise PackerError("packer arguments not found")

    radix = int(match.group(2))
    count = int(match.group(3))
    if not 2 <= radix <= _MAX_RADIX:
        raise PackerError(f"unsupported radix {radix}")

    keywords = match.group(4).split("|")
    if len(keywords) < count:
        keywords.extend([""] * (count - len(keywords)))

    return PackedBlock(
        payload=match.group(1),
        radix=radix,
        count=count,
        keywords=keywords,
    )


def unpack(block: PackedBlock) -> str:
    """Substitute dictionary words for their radix-encoded tokens.

    The token table is built from ``count - 1`` down to ``0``, skipping
    empty dictionary entries. Substitution is whole-word and single-pass:
    a word that was already substituted is never looked up again.
    """
    table: dict[str, str] = {}
    for index in range(block.count - 1, -1, -1):
        word = block.keywords[index]
        if word:
            table[encode_radix(index, block.radix)] = word

    def _replace(m: re.Match[str]) -> str:
        token = m.group(0)
        return table.get(token, token)

    decoded = _WORD_RE.sub(_replace, block.payload)
    # Payloads keep JS string escapes; normalise quotes for the matchers.
    return decoded.replace("\\'", "'").replace('\\"', '"')


def unpack_packed_js(packed: str) -> str | None:
    """Unpack a single packer call. Returns ``None`` when not parseable."""
    try:
        return unpack(parse_block(packed))
    except PackerError:
        return None


def find_packed_blocks(html: str) -> list[str]:
    """Return the source of every packer call in *html*.

    Each block runs from its ``eval(function(p,a,c,k,e,d)`` up to the next
    one (or the end of the document), so blocks never overlap.
    """
    starts = [m.start() for m in _EVAL_START_RE.finditer(html)]
    ends = starts[1:] + [len(html)]
    return [html[start:end] for start, end in zip(starts, ends)]


def deobfuscate(
    html: str,
    *,
    deadline: float | None = None,
    clock: Callable[[], float] = time.monotonic,
) -> tuple[str, int]:
    """Append the decoded payload of every packer block to *html*.

    Returns ``(working_text, decoded_block_count)``. Blocks that fail to
    parse are logged and skipped. Once *deadline* (on *clock*) has passed,
    the remaining blocks are left encoded.
    """
    decoded_parts: list[str] = []
    for index, chunk in enumerate(find_packed_blocks(html)):
        if deadline is not None and clock() > deadline:
            log.warning("packer_deadline_reached", block=index)
            break
        try:
            block = parse_block(chunk)
            decoded = unpack(block)
        except (PackerError, IndexError, RecursionError) as exc:
            log.warning("packer_decode_failed", block=index, error=str(exc))
            continue
        log.debug(
            "packer_block_decoded",
            block=index,
            radix=block.radix,
            count=block.count,
            decoded_length=len(decoded),
        )
        decoded_parts.append(decoded)

    if not decoded_parts:
        return html, 0
    return html + "\n" + "\n".join(decoded_parts), len(decoded_parts)
