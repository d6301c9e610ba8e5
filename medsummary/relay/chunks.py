from __future__ import annotations

"""
Summary chunk contracts shared by producers and the stream translator.

Design intent:
- Producers speak a small tagged union instead of magic strings.
- Legacy sentinel strings are parsed once at the boundary.
"""

from dataclasses import dataclass
from typing import Union

COMPLETED_SENTINEL = "[COMPLETED]"
ERROR_PREFIX = "[ERROR]"


@dataclass(frozen=True)
class ContentChunk:
    text: str


@dataclass(frozen=True)
class CompletedChunk:
    pass


@dataclass(frozen=True)
class FailedChunk:
    message: str


SummaryChunk = Union[ContentChunk, CompletedChunk, FailedChunk]
RawChunk = Union[str, ContentChunk, CompletedChunk, FailedChunk]


def parse_raw_chunk(raw: RawChunk) -> SummaryChunk:
    """Map a legacy sentinel string onto the typed union; typed chunks pass through."""
    if not isinstance(raw, str):
        return raw
    if raw == COMPLETED_SENTINEL:
        return CompletedChunk()
    if raw.startswith(ERROR_PREFIX):
        return FailedChunk(message=raw[len(ERROR_PREFIX):])
    return ContentChunk(text=raw)


def is_terminal_chunk(chunk: SummaryChunk) -> bool:
    return isinstance(chunk, (CompletedChunk, FailedChunk))
