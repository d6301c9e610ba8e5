from __future__ import annotations

"""
Translate summary chunks into client-visible server-sent events.

Design intent:
- Keep translation a pure per-chunk map (no buffering, no hidden state).
- Propagate terminal chunks verbatim; never synthesize one here.
- Emit only three event kinds so clients never see raw exception payloads.
"""

import json
from typing import AsyncIterable, AsyncIterator

from medsummary.internal_core.contracts import ClientEvent
from medsummary.relay.chunks import (
    CompletedChunk,
    ContentChunk,
    FailedChunk,
    RawChunk,
    parse_raw_chunk,
)

COMPLETED_MESSAGE = "Medical summary generation completed"
STRUCTURED_MARKER = "properties"


def _compact_structured_text(text: str) -> str:
    return text.replace("\r", "").replace("\n", "").replace("  ", "")


def _as_structured_content(text: str) -> str | None:
    if not text.strip().startswith("{") or STRUCTURED_MARKER not in text:
        return None
    compact = _compact_structured_text(text)
    try:
        json.loads(compact)
    except ValueError:
        # Not embeddable as-is; the caller demotes it to free text.
        return None
    return compact


def classify_chunk(raw: RawChunk) -> ClientEvent:
    chunk = parse_raw_chunk(raw)
    if isinstance(chunk, CompletedChunk):
        return ClientEvent(event="completed", message=COMPLETED_MESSAGE)
    if isinstance(chunk, FailedChunk):
        return ClientEvent(event="error", message=chunk.message)
    if not isinstance(chunk, ContentChunk):
        raise TypeError(f"unsupported summary chunk type: {type(chunk).__name__}")
    structured = _as_structured_content(chunk.text)
    if structured is not None:
        return ClientEvent(event="message", content=structured, structured=True)
    return ClientEvent(event="message", content=chunk.text)


def _json_string(text: str) -> str:
    # Quotes become \" and newlines become \n; non-ASCII stays readable.
    return json.dumps(text, ensure_ascii=False)


def render_event(event: ClientEvent) -> str:
    if event.event == "message":
        content = event.content or ""
        body = content if event.structured else _json_string(content)
        return f'data: {{"event": "message", "content": {body}}}\n\n'
    return f'data: {{"event": {_json_string(event.event)}, "message": {_json_string(event.message or "")}}}\n\n'


def translate_chunk(raw: RawChunk) -> str:
    return render_event(classify_chunk(raw))


async def translate_events(chunks: AsyncIterable[RawChunk]) -> AsyncIterator[ClientEvent]:
    async for chunk in chunks:
        yield classify_chunk(chunk)


async def translate_stream(chunks: AsyncIterable[RawChunk]) -> AsyncIterator[str]:
    async for chunk in chunks:
        yield translate_chunk(chunk)
