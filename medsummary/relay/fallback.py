from __future__ import annotations

"""
Local fallback summary producer used when the upstream provider fails.

Design intent:
- Always reach exactly one terminal chunk, whatever happens inside.
- Keep pacing configurable so tests can run with zero delay.
- Never hide cancellation: a disconnected caller abandons the loop.
"""

import asyncio
import logging
from typing import AsyncIterator, Callable, List

from medsummary.internal_core.providers.base import SummaryProvider
from medsummary.relay.chunks import CompletedChunk, ContentChunk, FailedChunk, SummaryChunk

logger = logging.getLogger(__name__)

FALLBACK_INTRO = "Generating medical summary with the fallback method..."
FALLBACK_TITLE = "Medical Summary"
FALLBACK_RULE = "=========="
FALLBACK_COMPLAINT = "Chief complaint: derived from the voice record"
FALLBACK_RECOMMENDATION = "Recommendation: further examination and detailed consultation"


def build_fallback_summary(source_text: str) -> str:
    if source_text is None:
        raise ValueError("source text is required for the fallback summary")
    return (
        f"{FALLBACK_TITLE}\n"
        f"{FALLBACK_RULE}\n"
        f"{FALLBACK_COMPLAINT}\n"
        f"Original record: {source_text}\n"
        "\n"
        f"{FALLBACK_RECOMMENDATION}"
    )


class FallbackSummaryProducer(SummaryProvider):
    def __init__(
        self,
        *,
        intro_delay_seconds: float = 0.5,
        line_delay_seconds: float = 0.1,
        summary_builder: Callable[[str], str] = build_fallback_summary,
    ) -> None:
        self._intro_delay_seconds = max(0.0, float(intro_delay_seconds))
        self._line_delay_seconds = max(0.0, float(line_delay_seconds))
        self._summary_builder = summary_builder

    def name(self) -> str:
        return "fallback"

    async def stream_summary(
        self,
        source_text: str,
        doctor_id: str = "",
        patient_id: str = "",
    ) -> AsyncIterator[SummaryChunk]:
        _ = (doctor_id, patient_id)
        try:
            yield ContentChunk(text=FALLBACK_INTRO)
            await asyncio.sleep(self._intro_delay_seconds)
            lines = self._summary_lines(source_text)
        except Exception as exc:
            logger.exception("fallback summary construction failed")
            yield FailedChunk(message=str(exc) or exc.__class__.__name__)
            return

        for line in lines:
            yield ContentChunk(text=line + "\n")
            await asyncio.sleep(self._line_delay_seconds)
        yield CompletedChunk()

    def _summary_lines(self, source_text: str) -> List[str]:
        return self._summary_builder(source_text).split("\n")
