from __future__ import annotations

import asyncio
import json
from typing import AsyncIterator

from medsummary.relay.chunks import CompletedChunk, ContentChunk, SummaryChunk

from .base import SummaryProvider, SummaryProviderError


class MockSummaryProvider(SummaryProvider):
    """Scripted provider: one progress line, then a structured JSON summary."""

    def __init__(self, *, fail: bool = False, delay_seconds: float = 0.0) -> None:
        self._fail = fail
        self._delay_seconds = max(0.0, float(delay_seconds))

    async def stream_summary(
        self, source_text: str, doctor_id: str, patient_id: str
    ) -> AsyncIterator[SummaryChunk]:
        if self._fail:
            raise SummaryProviderError(
                "UPSTREAM_INJECTED_FAIL", "(mock) injected upstream failure", self.name()
            )
        yield ContentChunk(text=f"(mock) summarizing transcript of {len(source_text)} characters\n")
        await asyncio.sleep(self._delay_seconds)
        payload = {
            "properties": {
                "doctor_id": doctor_id,
                "patient_id": patient_id,
                "symptom_details": "(mock) see transcript",
                "vital_signs": "(mock) not recorded",
                "past_medical_history": "(mock) not recorded",
                "current_medications": "(mock) not recorded",
            }
        }
        yield ContentChunk(text=json.dumps(payload, ensure_ascii=False, indent=2))
        yield CompletedChunk()

    def name(self) -> str:
        return "mock"
