from __future__ import annotations

from abc import ABC, abstractmethod
from typing import AsyncIterator

from medsummary.relay.chunks import SummaryChunk


class SummaryProviderError(RuntimeError):
    def __init__(self, code: str, message: str, provider_name: str):
        super().__init__(message)
        self.code = code
        self.message = message
        self.provider_name = provider_name


class SummaryProvider(ABC):
    @abstractmethod
    def stream_summary(
        self, source_text: str, doctor_id: str, patient_id: str
    ) -> AsyncIterator[SummaryChunk]: ...

    @abstractmethod
    def name(self) -> str: ...

    async def aclose(self) -> None:
        return None
