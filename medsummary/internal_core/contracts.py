from __future__ import annotations

from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

ClientEventKind = Literal["message", "completed", "error"]


class ClientEvent(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    event: ClientEventKind
    content: Optional[str] = None
    message: Optional[str] = None
    # When set, content holds compact JSON text and is rendered unescaped.
    structured: bool = False

    @property
    def is_terminal(self) -> bool:
        return self.event in {"completed", "error"}


class TranscriptRecord(BaseModel):
    model_config = ConfigDict(extra="forbid")

    transcript_id: str
    visit_id: str
    transcript_text: str = ""
    user_id: Optional[str] = None
    audio_duration_sec: Optional[float] = None
    audio_format: Optional[str] = None
    created_at: str
    updated_at: str


SummarySource = Literal["upstream", "fallback"]


class MedicalSummaryRecord(BaseModel):
    model_config = ConfigDict(extra="forbid")

    summary_id: str
    visit_id: str
    doctor_id: str
    patient_id: str
    summary_text: str
    source: SummarySource
    created_at: str


AuditEventType = Literal[
    "RELAY_STARTED",
    "PRECONDITION_FAILED",
    "UPSTREAM_FAILED",
    "FALLBACK_STARTED",
    "RELAY_COMPLETED",
    "RELAY_FAILED",
    "SUMMARY_SAVED",
    "RECORD_DELETED",
]


class AuditEvent(BaseModel):
    model_config = ConfigDict(extra="forbid")

    ts_iso: str
    visit_id: str
    type: AuditEventType
    code: str
    detail: str
    duration_ms: Optional[int] = None


class AuditTrail(BaseModel):
    model_config = ConfigDict(extra="forbid")

    visit_id: str
    events: List[AuditEvent] = Field(default_factory=list)
