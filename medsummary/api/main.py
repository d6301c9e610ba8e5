from __future__ import annotations

"""
HTTP surface for the medsummary backend.

Design intent:
- Keep API orchestration thin and typed.
- Delegate streaming/fallback behavior to the relay module.
- Return only the three client event kinds on summary streams.
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Literal, Optional
from uuid import uuid4

from fastapi import FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, Field

from medsummary.internal_core import InMemoryRecordStore, RelayConfig, audit, load_config
from medsummary.internal_core.contracts import (
    AuditTrail,
    ClientEvent,
    MedicalSummaryRecord,
    TranscriptRecord,
)
from medsummary.internal_core.providers import build_summary_provider
from medsummary.relay.fallback import FallbackSummaryProducer
from medsummary.relay.supervisor import SummaryRelay


class TranscriptUpsertRequest(BaseModel):
    transcript_text: str = Field(default="", max_length=200_000)
    user_id: str | None = Field(default=None, max_length=128)
    audio_duration_sec: float | None = Field(default=None, ge=0.0)
    audio_format: str | None = Field(default=None, max_length=32)


class TranscriptResponse(BaseModel):
    transcript: TranscriptRecord
    debug: dict[str, Any] = Field(default_factory=dict)


class DeleteRecordsResponse(BaseModel):
    status: Literal["SUCCESS"]
    visit_id: str
    deleted_transcript: bool
    deleted_summary: bool


class MedicalSummaryCreateRequest(BaseModel):
    visit_id: str = Field(min_length=1, max_length=128)
    doctor_id: str = Field(min_length=1, max_length=128)
    patient_id: str = Field(min_length=1, max_length=128)


class SummaryEventPayload(BaseModel):
    event: Literal["message", "completed", "error"]
    content: str | None = None
    message: str | None = None


class MedicalSummaryCreateResponse(BaseModel):
    status: Literal["SUCCESS", "ERROR"]
    message: str
    visit_id: str
    event: SummaryEventPayload


class MedicalSummaryListResponse(BaseModel):
    summaries: list[MedicalSummaryRecord] = Field(default_factory=list)
    debug: dict[str, Any] = Field(default_factory=dict)


logger = logging.getLogger(__name__)


async def _close_summary_relay(target: FastAPI) -> None:
    relay = getattr(target.state, "summary_relay", None)
    if isinstance(relay, SummaryRelay):
        await relay.upstream.aclose()
        delattr(target.state, "summary_relay")
        logger.info("summary relay closed upstream=%s", relay.upstream.name())


@asynccontextmanager
async def _lifespan(target: FastAPI) -> AsyncIterator[None]:
    yield
    await _close_summary_relay(target)


app = FastAPI(title="medsummary backend service", lifespan=_lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

_SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "X-Accel-Buffering": "no",
}


def _get_config() -> RelayConfig:
    existing = getattr(app.state, "relay_config", None)
    if isinstance(existing, RelayConfig):
        return existing
    created = load_config()
    logging.getLogger("medsummary").setLevel(created.SUMMARY_LOG_LEVEL)
    setattr(app.state, "relay_config", created)
    return created


def _get_record_store() -> InMemoryRecordStore:
    existing = getattr(app.state, "record_store", None)
    if isinstance(existing, InMemoryRecordStore):
        return existing
    created = InMemoryRecordStore()
    setattr(app.state, "record_store", created)
    return created


def _get_summary_relay() -> SummaryRelay:
    existing = getattr(app.state, "summary_relay", None)
    if isinstance(existing, SummaryRelay):
        return existing
    cfg = _get_config()
    created = SummaryRelay(
        store=_get_record_store(),
        upstream=build_summary_provider(cfg),
        fallback=FallbackSummaryProducer(
            intro_delay_seconds=cfg.SUMMARY_FALLBACK_INTRO_DELAY_SECONDS,
            line_delay_seconds=cfg.SUMMARY_FALLBACK_LINE_DELAY_SECONDS,
        ),
    )
    logger.info("summary relay ready upstream=%s", created.upstream.name())
    setattr(app.state, "summary_relay", created)
    return created


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _normalize_id(raw: str, field_name: str) -> str:
    normalized = str(raw or "").strip()
    if not normalized:
        raise HTTPException(status_code=400, detail=f"{field_name} is required.")
    if len(normalized) > 128:
        raise HTTPException(status_code=400, detail=f"{field_name} exceeds 128 characters.")
    return normalized


def _event_payload(event: ClientEvent) -> SummaryEventPayload:
    return SummaryEventPayload(event=event.event, content=event.content, message=event.message)


@app.get("/healthz")
async def healthz() -> dict[str, str]:
    return {"status": "ok"}


@app.put("/transcripts/{visit_id}", response_model=TranscriptResponse)
async def upsert_transcript(visit_id: str, payload: TranscriptUpsertRequest) -> TranscriptResponse:
    normalized_visit_id = _normalize_id(visit_id, "visit_id")
    store = _get_record_store()
    now_iso = _utc_now_iso()
    existed = store.find_transcript(normalized_visit_id) is not None
    saved = store.upsert_transcript(
        TranscriptRecord(
            transcript_id=uuid4().hex,
            visit_id=normalized_visit_id,
            transcript_text=payload.transcript_text,
            user_id=payload.user_id,
            audio_duration_sec=payload.audio_duration_sec,
            audio_format=payload.audio_format,
            created_at=now_iso,
            updated_at=now_iso,
        )
    )
    logger.info(
        "transcript upserted visit_id=%s chars=%d existed=%s",
        normalized_visit_id,
        len(payload.transcript_text),
        existed,
    )
    return TranscriptResponse(
        transcript=saved,
        debug={"action": "update" if existed else "create", "chars": len(payload.transcript_text)},
    )


@app.get("/transcripts/{visit_id}", response_model=TranscriptResponse)
async def get_transcript(visit_id: str) -> TranscriptResponse:
    normalized_visit_id = _normalize_id(visit_id, "visit_id")
    record = _get_record_store().find_transcript(normalized_visit_id)
    if record is None:
        raise HTTPException(status_code=404, detail=f"Transcript not found: {normalized_visit_id}")
    return TranscriptResponse(transcript=record, debug={"chars": len(record.transcript_text)})


@app.delete("/transcripts/{visit_id}", response_model=DeleteRecordsResponse)
async def delete_visit_records(visit_id: str) -> DeleteRecordsResponse:
    normalized_visit_id = _normalize_id(visit_id, "visit_id")
    store = _get_record_store()
    deleted_summary = store.delete_summary(normalized_visit_id)
    deleted_transcript = store.delete_transcript(normalized_visit_id)
    if not deleted_summary and not deleted_transcript:
        raise HTTPException(status_code=404, detail=f"No records found for visit_id: {normalized_visit_id}")
    audit.log_event(
        store,
        normalized_visit_id,
        "RECORD_DELETED",
        "RECORD_DELETED",
        f"transcript={deleted_transcript} summary={deleted_summary}",
    )
    return DeleteRecordsResponse(
        status="SUCCESS",
        visit_id=normalized_visit_id,
        deleted_transcript=deleted_transcript,
        deleted_summary=deleted_summary,
    )


@app.post("/medical-summary/generate/{visit_id}")
async def generate_medical_summary(
    visit_id: str,
    doctor_id: str = Query(min_length=1, max_length=128),
    patient_id: str = Query(min_length=1, max_length=128),
) -> StreamingResponse:
    normalized_visit_id = _normalize_id(visit_id, "visit_id")
    relay = _get_summary_relay()
    return StreamingResponse(
        relay.stream_wire(normalized_visit_id, doctor_id.strip(), patient_id.strip()),
        media_type="text/event-stream",
        headers=_SSE_HEADERS,
    )


@app.post("/medical-summary/create", response_model=MedicalSummaryCreateResponse)
async def create_medical_summary(payload: MedicalSummaryCreateRequest) -> Any:
    visit_id = _normalize_id(payload.visit_id, "visit_id")
    relay = _get_summary_relay()
    terminal = await relay.run_to_completion(visit_id, payload.doctor_id.strip(), payload.patient_id.strip())
    if terminal.event == "completed":
        return MedicalSummaryCreateResponse(
            status="SUCCESS",
            message=terminal.message or "",
            visit_id=visit_id,
            event=_event_payload(terminal),
        )
    body = MedicalSummaryCreateResponse(
        status="ERROR",
        message=terminal.message or "Summary generation failed",
        visit_id=visit_id,
        event=_event_payload(terminal),
    )
    return JSONResponse(status_code=400, content=body.model_dump())


@app.get("/medical-summary/visit/{visit_id}", response_model=MedicalSummaryRecord)
async def get_medical_summary(visit_id: str) -> MedicalSummaryRecord:
    normalized_visit_id = _normalize_id(visit_id, "visit_id")
    record = _get_record_store().find_summary(normalized_visit_id)
    if record is None:
        raise HTTPException(status_code=404, detail=f"Medical summary not found: {normalized_visit_id}")
    return record


@app.get("/medical-summary/all", response_model=MedicalSummaryListResponse)
async def list_medical_summaries(
    source: Optional[Literal["upstream", "fallback"]] = Query(default=None),
) -> MedicalSummaryListResponse:
    summaries = _get_record_store().list_summaries()
    if source is not None:
        summaries = [item for item in summaries if item.source == source]
    return MedicalSummaryListResponse(
        summaries=summaries,
        debug={"count": len(summaries), "source_filter": source or ""},
    )


@app.get("/medical-summary/audit/{visit_id}", response_model=AuditTrail)
async def get_summary_audit(visit_id: str) -> AuditTrail:
    normalized_visit_id = _normalize_id(visit_id, "visit_id")
    return AuditTrail(
        visit_id=normalized_visit_id,
        events=_get_record_store().get_audit_events(normalized_visit_id),
    )
