from __future__ import annotations

"""
Relay orchestration: upstream summary stream with a one-shot local fallback.

Design intent:
- Check the transcript precondition before any producer is touched.
- Forward each translated event as soon as it exists.
- Switch to the fallback producer at most once, then terminate exactly once.
"""

import enum
import logging
import time
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Optional
from uuid import uuid4

from medsummary.internal_core import audit
from medsummary.internal_core.contracts import ClientEvent, MedicalSummaryRecord, SummarySource
from medsummary.internal_core.providers.base import SummaryProvider
from medsummary.internal_core.record_store import InMemoryRecordStore
from medsummary.relay.fallback import FallbackSummaryProducer
from medsummary.relay.translator import render_event, translate_events

logger = logging.getLogger(__name__)


class RelayState(str, enum.Enum):
    STREAMING_UPSTREAM = "streaming_upstream"
    STREAMING_FALLBACK = "streaming_fallback"
    TERMINATED = "terminated"


class UpstreamIncompleteError(RuntimeError):
    """Raised when a producer sequence ends without a terminal chunk."""


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _transition(visit_id: str, current: RelayState, target: RelayState) -> RelayState:
    logger.debug("summary relay state visit_id=%s %s -> %s", visit_id, current.value, target.value)
    return target


async def _close_stream(stream: Optional[AsyncIterator[Any]]) -> None:
    aclose = getattr(stream, "aclose", None)
    if aclose is not None:
        await aclose()


class SummaryRelay:
    def __init__(
        self,
        store: InMemoryRecordStore,
        upstream: SummaryProvider,
        fallback: Optional[SummaryProvider] = None,
    ) -> None:
        self._store = store
        self._upstream = upstream
        self._fallback = fallback or FallbackSummaryProducer()

    @property
    def upstream(self) -> SummaryProvider:
        return self._upstream

    async def stream_events(
        self, visit_id: str, doctor_id: str, patient_id: str
    ) -> AsyncIterator[ClientEvent]:
        started = time.perf_counter()
        logger.info(
            "summary relay start visit_id=%s doctor_id=%s patient_id=%s",
            visit_id,
            doctor_id,
            patient_id,
        )

        transcript = self._store.find_transcript(visit_id)
        if transcript is None:
            message = f"No transcript found for visit_id={visit_id}"
            logger.warning("summary relay precondition failed visit_id=%s reason=missing", visit_id)
            audit.log_event(self._store, visit_id, "PRECONDITION_FAILED", "TRANSCRIPT_MISSING", message)
            yield ClientEvent(event="error", message=message)
            return
        source_text = transcript.transcript_text or ""
        if not source_text.strip():
            logger.warning("summary relay precondition failed visit_id=%s reason=empty", visit_id)
            audit.log_event(self._store, visit_id, "PRECONDITION_FAILED", "TRANSCRIPT_EMPTY", "transcript text is empty")
            yield ClientEvent(event="error", message="Transcript text is empty")
            return

        logger.info("summary relay transcript found visit_id=%s chars=%d", visit_id, len(source_text))
        audit.log_event(
            self._store,
            visit_id,
            "RELAY_STARTED",
            "RELAY_START",
            f"upstream={self._upstream.name()} chars={len(source_text)}",
        )

        state = RelayState.STREAMING_UPSTREAM
        source: SummarySource = "upstream"
        delivered: list[str] = []
        terminal: Optional[ClientEvent] = None

        upstream_chunks = None
        try:
            upstream_chunks = self._upstream.stream_summary(source_text, doctor_id, patient_id)
            async for event in translate_events(upstream_chunks):
                if event.event == "message":
                    delivered.append(event.content or "")
                yield event
                if event.is_terminal:
                    terminal = event
                    break
            if terminal is None:
                raise UpstreamIncompleteError("upstream stream ended without a terminal chunk")
        except Exception as exc:
            logger.exception(
                "upstream summary failed visit_id=%s doctor_id=%s patient_id=%s; switching to fallback",
                visit_id,
                doctor_id,
                patient_id,
            )
            audit.log_event(
                self._store,
                visit_id,
                "UPSTREAM_FAILED",
                str(getattr(exc, "code", "") or exc.__class__.__name__),
                str(exc),
            )
            state = _transition(visit_id, state, RelayState.STREAMING_FALLBACK)
            source = "fallback"
            # Already-delivered upstream events stand; the record only keeps fallback text.
            delivered = []
        finally:
            await _close_stream(upstream_chunks)

        if state is RelayState.STREAMING_FALLBACK:
            audit.log_event(self._store, visit_id, "FALLBACK_STARTED", "FALLBACK_START", self._fallback.name())
            fallback_chunks = None
            try:
                fallback_chunks = self._fallback.stream_summary(source_text, doctor_id, patient_id)
                async for event in translate_events(fallback_chunks):
                    if event.event == "message":
                        delivered.append(event.content or "")
                    yield event
                    if event.is_terminal:
                        terminal = event
                        break
            except Exception as exc:
                logger.exception("fallback summary failed visit_id=%s", visit_id)
                terminal = ClientEvent(event="error", message=str(exc) or exc.__class__.__name__)
                yield terminal
            finally:
                await _close_stream(fallback_chunks)
            if terminal is None:
                logger.error("fallback summary ended without a terminal chunk visit_id=%s", visit_id)
                terminal = ClientEvent(event="error", message="Summary stream ended unexpectedly")
                yield terminal

        _transition(visit_id, state, RelayState.TERMINATED)
        duration_ms = int((time.perf_counter() - started) * 1000)
        if terminal.event == "completed":
            self._save_summary(visit_id, doctor_id, patient_id, "".join(delivered), source)
            audit.log_event(
                self._store, visit_id, "RELAY_COMPLETED", "RELAY_DONE", f"source={source}", duration_ms=duration_ms
            )
            logger.info("summary relay completed visit_id=%s source=%s duration_ms=%d", visit_id, source, duration_ms)
        else:
            audit.log_event(
                self._store, visit_id, "RELAY_FAILED", "RELAY_ERROR", terminal.message or "", duration_ms=duration_ms
            )
            logger.error(
                "summary relay failed visit_id=%s source=%s message=%s",
                visit_id,
                source,
                terminal.message,
            )

    async def stream_wire(self, visit_id: str, doctor_id: str, patient_id: str) -> AsyncIterator[str]:
        async for event in self.stream_events(visit_id, doctor_id, patient_id):
            yield render_event(event)

    async def run_to_completion(self, visit_id: str, doctor_id: str, patient_id: str) -> ClientEvent:
        last: Optional[ClientEvent] = None
        async for event in self.stream_events(visit_id, doctor_id, patient_id):
            last = event
        if last is None or not last.is_terminal:
            return ClientEvent(event="error", message="Summary stream ended unexpectedly")
        return last

    def _save_summary(
        self,
        visit_id: str,
        doctor_id: str,
        patient_id: str,
        summary_text: str,
        source: SummarySource,
    ) -> None:
        record = MedicalSummaryRecord(
            summary_id=uuid4().hex,
            visit_id=visit_id,
            doctor_id=doctor_id,
            patient_id=patient_id,
            summary_text=summary_text,
            source=source,
            created_at=_utc_now_iso(),
        )
        self._store.upsert_summary(record)
        audit.log_event(
            self._store,
            visit_id,
            "SUMMARY_SAVED",
            "SUMMARY_SAVED",
            f"summary_id={record.summary_id} source={source} chars={len(summary_text)}",
        )
