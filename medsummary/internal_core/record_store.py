from __future__ import annotations

from threading import RLock
from typing import Dict, List, Optional

from .contracts import AuditEvent, MedicalSummaryRecord, TranscriptRecord


class InMemoryRecordStore:
    """Visit-keyed storage for transcripts, generated summaries and audit events.

    Records are returned as copies so callers can never mutate stored state
    outside the lock.
    """

    def __init__(self, max_audit_events_per_visit: int = 200):
        self._max_audit_events = max_audit_events_per_visit
        self._lock = RLock()
        self._transcripts: Dict[str, TranscriptRecord] = {}
        self._summaries: Dict[str, MedicalSummaryRecord] = {}
        self._audit_events: Dict[str, List[AuditEvent]] = {}

    def find_transcript(self, visit_id: str) -> Optional[TranscriptRecord]:
        with self._lock:
            record = self._transcripts.get(visit_id)
            return record.model_copy() if record is not None else None

    def upsert_transcript(self, record: TranscriptRecord) -> TranscriptRecord:
        with self._lock:
            existing = self._transcripts.get(record.visit_id)
            if existing is not None:
                # Keep identity and creation time stable across updates.
                record = record.model_copy(
                    update={
                        "transcript_id": existing.transcript_id,
                        "created_at": existing.created_at,
                    }
                )
            self._transcripts[record.visit_id] = record
            return record.model_copy()

    def delete_transcript(self, visit_id: str) -> bool:
        with self._lock:
            return self._transcripts.pop(visit_id, None) is not None

    def list_transcripts(self) -> List[TranscriptRecord]:
        with self._lock:
            return [item.model_copy() for item in self._transcripts.values()]

    def find_summary(self, visit_id: str) -> Optional[MedicalSummaryRecord]:
        with self._lock:
            record = self._summaries.get(visit_id)
            return record.model_copy() if record is not None else None

    def upsert_summary(self, record: MedicalSummaryRecord) -> MedicalSummaryRecord:
        with self._lock:
            self._summaries[record.visit_id] = record
            return record.model_copy()

    def delete_summary(self, visit_id: str) -> bool:
        with self._lock:
            return self._summaries.pop(visit_id, None) is not None

    def list_summaries(self) -> List[MedicalSummaryRecord]:
        with self._lock:
            return sorted(
                (item.model_copy() for item in self._summaries.values()),
                key=lambda item: item.created_at,
            )

    def append_audit_event(self, visit_id: str, event: AuditEvent) -> None:
        with self._lock:
            events = self._audit_events.setdefault(visit_id, [])
            events.append(event)
            if len(events) > self._max_audit_events:
                del events[: len(events) - self._max_audit_events]

    def get_audit_events(self, visit_id: str) -> List[AuditEvent]:
        with self._lock:
            return list(self._audit_events.get(visit_id, []))
