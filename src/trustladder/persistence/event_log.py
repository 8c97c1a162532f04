"""Append-only log of the structured facts the engine emits.

Every score update, milestone transition, regression step, and reduction
decision produces one EventRecord. The downstream messaging layer turns
these facts into notifications; the engine itself never writes user copy.

Records are immutable and hash-sealed at creation. A log persisted to
JSONL is re-verified on load: a tampered line or a replayed event id
fails the load.
"""

from __future__ import annotations

import enum
import hashlib
import json
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from trustladder.errors import ValidationError

logger = logging.getLogger(__name__)


class EventKind(str, enum.Enum):
    """Classification of engine facts."""
    SCORE_UPDATED = "score_updated"
    MILESTONE_TRANSITION = "milestone_transition"
    FREQUENCY_CHANGED = "frequency_changed"
    # Regression workflow
    REGRESSION_OPENED = "regression_opened"
    REGRESSION_STATUS_CHANGED = "regression_status_changed"
    CHILD_EXPLANATION_RECORDED = "child_explanation_recorded"
    CONVERSATION_HELD = "conversation_held"
    REGRESSION_RESOLVED = "regression_resolved"
    MONITORING_REVERTED = "monitoring_reverted"
    # Long-horizon reductions
    AUTOMATIC_REDUCTION_APPLIED = "automatic_reduction_applied"
    OVERRIDE_REQUESTED = "override_requested"
    OVERRIDE_RESPONDED = "override_responded"
    OVERRIDE_WITHDRAWN = "override_withdrawn"
    NOTIFICATION_ONLY_ENABLED = "notification_only_enabled"
    NOTIFICATION_ONLY_DISABLED = "notification_only_disabled"


def _seal(
    event_id: str,
    event_kind: str,
    timestamp_utc: str,
    child_id: str,
    payload: dict[str, Any],
) -> str:
    canonical = json.dumps(
        {
            "event_id": event_id,
            "event_kind": event_kind,
            "timestamp_utc": timestamp_utc,
            "child_id": child_id,
            "payload": payload,
        },
        sort_keys=True,
        ensure_ascii=False,
    ).encode("utf-8")
    return f"sha256:{hashlib.sha256(canonical).hexdigest()}"


@dataclass(frozen=True)
class EventRecord:
    """A single immutable engine fact about one child."""
    event_id: str
    event_kind: EventKind
    timestamp_utc: str
    child_id: str
    payload: dict[str, Any]
    event_hash: str

    @staticmethod
    def create(
        event_kind: EventKind,
        child_id: str,
        payload: dict[str, Any],
        timestamp_utc: Optional[datetime] = None,
        event_id: Optional[str] = None,
    ) -> EventRecord:
        """Create a record with a fresh id (unless given) and computed hash."""
        ts = timestamp_utc or datetime.now(timezone.utc)
        ts_str = ts.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
        event_id = event_id or f"evt_{uuid.uuid4().hex}"
        return EventRecord(
            event_id=event_id,
            event_kind=event_kind,
            timestamp_utc=ts_str,
            child_id=child_id,
            payload=payload,
            event_hash=_seal(event_id, event_kind.value, ts_str, child_id, payload),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "event_id": self.event_id,
            "event_kind": self.event_kind.value,
            "timestamp_utc": self.timestamp_utc,
            "child_id": self.child_id,
            "payload": self.payload,
            "event_hash": self.event_hash,
        }


class EventLog:
    """Append-only event log with optional JSONL persistence."""

    def __init__(self, storage_path: Optional[Path] = None) -> None:
        self._events: list[EventRecord] = []
        self._event_ids: set[str] = set()
        self._storage_path = storage_path

        if storage_path and storage_path.exists():
            self._load(storage_path)

    def append(self, event: EventRecord) -> None:
        """Append an event. Raises ValidationError on a duplicate event id."""
        if event.event_id in self._event_ids:
            raise ValidationError(f"Duplicate event ID: {event.event_id}")

        self._events.append(event)
        self._event_ids.add(event.event_id)

        if self._storage_path:
            with self._storage_path.open("a", encoding="utf-8") as f:
                f.write(json.dumps(event.to_dict(), sort_keys=True, ensure_ascii=False) + "\n")

    def emit(
        self,
        event_kind: EventKind,
        child_id: str,
        payload: dict[str, Any],
        timestamp_utc: Optional[datetime] = None,
    ) -> EventRecord:
        """Create and append a record in one step."""
        event = EventRecord.create(event_kind, child_id, payload, timestamp_utc)
        self.append(event)
        logger.debug("Emitted %s for %s", event_kind.value, child_id)
        return event

    def events(
        self,
        kind: Optional[EventKind] = None,
        child_id: Optional[str] = None,
    ) -> list[EventRecord]:
        """Return events, optionally filtered by kind and child."""
        result = list(self._events)
        if kind is not None:
            result = [e for e in result if e.event_kind == kind]
        if child_id is not None:
            result = [e for e in result if e.child_id == child_id]
        return result

    @property
    def count(self) -> int:
        return len(self._events)

    @property
    def last_event(self) -> Optional[EventRecord]:
        return self._events[-1] if self._events else None

    def _load(self, path: Path) -> None:
        """Load and re-verify a JSONL log. Fails closed on tampering or replay."""
        with path.open("r", encoding="utf-8") as f:
            for line_num, line in enumerate(f, 1):
                line = line.strip()
                if not line:
                    continue
                data = json.loads(line)
                event_id = data["event_id"]

                if event_id in self._event_ids:
                    raise ValidationError(
                        f"Duplicate event ID on recovery (line {line_num}): {event_id}"
                    )

                expected = _seal(
                    event_id,
                    data["event_kind"],
                    data["timestamp_utc"],
                    data["child_id"],
                    data["payload"],
                )
                if data["event_hash"] != expected:
                    raise ValidationError(
                        f"Integrity check failed (line {line_num}): event {event_id} "
                        f"stored hash {data['event_hash']} != computed {expected}"
                    )

                self._events.append(EventRecord(
                    event_id=event_id,
                    event_kind=EventKind(data["event_kind"]),
                    timestamp_utc=data["timestamp_utc"],
                    child_id=data["child_id"],
                    payload=data["payload"],
                    event_hash=data["event_hash"],
                ))
                self._event_ids.add(event_id)
