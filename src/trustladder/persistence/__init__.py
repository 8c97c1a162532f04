"""State store contract and append-only event log."""

from trustladder.persistence.event_log import EventKind, EventLog, EventRecord
from trustladder.persistence.store import InMemoryStateStore, StateStore

__all__ = ["EventKind", "EventLog", "EventRecord", "InMemoryStateStore", "StateStore"]
