"""State store contract and in-memory implementation.

The engine is stateless apart from this injected store. Every write that
can race is a compare-and-swap:

- score: precondition is the current_score the caller read (None means
  the record must not exist yet);
- milestone status: precondition is the status record the caller read;
- regression event: precondition is the status and version the caller
  read; the store bumps version on every committed write;
- regression insert: fails if the child already has an open event.

A failed precondition raises ConflictError. The store never retries;
callers re-read and try again.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import replace
from typing import Optional, Protocol, runtime_checkable

from trustladder.errors import ConflictError
from trustladder.models.milestone import ChildMilestoneStatus
from trustladder.models.reduction import (
    AutomaticReductionConfig,
    GraduationPath,
    NotificationOnlyConfig,
    OverrideRequest,
)
from trustladder.models.regression import RegressionEvent, RegressionStatus
from trustladder.models.trust import TrustScore

logger = logging.getLogger(__name__)


@runtime_checkable
class StateStore(Protocol):
    """Persistence contract for per-child engine state."""

    def get_score(self, child_id: str) -> Optional[TrustScore]:
        ...

    def compare_and_swap_score(
        self, child_id: str, expected_score: Optional[int], new_state: TrustScore,
    ) -> None:
        ...

    def get_milestone_status(self, child_id: str) -> Optional[ChildMilestoneStatus]:
        ...

    def compare_and_swap_milestone_status(
        self,
        expected: Optional[ChildMilestoneStatus],
        new_status: ChildMilestoneStatus,
    ) -> None:
        ...

    def get_regression(self, event_id: str) -> Optional[RegressionEvent]:
        ...

    def list_regressions(self, child_id: str) -> list[RegressionEvent]:
        ...

    def open_regression(self, child_id: str) -> Optional[RegressionEvent]:
        ...

    def insert_regression(self, event: RegressionEvent) -> None:
        ...

    def compare_and_swap_regression(
        self,
        expected_status: RegressionStatus,
        expected_version: int,
        new_event: RegressionEvent,
    ) -> RegressionEvent:
        ...

    def get_reduction_config(self, child_id: str) -> Optional[AutomaticReductionConfig]:
        ...

    def put_reduction_config(self, config: AutomaticReductionConfig) -> None:
        ...

    def get_override_request(self, child_id: str) -> Optional[OverrideRequest]:
        ...

    def put_override_request(self, request: OverrideRequest) -> None:
        ...

    def get_graduation_path(self, child_id: str) -> Optional[GraduationPath]:
        ...

    def put_graduation_path(self, path: GraduationPath) -> None:
        ...

    def get_notification_only(self, child_id: str) -> Optional[NotificationOnlyConfig]:
        ...

    def put_notification_only(self, config: NotificationOnlyConfig) -> None:
        ...


class InMemoryStateStore:
    """Dict-backed StateStore. A single lock serialises every CAS."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._scores: dict[str, TrustScore] = {}
        self._milestones: dict[str, ChildMilestoneStatus] = {}
        self._regressions: dict[str, RegressionEvent] = {}
        self._reductions: dict[str, AutomaticReductionConfig] = {}
        self._overrides: dict[str, OverrideRequest] = {}
        self._graduation_paths: dict[str, GraduationPath] = {}
        self._notification_only: dict[str, NotificationOnlyConfig] = {}

    # -- scores ---------------------------------------------------------

    def get_score(self, child_id: str) -> Optional[TrustScore]:
        return self._scores.get(child_id)

    def compare_and_swap_score(
        self, child_id: str, expected_score: Optional[int], new_state: TrustScore,
    ) -> None:
        with self._lock:
            current = self._scores.get(child_id)
            actual = current.current_score if current else None
            if actual != expected_score:
                logger.warning(
                    "Rejected stale score write for %s: expected %s, found %s",
                    child_id, expected_score, actual,
                )
                raise ConflictError(
                    f"Score for {child_id} changed: expected {expected_score}, found {actual}"
                )
            self._scores[child_id] = new_state

    # -- milestones -----------------------------------------------------

    def get_milestone_status(self, child_id: str) -> Optional[ChildMilestoneStatus]:
        return self._milestones.get(child_id)

    def compare_and_swap_milestone_status(
        self,
        expected: Optional[ChildMilestoneStatus],
        new_status: ChildMilestoneStatus,
    ) -> None:
        with self._lock:
            current = self._milestones.get(new_status.child_id)
            if current != expected:
                logger.warning(
                    "Rejected stale milestone write for %s", new_status.child_id,
                )
                raise ConflictError(
                    f"Milestone status for {new_status.child_id} changed since it was read"
                )
            self._milestones[new_status.child_id] = new_status

    # -- regressions ----------------------------------------------------

    def get_regression(self, event_id: str) -> Optional[RegressionEvent]:
        return self._regressions.get(event_id)

    def list_regressions(self, child_id: str) -> list[RegressionEvent]:
        with self._lock:
            return [e for e in self._regressions.values() if e.child_id == child_id]

    def open_regression(self, child_id: str) -> Optional[RegressionEvent]:
        with self._lock:
            for event in self._regressions.values():
                if event.child_id == child_id and event.is_open:
                    return event
        return None

    def insert_regression(self, event: RegressionEvent) -> None:
        with self._lock:
            if event.id in self._regressions:
                raise ConflictError(f"Regression event {event.id} already exists")
            for existing in self._regressions.values():
                if existing.child_id == event.child_id and existing.is_open:
                    logger.warning(
                        "Rejected second open regression for %s (open: %s)",
                        event.child_id, existing.id,
                    )
                    raise ConflictError(
                        f"Child {event.child_id} already has open regression {existing.id}"
                    )
            self._regressions[event.id] = event

    def compare_and_swap_regression(
        self,
        expected_status: RegressionStatus,
        expected_version: int,
        new_event: RegressionEvent,
    ) -> RegressionEvent:
        """Commit new_event if the stored copy is still the one the caller read.

        Returns the committed event with its version bumped.
        """
        with self._lock:
            current = self._regressions.get(new_event.id)
            if current is None:
                raise ConflictError(f"Regression event {new_event.id} does not exist")
            if current.status != expected_status or current.version != expected_version:
                logger.warning(
                    "Rejected stale regression write for %s: expected %s v%d, found %s v%d",
                    new_event.id, expected_status.value, expected_version,
                    current.status.value, current.version,
                )
                raise ConflictError(
                    f"Regression {new_event.id} changed: expected "
                    f"{expected_status.value} v{expected_version}, "
                    f"found {current.status.value} v{current.version}"
                )
            committed = replace(new_event, version=current.version + 1)
            self._regressions[new_event.id] = committed
            return committed

    # -- reductions -----------------------------------------------------

    def get_reduction_config(self, child_id: str) -> Optional[AutomaticReductionConfig]:
        return self._reductions.get(child_id)

    def put_reduction_config(self, config: AutomaticReductionConfig) -> None:
        with self._lock:
            self._reductions[config.child_id] = config

    def get_override_request(self, child_id: str) -> Optional[OverrideRequest]:
        return self._overrides.get(child_id)

    def put_override_request(self, request: OverrideRequest) -> None:
        with self._lock:
            self._overrides[request.child_id] = request

    def get_graduation_path(self, child_id: str) -> Optional[GraduationPath]:
        return self._graduation_paths.get(child_id)

    def put_graduation_path(self, path: GraduationPath) -> None:
        with self._lock:
            self._graduation_paths[path.child_id] = path

    def get_notification_only(self, child_id: str) -> Optional[NotificationOnlyConfig]:
        return self._notification_only.get(child_id)

    def put_notification_only(self, config: NotificationOnlyConfig) -> None:
        with self._lock:
            self._notification_only[config.child_id] = config
