"""Regression workflow — conversation-gated milestone downgrades.

When a child's milestone drops, monitoring is NOT tightened immediately:

1. A RegressionEvent opens in GRACE_PERIOD (default 14 days, 7..30).
2. When the grace window elapses the event moves to AWAITING_CONVERSATION.
   The move is lazy: every accessor refreshes the event against ``now``.
3. The child may record their side of the story at any non-terminal step.
4. A parent marks the conversation as held (optionally with notes).
5. The event is then RESOLVED (no monitoring change) or REVERTED
   (monitoring returns to a stricter level).

Neither terminal state is reachable without the conversation. At most one
open event exists per child; the store enforces this atomically.
"""

from __future__ import annotations

import logging
import math
import uuid
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Optional

from trustladder.errors import ConflictError, PreconditionError, ValidationError
from trustladder.models.milestone import MilestoneLevel, is_strictly_below
from trustladder.models.regression import (
    RegressionEvent,
    RegressionStatus,
    RegressionSummary,
)
from trustladder.persistence.event_log import EventKind, EventLog
from trustladder.persistence.store import StateStore
from trustladder.policy.resolver import PolicyResolver

logger = logging.getLogger(__name__)

_SECONDS_PER_DAY = 86400


class RegressionWorkflow:
    """Drives regression events through grace period, conversation, and closure.

    Usage:
        workflow = RegressionWorkflow(store, resolver)
        event = workflow.create_regression_event(child_id, MATURING, GROWING, now)
        workflow.record_child_explanation(event.id, "Exams week", now)
        workflow.mark_conversation_held(event.id, "Talked it through", now)
        workflow.resolve_regression(event.id, now)
    """

    def __init__(
        self,
        store: StateStore,
        resolver: PolicyResolver,
        event_log: Optional[EventLog] = None,
    ) -> None:
        self._store = store
        self._resolver = resolver
        self._event_log = event_log

    # ------------------------------------------------------------------
    # Creation and lazy refresh
    # ------------------------------------------------------------------

    def create_regression_event(
        self,
        child_id: str,
        previous_milestone: MilestoneLevel,
        current_milestone: Optional[MilestoneLevel],
        now: Optional[datetime] = None,
        grace_period_days: Optional[int] = None,
    ) -> RegressionEvent:
        """Open a regression event for a strictly downward milestone change.

        Raises:
            ValidationError: the change is not downward, or the grace
                period is outside the allowed range.
            ConflictError: the child already has an open event.
        """
        if previous_milestone is None or not is_strictly_below(
            current_milestone, previous_milestone,
        ):
            raise ValidationError(
                f"Invalid regression for {child_id}: {current_milestone} is not "
                f"below {previous_milestone}"
            )
        if grace_period_days is None:
            grace_period_days = self._resolver.grace_period_days()
        low, high = self._resolver.grace_period_range()
        if not low <= grace_period_days <= high:
            raise ValidationError(
                f"Grace period must be between {low} and {high} days, got {grace_period_days}"
            )

        now = now or datetime.now(timezone.utc)
        event = RegressionEvent(
            id=f"reg_{uuid.uuid4().hex}",
            child_id=child_id,
            previous_milestone=previous_milestone,
            current_milestone=current_milestone,
            occurred_at=now,
            grace_expires_at=now + timedelta(days=grace_period_days),
            updated_at=now,
        )
        self._store.insert_regression(event)
        logger.info(
            "Regression %s opened for %s: %s -> %s, grace until %s",
            event.id, child_id, previous_milestone.value,
            current_milestone.value if current_milestone else None,
            event.grace_expires_at.isoformat(),
        )
        self._emit(EventKind.REGRESSION_OPENED, event, now)
        return event

    def update_event_status(
        self, event_id: str, now: Optional[datetime] = None,
    ) -> RegressionEvent:
        """Move an event out of its grace period if the window has elapsed."""
        now = now or datetime.now(timezone.utc)
        event = self._get(event_id)
        if event.status != RegressionStatus.GRACE_PERIOD or now < event.grace_expires_at:
            return event

        updated = event.transition_to(RegressionStatus.AWAITING_CONVERSATION, now)
        try:
            updated = self._store.compare_and_swap_regression(
                event.status, event.version, updated,
            )
        except ConflictError:
            # Another writer committed first; re-run against the stored copy.
            return self.update_event_status(event_id, now)
        logger.info("Regression %s grace period expired", event_id)
        self._emit(EventKind.REGRESSION_STATUS_CHANGED, updated, now)
        return updated

    def get_event(
        self, event_id: str, now: Optional[datetime] = None,
    ) -> RegressionEvent:
        return self.update_event_status(event_id, now)

    # ------------------------------------------------------------------
    # Grace period queries
    # ------------------------------------------------------------------

    def is_in_grace_period(self, event_id: str, now: Optional[datetime] = None) -> bool:
        now = now or datetime.now(timezone.utc)
        event = self.update_event_status(event_id, now)
        return event.status == RegressionStatus.GRACE_PERIOD and now < event.grace_expires_at

    def grace_days_remaining(self, event_id: str, now: Optional[datetime] = None) -> int:
        """Whole days left in the grace window, rounded up; 0 once expired."""
        now = now or datetime.now(timezone.utc)
        event = self.update_event_status(event_id, now)
        if event.status != RegressionStatus.GRACE_PERIOD:
            return 0
        remaining = (event.grace_expires_at - now).total_seconds()
        return max(0, math.ceil(remaining / _SECONDS_PER_DAY))

    # ------------------------------------------------------------------
    # Conversation steps
    # ------------------------------------------------------------------

    def record_child_explanation(
        self,
        event_id: str,
        explanation: str,
        now: Optional[datetime] = None,
    ) -> RegressionEvent:
        """Attach the child's explanation. Allowed in any non-terminal state."""
        now = now or datetime.now(timezone.utc)
        max_length = self._resolver.max_explanation_length()
        if not explanation or not explanation.strip():
            raise ValidationError("Child explanation must not be empty")
        if len(explanation) > max_length:
            raise ValidationError(
                f"Child explanation exceeds {max_length} characters ({len(explanation)})"
            )

        event = self._open_event(event_id, now)
        updated = replace(event, child_explanation=explanation, updated_at=now)
        updated = self._store.compare_and_swap_regression(
            event.status, event.version, updated,
        )
        logger.info("Regression %s: child explanation recorded", event_id)
        self._emit(EventKind.CHILD_EXPLANATION_RECORDED, updated, now)
        return updated

    def mark_conversation_held(
        self,
        event_id: str,
        parent_notes: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> RegressionEvent:
        now = now or datetime.now(timezone.utc)
        event = self._open_event(event_id, now)
        updated = replace(
            event,
            conversation_held=True,
            conversation_held_at=now,
            parent_notes=parent_notes if parent_notes is not None else event.parent_notes,
            updated_at=now,
        )
        updated = self._store.compare_and_swap_regression(
            event.status, event.version, updated,
        )
        logger.info("Regression %s: conversation held", event_id)
        self._emit(EventKind.CONVERSATION_HELD, updated, now)
        return updated

    def resolve_regression(
        self, event_id: str, now: Optional[datetime] = None,
    ) -> RegressionEvent:
        """Close the event without changing monitoring. Needs the conversation."""
        now = now or datetime.now(timezone.utc)
        event = self._open_event(event_id, now)
        updated = event.transition_to(RegressionStatus.RESOLVED, now)
        updated = self._store.compare_and_swap_regression(
            event.status, event.version, updated,
        )
        logger.info("Regression %s resolved", event_id)
        self._emit(EventKind.REGRESSION_RESOLVED, updated, now)
        return updated

    def revert_monitoring(
        self, event_id: str, now: Optional[datetime] = None,
    ) -> RegressionEvent:
        """Close the event by reverting monitoring to the stricter level.

        Needs the conversation; allowed during the grace period once it is held.
        """
        now = now or datetime.now(timezone.utc)
        event = self._open_event(event_id, now)
        if not event.conversation_held:
            raise PreconditionError(
                f"Conversation must be held before regression {event_id} can be reverted"
            )
        updated = event.transition_to(RegressionStatus.REVERTED, now)
        updated = self._store.compare_and_swap_regression(
            event.status, event.version, updated,
        )
        logger.info(
            "Regression %s reverted monitoring for %s", event_id, event.child_id,
        )
        self._emit(EventKind.MONITORING_REVERTED, updated, now)
        return updated

    # ------------------------------------------------------------------
    # Per-child queries
    # ------------------------------------------------------------------

    def get_active_regression(
        self, child_id: str, now: Optional[datetime] = None,
    ) -> Optional[RegressionEvent]:
        event = self._store.open_regression(child_id)
        if event is None:
            return None
        return self.update_event_status(event.id, now)

    def can_change_monitoring(self, child_id: str, now: Optional[datetime] = None) -> bool:
        """True iff no open event, or the open event's gates are both cleared."""
        event = self.get_active_regression(child_id, now)
        if event is None:
            return True
        return (
            event.status == RegressionStatus.AWAITING_CONVERSATION
            and event.conversation_held
        )

    def is_conversation_required(
        self, child_id: str, now: Optional[datetime] = None,
    ) -> bool:
        event = self.get_active_regression(child_id, now)
        return event is not None and not event.conversation_held

    def get_all_events_for_child(
        self, child_id: str, now: Optional[datetime] = None,
    ) -> list[RegressionEvent]:
        """Every event for the child, newest first."""
        events = [
            self.update_event_status(e.id, now)
            for e in self._store.list_regressions(child_id)
        ]
        return sorted(events, key=lambda e: e.occurred_at, reverse=True)

    def get_regression_status(
        self, child_id: str, now: Optional[datetime] = None,
    ) -> Optional[RegressionStatus]:
        """Status of the child's most recent event, or None if there is none."""
        events = self.get_all_events_for_child(child_id, now)
        return events[0].status if events else None

    def get_regression_summary(
        self, child_id: str, now: Optional[datetime] = None,
    ) -> RegressionSummary:
        now = now or datetime.now(timezone.utc)
        event = self.get_active_regression(child_id, now)
        if event is None:
            return RegressionSummary(
                child_id=child_id,
                has_active_regression=False,
                is_in_grace_period=False,
                days_remaining=0,
                conversation_held=False,
                child_explained=False,
                status=None,
            )
        return RegressionSummary(
            child_id=child_id,
            has_active_regression=True,
            is_in_grace_period=self.is_in_grace_period(event.id, now),
            days_remaining=self.grace_days_remaining(event.id, now),
            conversation_held=event.conversation_held,
            child_explained=event.child_explanation is not None,
            status=event.status,
            event_id=event.id,
        )

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _get(self, event_id: str) -> RegressionEvent:
        """Get event or raise PreconditionError."""
        event = self._store.get_regression(event_id)
        if event is None:
            raise PreconditionError(f"Regression event not found: {event_id}")
        return event

    def _open_event(self, event_id: str, now: datetime) -> RegressionEvent:
        event = self.update_event_status(event_id, now)
        if event.status.is_terminal:
            raise PreconditionError(
                f"Regression {event_id} is already resolved/reverted ({event.status.value})"
            )
        return event

    def _emit(self, kind: EventKind, event: RegressionEvent, now: datetime) -> None:
        if self._event_log is not None:
            self._event_log.emit(kind, event.child_id, event.to_dict(), now)
