"""Trust progression service — facade over the engine components.

Runs the data flow for one child:

    factors -> score -> milestone ladder -> regression workflow
                                         -> notification-only mode
                                         -> automatic reduction

Every state change is written through the injected StateStore with
compare-and-swap, and every structured fact is appended to the event log
for the messaging layer. Errors propagate to the caller unchanged and the
facade never retries. The one ConflictError it absorbs is a regression
insert refused because the child already has an open event.

The milestone level is re-derived from score history on every call, so a
milestone write lost to a concurrent producer is corrected on the next one.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional, Sequence

from trustladder.errors import ConflictError, PreconditionError
from trustladder.milestones.frequency import FrequencyChange, MonitoringFrequencyPolicy
from trustladder.milestones.ladder import MilestoneLadder
from trustladder.models.milestone import (
    ChildMilestoneStatus,
    MilestoneLevel,
    MilestoneTransition,
    TransitionDirection,
    milestone_rank,
)
from trustladder.models.reduction import (
    AutomaticReductionConfig,
    GraduationPath,
    ModeTransition,
    NotificationOnlyConfig,
    OverrideRequest,
    ReductionResult,
)
from trustladder.models.regression import RegressionEvent, RegressionStatus
from trustladder.models.trust import ScoreCalculationResult, TrustFactor, TrustScore
from trustladder.persistence.event_log import EventKind, EventLog
from trustladder.persistence.store import StateStore
from trustladder.policy.resolver import PolicyResolver
from trustladder.reduction.gate import AutomaticReductionGate
from trustladder.reduction.notification_only import NotificationOnlyMode
from trustladder.regression.workflow import RegressionWorkflow
from trustladder.trust.engine import TrustScoreEngine

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProgressionOutcome:
    """Everything one batch of factors changed for a child."""
    child_id: str
    score: ScoreCalculationResult
    transition: MilestoneTransition
    regression_opened: Optional[RegressionEvent] = None
    frequency_change: Optional[FrequencyChange] = None
    monitoring_change_deferred: bool = False
    mode_transition: Optional[ModeTransition] = None
    reduction: Optional[ReductionResult] = None


class TrustProgressionService:
    """Unified entry point for scoring, progression, and reduction decisions.

    Usage:
        service = TrustProgressionService(InMemoryStateStore(), resolver, EventLog())
        service.register_child("child-1", now)
        outcome = service.record_factors("child-1", factors, now)
    """

    def __init__(
        self,
        store: StateStore,
        resolver: PolicyResolver,
        event_log: Optional[EventLog] = None,
    ) -> None:
        self._store = store
        self._resolver = resolver
        self._event_log = event_log if event_log is not None else EventLog()
        self.engine = TrustScoreEngine(resolver)
        self.ladder = MilestoneLadder(resolver)
        self.frequency = MonitoringFrequencyPolicy(resolver)
        self.workflow = RegressionWorkflow(store, resolver, self._event_log)
        self.gate = AutomaticReductionGate(resolver)
        self.notification_only = NotificationOnlyMode(resolver)

    @property
    def event_log(self) -> EventLog:
        return self._event_log

    # ------------------------------------------------------------------
    # Child lifecycle
    # ------------------------------------------------------------------

    def register_child(self, child_id: str, now: Optional[datetime] = None) -> TrustScore:
        """Create the starting score record. ConflictError if it already exists."""
        now = now or datetime.now(timezone.utc)
        state = self.engine.create_trust_score(child_id, now)
        self._store.compare_and_swap_score(child_id, None, state)
        self._store.compare_and_swap_milestone_status(
            None, ChildMilestoneStatus(child_id=child_id, evaluated_at=now),
        )
        logger.info("Registered %s at score %d", child_id, state.current_score)
        return state

    def get_score(self, child_id: str) -> TrustScore:
        state = self._store.get_score(child_id)
        if state is None:
            raise PreconditionError(f"No trust score for child: {child_id}")
        return state

    def get_milestone_status(self, child_id: str) -> ChildMilestoneStatus:
        return self._store.get_milestone_status(child_id) or ChildMilestoneStatus(child_id=child_id)

    def get_reduction_config(self, child_id: str) -> AutomaticReductionConfig:
        return (
            self._store.get_reduction_config(child_id)
            or self.gate.create_default_config(child_id)
        )

    def get_notification_only_config(self, child_id: str) -> NotificationOnlyConfig:
        return (
            self._store.get_notification_only(child_id)
            or self.notification_only.create_default_config(child_id)
        )

    def get_graduation_path(self, child_id: str) -> Optional[GraduationPath]:
        return self._store.get_graduation_path(child_id)

    def screenshot_interval_minutes(
        self, child_id: str, now: Optional[datetime] = None,
    ) -> Optional[int]:
        """Current capture interval; None while notification-only mode is active."""
        if not self.notification_only.should_capture_screenshots(
            self.get_notification_only_config(child_id),
        ):
            return None
        return self.frequency.interval_minutes(self.monitored_level(child_id, now))

    def monitored_level(
        self, child_id: str, now: Optional[datetime] = None,
    ) -> Optional[MilestoneLevel]:
        """Level whose cadence capture follows.

        A regression never tightens capture before it is reverted. While the
        latest event is open the pre-regression level applies however far
        the score has fallen since; once it is resolved, the higher of the
        pre-regression and current levels applies.
        """
        level = self.get_milestone_status(child_id).current_level
        events = self.workflow.get_all_events_for_child(child_id, now)
        if not events or events[0].status == RegressionStatus.REVERTED:
            return level
        latest = events[0]
        if latest.is_open or milestone_rank(latest.previous_milestone) > milestone_rank(level):
            return latest.previous_milestone
        return level

    # ------------------------------------------------------------------
    # Main flow
    # ------------------------------------------------------------------

    def record_factors(
        self,
        child_id: str,
        factors: Sequence[TrustFactor],
        now: Optional[datetime] = None,
    ) -> ProgressionOutcome:
        """Score a batch of factors and run every downstream gate.

        Raises:
            PreconditionError: the child has no score record.
            ConflictError: the score moved between read and write.
        """
        now = now or datetime.now(timezone.utc)
        state = self.get_score(child_id)
        result = self.engine.calculate_new_score(state.current_score, factors, now)
        new_state = self.engine.apply_score(state, result)
        self._store.compare_and_swap_score(child_id, state.current_score, new_state)
        logger.info(
            "Score for %s: %d -> %d", child_id, result.previous_score, result.new_score,
        )
        self._event_log.emit(EventKind.SCORE_UPDATED, child_id, {
            "previous_score": result.previous_score,
            "new_score": result.new_score,
            "breakdown": result.breakdown.to_dict(),
            "factor_count": len(result.factors_applied),
        }, now)

        transition, regression, frequency_change, deferred = self._evaluate_milestone(
            child_id, new_state, now,
        )
        mode_transition = self._evaluate_notification_only(child_id, new_state, now)
        reduction = self._evaluate_automatic_reduction(child_id, new_state, now)

        return ProgressionOutcome(
            child_id=child_id,
            score=result,
            transition=transition,
            regression_opened=regression,
            frequency_change=frequency_change,
            monitoring_change_deferred=deferred,
            mode_transition=mode_transition,
            reduction=reduction,
        )

    def _evaluate_milestone(
        self, child_id: str, state: TrustScore, now: datetime,
    ) -> tuple[MilestoneTransition, Optional[RegressionEvent], Optional[FrequencyChange], bool]:
        """Move the child along the ladder.

        A downgrade opens its regression event before the lower level is
        written, so no stored downgrade is ever left without an event.
        """
        stored = self._store.get_milestone_status(child_id)
        status = stored or ChildMilestoneStatus(child_id=child_id)
        monitored_before = self.monitored_level(child_id, now)
        eligibility = self.ladder.check_milestone_eligibility(state.history, now)
        transition = self.ladder.transition_milestone(status, eligibility)
        new_status = self.ladder.apply_transition(status, transition, eligibility)

        regression: Optional[RegressionEvent] = None
        frequency_change: Optional[FrequencyChange] = None
        deferred = False

        if transition.direction == TransitionDirection.DOWN:
            try:
                regression = self.workflow.create_regression_event(
                    child_id, transition.from_level, transition.to_level, now,
                )
            except ConflictError:
                logger.info(
                    "Regression already open for %s; not opening another", child_id,
                )

        self._store.compare_and_swap_milestone_status(stored, new_status)

        if transition.changed:
            logger.info(
                "Milestone %s for %s: %s -> %s", transition.direction.value, child_id,
                transition.from_level, transition.to_level,
            )
            self._event_log.emit(
                EventKind.MILESTONE_TRANSITION, child_id, transition.to_dict(), now,
            )

        if (
            transition.direction == TransitionDirection.UP
            and not self.workflow.can_change_monitoring(child_id, now)
        ):
            deferred = True
            logger.info(
                "Monitoring change for %s deferred by open regression", child_id,
            )
        else:
            frequency_change = self.frequency.frequency_change(
                child_id, monitored_before, self.monitored_level(child_id, now), now,
            )
            if frequency_change is not None:
                self._event_log.emit(
                    EventKind.FREQUENCY_CHANGED, child_id, frequency_change.to_dict(), now,
                )

        return transition, regression, frequency_change, deferred

    def _evaluate_notification_only(
        self, child_id: str, state: TrustScore, now: datetime,
    ) -> Optional[ModeTransition]:
        mode = self.notification_only
        config = self.get_notification_only_config(child_id)
        threshold, _ = self._resolver.notification_only()

        if not mode.is_active(config) and mode.is_qualified(state, now):
            config, transition = mode.enable(config, now)
            kind = EventKind.NOTIFICATION_ONLY_ENABLED
        elif mode.is_active(config) and state.current_score < threshold:
            config, transition = mode.disable(
                config, now, notes=f"score {state.current_score} below {threshold}",
            )
            kind = EventKind.NOTIFICATION_ONLY_DISABLED
        else:
            return None

        self._store.put_notification_only(config)
        logger.info("Notification-only mode %s for %s", transition.reason, child_id)
        self._event_log.emit(kind, child_id, {
            "from_enabled": transition.from_enabled,
            "to_enabled": transition.to_enabled,
            "reason": transition.reason,
            "notes": transition.notes,
        }, now)
        return transition

    def _evaluate_automatic_reduction(
        self, child_id: str, state: TrustScore, now: datetime,
    ) -> Optional[ReductionResult]:
        config = self.get_reduction_config(child_id)
        if not self.gate.should_apply_reduction(config):
            return None
        if not self.gate.is_eligible_for_automatic_reduction(state, now):
            return None

        config, result, path = self.gate.apply_automatic_reduction(config, now)
        self._store.put_reduction_config(config)
        if path is not None:
            self._store.put_graduation_path(path)
        self._event_log.emit(
            EventKind.AUTOMATIC_REDUCTION_APPLIED, child_id, config.to_dict(), now,
        )
        return result

    # ------------------------------------------------------------------
    # Regression closure
    # ------------------------------------------------------------------

    def revert_monitoring(
        self, event_id: str, now: Optional[datetime] = None,
    ) -> tuple[RegressionEvent, Optional[FrequencyChange]]:
        """Close a regression by tightening capture to the child's current level."""
        now = now or datetime.now(timezone.utc)
        child_id = self.workflow.get_event(event_id, now).child_id
        before = self.monitored_level(child_id, now)
        event = self.workflow.revert_monitoring(event_id, now)
        change = self.frequency.frequency_change(
            child_id, before, self.monitored_level(child_id, now), now,
        )
        if change is not None:
            self._event_log.emit(
                EventKind.FREQUENCY_CHANGED, child_id, change.to_dict(), now,
            )
        return event, change

    # ------------------------------------------------------------------
    # Override requests
    # ------------------------------------------------------------------

    def request_override(
        self,
        child_id: str,
        parent_id: str,
        reason: str,
        now: Optional[datetime] = None,
    ) -> OverrideRequest:
        now = now or datetime.now(timezone.utc)
        config, request = self.gate.request_override(
            self.get_reduction_config(child_id), parent_id, reason, now,
        )
        self._store.put_reduction_config(config)
        self._store.put_override_request(request)
        self._event_log.emit(EventKind.OVERRIDE_REQUESTED, child_id, {
            "requested_by": parent_id,
            "reason": reason,
        }, now)
        return request

    def respond_to_override(
        self,
        child_id: str,
        responder_id: str,
        agreed: bool,
        child_response: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> OverrideRequest:
        now = now or datetime.now(timezone.utc)
        config, request = self.gate.respond_to_override(
            self.get_reduction_config(child_id),
            self._pending_request(child_id),
            responder_id,
            agreed,
            child_response,
            now,
        )
        self._store.put_reduction_config(config)
        self._store.put_override_request(request)
        self._event_log.emit(EventKind.OVERRIDE_RESPONDED, child_id, {
            "agreed": agreed,
            "status": request.status.value,
        }, now)
        return request

    def withdraw_override(
        self, child_id: str, now: Optional[datetime] = None,
    ) -> OverrideRequest:
        now = now or datetime.now(timezone.utc)
        config, request = self.gate.withdraw_override(
            self.get_reduction_config(child_id), self._pending_request(child_id), now,
        )
        self._store.put_reduction_config(config)
        self._store.put_override_request(request)
        self._event_log.emit(EventKind.OVERRIDE_WITHDRAWN, child_id, {}, now)
        return request

    def _pending_request(self, child_id: str) -> OverrideRequest:
        request = self._store.get_override_request(child_id)
        if request is None:
            raise PreconditionError(f"No override request for child: {child_id}")
        return request
