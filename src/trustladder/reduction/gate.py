"""Automatic reduction gate — forced monitoring reduction after sustained trust.

A child who holds trust >= 95 for 180 days gets monitoring reduced
automatically. The reduction is mandatory, one-way, and starts a
graduation path expected to finish 12 months later.

Override rules:
- A guardian may request an override (reason of at least 10 characters).
- The override takes effect only once the child agrees. A guardian
  request on its own never blocks the reduction.
- Only the child may answer an override request.

Graduation path state machine:
    ACTIVE -> PAUSED | COMPLETED | REGRESSED
    PAUSED -> ACTIVE | REGRESSED
    COMPLETED, REGRESSED are terminal.
"""

from __future__ import annotations

import calendar
import logging
import math
from dataclasses import replace
from datetime import datetime, timezone
from typing import Dict, Optional

from trustladder.errors import PreconditionError, ValidationError
from trustladder.milestones.ladder import run_length_days
from trustladder.models.reduction import (
    AutomaticReductionConfig,
    GraduationPath,
    GraduationStatus,
    OverrideRequest,
    OverrideStatus,
    ReductionResult,
    ReductionType,
)
from trustladder.models.trust import TrustScore
from trustladder.policy.resolver import PolicyResolver

logger = logging.getLogger(__name__)

GRADUATION_START_MILESTONE = "automatic-reduction-applied"
_DAYS_PER_MONTH = 30

GRADUATION_TRANSITIONS: Dict[GraduationStatus, frozenset] = {
    GraduationStatus.ACTIVE: frozenset({
        GraduationStatus.PAUSED,
        GraduationStatus.COMPLETED,
        GraduationStatus.REGRESSED,
    }),
    GraduationStatus.PAUSED: frozenset({
        GraduationStatus.ACTIVE,
        GraduationStatus.REGRESSED,
    }),
    GraduationStatus.COMPLETED: frozenset(),
    GraduationStatus.REGRESSED: frozenset(),
}


def add_months(moment: datetime, months: int) -> datetime:
    """Calendar month arithmetic; the day is clamped to the target month's length."""
    month_index = moment.month - 1 + months
    year = moment.year + month_index // 12
    month = month_index % 12 + 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


def _graduation_transition(path: GraduationPath, new_status: GraduationStatus) -> GraduationPath:
    allowed = GRADUATION_TRANSITIONS.get(path.status, frozenset())
    if new_status not in allowed:
        raise PreconditionError(
            f"Invalid graduation transition: {path.status.value} → {new_status.value}. "
            f"Allowed: {', '.join(sorted(s.value for s in allowed)) or 'none'}"
        )
    return replace(path, status=new_status)


class AutomaticReductionGate:
    """Eligibility, application, and override handling for automatic reductions.

    Every operation is pure: inputs are never mutated, new copies are returned.
    """

    def __init__(self, resolver: PolicyResolver) -> None:
        self._resolver = resolver

    # ------------------------------------------------------------------
    # Eligibility
    # ------------------------------------------------------------------

    def days_at_threshold(self, score_state: TrustScore, now: Optional[datetime] = None) -> int:
        now = now or datetime.now(timezone.utc)
        threshold, _ = self._resolver.automatic_reduction()
        return run_length_days(score_state.history, threshold, now)

    def is_eligible_for_automatic_reduction(
        self, score_state: TrustScore, now: Optional[datetime] = None,
    ) -> bool:
        threshold, duration_days = self._resolver.automatic_reduction()
        if score_state.current_score < threshold:
            return False
        return self.days_at_threshold(score_state, now) >= duration_days

    def months_until_eligible(self, current_score: int, days_at_threshold: int) -> int:
        """Whole 30-day months still to hold; -1 when the score is too low."""
        threshold, duration_days = self._resolver.automatic_reduction()
        if current_score < threshold:
            return -1
        if days_at_threshold >= duration_days:
            return 0
        required_months = duration_days // _DAYS_PER_MONTH
        return max(0, required_months - days_at_threshold // _DAYS_PER_MONTH)

    def eligibility_progress(self, current_score: int, days_at_threshold: int) -> int:
        """Percent of the required duration held, 0..100."""
        threshold, duration_days = self._resolver.automatic_reduction()
        if current_score < threshold:
            return 0
        return min(100, math.floor(days_at_threshold * 100 / duration_days + 0.5))

    # ------------------------------------------------------------------
    # Application
    # ------------------------------------------------------------------

    @staticmethod
    def create_default_config(child_id: str) -> AutomaticReductionConfig:
        return AutomaticReductionConfig(child_id=child_id)

    @staticmethod
    def is_override_in_effect(config: AutomaticReductionConfig) -> bool:
        return config.override_in_effect

    def should_apply_reduction(self, config: AutomaticReductionConfig) -> bool:
        return config.applied_at is None and not config.override_in_effect

    def apply_automatic_reduction(
        self,
        config: AutomaticReductionConfig,
        now: Optional[datetime] = None,
    ) -> tuple[AutomaticReductionConfig, ReductionResult, Optional[GraduationPath]]:
        """Apply the reduction and start the graduation path.

        Does NOT check eligibility; callers gate on
        is_eligible_for_automatic_reduction first.
        """
        now = now or datetime.now(timezone.utc)

        if config.applied_at is not None:
            return config, ReductionResult(
                child_id=config.child_id,
                success=False,
                reduction_type=ReductionType.ALREADY_REDUCED,
                applied_at=config.applied_at,
                message="reduction already applied",
            ), None

        if config.override_in_effect:
            return config, ReductionResult(
                child_id=config.child_id,
                success=False,
                reduction_type=ReductionType.OVERRIDE_APPROVED,
                applied_at=None,
                message="override agreed by child",
            ), None

        path = self.create_graduation_path(config.child_id, now)
        updated = replace(
            config,
            eligible_at=config.eligible_at or now,
            applied_at=now,
            graduation_path_started=True,
            expected_graduation_date=path.expected_graduation_date,
        )
        logger.info(
            "Automatic reduction applied for %s; graduation expected %s",
            config.child_id, path.expected_graduation_date.isoformat(),
        )
        return updated, ReductionResult(
            child_id=config.child_id,
            success=True,
            reduction_type=ReductionType.AUTOMATIC_FULL,
            applied_at=now,
            message="automatic reduction applied",
            graduation_path_initiated=True,
        ), path

    # ------------------------------------------------------------------
    # Override requests
    # ------------------------------------------------------------------

    def request_override(
        self,
        config: AutomaticReductionConfig,
        parent_id: str,
        reason: str,
        now: Optional[datetime] = None,
    ) -> tuple[AutomaticReductionConfig, OverrideRequest]:
        now = now or datetime.now(timezone.utc)
        min_length = self._resolver.min_override_reason_length()
        if not parent_id:
            raise ValidationError("parent_id must be non-empty")
        if len((reason or "").strip()) < min_length:
            raise ValidationError(
                f"Override reason must be at least {min_length} characters"
            )
        if config.override_requested:
            raise PreconditionError(
                f"Override already requested for {config.child_id}"
            )

        request = OverrideRequest(
            child_id=config.child_id,
            requested_by=parent_id,
            reason=reason,
            requested_at=now,
        )
        updated = replace(
            config,
            override_requested=True,
            override_agreed_by_child=False,
            override_reason=reason,
        )
        return updated, request

    def respond_to_override(
        self,
        config: AutomaticReductionConfig,
        request: OverrideRequest,
        responder_id: str,
        agreed: bool,
        child_response: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> tuple[AutomaticReductionConfig, OverrideRequest]:
        """Record the child's answer. Nobody but the child may answer."""
        now = now or datetime.now(timezone.utc)
        if request.child_id != config.child_id:
            raise ValidationError(
                f"Override request for {request.child_id} does not match {config.child_id}"
            )
        if responder_id != config.child_id:
            raise ValidationError(
                f"Only the child may respond to an override request (got {responder_id})"
            )
        if request.status != OverrideStatus.PENDING:
            raise PreconditionError(
                f"Override request is {request.status.value}, not pending"
            )

        updated_request = replace(
            request,
            status=OverrideStatus.APPROVED if agreed else OverrideStatus.REJECTED,
            responded_at=now,
            child_response=child_response,
        )
        updated_config = replace(config, override_agreed_by_child=agreed)
        return updated_config, updated_request

    def withdraw_override(
        self,
        config: AutomaticReductionConfig,
        request: OverrideRequest,
        now: Optional[datetime] = None,
    ) -> tuple[AutomaticReductionConfig, OverrideRequest]:
        now = now or datetime.now(timezone.utc)
        if request.status not in (OverrideStatus.PENDING, OverrideStatus.APPROVED):
            raise PreconditionError(
                f"Cannot withdraw an override request that is {request.status.value}"
            )
        updated_request = replace(
            request, status=OverrideStatus.WITHDRAWN, responded_at=now,
        )
        updated_config = replace(
            config,
            override_requested=False,
            override_agreed_by_child=False,
            override_reason=None,
        )
        return updated_config, updated_request

    # ------------------------------------------------------------------
    # Graduation path
    # ------------------------------------------------------------------

    def create_graduation_path(
        self, child_id: str, now: Optional[datetime] = None,
    ) -> GraduationPath:
        now = now or datetime.now(timezone.utc)
        return GraduationPath(
            child_id=child_id,
            started_at=now,
            expected_graduation_date=add_months(now, self._resolver.graduation_months()),
            milestones_achieved=(GRADUATION_START_MILESTONE,),
        )

    @staticmethod
    def update_graduation_progress(
        path: GraduationPath,
        progress_percent: int,
        milestone: Optional[str] = None,
    ) -> GraduationPath:
        """Set progress (clamped to 0..100); reaching 100 completes the path."""
        if path.status in (GraduationStatus.COMPLETED, GraduationStatus.REGRESSED):
            raise PreconditionError(
                f"Graduation path for {path.child_id} is {path.status.value}"
            )
        progress = max(0, min(100, progress_percent))
        milestones = path.milestones_achieved
        if milestone and milestone not in milestones:
            milestones = milestones + (milestone,)
        updated = replace(path, progress_percent=progress, milestones_achieved=milestones)
        if progress == 100:
            updated = _graduation_transition(updated, GraduationStatus.COMPLETED)
        return updated

    @staticmethod
    def pause_graduation_path(path: GraduationPath) -> GraduationPath:
        return _graduation_transition(path, GraduationStatus.PAUSED)

    @staticmethod
    def resume_graduation_path(path: GraduationPath) -> GraduationPath:
        return _graduation_transition(path, GraduationStatus.ACTIVE)

    @staticmethod
    def regress_graduation_path(path: GraduationPath) -> GraduationPath:
        return _graduation_transition(path, GraduationStatus.REGRESSED)
