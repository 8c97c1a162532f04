"""Milestone ladder — converts sustained score levels into discrete tiers.

A level is earned by holding the score at or above its threshold for an
unbroken run of at least its required days. The run is measured from the
earliest sample of the trailing unbroken run to ``now``: a score is taken
to hold between samples, so one sample a day for N days is an N-day run.
A single sample below threshold resets the run.

The same run-length scan gates the long-horizon reductions (notification-
only mode and the automatic reduction), so the three share one definition
of "held for N days".
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional, Sequence

from trustladder.errors import ValidationError
from trustladder.models.milestone import (
    ChildMilestoneStatus,
    MilestoneEligibility,
    MilestoneLevel,
    MilestoneTransition,
    TransitionDirection,
    milestone_rank,
)
from trustladder.models.trust import ScoreHistoryEntry
from trustladder.policy.resolver import PolicyResolver

_SECONDS_PER_DAY = 86400


def run_length_days(
    history: Sequence[ScoreHistoryEntry],
    threshold: int,
    now: datetime,
) -> int:
    """Whole days the score has stayed at or above ``threshold`` up to ``now``.

    Entries timestamped after ``now`` are ignored. Returns 0 when the
    latest sample is below threshold or there is no history.
    """
    samples = sorted((e for e in history if e.timestamp <= now), key=lambda e: e.timestamp)
    run_start: Optional[datetime] = None
    for entry in reversed(samples):
        if entry.score < threshold:
            break
        run_start = entry.timestamp
    if run_start is None:
        return 0
    return int((now - run_start).total_seconds() // _SECONDS_PER_DAY)


class MilestoneLadder:
    """Evaluates milestone eligibility and transitions against the policy ladder."""

    def __init__(self, resolver: PolicyResolver) -> None:
        self._resolver = resolver

    def check_milestone_eligibility(
        self,
        history: Sequence[ScoreHistoryEntry],
        now: Optional[datetime] = None,
    ) -> MilestoneEligibility:
        """Highest level whose threshold has been held for its required days."""
        now = now or datetime.now(timezone.utc)
        definitions = self._resolver.milestone_definitions()
        run_days = {
            d.level: run_length_days(history, d.threshold, now) for d in definitions
        }

        eligible: Optional[MilestoneLevel] = None
        for definition in reversed(definitions):
            if run_days[definition.level] >= definition.required_days:
                eligible = definition.level
                break

        return MilestoneEligibility(
            eligible_level=eligible,
            consecutive_days=run_days[eligible] if eligible else 0,
            evaluated_at=now,
            run_days=run_days,
        )

    def transition_milestone(
        self,
        status: ChildMilestoneStatus,
        eligibility: MilestoneEligibility,
    ) -> MilestoneTransition:
        current_rank = milestone_rank(status.current_level)
        eligible_rank = milestone_rank(eligibility.eligible_level)
        if eligible_rank > current_rank:
            direction = TransitionDirection.UP
        elif eligible_rank < current_rank:
            direction = TransitionDirection.DOWN
        else:
            direction = TransitionDirection.NONE
        return MilestoneTransition(
            child_id=status.child_id,
            from_level=status.current_level,
            to_level=eligibility.eligible_level,
            direction=direction,
            detected_at=eligibility.evaluated_at,
        )

    def apply_transition(
        self,
        status: ChildMilestoneStatus,
        transition: MilestoneTransition,
        eligibility: MilestoneEligibility,
    ) -> ChildMilestoneStatus:
        """Return the status after ``transition``. Does NOT mutate ``status``."""
        if transition.child_id != status.child_id:
            raise ValidationError(
                f"Transition for {transition.child_id} applied to status of {status.child_id}"
            )
        if transition.from_level != status.current_level:
            raise ValidationError(
                f"Transition from {transition.from_level} does not match current "
                f"level {status.current_level}"
            )

        if transition.changed:
            level = transition.to_level
            achieved_at = transition.detected_at if level else None
        else:
            level = status.current_level
            achieved_at = status.achieved_at

        return ChildMilestoneStatus(
            child_id=status.child_id,
            current_level=level,
            achieved_at=achieved_at,
            consecutive_days_at_level=eligibility.run_days.get(level, 0) if level else 0,
            evaluated_at=eligibility.evaluated_at,
        )
