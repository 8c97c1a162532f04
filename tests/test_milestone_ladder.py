"""Tests for the milestone ladder and screenshot cadence lookup."""

import pytest
from datetime import datetime, timedelta, timezone
from pathlib import Path

from trustladder.errors import ValidationError
from trustladder.milestones.frequency import MonitoringFrequencyPolicy
from trustladder.milestones.ladder import MilestoneLadder, run_length_days
from trustladder.models.milestone import (
    ChildMilestoneStatus,
    MilestoneLevel,
    TransitionDirection,
    milestone_rank,
)
from trustladder.models.trust import ScoreHistoryEntry
from trustladder.policy.resolver import PolicyResolver


CONFIG_DIR = Path(__file__).resolve().parents[1] / "config"


def _now() -> datetime:
    return datetime(2026, 3, 2, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def resolver() -> PolicyResolver:
    return PolicyResolver.from_config_dir(CONFIG_DIR)


@pytest.fixture
def ladder(resolver: PolicyResolver) -> MilestoneLadder:
    return MilestoneLadder(resolver)


def _daily(score: int, days: int) -> list[ScoreHistoryEntry]:
    """One sample per day from ``days`` ago up to now inclusive."""
    return [
        ScoreHistoryEntry(score=score, timestamp=_now() - timedelta(days=d))
        for d in range(days, -1, -1)
    ]


def _with_dip(entries: list[ScoreHistoryEntry], days_ago: int, score: int) -> list[ScoreHistoryEntry]:
    when = _now() - timedelta(days=days_ago)
    return [
        ScoreHistoryEntry(score=score, timestamp=e.timestamp) if e.timestamp == when else e
        for e in entries
    ]


class TestRunLength:
    def test_empty_history(self) -> None:
        assert run_length_days([], 80, _now()) == 0

    def test_daily_samples(self) -> None:
        assert run_length_days(_daily(85, 45), 80, _now()) == 45

    def test_latest_sample_below_threshold(self) -> None:
        history = _with_dip(_daily(85, 45), days_ago=0, score=70)
        assert run_length_days(history, 80, _now()) == 0

    def test_single_dip_resets_run(self) -> None:
        history = _with_dip(_daily(85, 40), days_ago=10, score=79)
        assert run_length_days(history, 80, _now()) == 9

    def test_score_holds_between_samples(self) -> None:
        history = [ScoreHistoryEntry(score=90, timestamp=_now() - timedelta(days=35))]
        assert run_length_days(history, 80, _now()) == 35

    def test_entries_after_now_ignored(self) -> None:
        history = _daily(85, 30) + [
            ScoreHistoryEntry(score=10, timestamp=_now() + timedelta(days=1)),
        ]
        assert run_length_days(history, 80, _now()) == 30

    def test_partial_days_are_not_counted(self) -> None:
        history = [ScoreHistoryEntry(score=90, timestamp=_now() - timedelta(days=29, hours=23))]
        assert run_length_days(history, 80, _now()) == 29


class TestEligibility:
    def test_no_history_no_milestone(self, ladder: MilestoneLadder) -> None:
        eligibility = ladder.check_milestone_eligibility([], _now())
        assert eligibility.eligible_level is None
        assert eligibility.consecutive_days == 0

    def test_growing_at_thirty_days(self, ladder: MilestoneLadder) -> None:
        eligibility = ladder.check_milestone_eligibility(_daily(80, 30), _now())
        assert eligibility.eligible_level == MilestoneLevel.GROWING
        assert eligibility.consecutive_days == 30

    def test_growing_not_at_twenty_nine_days(self, ladder: MilestoneLadder) -> None:
        eligibility = ladder.check_milestone_eligibility(_daily(80, 29), _now())
        assert eligibility.eligible_level is None

    def test_threshold_is_inclusive(self, ladder: MilestoneLadder) -> None:
        below = ladder.check_milestone_eligibility(_daily(79, 60), _now())
        assert below.eligible_level is None

    def test_maturing(self, ladder: MilestoneLadder) -> None:
        eligibility = ladder.check_milestone_eligibility(_daily(86, 60), _now())
        assert eligibility.eligible_level == MilestoneLevel.MATURING
        assert eligibility.run_days[MilestoneLevel.GROWING] == 60
        assert eligibility.run_days[MilestoneLevel.READY_FOR_INDEPENDENCE] == 0

    def test_highest_level_wins(self, ladder: MilestoneLadder) -> None:
        eligibility = ladder.check_milestone_eligibility(_daily(95, 120), _now())
        assert eligibility.eligible_level == MilestoneLevel.READY_FOR_INDEPENDENCE
        assert eligibility.is_eligible(MilestoneLevel.GROWING)
        assert eligibility.is_eligible(MilestoneLevel.MATURING)

    def test_high_score_without_duration_falls_back(self, ladder: MilestoneLadder) -> None:
        history = _daily(82, 90)[:-45] + _daily(91, 44)
        eligibility = ladder.check_milestone_eligibility(history, _now())
        assert eligibility.eligible_level == MilestoneLevel.GROWING

    def test_dip_breaks_milestone(self, ladder: MilestoneLadder) -> None:
        history = _with_dip(_daily(86, 70), days_ago=5, score=70)
        eligibility = ladder.check_milestone_eligibility(history, _now())
        assert eligibility.eligible_level is None


class TestTransitions:
    def test_up(self, ladder: MilestoneLadder) -> None:
        status = ChildMilestoneStatus(child_id="child-1")
        eligibility = ladder.check_milestone_eligibility(_daily(81, 31), _now())
        transition = ladder.transition_milestone(status, eligibility)
        assert transition.direction == TransitionDirection.UP
        assert transition.from_level is None
        assert transition.to_level == MilestoneLevel.GROWING

    def test_down(self, ladder: MilestoneLadder) -> None:
        status = ChildMilestoneStatus(child_id="child-1", current_level=MilestoneLevel.MATURING)
        eligibility = ladder.check_milestone_eligibility(_daily(81, 40), _now())
        transition = ladder.transition_milestone(status, eligibility)
        assert transition.direction == TransitionDirection.DOWN
        assert transition.to_level == MilestoneLevel.GROWING

    def test_none(self, ladder: MilestoneLadder) -> None:
        status = ChildMilestoneStatus(child_id="child-1", current_level=MilestoneLevel.GROWING)
        eligibility = ladder.check_milestone_eligibility(_daily(81, 40), _now())
        transition = ladder.transition_milestone(status, eligibility)
        assert transition.direction == TransitionDirection.NONE
        assert transition.changed is False

    def test_apply_up_sets_achieved_at(self, ladder: MilestoneLadder) -> None:
        status = ChildMilestoneStatus(child_id="child-1")
        eligibility = ladder.check_milestone_eligibility(_daily(81, 31), _now())
        transition = ladder.transition_milestone(status, eligibility)
        updated = ladder.apply_transition(status, transition, eligibility)
        assert updated.current_level == MilestoneLevel.GROWING
        assert updated.achieved_at == _now()
        assert updated.consecutive_days_at_level == 31
        assert status.current_level is None

    def test_apply_none_keeps_achieved_at(self, ladder: MilestoneLadder) -> None:
        achieved = _now() - timedelta(days=10)
        status = ChildMilestoneStatus(
            child_id="child-1",
            current_level=MilestoneLevel.GROWING,
            achieved_at=achieved,
        )
        eligibility = ladder.check_milestone_eligibility(_daily(81, 40), _now())
        transition = ladder.transition_milestone(status, eligibility)
        updated = ladder.apply_transition(status, transition, eligibility)
        assert updated.achieved_at == achieved
        assert updated.consecutive_days_at_level == 40

    def test_apply_down_to_nothing(self, ladder: MilestoneLadder) -> None:
        status = ChildMilestoneStatus(child_id="child-1", current_level=MilestoneLevel.GROWING)
        eligibility = ladder.check_milestone_eligibility(_daily(60, 40), _now())
        transition = ladder.transition_milestone(status, eligibility)
        updated = ladder.apply_transition(status, transition, eligibility)
        assert updated.current_level is None
        assert updated.achieved_at is None
        assert updated.consecutive_days_at_level == 0

    def test_apply_rejects_mismatched_status(self, ladder: MilestoneLadder) -> None:
        status = ChildMilestoneStatus(child_id="child-1")
        eligibility = ladder.check_milestone_eligibility(_daily(81, 31), _now())
        transition = ladder.transition_milestone(status, eligibility)
        other = ChildMilestoneStatus(child_id="child-2")
        with pytest.raises(ValidationError):
            ladder.apply_transition(other, transition, eligibility)


class TestLevelOrdering:
    def test_ranks(self) -> None:
        assert milestone_rank(None) == 0
        assert milestone_rank(MilestoneLevel.GROWING) == 1
        assert milestone_rank(MilestoneLevel.MATURING) == 2
        assert milestone_rank(MilestoneLevel.READY_FOR_INDEPENDENCE) == 3


class TestScreenshotFrequency:
    @pytest.fixture
    def policy(self, resolver: PolicyResolver) -> MonitoringFrequencyPolicy:
        return MonitoringFrequencyPolicy(resolver)

    @pytest.mark.parametrize("level, minutes", [
        (None, 5),
        (MilestoneLevel.GROWING, 15),
        (MilestoneLevel.MATURING, 30),
        (MilestoneLevel.READY_FOR_INDEPENDENCE, 60),
    ])
    def test_interval(
        self, policy: MonitoringFrequencyPolicy, level: MilestoneLevel, minutes: int,
    ) -> None:
        assert policy.interval_minutes(level) == minutes

    def test_upgrade_is_reduction(self, policy: MonitoringFrequencyPolicy) -> None:
        change = policy.frequency_change(
            "child-1", MilestoneLevel.GROWING, MilestoneLevel.MATURING, _now(),
        )
        assert change is not None
        assert change.from_minutes == 15
        assert change.to_minutes == 30
        assert change.is_reduction is True

    def test_downgrade_is_not_reduction(self, policy: MonitoringFrequencyPolicy) -> None:
        change = policy.frequency_change("child-1", MilestoneLevel.GROWING, None, _now())
        assert change.is_reduction is False

    def test_same_level_no_change(self, policy: MonitoringFrequencyPolicy) -> None:
        assert policy.frequency_change(
            "child-1", MilestoneLevel.GROWING, MilestoneLevel.GROWING, _now(),
        ) is None
