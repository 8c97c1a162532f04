"""Tests for score-state creation and append-only updates."""

import pytest
from datetime import datetime, timedelta, timezone
from pathlib import Path

from trustladder.errors import ConflictError, ValidationError
from trustladder.models.trust import (
    FactorCategory,
    FactorType,
    ScoreHistoryEntry,
    TrustFactor,
    TrustScore,
)
from trustladder.policy.resolver import PolicyResolver
from trustladder.trust.engine import TrustScoreEngine


CONFIG_DIR = Path(__file__).resolve().parents[1] / "config"


def _now() -> datetime:
    return datetime(2026, 3, 2, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def engine() -> TrustScoreEngine:
    return TrustScoreEngine(PolicyResolver.from_config_dir(CONFIG_DIR))


def _compliance(value: int = 3) -> TrustFactor:
    return TrustFactor(
        type=FactorType.TIME_LIMIT_COMPLIANCE,
        category=FactorCategory.POSITIVE,
        value=value,
        description="Stayed within daily limit",
        occurred_at=_now(),
    )


class TestCreateTrustScore:
    def test_starts_at_seventy(self, engine: TrustScoreEngine) -> None:
        state = engine.create_trust_score("child-1", _now())
        assert state.current_score == 70
        assert state.history == ()
        assert state.created_at == _now()
        assert state.last_updated == _now()

    def test_empty_child_id_rejected(self, engine: TrustScoreEngine) -> None:
        with pytest.raises(ValidationError):
            engine.create_trust_score("", _now())


class TestApplyScore:
    def test_appends_history_entry(self, engine: TrustScoreEngine) -> None:
        state = engine.create_trust_score("child-1", _now())
        result = engine.calculate_new_score(state.current_score, [_compliance()], _now())
        updated = engine.apply_score(state, result)

        assert updated.current_score == 73
        assert len(updated.history) == 1
        entry = updated.history[0]
        assert entry.score == 73
        assert entry.timestamp == _now()
        assert entry.breakdown == result.breakdown

    def test_does_not_mutate_input(self, engine: TrustScoreEngine) -> None:
        state = engine.create_trust_score("child-1", _now())
        result = engine.calculate_new_score(state.current_score, [_compliance()], _now())
        engine.apply_score(state, result)
        assert state.current_score == 70
        assert state.history == ()

    def test_stale_result_rejected(self, engine: TrustScoreEngine) -> None:
        state = engine.create_trust_score("child-1", _now())
        stale = engine.calculate_new_score(70, [_compliance()], _now())
        moved = engine.apply_score(
            state, engine.calculate_new_score(70, [_compliance(5)], _now()),
        )
        with pytest.raises(ConflictError, match="Stale score update"):
            engine.apply_score(moved, stale)

    def test_conflict_is_a_validation_error(self, engine: TrustScoreEngine) -> None:
        state = TrustScore(child_id="child-1", current_score=80)
        stale = engine.calculate_new_score(70, [], _now())
        with pytest.raises(ValidationError):
            engine.apply_score(state, stale)

    def test_out_of_order_result_rejected(self, engine: TrustScoreEngine) -> None:
        state = engine.create_trust_score("child-1", _now())
        state = engine.apply_score(
            state, engine.calculate_new_score(70, [], _now()),
        )
        earlier = engine.calculate_new_score(70, [], _now() - timedelta(hours=1))
        with pytest.raises(ValidationError, match="predates"):
            engine.apply_score(state, earlier)

    def test_history_pruned_to_retention_window(self, engine: TrustScoreEngine) -> None:
        old = ScoreHistoryEntry(score=70, timestamp=_now() - timedelta(days=400))
        recent = ScoreHistoryEntry(score=70, timestamp=_now() - timedelta(days=100))
        state = TrustScore(child_id="child-1", current_score=70, history=(old, recent))

        updated = engine.apply_score(state, engine.calculate_new_score(70, [], _now()))
        assert old not in updated.history
        assert updated.history[0] == recent
        assert len(updated.history) == 2

    def test_every_entry_within_daily_clamp(self, engine: TrustScoreEngine) -> None:
        state = engine.create_trust_score("child-1", _now())
        for day in range(1, 6):
            when = _now() + timedelta(days=day)
            factor = TrustFactor(
                type=FactorType.BYPASS_ATTEMPT,
                category=FactorCategory.CONCERNING,
                value=-40,
                description="Tried to disable the extension",
                occurred_at=when,
            )
            state = engine.apply_score(
                state, engine.calculate_new_score(state.current_score, [factor], when),
            )
        deltas = [e.breakdown.final_delta for e in state.history]
        assert all(-10.0 <= d <= 5.0 for d in deltas)
        assert [e.score for e in state.history] == [60, 50, 40, 30, 20]
