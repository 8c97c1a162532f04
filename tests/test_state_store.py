"""Tests for the in-memory state store compare-and-swap semantics."""

import threading
from dataclasses import replace

import pytest
from datetime import datetime, timedelta, timezone

from trustladder.errors import ConflictError, TrustEngineError, ValidationError
from trustladder.models.milestone import ChildMilestoneStatus, MilestoneLevel
from trustladder.models.regression import RegressionEvent, RegressionStatus
from trustladder.models.trust import TrustScore
from trustladder.persistence.store import InMemoryStateStore, StateStore


def _now() -> datetime:
    return datetime(2026, 3, 2, 12, 0, 0, tzinfo=timezone.utc)


def _event(event_id: str, child_id: str = "child-1") -> RegressionEvent:
    return RegressionEvent(
        id=event_id,
        child_id=child_id,
        previous_milestone=MilestoneLevel.MATURING,
        current_milestone=MilestoneLevel.GROWING,
        occurred_at=_now(),
        grace_expires_at=_now() + timedelta(days=14),
    )


@pytest.fixture
def store() -> InMemoryStateStore:
    return InMemoryStateStore()


class TestProtocol:
    def test_in_memory_store_satisfies_protocol(self, store: InMemoryStateStore) -> None:
        assert isinstance(store, StateStore)


class TestScoreCas:
    def test_insert_requires_absent(self, store: InMemoryStateStore) -> None:
        state = TrustScore(child_id="child-1", current_score=70)
        store.compare_and_swap_score("child-1", None, state)
        assert store.get_score("child-1") == state
        with pytest.raises(ConflictError):
            store.compare_and_swap_score("child-1", None, state)

    def test_update_requires_expected_score(self, store: InMemoryStateStore) -> None:
        store.compare_and_swap_score("child-1", None, TrustScore("child-1", 70))
        store.compare_and_swap_score("child-1", 70, TrustScore("child-1", 75))
        with pytest.raises(ConflictError, match="expected 70, found 75"):
            store.compare_and_swap_score("child-1", 70, TrustScore("child-1", 72))
        assert store.get_score("child-1").current_score == 75

    def test_conflict_is_retryable_not_invalid(self, store: InMemoryStateStore) -> None:
        store.compare_and_swap_score("child-1", None, TrustScore("child-1", 70))
        with pytest.raises(TrustEngineError) as excinfo:
            store.compare_and_swap_score("child-1", 60, TrustScore("child-1", 65))
        assert isinstance(excinfo.value, ConflictError)
        assert not isinstance(excinfo.value, ValidationError)

    def test_concurrent_writers_one_wins(self, store: InMemoryStateStore) -> None:
        store.compare_and_swap_score("child-1", None, TrustScore("child-1", 70))
        outcomes: list[str] = []
        barrier = threading.Barrier(8)

        def writer(new_score: int) -> None:
            barrier.wait()
            try:
                store.compare_and_swap_score("child-1", 70, TrustScore("child-1", new_score))
                outcomes.append("ok")
            except ConflictError:
                outcomes.append("conflict")

        threads = [threading.Thread(target=writer, args=(71 + i,)) for i in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert outcomes.count("ok") == 1
        assert outcomes.count("conflict") == 7


class TestRegressionCas:
    def test_one_open_event_per_child(self, store: InMemoryStateStore) -> None:
        store.insert_regression(_event("reg_1"))
        with pytest.raises(ConflictError, match="already has open regression"):
            store.insert_regression(_event("reg_2"))
        store.insert_regression(_event("reg_3", child_id="child-2"))
        assert store.open_regression("child-1").id == "reg_1"

    def test_duplicate_id_rejected(self, store: InMemoryStateStore) -> None:
        store.insert_regression(_event("reg_1"))
        with pytest.raises(ConflictError):
            store.insert_regression(_event("reg_1", child_id="child-2"))

    def test_closed_event_frees_slot(self, store: InMemoryStateStore) -> None:
        event = _event("reg_1")
        store.insert_regression(event)
        closed = replace(event, conversation_held=True, status=RegressionStatus.RESOLVED)
        store.compare_and_swap_regression(RegressionStatus.GRACE_PERIOD, 0, closed)
        assert store.open_regression("child-1") is None
        store.insert_regression(_event("reg_2"))
        assert len(store.list_regressions("child-1")) == 2

    def test_stale_status_rejected(self, store: InMemoryStateStore) -> None:
        event = _event("reg_1")
        store.insert_regression(event)
        with pytest.raises(ConflictError, match="expected awaiting_conversation"):
            store.compare_and_swap_regression(RegressionStatus.AWAITING_CONVERSATION, 0, event)

    def test_unknown_event_rejected(self, store: InMemoryStateStore) -> None:
        with pytest.raises(ConflictError):
            store.compare_and_swap_regression(RegressionStatus.GRACE_PERIOD, 0, _event("reg_x"))

    def test_commit_bumps_version(self, store: InMemoryStateStore) -> None:
        event = _event("reg_1")
        store.insert_regression(event)
        committed = store.compare_and_swap_regression(
            RegressionStatus.GRACE_PERIOD, 0, replace(event, parent_notes="Call Friday"),
        )
        assert committed.version == 1
        assert store.get_regression("reg_1") == committed

    def test_interleaved_edits_do_not_overwrite(self, store: InMemoryStateStore) -> None:
        store.insert_regression(_event("reg_1"))
        stale = store.get_regression("reg_1")
        store.compare_and_swap_regression(
            stale.status, stale.version, replace(stale, child_explanation="exam week"),
        )
        with pytest.raises(ConflictError, match="v0, found grace_period v1"):
            store.compare_and_swap_regression(
                stale.status, stale.version, replace(stale, conversation_held=True),
            )
        current = store.get_regression("reg_1")
        assert current.child_explanation == "exam week"
        assert current.conversation_held is False

    def test_listing_while_inserting(self, store: InMemoryStateStore) -> None:
        errors: list[Exception] = []
        done = threading.Event()

        def reader() -> None:
            while not done.is_set():
                try:
                    store.list_regressions("child-0")
                    store.open_regression("child-0")
                except RuntimeError as exc:
                    errors.append(exc)
                    return

        thread = threading.Thread(target=reader)
        thread.start()
        for i in range(2000):
            store.insert_regression(_event(f"reg_{i}", child_id=f"child-{i}"))
        done.set()
        thread.join()
        assert errors == []
        assert len(store.list_regressions("child-7")) == 1


class TestMilestoneCas:
    def test_insert_requires_absent(self, store: InMemoryStateStore) -> None:
        status = ChildMilestoneStatus(child_id="child-1", evaluated_at=_now())
        store.compare_and_swap_milestone_status(None, status)
        with pytest.raises(ConflictError):
            store.compare_and_swap_milestone_status(None, status)

    def test_stale_status_rejected(self, store: InMemoryStateStore) -> None:
        first = ChildMilestoneStatus(child_id="child-1", evaluated_at=_now())
        store.compare_and_swap_milestone_status(None, first)
        growing = replace(first, current_level=MilestoneLevel.GROWING, achieved_at=_now())
        store.compare_and_swap_milestone_status(first, growing)
        with pytest.raises(ConflictError, match="changed since it was read"):
            store.compare_and_swap_milestone_status(first, replace(first, evaluated_at=_now()))
        assert store.get_milestone_status("child-1") == growing
