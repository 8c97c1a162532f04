"""Regression event models — the conversation-gated milestone downgrade.

State machine:
    GRACE_PERIOD → AWAITING_CONVERSATION   (grace window elapsed, lazily)
    GRACE_PERIOD → RESOLVED                (conversation held early)
    GRACE_PERIOD → REVERTED                (conversation held early)
    AWAITING_CONVERSATION → RESOLVED       (explained away, no change)
    AWAITING_CONVERSATION → REVERTED       (monitoring reverted to stricter level)

RESOLVED and REVERTED are terminal and both require conversation_held.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any, Dict, Optional

from trustladder.errors import PreconditionError
from trustladder.models.milestone import MilestoneLevel


class RegressionStatus(str, enum.Enum):
    """Lifecycle of a regression event."""
    GRACE_PERIOD = "grace_period"
    AWAITING_CONVERSATION = "awaiting_conversation"
    RESOLVED = "resolved"
    REVERTED = "reverted"

    @property
    def is_terminal(self) -> bool:
        return self in (RegressionStatus.RESOLVED, RegressionStatus.REVERTED)


REGRESSION_TRANSITIONS: Dict[RegressionStatus, frozenset] = {
    RegressionStatus.GRACE_PERIOD: frozenset({
        RegressionStatus.AWAITING_CONVERSATION,
        RegressionStatus.RESOLVED,
        RegressionStatus.REVERTED,
    }),
    RegressionStatus.AWAITING_CONVERSATION: frozenset({
        RegressionStatus.RESOLVED,
        RegressionStatus.REVERTED,
    }),
    RegressionStatus.RESOLVED: frozenset(),
    RegressionStatus.REVERTED: frozenset(),
}


@dataclass(frozen=True)
class RegressionEvent:
    """A detected milestone downgrade awaiting a parent-child conversation.

    current_milestone is strictly below previous_milestone; None means the
    child dropped below the first rung entirely. version counts committed
    writes and is the compare-and-swap precondition.
    """
    id: str
    child_id: str
    previous_milestone: MilestoneLevel
    current_milestone: Optional[MilestoneLevel]
    occurred_at: datetime
    grace_expires_at: datetime
    status: RegressionStatus = RegressionStatus.GRACE_PERIOD
    conversation_held: bool = False
    conversation_held_at: Optional[datetime] = None
    child_explanation: Optional[str] = None
    parent_notes: Optional[str] = None
    updated_at: Optional[datetime] = None
    version: int = 0

    @property
    def is_open(self) -> bool:
        return not self.status.is_terminal

    def transition_to(self, new_status: RegressionStatus, now: datetime) -> RegressionEvent:
        """Return a copy in ``new_status``, validating the transition is legal."""
        allowed = REGRESSION_TRANSITIONS.get(self.status, frozenset())
        if new_status not in allowed:
            raise PreconditionError(
                f"Invalid regression transition: {self.status.value} → {new_status.value}. "
                f"Allowed: {', '.join(sorted(s.value for s in allowed)) or 'none'}"
            )
        if new_status.is_terminal and not self.conversation_held:
            raise PreconditionError(
                f"Conversation must be held before regression {self.id} "
                f"can be {new_status.value}"
            )
        return replace(self, status=new_status, updated_at=now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "child_id": self.child_id,
            "previous_milestone": self.previous_milestone.value,
            "current_milestone": (
                self.current_milestone.value if self.current_milestone else None
            ),
            "occurred_at": self.occurred_at.isoformat(),
            "grace_expires_at": self.grace_expires_at.isoformat(),
            "status": self.status.value,
            "conversation_held": self.conversation_held,
            "conversation_held_at": (
                self.conversation_held_at.isoformat() if self.conversation_held_at else None
            ),
            "child_explanation": self.child_explanation,
            "parent_notes": self.parent_notes,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
            "version": self.version,
        }


@dataclass(frozen=True)
class RegressionSummary:
    """Flat view of a child's regression state for the messaging layer."""
    child_id: str
    has_active_regression: bool
    is_in_grace_period: bool
    days_remaining: int
    conversation_held: bool
    child_explained: bool
    status: Optional[RegressionStatus]
    event_id: Optional[str] = None
