"""Milestone ladder models — ordered trust tiers and per-child status.

The ladder is a closed, ordered set:

    (no milestone) < growing < maturing < readyForIndependence

A level is reached by holding the score at or above its threshold for
its required number of consecutive days. ``None`` stands for "no
milestone" and ranks below every level.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional


class MilestoneLevel(str, enum.Enum):
    """Trust milestone tiers, declared lowest first."""
    GROWING = "growing"
    MATURING = "maturing"
    READY_FOR_INDEPENDENCE = "readyForIndependence"

    @property
    def rank(self) -> int:
        return _LADDER_ORDER.index(self) + 1


_LADDER_ORDER: tuple[MilestoneLevel, ...] = (
    MilestoneLevel.GROWING,
    MilestoneLevel.MATURING,
    MilestoneLevel.READY_FOR_INDEPENDENCE,
)


def milestone_rank(level: Optional[MilestoneLevel]) -> int:
    """Ladder position of a level; 0 for no milestone."""
    if level is None:
        return 0
    return level.rank


def is_strictly_below(
    lower: Optional[MilestoneLevel],
    upper: Optional[MilestoneLevel],
) -> bool:
    return milestone_rank(lower) < milestone_rank(upper)


class TransitionDirection(str, enum.Enum):
    """Direction of a milestone change."""
    UP = "up"
    DOWN = "down"
    NONE = "none"


@dataclass(frozen=True)
class MilestoneDefinition:
    """Threshold and duration gate for one level. Stateless policy data."""
    level: MilestoneLevel
    threshold: int
    required_days: int


@dataclass(frozen=True)
class ChildMilestoneStatus:
    """Current milestone of a child, as last evaluated by the ladder."""
    child_id: str
    current_level: Optional[MilestoneLevel] = None
    achieved_at: Optional[datetime] = None
    consecutive_days_at_level: int = 0
    evaluated_at: Optional[datetime] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "child_id": self.child_id,
            "current_level": self.current_level.value if self.current_level else None,
            "achieved_at": self.achieved_at.isoformat() if self.achieved_at else None,
            "consecutive_days_at_level": self.consecutive_days_at_level,
            "evaluated_at": self.evaluated_at.isoformat() if self.evaluated_at else None,
        }


@dataclass(frozen=True)
class MilestoneEligibility:
    """Result of scanning the score history against the ladder.

    run_days maps every level to its current unbroken run length, so
    callers can show progress toward the next tier.
    """
    eligible_level: Optional[MilestoneLevel]
    consecutive_days: int
    evaluated_at: datetime
    run_days: dict[MilestoneLevel, int] = field(default_factory=dict)

    def is_eligible(self, level: MilestoneLevel) -> bool:
        return milestone_rank(self.eligible_level) >= level.rank


@dataclass(frozen=True)
class MilestoneTransition:
    """A detected change (or non-change) of milestone level."""
    child_id: str
    from_level: Optional[MilestoneLevel]
    to_level: Optional[MilestoneLevel]
    direction: TransitionDirection
    detected_at: datetime

    @property
    def changed(self) -> bool:
        return self.direction != TransitionDirection.NONE

    def to_dict(self) -> dict[str, Any]:
        return {
            "child_id": self.child_id,
            "from_level": self.from_level.value if self.from_level else None,
            "to_level": self.to_level.value if self.to_level else None,
            "direction": self.direction.value,
            "detected_at": self.detected_at.isoformat(),
        }
