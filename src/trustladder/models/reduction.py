"""Automatic reduction, override, graduation-path and notification-only models.

Sustained near-maximum trust earns less monitoring:
- Notification-only mode: 95+ for 30 days pauses screenshot capture.
- Automatic reduction: 95+ for 180 days forces a one-way reduction and
  starts a graduation path.

An override of the automatic reduction needs BOTH a guardian request and
the child's agreement. There is no field a guardian can set that stands
in for the child's consent.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional


class OverrideStatus(str, enum.Enum):
    """Lifecycle of a guardian's override request."""
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    WITHDRAWN = "withdrawn"


class ReductionType(str, enum.Enum):
    """Outcome classification of an automatic reduction attempt."""
    AUTOMATIC_FULL = "automatic-full"
    OVERRIDE_APPROVED = "override-approved"
    ALREADY_REDUCED = "already-reduced"
    NOT_ELIGIBLE = "not-eligible"


class GraduationStatus(str, enum.Enum):
    """Lifecycle of a graduation path."""
    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETED = "completed"
    REGRESSED = "regressed"


@dataclass(frozen=True)
class AutomaticReductionConfig:
    """Per-child automatic reduction state.

    Override only takes effect when override_requested AND
    override_agreed_by_child are both true.
    """
    child_id: str
    eligible_at: Optional[datetime] = None
    applied_at: Optional[datetime] = None
    override_requested: bool = False
    override_agreed_by_child: bool = False
    override_reason: Optional[str] = None
    graduation_path_started: bool = False
    expected_graduation_date: Optional[datetime] = None

    @property
    def override_in_effect(self) -> bool:
        return self.override_requested and self.override_agreed_by_child

    def to_dict(self) -> dict[str, Any]:
        return {
            "child_id": self.child_id,
            "eligible_at": self.eligible_at.isoformat() if self.eligible_at else None,
            "applied_at": self.applied_at.isoformat() if self.applied_at else None,
            "override_requested": self.override_requested,
            "override_agreed_by_child": self.override_agreed_by_child,
            "override_reason": self.override_reason,
            "graduation_path_started": self.graduation_path_started,
            "expected_graduation_date": (
                self.expected_graduation_date.isoformat()
                if self.expected_graduation_date else None
            ),
        }


@dataclass(frozen=True)
class OverrideRequest:
    """A guardian's request to pause the automatic reduction."""
    child_id: str
    requested_by: str
    reason: str
    requested_at: datetime
    status: OverrideStatus = OverrideStatus.PENDING
    responded_at: Optional[datetime] = None
    child_response: Optional[str] = None


@dataclass(frozen=True)
class ReductionResult:
    """Structured fact describing an automatic reduction attempt."""
    child_id: str
    success: bool
    reduction_type: ReductionType
    applied_at: Optional[datetime]
    message: str
    graduation_path_initiated: bool = False


@dataclass(frozen=True)
class GraduationPath:
    """Progress record toward full account graduation."""
    child_id: str
    started_at: datetime
    expected_graduation_date: datetime
    progress_percent: int = 0
    milestones_achieved: tuple[str, ...] = field(default_factory=tuple)
    status: GraduationStatus = GraduationStatus.ACTIVE


@dataclass(frozen=True)
class NotificationOnlyConfig:
    """Per-child notification-only mode settings.

    qualified_at is history: it survives disabling the mode.
    """
    child_id: str
    enabled: bool = False
    enabled_at: Optional[datetime] = None
    qualified_at: Optional[datetime] = None
    daily_summary_enabled: bool = True
    time_limits_still_enforced: bool = True


@dataclass(frozen=True)
class ModeTransition:
    """Record of notification-only mode being switched on or off."""
    child_id: str
    from_enabled: bool
    to_enabled: bool
    reason: str
    transitioned_at: datetime
    notes: Optional[str] = None
