"""Screenshot capture cadence per milestone level."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

from trustladder.models.milestone import MilestoneLevel
from trustladder.policy.resolver import PolicyResolver


@dataclass(frozen=True)
class FrequencyChange:
    """A change of capture interval caused by a milestone transition.

    A longer interval is a monitoring reduction.
    """
    child_id: str
    from_minutes: int
    to_minutes: int
    changed_at: datetime

    @property
    def is_reduction(self) -> bool:
        return self.to_minutes > self.from_minutes

    def to_dict(self) -> dict[str, Any]:
        return {
            "child_id": self.child_id,
            "from_minutes": self.from_minutes,
            "to_minutes": self.to_minutes,
            "changed_at": self.changed_at.isoformat(),
        }


class MonitoringFrequencyPolicy:
    """Maps milestone levels to screenshot intervals."""

    def __init__(self, resolver: PolicyResolver) -> None:
        self._table = resolver.screenshot_frequency_minutes()

    def interval_minutes(self, level: Optional[MilestoneLevel]) -> int:
        """Capture interval for ``level``; None is the baseline cadence."""
        return self._table[level]

    def frequency_change(
        self,
        child_id: str,
        from_level: Optional[MilestoneLevel],
        to_level: Optional[MilestoneLevel],
        now: datetime,
    ) -> Optional[FrequencyChange]:
        """Describe the cadence change between two levels, or None if unchanged."""
        before = self.interval_minutes(from_level)
        after = self.interval_minutes(to_level)
        if before == after:
            return None
        return FrequencyChange(
            child_id=child_id,
            from_minutes=before,
            to_minutes=after,
            changed_at=now,
        )
