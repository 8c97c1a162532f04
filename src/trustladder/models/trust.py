"""Trust factor, score breakdown, and score-state data models.

Trust in the engine is:
- Earned from observed behavior, one TrustFactor at a time.
- Weighted toward recent behavior (step-function recency bands).
- Bounded: current_score always lies within [0, 100].
- Rate-limited: one calculation moves the score by at most the daily clamp
  (+5 up, -10 down by default).
- Started at 70 for every new child profile ("benefit of the doubt").
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional


class FactorCategory(str, enum.Enum):
    """Which way a factor pushes the score."""
    POSITIVE = "positive"
    NEUTRAL = "neutral"
    CONCERNING = "concerning"


class FactorType(str, enum.Enum):
    """Behavior classes produced by the upstream classifiers."""
    TIME_LIMIT_COMPLIANCE = "time-limit-compliance"
    FOCUS_MODE_USAGE = "focus-mode-usage"
    NO_BYPASS_ATTEMPTS = "no-bypass-attempts"
    NORMAL_APP_USAGE = "normal-app-usage"
    BYPASS_ATTEMPT = "bypass-attempt"
    MONITORING_DISABLED = "monitoring-disabled"


@dataclass(frozen=True)
class TrustFactor:
    """A single classified behavioral observation.

    The engine trusts the category/value pairing it is given; checking
    that a bypass attempt carries a negative value is the producer's job.
    """
    type: FactorType
    category: FactorCategory
    value: int
    description: str
    occurred_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type.value,
            "category": self.category.value,
            "value": self.value,
            "description": self.description,
            "occurred_at": self.occurred_at.isoformat(),
        }


@dataclass(frozen=True)
class ScoreBreakdown:
    """Transparent per-category view of one score calculation.

    raw_delta is the unclamped sum of all weighted factors; final_delta
    is raw_delta after the daily clamp.
    """
    positive_points: float = 0.0
    neutral_points: float = 0.0
    concerning_points: float = 0.0
    recency_multiplier: float = 1.0
    raw_delta: float = 0.0
    final_delta: float = 0.0

    @property
    def was_clamped(self) -> bool:
        return self.raw_delta != self.final_delta

    def to_dict(self) -> dict[str, Any]:
        return {
            "positive_points": self.positive_points,
            "neutral_points": self.neutral_points,
            "concerning_points": self.concerning_points,
            "recency_multiplier": self.recency_multiplier,
            "raw_delta": self.raw_delta,
            "final_delta": self.final_delta,
        }


@dataclass(frozen=True)
class ScoreCalculationResult:
    """Output of the scorer. Carries previous_score for stale-write detection."""
    previous_score: int
    new_score: int
    breakdown: ScoreBreakdown
    factors_applied: tuple[TrustFactor, ...]
    calculated_at: datetime

    @property
    def delta(self) -> int:
        return self.new_score - self.previous_score


@dataclass(frozen=True)
class ScoreHistoryEntry:
    """One point of the score time series."""
    score: int
    timestamp: datetime
    breakdown: Optional[ScoreBreakdown] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "score": self.score,
            "timestamp": self.timestamp.isoformat(),
            "breakdown": self.breakdown.to_dict() if self.breakdown else None,
        }


@dataclass(frozen=True)
class TrustScore:
    """Persisted score state for a single child.

    Invariants enforced by the engine:
    - 0 <= current_score <= 100.
    - history is ordered by timestamp, oldest first.
    - every history breakdown's final_delta lies within the daily clamp.
    """
    child_id: str
    current_score: int
    history: tuple[ScoreHistoryEntry, ...] = field(default_factory=tuple)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def last_updated(self) -> Optional[datetime]:
        if self.history:
            return self.history[-1].timestamp
        return self.created_at

    def to_dict(self) -> dict[str, Any]:
        return {
            "child_id": self.child_id,
            "current_score": self.current_score,
            "history": [entry.to_dict() for entry in self.history],
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
