"""Core data models for the trust progression engine."""

from trustladder.models.trust import (
    FactorCategory,
    FactorType,
    ScoreBreakdown,
    ScoreCalculationResult,
    ScoreHistoryEntry,
    TrustFactor,
    TrustScore,
)
from trustladder.models.milestone import (
    ChildMilestoneStatus,
    MilestoneDefinition,
    MilestoneEligibility,
    MilestoneLevel,
    MilestoneTransition,
    TransitionDirection,
    milestone_rank,
)
from trustladder.models.regression import (
    RegressionEvent,
    RegressionStatus,
    RegressionSummary,
)
from trustladder.models.reduction import (
    AutomaticReductionConfig,
    GraduationPath,
    GraduationStatus,
    ModeTransition,
    NotificationOnlyConfig,
    OverrideRequest,
    OverrideStatus,
    ReductionResult,
    ReductionType,
)

__all__ = [
    "FactorCategory",
    "FactorType",
    "ScoreBreakdown",
    "ScoreCalculationResult",
    "ScoreHistoryEntry",
    "TrustFactor",
    "TrustScore",
    "ChildMilestoneStatus",
    "MilestoneDefinition",
    "MilestoneEligibility",
    "MilestoneLevel",
    "MilestoneTransition",
    "TransitionDirection",
    "milestone_rank",
    "RegressionEvent",
    "RegressionStatus",
    "RegressionSummary",
    "AutomaticReductionConfig",
    "GraduationPath",
    "GraduationStatus",
    "ModeTransition",
    "NotificationOnlyConfig",
    "OverrideRequest",
    "OverrideStatus",
    "ReductionResult",
    "ReductionType",
]
