"""Recency-weighted trust scorer and score-state updates.

Score model:
  delta = clamp( sum(value_i * w(age_i)), -max_decrease, +max_increase )
  new   = clamp( round_half_up(current + delta), score_min, score_max )

where w(age) is a step function of factor age in days:
  <= 7 -> 1.0, <= 14 -> 0.75, <= 30 -> 0.5, older -> 0.25

Invariants enforced:
- 0 <= score <= 100 after every calculation.
- A single calculation moves the score by at most the daily clamp.
- Newer factors never weigh less than older ones.
- Future-dated factors count as age 0 (full weight).
- Applying a result to state whose score moved since the result was
  computed is rejected (ConflictError), never silently merged.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Optional, Sequence

from trustladder.errors import ConflictError, ValidationError
from trustladder.models.trust import (
    FactorCategory,
    ScoreBreakdown,
    ScoreCalculationResult,
    ScoreHistoryEntry,
    TrustFactor,
    TrustScore,
)
from trustladder.policy.resolver import PolicyResolver

logger = logging.getLogger(__name__)

_SECONDS_PER_DAY = 86400.0


def _round2(value: float) -> float:
    """Round half-up to two decimals (7.125 -> 7.13, not banker's 7.12)."""
    return float(Decimal(str(value)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def _round_half_up(value: float) -> int:
    return int(Decimal(str(value)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


class TrustScoreEngine:
    """Computes recency-weighted score changes and maintains score state."""

    def __init__(self, resolver: PolicyResolver) -> None:
        self._resolver = resolver

    # ------------------------------------------------------------------
    # Recency weighting
    # ------------------------------------------------------------------

    def recency_weight(self, occurred_at: datetime, reference_time: datetime) -> float:
        """Weight for a factor observed at ``occurred_at``."""
        age_days = (reference_time - occurred_at).total_seconds() / _SECONDS_PER_DAY
        if age_days < 0:
            age_days = 0.0
        for max_age, weight in self._resolver.recency_bands():
            if age_days <= max_age:
                return weight
        return self._resolver.older_recency_weight()

    def apply_recency_weight(self, factor: TrustFactor, reference_time: datetime) -> float:
        return _round2(factor.value * self.recency_weight(factor.occurred_at, reference_time))

    # ------------------------------------------------------------------
    # Per-category contributions
    # ------------------------------------------------------------------

    def _category_contribution(
        self,
        factors: Iterable[TrustFactor],
        category: FactorCategory,
        reference_time: datetime,
    ) -> float:
        total = sum(
            self.apply_recency_weight(f, reference_time)
            for f in factors
            if f.category == category
        )
        return _round2(total)

    def positive_contribution(
        self, factors: Sequence[TrustFactor], reference_time: datetime,
    ) -> float:
        return self._category_contribution(factors, FactorCategory.POSITIVE, reference_time)

    def neutral_contribution(
        self, factors: Sequence[TrustFactor], reference_time: datetime,
    ) -> float:
        return self._category_contribution(factors, FactorCategory.NEUTRAL, reference_time)

    def concerning_contribution(
        self, factors: Sequence[TrustFactor], reference_time: datetime,
    ) -> float:
        return self._category_contribution(factors, FactorCategory.CONCERNING, reference_time)

    def weighted_factor_contribution(
        self, factors: Sequence[TrustFactor], reference_time: datetime,
    ) -> float:
        """Unclamped sum of every recency-weighted factor value."""
        return _round2(sum(self.apply_recency_weight(f, reference_time) for f in factors))

    def recency_multiplier(
        self, factors: Sequence[TrustFactor], reference_time: datetime,
    ) -> float:
        """Mean recency weight across the factors; 1.0 when there are none."""
        if not factors:
            return 1.0
        weights = [self.recency_weight(f.occurred_at, reference_time) for f in factors]
        return _round2(sum(weights) / len(weights))

    # ------------------------------------------------------------------
    # Breakdown and clamp
    # ------------------------------------------------------------------

    def clamp_daily_delta(self, delta: float) -> float:
        max_increase, max_decrease = self._resolver.daily_clamp()
        return max(-max_decrease, min(max_increase, delta))

    def generate_breakdown(
        self,
        factors: Sequence[TrustFactor],
        reference_time: Optional[datetime] = None,
    ) -> ScoreBreakdown:
        reference_time = reference_time or datetime.now(timezone.utc)
        raw_delta = self.weighted_factor_contribution(factors, reference_time)
        return ScoreBreakdown(
            positive_points=self.positive_contribution(factors, reference_time),
            neutral_points=self.neutral_contribution(factors, reference_time),
            concerning_points=self.concerning_contribution(factors, reference_time),
            recency_multiplier=self.recency_multiplier(factors, reference_time),
            raw_delta=raw_delta,
            final_delta=self.clamp_daily_delta(raw_delta),
        )

    # ------------------------------------------------------------------
    # Score calculation
    # ------------------------------------------------------------------

    def calculate_new_score(
        self,
        current_score: int,
        factors: Sequence[TrustFactor],
        reference_time: Optional[datetime] = None,
    ) -> ScoreCalculationResult:
        """Compute the next score from the current one and a batch of factors.

        Pure: reads only its arguments and the policy. reference_time
        defaults to the current UTC time.
        """
        self._check_score(current_score)
        reference_time = reference_time or datetime.now(timezone.utc)
        factors = tuple(factors)

        breakdown = self.generate_breakdown(factors, reference_time)
        score_min, score_max = self._resolver.score_bounds()
        new_score = _round_half_up(current_score + breakdown.final_delta)
        new_score = max(score_min, min(score_max, new_score))

        logger.debug(
            "Score %d -> %d from %d factors (raw %.2f, final %.2f)",
            current_score, new_score, len(factors),
            breakdown.raw_delta, breakdown.final_delta,
        )
        return ScoreCalculationResult(
            previous_score=current_score,
            new_score=new_score,
            breakdown=breakdown,
            factors_applied=factors,
            calculated_at=reference_time,
        )

    # ------------------------------------------------------------------
    # Score state
    # ------------------------------------------------------------------

    def create_trust_score(
        self, child_id: str, now: Optional[datetime] = None,
    ) -> TrustScore:
        """New score record at the default starting score, empty history."""
        if not child_id:
            raise ValidationError("child_id must be non-empty")
        now = now or datetime.now(timezone.utc)
        return TrustScore(
            child_id=child_id,
            current_score=self._resolver.default_score(),
            created_at=now,
            updated_at=now,
        )

    def apply_score(
        self, state: TrustScore, result: ScoreCalculationResult,
    ) -> TrustScore:
        """Append a calculation result to the score history.

        Does NOT mutate the input state. Returns a new copy.

        Raises:
            ConflictError: the result was computed from a different score.
            ValidationError: the result predates the latest history entry.
        """
        if result.previous_score != state.current_score:
            raise ConflictError(
                f"Stale score update for {state.child_id}: computed from "
                f"{result.previous_score}, current is {state.current_score}"
            )
        if state.history and result.calculated_at < state.history[-1].timestamp:
            raise ValidationError(
                f"Score update for {state.child_id} at {result.calculated_at.isoformat()} "
                f"predates latest history entry {state.history[-1].timestamp.isoformat()}"
            )

        cutoff = result.calculated_at - timedelta(days=self._resolver.history_retention_days())
        kept = tuple(e for e in state.history if e.timestamp >= cutoff)
        entry = ScoreHistoryEntry(
            score=result.new_score,
            timestamp=result.calculated_at,
            breakdown=result.breakdown,
        )
        return TrustScore(
            child_id=state.child_id,
            current_score=result.new_score,
            history=kept + (entry,),
            created_at=state.created_at,
            updated_at=result.calculated_at,
        )

    def _check_score(self, score: int) -> None:
        score_min, score_max = self._resolver.score_bounds()
        if isinstance(score, bool) or not isinstance(score, int):
            raise ValidationError(f"Score must be an integer, got {score!r}")
        if not score_min <= score <= score_max:
            raise ValidationError(
                f"Score {score} outside [{score_min}, {score_max}]"
            )
