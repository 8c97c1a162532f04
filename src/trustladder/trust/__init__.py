"""Recency-weighted trust scoring and score-state updates."""

from trustladder.trust.engine import TrustScoreEngine

__all__ = ["TrustScoreEngine"]
