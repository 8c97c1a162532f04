"""Notification-only mode — screenshot capture paused after sustained trust.

Qualification: trust >= 95 held for 30 days (same run-length scan as the
milestone ladder). While the mode is active:
- no screenshots are captured;
- time limits stay enforced unless the guardian turns them off;
- a daily summary replaces per-capture notifications.

qualified_at records the first qualification and survives disabling.
"""

from __future__ import annotations

import math
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Optional

from trustladder.errors import PreconditionError
from trustladder.milestones.ladder import run_length_days
from trustladder.models.reduction import ModeTransition, NotificationOnlyConfig
from trustladder.models.trust import TrustScore
from trustladder.policy.resolver import PolicyResolver

ENABLE_REASON = "milestone-achieved"
DISABLE_REASON = "trust-regression"


class NotificationOnlyMode:
    """Qualification checks and enable/disable transitions for the mode."""

    def __init__(self, resolver: PolicyResolver) -> None:
        self._resolver = resolver

    # ------------------------------------------------------------------
    # Qualification
    # ------------------------------------------------------------------

    def days_at_threshold(self, score_state: TrustScore, now: Optional[datetime] = None) -> int:
        now = now or datetime.now(timezone.utc)
        threshold, _ = self._resolver.notification_only()
        return run_length_days(score_state.history, threshold, now)

    def is_qualified(self, score_state: TrustScore, now: Optional[datetime] = None) -> bool:
        threshold, duration_days = self._resolver.notification_only()
        if score_state.current_score < threshold:
            return False
        return self.days_at_threshold(score_state, now) >= duration_days

    def days_until_qualification(self, current_score: int, days_at_threshold: int) -> int:
        """Days still to hold; -1 when the score is too low."""
        threshold, duration_days = self._resolver.notification_only()
        if current_score < threshold:
            return -1
        return max(0, duration_days - days_at_threshold)

    def qualification_progress(self, current_score: int, days_at_threshold: int) -> int:
        threshold, duration_days = self._resolver.notification_only()
        if current_score < threshold:
            return 0
        return min(100, math.floor(days_at_threshold * 100 / duration_days + 0.5))

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    @staticmethod
    def create_default_config(child_id: str) -> NotificationOnlyConfig:
        return NotificationOnlyConfig(child_id=child_id)

    def enable(
        self,
        config: NotificationOnlyConfig,
        now: Optional[datetime] = None,
        reason: str = ENABLE_REASON,
        notes: Optional[str] = None,
    ) -> tuple[NotificationOnlyConfig, ModeTransition]:
        now = now or datetime.now(timezone.utc)
        if self.is_active(config):
            raise PreconditionError(
                f"Notification-only mode already enabled for {config.child_id}"
            )
        updated = replace(
            config,
            enabled=True,
            enabled_at=now,
            qualified_at=config.qualified_at or now,
        )
        return updated, ModeTransition(
            child_id=config.child_id,
            from_enabled=False,
            to_enabled=True,
            reason=reason,
            transitioned_at=now,
            notes=notes,
        )

    def disable(
        self,
        config: NotificationOnlyConfig,
        now: Optional[datetime] = None,
        reason: str = DISABLE_REASON,
        notes: Optional[str] = None,
    ) -> tuple[NotificationOnlyConfig, ModeTransition]:
        now = now or datetime.now(timezone.utc)
        if not config.enabled:
            raise PreconditionError(
                f"Notification-only mode is not enabled for {config.child_id}"
            )
        updated = replace(config, enabled=False, enabled_at=None)
        return updated, ModeTransition(
            child_id=config.child_id,
            from_enabled=True,
            to_enabled=False,
            reason=reason,
            transitioned_at=now,
            notes=notes,
        )

    @staticmethod
    def update_settings(
        config: NotificationOnlyConfig,
        daily_summary_enabled: Optional[bool] = None,
        time_limits_still_enforced: Optional[bool] = None,
    ) -> NotificationOnlyConfig:
        changes = {}
        if daily_summary_enabled is not None:
            changes["daily_summary_enabled"] = daily_summary_enabled
        if time_limits_still_enforced is not None:
            changes["time_limits_still_enforced"] = time_limits_still_enforced
        return replace(config, **changes)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @staticmethod
    def is_active(config: NotificationOnlyConfig) -> bool:
        return config.enabled and config.enabled_at is not None

    def should_capture_screenshots(self, config: NotificationOnlyConfig) -> bool:
        return not self.is_active(config)

    def should_enforce_time_limits(self, config: NotificationOnlyConfig) -> bool:
        if not self.is_active(config):
            return True
        return config.time_limits_still_enforced

    @staticmethod
    def has_ever_qualified(config: NotificationOnlyConfig) -> bool:
        return config.qualified_at is not None

    def time_since_enabled(
        self, config: NotificationOnlyConfig, now: Optional[datetime] = None,
    ) -> Optional[timedelta]:
        if not self.is_active(config):
            return None
        now = now or datetime.now(timezone.utc)
        return now - config.enabled_at
