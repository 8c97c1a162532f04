"""Policy resolver — the single source of every tunable engine constant.

Grace period length, recency bands, daily clamp magnitudes, milestone
thresholds and durations, screenshot cadences, and the automatic
reduction / notification-only thresholds all live here, never inside
the algorithmic code.

Resolution order:
1. Built-in defaults (DEFAULT_POLICY).
2. ``trust_policy.json`` in a config directory, overlaid section by section.

The config directory can be supplied directly or through the
TRUSTLADDER_CONFIG_DIR environment variable (a ``.env`` file is honoured).

Every loaded policy is validated; an invalid value raises ValidationError
at load time rather than producing a silently wrong score later.
"""

from __future__ import annotations

import copy
import json
import os
from pathlib import Path
from typing import Any, Optional

from dotenv import load_dotenv

from trustladder.errors import ValidationError
from trustladder.models.milestone import MilestoneDefinition, MilestoneLevel


POLICY_FILENAME = "trust_policy.json"
CONFIG_DIR_ENV = "TRUSTLADDER_CONFIG_DIR"

DEFAULT_POLICY: dict[str, Any] = {
    "score": {
        "min": 0,
        "max": 100,
        "default": 70,
        "history_retention_days": 365,
    },
    "recency": {
        "bands": [
            {"max_age_days": 7, "weight": 1.0},
            {"max_age_days": 14, "weight": 0.75},
            {"max_age_days": 30, "weight": 0.5},
        ],
        "older_weight": 0.25,
    },
    "daily_clamp": {
        "max_increase": 5,
        "max_decrease": 10,
    },
    "milestones": [
        {"level": "growing", "threshold": 80, "required_days": 30},
        {"level": "maturing", "threshold": 85, "required_days": 60},
        {"level": "readyForIndependence", "threshold": 90, "required_days": 90},
    ],
    "screenshot_frequency_minutes": {
        "baseline": 5,
        "growing": 15,
        "maturing": 30,
        "readyForIndependence": 60,
    },
    "regression": {
        "grace_period_days": 14,
        "min_grace_period_days": 7,
        "max_grace_period_days": 30,
        "max_explanation_length": 2000,
    },
    "automatic_reduction": {
        "trust_threshold": 95,
        "duration_days": 180,
        "graduation_months": 12,
        "min_override_reason_length": 10,
    },
    "notification_only": {
        "trust_threshold": 95,
        "duration_days": 30,
    },
}

# Minimum retention: milestone and reduction scans look back up to a year.
_MIN_RETENTION_DAYS = 365


class PolicyResolver:
    """Resolves engine policy from defaults plus an optional config overlay.

    Usage:
        resolver = PolicyResolver.from_config_dir(config_dir)
        max_up, max_down = resolver.daily_clamp()
        definitions = resolver.milestone_definitions()
    """

    def __init__(self, params: Optional[dict[str, Any]] = None) -> None:
        merged = copy.deepcopy(DEFAULT_POLICY)
        for section, value in (params or {}).items():
            if isinstance(value, dict) and isinstance(merged.get(section), dict):
                merged[section].update(value)
            else:
                merged[section] = value
        self._params = merged
        self._milestones = self._parse_milestones(merged["milestones"])
        self._validate()

    @classmethod
    def from_config_dir(cls, config_dir: Path) -> PolicyResolver:
        """Load ``trust_policy.json`` from a directory and overlay the defaults."""
        path = Path(config_dir) / POLICY_FILENAME
        if not path.exists():
            raise FileNotFoundError(f"Trust policy not found: {path}")
        with path.open("r", encoding="utf-8") as handle:
            data = json.load(handle)
        if not isinstance(data, dict):
            raise ValidationError(f"Trust policy must be a JSON object: {path}")
        return cls(data)

    @classmethod
    def from_env(cls, env_file: Optional[Path] = None) -> PolicyResolver:
        """Resolve the config directory from the environment.

        Falls back to built-in defaults when TRUSTLADDER_CONFIG_DIR is unset.
        """
        load_dotenv(env_file)
        config_dir = os.getenv(CONFIG_DIR_ENV)
        if not config_dir:
            return cls()
        return cls.from_config_dir(Path(config_dir))

    # ------------------------------------------------------------------
    # Score
    # ------------------------------------------------------------------

    def score_bounds(self) -> tuple[int, int]:
        score = self._params["score"]
        return score["min"], score["max"]

    def default_score(self) -> int:
        return self._params["score"]["default"]

    def history_retention_days(self) -> int:
        return self._params["score"]["history_retention_days"]

    def recency_bands(self) -> list[tuple[float, float]]:
        """Return (max_age_days, weight) pairs, youngest band first."""
        bands = self._params["recency"]["bands"]
        return [(float(b["max_age_days"]), float(b["weight"])) for b in bands]

    def older_recency_weight(self) -> float:
        return float(self._params["recency"]["older_weight"])

    def daily_clamp(self) -> tuple[float, float]:
        """Return (max_increase, max_decrease) as positive magnitudes."""
        clamp = self._params["daily_clamp"]
        return float(clamp["max_increase"]), float(clamp["max_decrease"])

    # ------------------------------------------------------------------
    # Milestones and monitoring cadence
    # ------------------------------------------------------------------

    def milestone_definitions(self) -> tuple[MilestoneDefinition, ...]:
        """Ladder definitions, lowest level first."""
        return self._milestones

    def screenshot_frequency_minutes(self) -> dict[Optional[MilestoneLevel], int]:
        """Capture cadence per level; the None key is the no-milestone baseline."""
        raw = self._params["screenshot_frequency_minutes"]
        table: dict[Optional[MilestoneLevel], int] = {None: int(raw["baseline"])}
        for level in MilestoneLevel:
            table[level] = int(raw[level.value])
        return table

    # ------------------------------------------------------------------
    # Regression workflow
    # ------------------------------------------------------------------

    def grace_period_days(self) -> int:
        return self._params["regression"]["grace_period_days"]

    def grace_period_range(self) -> tuple[int, int]:
        reg = self._params["regression"]
        return reg["min_grace_period_days"], reg["max_grace_period_days"]

    def max_explanation_length(self) -> int:
        return self._params["regression"]["max_explanation_length"]

    # ------------------------------------------------------------------
    # Long-horizon reductions
    # ------------------------------------------------------------------

    def automatic_reduction(self) -> tuple[int, int]:
        """Return (trust_threshold, duration_days)."""
        ar = self._params["automatic_reduction"]
        return ar["trust_threshold"], ar["duration_days"]

    def graduation_months(self) -> int:
        return self._params["automatic_reduction"]["graduation_months"]

    def min_override_reason_length(self) -> int:
        return self._params["automatic_reduction"]["min_override_reason_length"]

    def notification_only(self) -> tuple[int, int]:
        """Return (trust_threshold, duration_days)."""
        no = self._params["notification_only"]
        return no["trust_threshold"], no["duration_days"]

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    @staticmethod
    def _parse_milestones(raw: list[dict[str, Any]]) -> tuple[MilestoneDefinition, ...]:
        definitions: list[MilestoneDefinition] = []
        for entry in raw:
            try:
                level = MilestoneLevel(entry["level"])
            except (KeyError, ValueError) as exc:
                raise ValidationError(f"Invalid milestone entry: {entry!r}") from exc
            definitions.append(MilestoneDefinition(
                level=level,
                threshold=int(entry["threshold"]),
                required_days=int(entry["required_days"]),
            ))
        return tuple(sorted(definitions, key=lambda d: d.level.rank))

    def _validate(self) -> None:
        errors: list[str] = []

        score_min, score_max = self.score_bounds()
        if not score_min < score_max:
            errors.append(f"score.min ({score_min}) must be below score.max ({score_max})")
        if not score_min <= self.default_score() <= score_max:
            errors.append(f"score.default {self.default_score()} outside [{score_min}, {score_max}]")
        if self.history_retention_days() < _MIN_RETENTION_DAYS:
            errors.append(
                f"score.history_retention_days must be >= {_MIN_RETENTION_DAYS}, "
                f"got {self.history_retention_days()}"
            )

        max_increase, max_decrease = self.daily_clamp()
        if max_increase <= 0 or max_decrease <= 0:
            errors.append("daily_clamp magnitudes must be positive")

        previous_age = 0.0
        for max_age, weight in self.recency_bands():
            if max_age <= previous_age:
                errors.append("recency bands must have strictly increasing max_age_days")
            if not 0.0 <= weight <= 1.0:
                errors.append(f"recency weight {weight} outside [0, 1]")
            previous_age = max_age
        if not 0.0 <= self.older_recency_weight() <= 1.0:
            errors.append("recency.older_weight outside [0, 1]")

        levels = [d.level for d in self._milestones]
        if sorted(levels, key=lambda lvl: lvl.rank) != list(MilestoneLevel):
            errors.append("milestones must define every level exactly once")
        for lower, upper in zip(self._milestones, self._milestones[1:]):
            if upper.threshold < lower.threshold:
                errors.append(
                    f"milestone {upper.level.value} threshold must not be below "
                    f"{lower.level.value}"
                )
        for definition in self._milestones:
            if not score_min <= definition.threshold <= score_max:
                errors.append(f"milestone {definition.level.value} threshold out of range")
            if definition.required_days <= 0:
                errors.append(f"milestone {definition.level.value} required_days must be > 0")

        freq = self._params["screenshot_frequency_minutes"]
        missing = [k for k in ["baseline", *(lvl.value for lvl in MilestoneLevel)] if k not in freq]
        if missing:
            errors.append(f"screenshot_frequency_minutes missing: {', '.join(missing)}")

        low, high = self.grace_period_range()
        if not low <= self.grace_period_days() <= high:
            errors.append(
                f"regression.grace_period_days {self.grace_period_days()} outside [{low}, {high}]"
            )

        for section in ("automatic_reduction", "notification_only"):
            threshold = self._params[section]["trust_threshold"]
            duration = self._params[section]["duration_days"]
            if not score_min <= threshold <= score_max:
                errors.append(f"{section}.trust_threshold out of range")
            if duration <= 0:
                errors.append(f"{section}.duration_days must be > 0")

        if errors:
            raise ValidationError("Invalid trust policy: " + "; ".join(errors))
