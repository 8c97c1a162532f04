"""Milestone ladder and screenshot cadence per level."""

from trustladder.milestones.frequency import FrequencyChange, MonitoringFrequencyPolicy
from trustladder.milestones.ladder import MilestoneLadder, run_length_days

__all__ = [
    "FrequencyChange",
    "MilestoneLadder",
    "MonitoringFrequencyPolicy",
    "run_length_days",
]
