"""Policy resolution — every tunable engine constant in one place."""

from trustladder.policy.resolver import PolicyResolver

__all__ = ["PolicyResolver"]
