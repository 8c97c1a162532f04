"""Conversation-gated regression workflow."""

from trustladder.regression.workflow import RegressionWorkflow

__all__ = ["RegressionWorkflow"]
