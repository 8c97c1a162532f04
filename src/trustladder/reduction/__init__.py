"""Long-horizon monitoring reductions.

Notification-only mode pauses capture after 30 days at 95+; the automatic
reduction gate forces a one-way reduction after 180 days at 95+.
"""

from trustladder.reduction.gate import AutomaticReductionGate
from trustladder.reduction.notification_only import NotificationOnlyMode

__all__ = ["AutomaticReductionGate", "NotificationOnlyMode"]
