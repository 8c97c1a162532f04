"""Error taxonomy for the trust progression engine.

- ValidationError: malformed or logically impossible input (an upward
  "regression", a score outside [0, 100], an invalid policy value).
- ConflictError: an optimistic-concurrency precondition no longer holds
  (stale previous_score, a second open regression for the same child).
  Callers must re-read state and retry. Retryable, unlike ValidationError.
- PreconditionError: a workflow step was attempted out of order
  (resolving before the conversation, touching an unknown or closed event).

Nothing in the engine retries internally.
"""

from __future__ import annotations


class TrustEngineError(Exception):
    """Base class for all engine errors."""


class ValidationError(TrustEngineError, ValueError):
    """Raised when an input is malformed or logically impossible."""


class ConflictError(TrustEngineError):
    """Raised when a compare-and-swap precondition does not match."""


class PreconditionError(TrustEngineError):
    """Raised when a workflow operation is not allowed in the current state."""
