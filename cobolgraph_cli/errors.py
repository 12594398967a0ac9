"""Exception taxonomy shared by the LLM providers, the invoker and the pipeline."""

from __future__ import annotations

from enum import Enum
from typing import Optional


class FailureKind(str, Enum):
    """Closed set of failure kinds reported at the LLM collaborator boundary."""

    TIMEOUT = "timeout"
    CANCELLED = "cancelled"
    CONTENT_POLICY = "content_policy"
    OTHER = "other"


RETRYABLE_KINDS = frozenset({FailureKind.TIMEOUT, FailureKind.CANCELLED, FailureKind.CONTENT_POLICY})


class CobolGraphError(Exception):
    """Base class for all errors raised by this package."""


class ConfigurationError(CobolGraphError):
    """A collaborator could not be constructed; aborts the run before any stage."""


class LLMCallError(CobolGraphError):
    """Raised by an LLM provider when a single call fails."""

    kind: FailureKind = FailureKind.OTHER

    def __init__(self, message: str, kind: Optional[FailureKind] = None):
        super().__init__(message)
        if kind is not None:
            self.kind = kind


class TransientFailure(LLMCallError):
    """Upstream failure that may succeed when retried (timeout, cancel, content filter)."""

    kind = FailureKind.TIMEOUT


class FatalFailure(LLMCallError):
    """Upstream failure that will not go away by retrying."""

    kind = FailureKind.OTHER


class InvocationFailed(CobolGraphError):
    """All attempts of one invocation failed, or a fatal failure stopped it early."""

    def __init__(self, last_error: BaseException, attempts_made: int):
        super().__init__(f"Invocation failed after {attempts_made} attempt(s): {last_error}")
        self.last_error = last_error
        self.attempts_made = attempts_made


class InvocationCancelled(InvocationFailed):
    """The run was cancelled while an invocation was waiting to retry."""
