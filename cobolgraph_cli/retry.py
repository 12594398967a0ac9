"""Bounded retry with exponential backoff around one LLM call."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Optional, Tuple

import requests

from .errors import (
    RETRYABLE_KINDS,
    FailureKind,
    InvocationCancelled,
    InvocationFailed,
    LLMCallError,
)
from .llm import GenerationOptions
from .models import AgentStepResult
from .observer import RunObserver, estimate_tokens

logger = logging.getLogger(__name__)

LLMCall = Callable[[str, str, GenerationOptions], str]

# Fallback for exceptions raised outside the provider layer. Order matters:
# the first marker found decides the kind.
_MESSAGE_MARKERS: Tuple[Tuple[str, FailureKind], ...] = (
    ("content_filter", FailureKind.CONTENT_POLICY),
    ("content filtering", FailureKind.CONTENT_POLICY),
    ("responsibleaipolicyviolation", FailureKind.CONTENT_POLICY),
    ("canceled", FailureKind.CANCELLED),
    ("cancelled", FailureKind.CANCELLED),
    ("timeout", FailureKind.TIMEOUT),
    ("timed out", FailureKind.TIMEOUT),
)


@dataclass(frozen=True)
class PromptSpec:
    agent_name: str
    unit_id: str
    system_prompt: str
    user_prompt: str
    options: GenerationOptions = field(default_factory=GenerationOptions)


def classify_failure(exc: BaseException) -> FailureKind:
    """Map an exception raised by the LLM call onto a :class:`FailureKind`."""
    if isinstance(exc, LLMCallError):
        return exc.kind
    if isinstance(exc, requests.Timeout):
        return FailureKind.TIMEOUT
    message = str(exc).lower()
    for marker, kind in _MESSAGE_MARKERS:
        if marker in message:
            return kind
    return FailureKind.OTHER


def is_retryable(exc: BaseException) -> bool:
    return classify_failure(exc) in RETRYABLE_KINDS


class RetryingInvoker:
    """Calls ``llm_call`` up to ``max_attempts`` times.

    Retryable failures wait ``base_delay_ms * 2 ** (attempt - 1)`` before the
    next attempt; anything else stops immediately. The attempt counter lives
    inside each :meth:`invoke` call.
    """

    def __init__(
        self,
        llm_call: LLMCall,
        observer: Optional[RunObserver] = None,
        max_attempts: int = 3,
        base_delay_ms: int = 5000,
        sleep: Optional[Callable[[float], None]] = None,
        cancel_event: Optional[threading.Event] = None,
    ):
        self.llm_call = llm_call
        self.observer = observer
        self.max_attempts = max(1, int(max_attempts))
        self.base_delay_ms = max(0, int(base_delay_ms))
        self.cancel_event = cancel_event
        self._sleep = sleep or self._default_sleep

    def _default_sleep(self, seconds: float) -> None:
        # Event.wait returns early when the run is cancelled mid-backoff.
        if self.cancel_event is not None:
            self.cancel_event.wait(seconds)
        else:
            time.sleep(seconds)

    @property
    def cancelled(self) -> bool:
        return self.cancel_event is not None and self.cancel_event.is_set()

    def backoff_delay_ms(self, attempt: int) -> int:
        """Delay before the attempt following ``attempt`` (1-based)."""
        return self.base_delay_ms * 2 ** (attempt - 1)

    def invoke(self, spec: PromptSpec) -> str:
        """Return the model text or raise :class:`InvocationFailed`."""
        text, _ = self._invoke(spec)
        return text

    def _invoke(self, spec: PromptSpec) -> Tuple[str, int]:
        attempt = 0
        while True:
            attempt += 1
            call_id = self._notify_start(spec, attempt)
            started = time.perf_counter()
            try:
                text = self.llm_call(spec.system_prompt, spec.user_prompt, spec.options)
            except Exception as exc:
                duration_ms = (time.perf_counter() - started) * 1000
                kind = classify_failure(exc)
                self._notify_end(call_id, False, duration_ms, error=str(exc), kind=kind)

                if kind not in RETRYABLE_KINDS:
                    logger.error("%s failed for %s (%s): %s", spec.agent_name, spec.unit_id or "<graph>", kind.value, exc)
                    raise InvocationFailed(exc, attempt) from exc
                if attempt >= self.max_attempts:
                    logger.error(
                        "%s failed for %s after %d attempt(s): %s",
                        spec.agent_name,
                        spec.unit_id or "<graph>",
                        attempt,
                        exc,
                    )
                    raise InvocationFailed(exc, attempt) from exc

                if self.cancelled:
                    raise InvocationCancelled(exc, attempt) from exc
                delay_ms = self.backoff_delay_ms(attempt)
                logger.warning(
                    "%s on %s attempt %d/%d hit %s; retrying in %d ms",
                    spec.agent_name,
                    spec.unit_id or "<graph>",
                    attempt,
                    self.max_attempts,
                    kind.value,
                    delay_ms,
                )
                self._sleep(delay_ms / 1000)
                if self.cancelled:
                    raise InvocationCancelled(exc, attempt) from exc
                continue

            duration_ms = (time.perf_counter() - started) * 1000
            self._notify_end(call_id, True, duration_ms, response=text)
            if attempt > 1:
                logger.info("%s on %s succeeded on attempt %d", spec.agent_name, spec.unit_id or "<graph>", attempt)
            return text, attempt

    def run_step(self, spec: PromptSpec) -> AgentStepResult:
        """Invoke and fold the outcome into an :class:`AgentStepResult`.

        :class:`InvocationCancelled` is re-raised so the caller can stop the run.
        """
        started = time.perf_counter()
        try:
            text, attempts = self._invoke(spec)
        except InvocationCancelled:
            raise
        except InvocationFailed as exc:
            return AgentStepResult(
                agent_name=spec.agent_name,
                unit_id=spec.unit_id,
                raw_output="",
                success=False,
                error=str(exc.last_error),
                duration_ms=(time.perf_counter() - started) * 1000,
                tokens_estimate=estimate_tokens(spec.system_prompt + spec.user_prompt),
                attempts=exc.attempts_made,
            )
        return AgentStepResult(
            agent_name=spec.agent_name,
            unit_id=spec.unit_id,
            raw_output=text,
            success=True,
            duration_ms=(time.perf_counter() - started) * 1000,
            tokens_estimate=estimate_tokens(spec.system_prompt + spec.user_prompt + text),
            attempts=attempts,
        )

    def _notify_start(self, spec: PromptSpec, attempt: int) -> Optional[int]:
        if self.observer is None:
            return None
        return self.observer.on_attempt_start(
            spec.agent_name, spec.unit_id, attempt, spec.system_prompt + spec.user_prompt
        )

    def _notify_end(
        self,
        call_id: Optional[int],
        success: bool,
        duration_ms: float,
        response: str = "",
        error: str = "",
        kind: Optional[FailureKind] = None,
    ) -> None:
        if self.observer is None or call_id is None:
            return
        self.observer.on_attempt_end(
            call_id,
            success,
            duration_ms,
            response_text=response,
            error=error,
            failure_kind=kind.value if kind else "",
        )
