"""Migration orchestrator coordinating the insight, analysis and conversion agents."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence

from .agents import (
    dependency_insight_agent,
    invoke_agent,
    structural_analysis_agent,
    transformation_agent,
)
from .config_manager import DEFAULT_PIPELINE, DEFAULT_RETRY, DEFAULT_SANITIZE, Settings, load_settings
from .dependency_graph import DependencyGraph, build_dependency_graph
from .errors import InvocationCancelled
from .llm import LLMClient
from .models import PipelineError, PipelineResult, SourceUnit
from .observer import ProgressSink, RunObserver
from .retry import LLMCall, RetryingInvoker

logger = logging.getLogger(__name__)

STAGE_INSIGHT = "dependency-insight"
STAGE_ANALYSIS = "analysis"
STAGE_CONVERSION = "conversion"


@dataclass
class PipelineOptions:
    max_attempts: int = DEFAULT_RETRY["max_attempts"]
    base_delay_ms: int = DEFAULT_RETRY["base_delay_ms"]
    max_output_tokens: int = DEFAULT_PIPELINE["max_output_tokens"]
    cost_per_1k_tokens: float = DEFAULT_PIPELINE["cost_per_1k_tokens"]
    sanitize: Dict[str, str] = field(default_factory=lambda: dict(DEFAULT_SANITIZE))

    @classmethod
    def from_settings(cls, settings: Settings) -> "PipelineOptions":
        return cls(
            max_attempts=settings.retry.max_attempts,
            base_delay_ms=settings.retry.base_delay_ms,
            max_output_tokens=settings.pipeline.max_output_tokens,
            cost_per_1k_tokens=settings.pipeline.cost_per_1k_tokens,
            sanitize=dict(settings.pipeline.sanitize),
        )


class MigrationOrchestrator:
    """Runs the three stages strictly in order, one LLM call at a time.

    Per-unit failures are folded into the result; a set ``cancel_event`` stops
    the run at the next unit boundary and returns what was gathered so far.
    """

    def __init__(
        self,
        llm_call: LLMCall,
        options: Optional[PipelineOptions] = None,
        observer: Optional[RunObserver] = None,
        cancel_event: Optional[threading.Event] = None,
        sleep: Optional[Callable[[float], None]] = None,
    ):
        self.options = options or PipelineOptions()
        self.observer = observer or RunObserver(cost_per_1k_tokens=self.options.cost_per_1k_tokens)
        self.cancel_event = cancel_event or threading.Event()
        self.invoker = RetryingInvoker(
            llm_call,
            observer=self.observer,
            max_attempts=self.options.max_attempts,
            base_delay_ms=self.options.base_delay_ms,
            sleep=sleep,
            cancel_event=self.cancel_event,
        )
        tokens = self.options.max_output_tokens
        self.insight_agent = dependency_insight_agent(tokens)
        self.analysis_agent = structural_analysis_agent(tokens)
        self.conversion_agent = transformation_agent(tokens)

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    def run(
        self,
        units: Sequence[SourceUnit],
        graph: DependencyGraph,
        progress_sink: Optional[ProgressSink] = None,
    ) -> PipelineResult:
        units = list(units)
        result = PipelineResult(graph=graph)
        started = time.perf_counter()

        programs = [unit for unit in units if not unit.is_module]
        logger.info("Starting migration of %d program(s), %d copybook(s)", len(programs), len(units) - len(programs))

        if self._run_insight(units, graph, result, progress_sink):
            if self._run_analysis(programs, graph, result, progress_sink):
                self._run_conversion(programs, result, progress_sink)

        result.stats = self._stats(result, time.perf_counter() - started)
        if result.cancelled:
            logger.warning(
                "Run cancelled: %d analysis record(s), %d artifact(s) kept",
                len(result.analyses),
                len(result.artifacts),
            )
        else:
            logger.info(
                "Migration finished: %d artifact(s), %d error(s), %d skipped",
                len(result.artifacts),
                len(result.errors),
                len(result.skipped),
            )
        return result

    def _stop(self, result: PipelineResult) -> bool:
        if self.cancelled:
            result.cancelled = True
        return result.cancelled

    def _run_insight(self, units, graph, result: PipelineResult, progress_sink) -> bool:
        """Stage 1; a failure leaves the insight empty and adds a warning."""
        if self._stop(result):
            return False
        try:
            step, insight = invoke_agent(self.invoker, self.insight_agent, "", units=units, graph=graph)
        except InvocationCancelled:
            result.cancelled = True
            return False

        result.step_results.append(step)
        if step.success and insight:
            graph.attach_insights(insight)
        else:
            reason = step.error or "empty response"
            result.warnings.append(f"Dependency insight unavailable: {reason}")
        self.observer.progress(STAGE_INSIGHT, 1, 1, progress_sink)
        return True

    def _run_analysis(self, programs: List[SourceUnit], graph, result: PipelineResult, progress_sink) -> bool:
        total = len(programs)
        for index, unit in enumerate(programs, 1):
            if self._stop(result):
                return False
            try:
                step, record = invoke_agent(self.invoker, self.analysis_agent, unit.unit_id, unit=unit, graph=graph)
            except InvocationCancelled:
                result.cancelled = True
                return False

            result.step_results.append(step)
            result.analyses.append(record)
            if not record.success:
                result.errors.append(PipelineError(STAGE_ANALYSIS, unit.unit_id, record.error, step.attempts))
            self.observer.progress(STAGE_ANALYSIS, index, total, progress_sink)
        return True

    def _run_conversion(self, programs: List[SourceUnit], result: PipelineResult, progress_sink) -> bool:
        pending = []
        for unit in programs:
            record = result.analysis_for(unit.unit_id)
            if record is not None and record.success:
                pending.append((unit, record))
            else:
                result.skipped.append(unit.unit_id)
        if result.skipped:
            logger.info("Skipping conversion of %d unit(s) without analysis: %s", len(result.skipped), ", ".join(result.skipped))

        total = len(pending)
        for index, (unit, record) in enumerate(pending, 1):
            if self._stop(result):
                return False
            try:
                step, outcome = invoke_agent(
                    self.invoker,
                    self.conversion_agent,
                    unit.unit_id,
                    unit=unit,
                    analysis=record,
                    sanitize=self.options.sanitize,
                )
            except InvocationCancelled:
                result.cancelled = True
                return False

            result.step_results.append(step)
            if outcome.error:
                result.errors.append(PipelineError(STAGE_CONVERSION, unit.unit_id, outcome.error, step.attempts))
            else:
                logger.info("%s produced %d file(s)", unit.unit_id, len(outcome.artifacts))
            result.artifacts.extend(outcome.artifacts)
            self.observer.progress(STAGE_CONVERSION, index, total, progress_sink)
        return True

    def _stats(self, result: PipelineResult, elapsed: float) -> Dict[str, object]:
        stats: Dict[str, object] = dict(self.observer.summary())
        stats.update(
            {
                "elapsed_seconds": round(elapsed, 2),
                "analyses": len(result.analyses),
                "successful_analyses": len(result.successful_analyses),
                "artifacts": len(result.artifacts),
                "errors": len(result.errors),
                "skipped": len(result.skipped),
                "cancelled": result.cancelled,
            }
        )
        return stats


def run_pipeline(
    units: Sequence[SourceUnit],
    options: Optional[PipelineOptions] = None,
    llm_call: Optional[LLMCall] = None,
    progress_sink: Optional[ProgressSink] = None,
    cancel_event: Optional[threading.Event] = None,
    observer: Optional[RunObserver] = None,
    settings: Optional[Settings] = None,
    sleep: Optional[Callable[[float], None]] = None,
) -> PipelineResult:
    """Build the dependency graph and run every stage over ``units``.

    Args:
        units: Programs and copybooks, in processing order.
        options: Retry and generation settings; derived from ``settings`` when omitted.
        llm_call: ``(system_prompt, user_prompt, options) -> text``. When omitted an
            :class:`LLMClient` is built from the configured provider.
        progress_sink: Called as ``(stage, current, total)`` after every unit.
        cancel_event: Set it to stop at the next unit boundary.
        observer: Receives attempt events; a fresh one is created if omitted.
        settings: Configuration to use instead of the config file.
        sleep: Backoff sleep override.

    Returns:
        PipelineResult with partial results when cancelled.

    Raises:
        ConfigurationError: If the stored settings are invalid or the LLM
            client cannot be constructed. Nothing else escapes this function.
    """
    if llm_call is None or options is None:
        settings = settings or load_settings()
    if options is None:
        options = PipelineOptions.from_settings(settings)
    if llm_call is None:
        llm_call = LLMClient(settings.llm).complete

    graph = build_dependency_graph(units)
    orchestrator = MigrationOrchestrator(
        llm_call,
        options=options,
        observer=observer,
        cancel_event=cancel_event,
        sleep=sleep,
    )
    return orchestrator.run(units, graph, progress_sink)
