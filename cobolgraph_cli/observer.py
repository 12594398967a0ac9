"""Per-run observer collecting API call statistics and stage progress."""

from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Dict, List, Optional

logger = logging.getLogger(__name__)

ProgressSink = Callable[[str, int, int], None]


def estimate_tokens(text: str) -> int:
    """Rough token estimate: one token per four characters."""
    return len(text or "") // 4


@dataclass
class ApiCallRecord:
    call_id: int
    agent_name: str
    unit_id: str
    attempt: int
    started_at: str
    request_tokens: int = 0
    response_tokens: int = 0
    duration_ms: float = 0.0
    success: bool = False
    error: str = ""
    failure_kind: str = ""
    cost: float = 0.0
    finished: bool = False

    @property
    def total_tokens(self) -> int:
        return self.request_tokens + self.response_tokens


class RunObserver:
    """Receives attempt events from the invoker and progress events from the orchestrator.

    One instance per pipeline run; nothing here is process-wide.
    """

    def __init__(self, cost_per_1k_tokens: float = 0.002, progress_sink: Optional[ProgressSink] = None):
        self.cost_per_1k_tokens = cost_per_1k_tokens
        self.progress_sink = progress_sink
        self.calls: List[ApiCallRecord] = []
        self.stage_progress: Dict[str, int] = {}

    def on_attempt_start(self, agent_name: str, unit_id: str, attempt: int, request_text: str = "") -> int:
        record = ApiCallRecord(
            call_id=len(self.calls) + 1,
            agent_name=agent_name,
            unit_id=unit_id,
            attempt=attempt,
            started_at=datetime.now(timezone.utc).isoformat(timespec="seconds"),
            request_tokens=estimate_tokens(request_text),
        )
        self.calls.append(record)
        logger.debug("API call #%d: %s on %s (attempt %d)", record.call_id, agent_name, unit_id or "<graph>", attempt)
        return record.call_id

    def on_attempt_end(
        self,
        call_id: int,
        success: bool,
        duration_ms: float,
        response_text: str = "",
        error: str = "",
        failure_kind: str = "",
    ) -> None:
        if not 1 <= call_id <= len(self.calls):
            logger.warning("Attempt end for unknown call id %s", call_id)
            return
        record = self.calls[call_id - 1]
        record.success = success
        record.duration_ms = duration_ms
        record.response_tokens = estimate_tokens(response_text)
        record.error = error
        record.failure_kind = failure_kind
        record.cost = record.total_tokens / 1000 * self.cost_per_1k_tokens
        record.finished = True
        if success:
            logger.debug("API call #%d succeeded in %.0f ms", call_id, duration_ms)
        else:
            logger.debug("API call #%d failed in %.0f ms: %s", call_id, duration_ms, error)

    def progress(self, stage: str, current: int, total: int, sink: Optional[ProgressSink] = None) -> None:
        """Record and forward a progress event; a failing sink never blocks the pipeline."""
        self.stage_progress[stage] = current
        sink = sink or self.progress_sink
        if sink is None:
            return
        try:
            sink(stage, current, total)
        except Exception as exc:
            logger.warning("Progress sink raised for %s %d/%d: %s", stage, current, total, exc)

    def summary(self) -> Dict[str, object]:
        """Aggregate statistics over every recorded attempt."""
        finished = [call for call in self.calls if call.finished]
        successes = sum(1 for call in finished if call.success)
        retries = sum(1 for call in self.calls if call.attempt > 1)
        total_tokens = sum(call.total_tokens for call in finished)
        total_cost = sum(call.cost for call in finished)
        average_ms = sum(call.duration_ms for call in finished) / len(finished) if finished else 0.0

        per_agent: Dict[str, Dict[str, float]] = {}
        for call in finished:
            bucket = per_agent.setdefault(call.agent_name, {"calls": 0, "failures": 0, "tokens": 0, "cost": 0.0})
            bucket["calls"] += 1
            bucket["failures"] += 0 if call.success else 1
            bucket["tokens"] += call.total_tokens
            bucket["cost"] += call.cost

        return {
            "total_calls": len(finished),
            "successful_calls": successes,
            "failed_calls": len(finished) - successes,
            "retries": retries,
            "total_tokens": total_tokens,
            "total_cost": round(total_cost, 6),
            "average_duration_ms": round(average_ms, 1),
            "per_agent": per_agent,
        }

    def to_dict(self) -> Dict[str, object]:
        return {
            "summary": self.summary(),
            "calls": [asdict(call) for call in self.calls],
        }

    def export_json(self, path: Path) -> Path:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(self.to_dict(), indent=2), encoding="utf-8")
        return path
