"""Core data models used by extraction, graph building and the agent pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, List, Optional

if TYPE_CHECKING:
    from .dependency_graph import DependencyGraph


@dataclass(frozen=True)
class SourceUnit:
    """A COBOL program or copybook as loaded by the scanner."""
    name: str
    content: str
    is_module: bool = False
    path: str = ""

    @property
    def unit_id(self) -> str:
        return self.name


@dataclass(frozen=True)
class ReferenceEdge:
    source: str
    target: str
    kind: str
    line_number: int
    context: str = ""


@dataclass(frozen=True)
class AgentStepResult:
    """Outcome of the last attempt of one (agent, unit) invocation."""
    agent_name: str
    unit_id: str
    raw_output: str
    success: bool
    error: str = ""
    duration_ms: float = 0.0
    tokens_estimate: int = 0
    attempts: int = 1


@dataclass
class AnalysisRecord:
    """Output of the structural-analysis agent.

    ``program_id`` and ``referenced_modules`` are echoed from the source text
    and the dependency graph; they are not validated against the model output.
    """
    unit_id: str
    raw_text: str
    program_id: str = ""
    referenced_modules: List[str] = field(default_factory=list)
    summary: str = ""
    success: bool = True
    error: str = ""


@dataclass
class GeneratedArtifact:
    file_name: str
    content: str
    package_name: str
    type_name: str
    origin_unit_id: str

    @property
    def package_path(self) -> str:
        return self.package_name.replace(".", "/")


@dataclass
class PipelineError:
    stage: str
    unit_id: str
    message: str
    attempts: int = 0

    def __str__(self) -> str:
        target = self.unit_id or "<graph>"
        return f"[{self.stage}] {target}: {self.message}"


@dataclass
class PipelineResult:
    """Everything one pipeline run produced, including partial results."""
    graph: "DependencyGraph"
    analyses: List[AnalysisRecord] = field(default_factory=list)
    artifacts: List[GeneratedArtifact] = field(default_factory=list)
    errors: List[PipelineError] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    step_results: List[AgentStepResult] = field(default_factory=list)
    cancelled: bool = False
    stats: Dict[str, Any] = field(default_factory=dict)

    @property
    def successful_analyses(self) -> List[AnalysisRecord]:
        return [record for record in self.analyses if record.success]

    def artifacts_for(self, unit_id: str) -> List[GeneratedArtifact]:
        return [artifact for artifact in self.artifacts if artifact.origin_unit_id == unit_id]

    def analysis_for(self, unit_id: str) -> Optional[AnalysisRecord]:
        for record in self.analyses:
            if record.unit_id == unit_id:
                return record
        return None
