"""Program/copybook dependency graph: forward and reverse maps plus metrics."""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from pathlib import PurePath
from typing import Dict, Iterable, List, Optional, Sequence

from .models import ReferenceEdge, SourceUnit
from .references import extract_reference_edges, extract_references

logger = logging.getLogger(__name__)

_VISITING = 1
_DONE = 2


@dataclass
class DependencyMetrics:
    program_count: int = 0
    module_count: int = 0
    referenced_module_count: int = 0
    edge_count: int = 0
    reference_occurrences: int = 0
    average_fan_out: float = 0.0
    most_referenced: str = ""
    most_referenced_count: int = 0
    unresolved_count: int = 0
    cycles: List[List[str]] = field(default_factory=list)


@dataclass
class DependencyGraph:
    """Bipartite-ish unit graph built once per run.

    ``forward[u]`` lists the units ``u`` references, ``reverse[v]`` the units
    referencing ``v``. Both keep insertion order and never hold duplicates.
    Mutate only through :meth:`add_reference` so the two stay symmetric.
    """

    forward: Dict[str, List[str]] = field(default_factory=dict)
    reverse: Dict[str, List[str]] = field(default_factory=dict)
    edges: List[ReferenceEdge] = field(default_factory=list)
    programs: List[str] = field(default_factory=list)
    modules: List[str] = field(default_factory=list)
    unresolved: List[str] = field(default_factory=list)
    metrics: DependencyMetrics = field(default_factory=DependencyMetrics)
    insights: str = ""

    def add_unit(self, unit: SourceUnit) -> None:
        bucket = self.modules if unit.is_module else self.programs
        if unit.unit_id not in bucket:
            bucket.append(unit.unit_id)
        if not unit.is_module:
            self.forward.setdefault(unit.unit_id, [])

    def add_reference(self, source: str, target: str, recompute: bool = True) -> bool:
        """Record ``source -> target``; returns False if the pair already existed."""
        targets = self.forward.setdefault(source, [])
        if target in targets:
            return False
        targets.append(target)
        referrers = self.reverse.setdefault(target, [])
        if source not in referrers:
            referrers.append(source)
        if recompute:
            self.recompute_metrics()
        return True

    def fan_out(self, unit_id: str) -> int:
        return len(self.forward.get(unit_id, []))

    def fan_in(self, unit_id: str) -> int:
        return len(self.reverse.get(unit_id, []))

    def dependents_of(self, unit_id: str) -> List[str]:
        return list(self.reverse.get(unit_id, []))

    def dependencies_of(self, unit_id: str) -> List[str]:
        return list(self.forward.get(unit_id, []))

    def is_symmetric(self) -> bool:
        for source, targets in self.forward.items():
            for target in targets:
                if source not in self.reverse.get(target, []):
                    return False
        for target, sources in self.reverse.items():
            for source in sources:
                if target not in self.forward.get(source, []):
                    return False
        return True

    def attach_insights(self, text: str) -> None:
        if self.insights:
            logger.warning("Dependency insights already attached; keeping the first value")
            return
        self.insights = text

    def recompute_metrics(self) -> DependencyMetrics:
        metrics = DependencyMetrics()
        metrics.program_count = len(self.programs)
        metrics.module_count = len(self.modules)
        metrics.referenced_module_count = len(self.reverse)
        metrics.edge_count = sum(len(targets) for targets in self.forward.values())
        metrics.reference_occurrences = len(self.edges)
        if self.programs:
            program_edges = sum(len(self.forward.get(program, [])) for program in self.programs)
            metrics.average_fan_out = program_edges / len(self.programs)

        if self.reverse:
            # max() keeps the first key on ties, i.e. reverse-map insertion order.
            most_used = max(self.reverse, key=lambda key: len(self.reverse[key]))
            metrics.most_referenced = most_used
            metrics.most_referenced_count = len(self.reverse[most_used])

        metrics.unresolved_count = len(self.unresolved)
        metrics.cycles = find_cycles(self.forward)
        self.metrics = metrics
        return metrics

    def to_dict(self) -> Dict[str, object]:
        """Return the JSON-serializable form read by reporting tools."""
        return {
            "forward": {key: list(values) for key, values in self.forward.items()},
            "reverse": {key: list(values) for key, values in self.reverse.items()},
            "edges": [asdict(edge) for edge in self.edges],
            "programs": list(self.programs),
            "modules": list(self.modules),
            "unresolved": list(self.unresolved),
            "metrics": asdict(self.metrics),
            "insights": self.insights,
        }

    def summary_text(self, max_units: int = 10) -> str:
        """Compact plain-text description used in prompts and console output."""
        m = self.metrics
        lines = [
            f"Programs: {m.program_count}, copybooks: {m.module_count}, "
            f"references: {m.edge_count}, average per program: {m.average_fan_out:.1f}",
        ]
        if m.most_referenced:
            lines.append(f"Most used copybook: {m.most_referenced} ({m.most_referenced_count} users)")
        usage = list(self.forward.items())[:max_units]
        if usage:
            lines.append("Copybook usage:")
            for source, targets in usage:
                lines.append(f"- {source} uses: {', '.join(targets) or '(none)'}")
        if m.cycles:
            lines.append("Cycles: " + "; ".join(" -> ".join(cycle + cycle[:1]) for cycle in m.cycles))
        if self.unresolved:
            lines.append("Unresolved references: " + ", ".join(self.unresolved))
        return "\n".join(lines)


def find_cycles(forward: Dict[str, Sequence[str]]) -> List[List[str]]:
    """Back-edge DFS over ``forward``; each distinct cycle is reported once.

    A cycle is rotated to start at whichever of its members appears first in
    the graph's insertion order, so the report does not depend on DFS roots.
    """
    order: Dict[str, int] = {}
    for source, targets in forward.items():
        order.setdefault(source, len(order))
        for target in targets:
            order.setdefault(target, len(order))

    state: Dict[str, int] = {}
    seen = set()
    cycles: List[List[str]] = []

    for root in order:
        if state.get(root):
            continue
        state[root] = _VISITING
        path = [root]
        position = {root: 0}
        stack = [iter(forward.get(root, ()))]
        while stack:
            advanced = False
            for child in stack[-1]:
                child_state = state.get(child)
                if child_state == _VISITING:
                    cycle = path[position[child]:]
                    start = min(range(len(cycle)), key=lambda i: order[cycle[i]])
                    canonical = cycle[start:] + cycle[:start]
                    key = tuple(canonical)
                    if key not in seen:
                        seen.add(key)
                        cycles.append(canonical)
                elif child_state is None:
                    state[child] = _VISITING
                    position[child] = len(path)
                    path.append(child)
                    stack.append(iter(forward.get(child, ())))
                    advanced = True
                    break
            if not advanced:
                stack.pop()
                node = path.pop()
                del position[node]
                state[node] = _DONE
    return cycles


def _resolver(units: Iterable[SourceUnit]):
    index: Dict[str, str] = {}
    for unit in units:
        index.setdefault(unit.unit_id.lower(), unit.unit_id)
    # Only copybooks resolve by stem: PAYROLL.cbl copying PAYROLL is not a self-reference.
    for unit in units:
        if unit.is_module:
            index.setdefault(PurePath(unit.unit_id).stem.lower(), unit.unit_id)

    def resolve(name: str) -> Optional[str]:
        return index.get(name.lower()) or index.get(PurePath(name).stem.lower())

    return resolve


def build_dependency_graph(units: Sequence[SourceUnit]) -> DependencyGraph:
    """Build the graph for ``units``; never raises on malformed input."""
    graph = DependencyGraph()
    units = list(units or [])
    resolve = _resolver(units)

    for unit in units:
        graph.add_unit(unit)

    for unit in units:
        references = extract_references(unit.content)
        occurrences = extract_reference_edges(unit.unit_id, unit.content)

        targets: Dict[str, str] = {}
        for name in references:
            resolved = resolve(name)
            target = resolved or name
            targets[name.lower()] = target
            if resolved is None and target not in graph.unresolved:
                graph.unresolved.append(target)
            graph.add_reference(unit.unit_id, target, recompute=False)

        for edge in occurrences:
            target = targets.get(edge.target.lower(), edge.target)
            graph.edges.append(
                ReferenceEdge(
                    source=edge.source,
                    target=target,
                    kind=edge.kind,
                    line_number=edge.line_number,
                    context=edge.context,
                )
            )
        if references:
            logger.debug("%s references %d unit(s): %s", unit.unit_id, len(references), ", ".join(references))

    graph.recompute_metrics()
    logger.info(
        "Dependency graph: %d programs, %d copybooks, %d references",
        graph.metrics.program_count,
        graph.metrics.module_count,
        graph.metrics.edge_count,
    )
    return graph
