"""Dependency graph export helpers for JSON, Mermaid and DOT outputs."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Dict, List

from .dependency_graph import DependencyGraph


def export_json(graph: DependencyGraph, output_file: Path) -> Path:
    """Write the stable serializable form of ``graph``."""
    output_file = Path(output_file)
    output_file.parent.mkdir(parents=True, exist_ok=True)
    output_file.write_text(json.dumps(graph.to_dict(), indent=2), encoding="utf-8")
    return output_file


def _node_ids(graph: DependencyGraph) -> Dict[str, str]:
    """Programs become ``P<i>``, everything else ``C<i>``, in graph order."""
    ids: Dict[str, str] = {}
    for index, program in enumerate(graph.programs):
        ids[program] = f"P{index}"

    others: List[str] = []
    for name in list(graph.modules) + list(graph.reverse) + list(graph.forward):
        if name not in ids and name not in others:
            others.append(name)
    for index, name in enumerate(others):
        ids[name] = f"C{index}"
    return ids


def render_mermaid(graph: DependencyGraph) -> str:
    """Deterministic Mermaid flowchart of programs, copybooks and their references."""
    ids = _node_ids(graph)
    programs = [name for name in ids if ids[name].startswith("P")]
    copybooks = [name for name in ids if ids[name].startswith("C")]

    lines = ["graph TB", '    subgraph "COBOL Programs"']
    lines.extend(f'        {ids[name]}["{_mermaid_label(name)}"]' for name in programs)
    lines.append("    end")
    lines.append('    subgraph "Copybooks"')
    lines.extend(f'        {ids[name]}["{_mermaid_label(name)}"]' for name in copybooks)
    lines.append("    end")

    for source, targets in graph.forward.items():
        for target in targets:
            lines.append(f"    {ids[source]} --> {ids[target]}")

    lines.append("    classDef programClass fill:#81c784")
    lines.append("    classDef copybookClass fill:#ffb74d")
    lines.append("    classDef missingClass fill:#e57373")
    for name in programs:
        lines.append(f"    class {ids[name]} programClass")
    for name in copybooks:
        style = "missingClass" if name in graph.unresolved else "copybookClass"
        lines.append(f"    class {ids[name]} {style}")
    return "\n".join(lines) + "\n"


def export_mermaid_markdown(graph: DependencyGraph, output_file: Path) -> Path:
    """Write a markdown page with the diagram, metrics and AI insight."""
    m = graph.metrics
    parts = [
        "# COBOL Dependency Diagram",
        "",
        "```mermaid",
        render_mermaid(graph).rstrip("\n"),
        "```",
        "",
        "## Metrics",
        "",
        f"- Programs: {m.program_count}",
        f"- Copybooks: {m.module_count}",
        f"- References: {m.edge_count}",
        f"- Average copybooks per program: {m.average_fan_out:.2f}",
    ]
    if m.most_referenced:
        parts.append(f"- Most used copybook: {m.most_referenced} ({m.most_referenced_count} units)")
    if m.cycles:
        parts.append(f"- Circular dependencies: {len(m.cycles)}")
    if graph.insights:
        parts.extend(["", "## Analysis", "", graph.insights])

    output_file = Path(output_file)
    output_file.parent.mkdir(parents=True, exist_ok=True)
    output_file.write_text("\n".join(parts) + "\n", encoding="utf-8")
    return output_file


def export_dot(graph: DependencyGraph, output_file: Path) -> Path:
    lines = ["digraph CobolDependencies {", "  rankdir=LR;"]
    for name in graph.programs:
        lines.append(f'  "{_esc(name)}" [shape=box, style=filled, fillcolor="#81c784"];')
    for name in graph.modules:
        lines.append(f'  "{_esc(name)}" [shape=note, style=filled, fillcolor="#ffb74d"];')
    for name in graph.unresolved:
        lines.append(f'  "{_esc(name)}" [shape=note, style=dashed];')
    for source, targets in graph.forward.items():
        for target in targets:
            lines.append(f'  "{_esc(source)}" -> "{_esc(target)}";')
    lines.append("}")

    output_file = Path(output_file)
    output_file.parent.mkdir(parents=True, exist_ok=True)
    output_file.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return output_file


def _mermaid_label(text: str) -> str:
    return text.replace('"', "#quot;")


def _esc(text: str) -> str:
    return text.replace('"', '\\"')
