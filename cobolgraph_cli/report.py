"""Markdown migration report."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import List, Sequence

from .config import API_CALL_LOG_FILE, DEPENDENCY_DIAGRAM_FILE, DEPENDENCY_MAP_FILE
from .models import PipelineResult, SourceUnit

MAX_MAPPING_ROWS = 20
TOP_MODULES = 10


def _format_elapsed(seconds: float) -> str:
    minutes, secs = divmod(int(round(seconds)), 60)
    hours, minutes = divmod(minutes, 60)
    return f"{hours:02d}:{minutes:02d}:{secs:02d}"


def render_report(result: PipelineResult, units: Sequence[SourceUnit], elapsed_seconds: float) -> str:
    """Render the migration report for ``result``.

    Args:
        result: Pipeline outcome, possibly partial.
        units: The scanned source units, in scan order.
        elapsed_seconds: Wall-clock duration of the run.

    Returns:
        Markdown text.
    """
    graph = result.graph
    metrics = graph.metrics
    units = list(units)
    now = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S")

    lines: List[str] = [
        "# COBOL to Java Quarkus Migration Report",
        f"Generated: {now} UTC",
        f"Total Migration Time: {_format_elapsed(elapsed_seconds)}",
    ]
    if result.cancelled:
        lines.append("")
        lines.append("> Run was cancelled; the results below are partial.")

    lines += [
        "",
        "## Migration Overview",
        f"- **Source Files**: {len(units)} COBOL files",
        f"- **Analysed Programs**: {len(result.successful_analyses)} of {metrics.program_count}",
        f"- **Generated Files**: {len(result.artifacts)} files",
        f"- **Dependencies Found**: {metrics.edge_count}",
        f"- **Copybooks Analyzed**: {metrics.module_count}",
        f"- **Average Dependencies per Program**: {metrics.average_fan_out:.1f}",
        "",
        "## File Mapping",
        "| COBOL File | Java File | Type |",
        "|------------|-----------|------|",
    ]
    for unit in units[:MAX_MAPPING_ROWS]:
        generated = result.artifacts_for(unit.unit_id)
        target = ", ".join(artifact.type_name for artifact in generated) or "Not Generated"
        kind = "Copybook" if unit.is_module else "Program"
        lines.append(f"| {unit.unit_id} | {target} | {kind} |")
    if len(units) > MAX_MAPPING_ROWS:
        lines.append(f"| ... and {len(units) - MAX_MAPPING_ROWS} more files | ... | ... |")

    lines += ["", "## Dependency Analysis"]
    if metrics.cycles:
        lines.append("### Circular Dependencies Found")
        lines.extend(f"- {' -> '.join(cycle + cycle[:1])}" for cycle in metrics.cycles)
        lines.append("")
    if graph.unresolved:
        lines.append("### Unresolved References")
        lines.extend(f"- {name}" for name in graph.unresolved)
        lines.append("")

    lines.append("### Most Used Copybooks")
    # sorted() is stable, so equal counts keep reverse-map insertion order.
    ranked = sorted(graph.reverse.items(), key=lambda item: len(item[1]), reverse=True)[:TOP_MODULES]
    lines.extend(f"- **{name}**: Used by {len(users)} units" for name, users in ranked)
    if not ranked:
        lines.append("- (none)")

    if result.errors or result.warnings or result.skipped:
        lines += ["", "## Problems"]
        lines.extend(f"- {error}" for error in result.errors)
        lines.extend(f"- warning: {warning}" for warning in result.warnings)
        if result.skipped:
            lines.append(f"- skipped (no analysis): {', '.join(result.skipped)}")

    total_chars = sum(len(unit.content) for unit in units)
    total_lines = sum(len(unit.content.split("\n")) for unit in units)
    minutes = max(elapsed_seconds / 60, 1)
    lines += [
        "",
        "## Migration Metrics",
        f"- **Files per Minute**: {len(units) / minutes:.1f}",
        f"- **Average File Size**: {total_chars / len(units) if units else 0:.0f} characters",
        f"- **Total Lines of Code**: {total_lines:,}",
    ]

    stats = result.stats
    if stats.get("total_calls"):
        lines += [
            "",
            "## API Calls",
            f"- **Calls**: {stats['total_calls']} ({stats['failed_calls']} failed, {stats['retries']} retries)",
            f"- **Estimated Tokens**: {stats['total_tokens']:,}",
            f"- **Estimated Cost**: ${stats['total_cost']:.4f}",
            f"- **Average Call Duration**: {stats['average_duration_ms']:.0f} ms",
        ]

    lines += [
        "",
        "## Next Steps",
        "1. Review generated Java files for accuracy",
        "2. Check the dependency diagram for architecture insights",
        "3. Validate business logic in converted code",
        "4. Configure Quarkus application properties",
        "",
        "## Generated Files",
        f"- `{DEPENDENCY_MAP_FILE}` - Complete dependency analysis",
        f"- `{DEPENDENCY_DIAGRAM_FILE}` - Mermaid dependency visualization",
        f"- `{API_CALL_LOG_FILE}` - API call log with token and cost estimates",
        "- Individual Java files in respective packages",
    ]
    return "\n".join(lines) + "\n"
