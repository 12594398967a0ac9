"""Tests for dependency graph export."""

import json
from pathlib import Path

from cobolgraph_cli.dependency_graph import build_dependency_graph
from cobolgraph_cli.graph_export import export_dot, export_json, export_mermaid_markdown, render_mermaid
from cobolgraph_cli.models import SourceUnit
from cobolgraph_cli.scanner import scan_directory


class TestMermaid:
    """Tests for the Mermaid diagram."""

    def test_scenario_diagram(self, scenario_units):
        text = render_mermaid(build_dependency_graph(scenario_units))

        assert text.startswith("graph TB\n")
        assert 'P0["A.cbl"]' in text
        assert 'C0["B.cpy"]' in text
        assert 'C1["C.cpy"]' in text
        assert "    P0 --> C0\n" in text
        assert "    P0 --> C1\n" in text
        assert "    C1 --> C0\n" in text
        assert "class P0 programClass" in text
        assert "class C0 copybookClass" in text

    def test_deterministic(self, scenario_units):
        first = render_mermaid(build_dependency_graph(scenario_units))
        second = render_mermaid(build_dependency_graph(scenario_units))
        assert first == second

    def test_unresolved_styled_as_missing(self):
        graph = build_dependency_graph([SourceUnit(name="A.cbl", content="COPY GONE.")])
        text = render_mermaid(graph)

        assert 'C0["GONE.cpy"]' in text
        assert "class C0 missingClass" in text

    def test_quotes_escaped(self):
        graph = build_dependency_graph([SourceUnit(name='A"B.cbl', content="")])
        assert 'P0["A#quot;B.cbl"]' in render_mermaid(graph)


class TestFiles:
    """Tests for the on-disk exports."""

    def test_json(self, scenario_units, temp_dir: Path):
        path = export_json(build_dependency_graph(scenario_units), temp_dir / "out" / "dependency-map.json")

        data = json.loads(path.read_text())
        assert data["forward"]["A.cbl"] == ["B.cpy", "C.cpy"]
        assert data["metrics"]["edge_count"] == 3

    def test_markdown_with_insights(self, scenario_units, temp_dir: Path):
        graph = build_dependency_graph(scenario_units)
        graph.attach_insights("B is the shared record layout.")

        text = export_mermaid_markdown(graph, temp_dir / "diagram.md").read_text()

        assert "```mermaid\ngraph TB" in text
        assert "- Most used copybook: B.cpy (2 units)" in text
        assert "## Analysis\n\nB is the shared record layout." in text

    def test_markdown_without_insights(self, scenario_units, temp_dir: Path):
        text = export_mermaid_markdown(build_dependency_graph(scenario_units), temp_dir / "d.md").read_text()
        assert "## Analysis" not in text

    def test_dot(self, sample_cobol_path: Path, temp_dir: Path):
        graph = build_dependency_graph(scan_directory(sample_cobol_path))
        text = export_dot(graph, temp_dir / "deps.dot").read_text()

        assert text.startswith("digraph CobolDependencies {")
        assert '"PAYROLL.cbl" -> "EMPREC.cpy";' in text
        assert '"SQLCA.cpy" [shape=note, style=dashed];' in text
        assert text.rstrip().endswith("}")
