"""Integration tests for CLI commands."""

import json
from pathlib import Path

import pytest
import toml
from typer.testing import CliRunner

from conftest import ScriptedLLM, agent_responder

from cobolgraph_cli import __version__, config_manager
from cobolgraph_cli.cli import app


runner = CliRunner()


class FakeLLMClient:
    """Replaces LLMClient in the CLI; answers every agent from a script."""

    instances = []

    def __init__(self, settings):
        self.settings = settings
        self.complete = ScriptedLLM(default=agent_responder())
        FakeLLMClient.instances.append(self)


@pytest.fixture
def fake_client(monkeypatch):
    FakeLLMClient.instances = []
    monkeypatch.setattr("cobolgraph_cli.cli.LLMClient", FakeLLMClient)
    return FakeLLMClient


@pytest.mark.parametrize("flag", ["--version", "-v"])
def test_version(flag):
    result = runner.invoke(app, [flag])

    assert result.exit_code == 0
    assert f"CobolGraph CLI v{__version__}" in result.stdout


class TestDepsCommand:
    """Tests for 'cbg deps'."""

    def test_deps_sample(self, sample_cobol_path: Path, temp_dir: Path):
        json_path = temp_dir / "deps.json"
        mermaid_path = temp_dir / "deps.md"

        result = runner.invoke(
            app, ["deps", str(sample_cobol_path), "--json", str(json_path), "--mermaid", str(mermaid_path)]
        )

        assert result.exit_code == 0
        assert "Dependency Metrics" in result.stdout
        assert "unresolved: SQLCA.cpy" in result.stdout
        assert json.loads(json_path.read_text())["forward"]["EMPREC.cpy"] == ["DATEUTIL.cpy"]
        assert "```mermaid" in mermaid_path.read_text()

    def test_deps_missing_dir(self, temp_dir: Path):
        result = runner.invoke(app, ["deps", str(temp_dir / "missing")])

        assert result.exit_code == 1

    def test_deps_empty_dir(self, temp_dir: Path):
        result = runner.invoke(app, ["deps", str(temp_dir)])

        assert result.exit_code == 1
        assert "No COBOL files" in result.output


class TestMigrateCommand:
    """Tests for 'cbg migrate' with the LLM client faked out."""

    def test_migrate_writes_outputs(self, sample_cobol_path: Path, temp_dir: Path, fake_client):
        out = temp_dir / "java"

        result = runner.invoke(app, ["migrate", str(sample_cobol_path), str(out), "--base-delay-ms", "0", "-q"])

        assert result.exit_code == 0, result.output
        assert (out / "com" / "acme" / "pay" / "Main.java").exists()
        assert (out / "dependency-map.json").exists()
        assert "```mermaid" in (out / "dependency-diagram.md").read_text()
        report = (out / "migration-report.md").read_text()
        assert "| PAYROLL.cbl | Main | Program |" in report
        calls = json.loads((out / "api-calls.json").read_text())
        # one insight call plus analysis and conversion for both programs
        assert calls["summary"]["total_calls"] == 5
        assert "Migration Summary" in result.stdout

    def test_command_line_overrides_reach_client(self, sample_cobol_path: Path, temp_dir: Path, fake_client):
        result = runner.invoke(
            app,
            [
                "migrate",
                str(sample_cobol_path),
                str(temp_dir / "out"),
                "-p",
                "anthropic",
                "-k",
                "sk-ant",
                "-q",
            ],
        )

        assert result.exit_code == 0, result.output
        settings = fake_client.instances[0].settings
        assert settings.provider == "anthropic"
        assert settings.model == "claude-3-5-sonnet-20241022"
        assert settings.api_key == "sk-ant"

    def test_migrate_without_api_key(self, sample_cobol_path: Path, temp_dir: Path):
        result = runner.invoke(app, ["migrate", str(sample_cobol_path), str(temp_dir / "out"), "-q"])

        assert result.exit_code == 1
        assert "No API key configured" in result.output
        assert not (temp_dir / "out").exists()

    def test_migrate_missing_source(self, temp_dir: Path, fake_client):
        result = runner.invoke(app, ["migrate", str(temp_dir / "nope"), str(temp_dir / "out")])

        assert result.exit_code == 1
        assert fake_client.instances == []

    def test_migrate_invalid_config(self, sample_cobol_path: Path, temp_dir: Path, fake_client):
        config_manager._save_full_config({"sanitize": {"FEJL": 1}})

        result = runner.invoke(app, ["migrate", str(sample_cobol_path), str(temp_dir / "out"), "-q"])

        assert result.exit_code == 1
        assert "Invalid configuration" in result.output
        assert fake_client.instances == []


class TestLLMConfigCommands:
    """Tests for set-llm / show-llm / unset-llm."""

    def test_set_llm_with_key(self):
        result = runner.invoke(app, ["set-llm", "openai", "-k", "sk-test-123456789"])

        assert result.exit_code == 0
        data = toml.load(config_manager.CONFIG_FILE)
        assert data["llm"] == {"provider": "openai", "model": "gpt-4.1", "api_key": "sk-test-123456789"}

    def test_set_llm_prompts_for_key(self):
        result = runner.invoke(app, ["set-llm", "groq"], input="gsk-secret\n")

        assert result.exit_code == 0
        assert toml.load(config_manager.CONFIG_FILE)["llm"]["api_key"] == "gsk-secret"

    def test_set_llm_reuses_existing_key(self):
        runner.invoke(app, ["set-llm", "openai", "-k", "sk-keep"])

        result = runner.invoke(app, ["set-llm", "openai", "-m", "gpt-4o"])

        assert result.exit_code == 0
        assert "Reusing existing API key" in result.stdout
        llm = toml.load(config_manager.CONFIG_FILE)["llm"]
        assert (llm["model"], llm["api_key"]) == ("gpt-4o", "sk-keep")

    def test_set_llm_ollama_needs_no_key(self):
        result = runner.invoke(app, ["set-llm", "ollama"])

        assert result.exit_code == 0
        assert "api_key" not in toml.load(config_manager.CONFIG_FILE)["llm"]

    def test_set_llm_unknown_provider(self):
        result = runner.invoke(app, ["set-llm", "skynet", "-k", "x"])

        assert result.exit_code == 1
        assert not config_manager.CONFIG_FILE.exists()

    def test_set_llm_azure_needs_endpoint(self):
        result = runner.invoke(app, ["set-llm", "azure-openai", "-k", "az"])

        assert result.exit_code == 1

    def test_show_llm_masks_key(self):
        runner.invoke(app, ["set-llm", "openai", "-k", "sk-test-123456789"])

        result = runner.invoke(app, ["show-llm"])

        assert result.exit_code == 0
        assert "openai" in result.stdout
        assert "sk-test-" in result.stdout
        assert "123456789" not in result.stdout

    def test_show_llm_invalid_config(self):
        config_manager._save_full_config({"retry": {"max_attempts": "many"}})

        result = runner.invoke(app, ["show-llm"])

        assert result.exit_code == 1
        assert "max_attempts" in result.output

    def test_unset_llm(self):
        runner.invoke(app, ["set-llm", "openai", "-k", "sk-x"])

        result = runner.invoke(app, ["unset-llm", "--yes"])

        assert result.exit_code == 0
        assert "llm" not in toml.load(config_manager.CONFIG_FILE)

    def test_unset_llm_nothing_configured(self):
        result = runner.invoke(app, ["unset-llm", "--yes"])

        assert result.exit_code == 0
        assert "Nothing to unset" in result.stdout
