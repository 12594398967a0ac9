"""Pytest configuration and fixtures for CobolGraph CLI tests."""

import shutil
import tempfile
from pathlib import Path
from typing import Callable, Generator, List, Optional, Sequence, Union

import pytest

from cobolgraph_cli.llm import GenerationOptions
from cobolgraph_cli.models import SourceUnit


@pytest.fixture(autouse=True)
def _isolated_config(monkeypatch, tmp_path):
    """Point the config file at a temp dir and clear provider env vars in every test."""
    monkeypatch.setattr("cobolgraph_cli.config_manager.CONFIG_FILE", tmp_path / "cobolgraph-home" / "config.toml")
    for key in ("PROVIDER", "MODEL", "API_KEY", "ENDPOINT", "DEPLOYMENT"):
        monkeypatch.delenv(f"COBOLGRAPH_LLM_{key}", raising=False)


@pytest.fixture(autouse=True)
def _no_network(monkeypatch):
    """Fail loudly if anything tries to reach a real LLM endpoint."""

    def _blocked(*args, **kwargs):
        raise AssertionError("Network access attempted during tests")

    monkeypatch.setattr("cobolgraph_cli.llm.requests.post", _blocked)


class ScriptedLLM:
    """Stands in for ``LLMClient.complete``.

    ``script`` items are returned in order; exceptions are raised instead of
    returned. Once exhausted, ``default`` (text or callable) answers.
    """

    def __init__(
        self,
        script: Optional[Sequence[Union[str, BaseException]]] = None,
        default: Union[str, Callable[[str, str], str]] = "ok",
    ):
        self.script = list(script or [])
        self.default = default
        self.calls: List[dict] = []

    def __call__(self, system_prompt: str, user_prompt: str, options: GenerationOptions) -> str:
        self.calls.append({"system": system_prompt, "user": user_prompt, "options": options})
        if self.script:
            item = self.script.pop(0)
            if isinstance(item, BaseException):
                raise item
            return item
        if callable(self.default):
            return self.default(system_prompt, user_prompt)
        return self.default


def agent_responder(
    insight: str = "Copybooks are shared by several programs.",
    analysis: str = "Program summary\nDetails...",
    conversion: str = '{"Main.java": "package com.acme.pay;\\npublic class Main {}"}',
) -> Callable[[str, str], str]:
    """Answer per agent, keyed on the system prompt."""

    def respond(system_prompt: str, user_prompt: str) -> str:
        if "dependency analyzer" in system_prompt:
            return insight
        if "COBOL analyzer" in system_prompt:
            return analysis
        return conversion

    return respond


@pytest.fixture
def scripted_llm() -> Callable[..., ScriptedLLM]:
    return ScriptedLLM


@pytest.fixture
def sleeps() -> List[float]:
    """Records requested backoff sleeps instead of waiting."""
    return []


@pytest.fixture
def fake_sleep(sleeps: List[float]) -> Callable[[float], None]:
    return sleeps.append


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    tmp = Path(tempfile.mkdtemp())
    yield tmp
    shutil.rmtree(tmp, ignore_errors=True)


@pytest.fixture
def sample_cobol_path() -> Path:
    """Get path to the sample COBOL project."""
    return Path(__file__).parent / "fixtures" / "sample_cobol"


@pytest.fixture
def scenario_units() -> List[SourceUnit]:
    """A references B and C; C references B; B and C are copybooks."""
    return [
        SourceUnit(name="A.cbl", content="       COPY B.\n       COPY C.\n"),
        SourceUnit(name="B.cpy", content="       01 B-REC PIC X.\n", is_module=True),
        SourceUnit(name="C.cpy", content="       COPY B.\n", is_module=True),
    ]


@pytest.fixture
def program_units() -> List[SourceUnit]:
    """Three programs sharing one copybook."""
    return [
        SourceUnit(name="P1.cbl", content="       PROGRAM-ID. P1.\n       COPY SHARED.\n"),
        SourceUnit(name="P2.cbl", content="       PROGRAM-ID. P2.\n       COPY SHARED.\n"),
        SourceUnit(name="P3.cbl", content="       PROGRAM-ID. P3.\n       DISPLAY 'FEJLMELD'.\n"),
        SourceUnit(name="SHARED.cpy", content="       01 SHARED-REC PIC X.\n", is_module=True),
    ]
