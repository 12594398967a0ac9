"""The three LLM-backed agents: dependency insight, structural analysis, conversion.

Each agent is data: a system prompt, generation options, a prompt builder and
a result handler. :func:`invoke_agent` is the single call path shared by all
of them, so retry and logging behaviour cannot drift between agents.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from .dependency_graph import DependencyGraph
from .llm import GenerationOptions
from .models import AgentStepResult, AnalysisRecord, GeneratedArtifact, SourceUnit
from .output_parser import build_artifacts, parse_generated_files
from .retry import PromptSpec, RetryingInvoker

logger = logging.getLogger(__name__)

INSIGHT_AGENT = "DependencyInsightAgent"
ANALYSIS_AGENT = "CobolAnalyzerAgent"
CONVERSION_AGENT = "JavaConverterAgent"

_PROGRAM_ID_PATTERN = re.compile(r"PROGRAM-ID\.?\s+['\"]?([A-Za-z0-9_-]+)", re.IGNORECASE)

INSIGHT_SYSTEM_PROMPT = """\
You are an expert COBOL dependency analyzer. Analyze the provided COBOL code structure and identify:
1. Data flow dependencies between copybooks
2. Potential circular dependencies
3. Modularity recommendations
4. Legacy patterns that affect dependencies

Provide a brief analysis of the dependency structure and any recommendations.
"""

ANALYSIS_SYSTEM_PROMPT = """\
You are an expert COBOL analyzer. Your task is to analyze COBOL source code and extract key information
about the program structure, variables, paragraphs, logic flow and embedded SQL or DB2.
Analyze the provided COBOL program and provide a detailed, structured analysis that includes:

1. Overall program description
2. Data divisions and their purpose
3. Procedure divisions and their purpose
4. Variables (name, level, type, size, group structure)
5. Paragraphs/sections (name, description, logic, variables used, paragraphs called)
6. Copybooks referenced
7. File access (file name, mode, verbs used, status variable, FD linkage)
8. Any embedded SQL or DB2 statements (type, purpose, variables used)

Your analysis should be structured in a way that can be easily parsed by a Java conversion system.
"""

CONVERSION_SYSTEM_PROMPT = """\
You are an expert in converting COBOL programs to Java with the Quarkus framework. Convert COBOL source
code to modern, maintainable Java 21 code that runs on Quarkus.

Follow these guidelines:
1. Create proper Java class structures from COBOL programs
2. Convert COBOL variables to appropriate Java data types
3. Transform COBOL procedures into Java methods
4. Handle COBOL-specific features (PERFORM, GOTO, etc.) in an idiomatic Java way
5. Implement proper error handling
6. Include comments explaining the conversion decisions
7. Also provide a pom.xml file for Quarkus dependencies and configuration
8. Output ONLY valid JSON. No code fences, no explanations, no extra keys.
   The JSON must be a flat object: {"File1.java": "file 1 content", "File2.java": "file 2 content"}

The COBOL code may contain placeholder terms such as ERROR_CODE, ERROR_MSG or ERROR_CALLING that replaced
non-English error handling terminology. Treat them as standard COBOL error handling patterns and convert
them to Java exceptions and logging.
"""


@dataclass(frozen=True)
class Agent:
    """One agent: how to prompt it and what to make of its answer.

    ``build_prompt`` and ``handle_result`` receive the same keyword context
    passed to :func:`invoke_agent`.
    """

    name: str
    system_prompt: str
    options: GenerationOptions
    build_prompt: Callable[..., str]
    handle_result: Callable[..., Any]


def invoke_agent(invoker: RetryingInvoker, agent: Agent, unit_id: str, **context) -> Tuple[AgentStepResult, Any]:
    """Build the prompt, run it through the invoker, and hand the step to the agent's handler."""
    spec = PromptSpec(
        agent_name=agent.name,
        unit_id=unit_id,
        system_prompt=agent.system_prompt,
        user_prompt=agent.build_prompt(**context),
        options=agent.options,
    )
    step = invoker.run_step(spec)
    if step.success:
        logger.info("%s finished %s in %.0f ms", agent.name, unit_id or "dependency graph", step.duration_ms)
    else:
        logger.warning("%s failed on %s: %s", agent.name, unit_id or "dependency graph", step.error)
    return step, agent.handle_result(step, **context)


def sanitize_source(content: str, replacements: Optional[Dict[str, str]]) -> str:
    """Apply the substitution table, longest terms first so prefixes don't win."""
    if not replacements:
        return content
    for term in sorted(replacements, key=len, reverse=True):
        content = content.replace(term, replacements[term])
    return content


def extract_program_id(content: str) -> str:
    match = _PROGRAM_ID_PATTERN.search(content or "")
    return match.group(1) if match else ""


def _first_line(text: str, limit: int = 200) -> str:
    for line in (text or "").splitlines():
        line = line.strip().lstrip("#").strip()
        if line:
            return line[:limit]
    return ""


# Dependency insight

def build_insight_prompt(units: Sequence[SourceUnit], graph: DependencyGraph) -> str:
    structure = "\n".join(
        f"File: {unit.unit_id}\nType: {'Copybook' if unit.is_module else 'Program'}\nSize: {len(unit.content)} chars"
        for unit in list(units)[:5]
    )
    usage = "\n".join(
        f"{source} uses: {', '.join(targets)}" for source, targets in list(graph.forward.items())[:10]
    )
    return (
        "Analyze the dependency structure of this COBOL project:\n\n"
        f"{structure}\n\n"
        f"Copybook usage patterns:\n{usage or '(no copybook references found)'}\n\n"
        f"Graph summary:\n{graph.summary_text()}\n\n"
        "Provide insights about the dependency architecture."
    )


def handle_insight(step: AgentStepResult, **_context) -> str:
    return step.raw_output.strip() if step.success else ""


def dependency_insight_agent(max_output_tokens: int = 32768) -> Agent:
    return Agent(
        name=INSIGHT_AGENT,
        system_prompt=INSIGHT_SYSTEM_PROMPT,
        options=GenerationOptions(max_output_tokens=max_output_tokens, temperature=0.2, top_p=1.0),
        build_prompt=build_insight_prompt,
        handle_result=handle_insight,
    )


# Structural analysis

def build_analysis_prompt(unit: SourceUnit, graph: Optional[DependencyGraph] = None) -> str:
    return (
        "Analyze the following COBOL program:\n\n"
        f"```cobol\n{unit.content}\n```\n\n"
        "Provide a detailed, structured analysis as described in your instructions."
    )


def handle_analysis(step: AgentStepResult, unit: SourceUnit, graph: Optional[DependencyGraph] = None) -> AnalysisRecord:
    referenced = graph.dependencies_of(unit.unit_id) if graph is not None else []
    if not step.success:
        return AnalysisRecord(
            unit_id=unit.unit_id,
            raw_text="",
            program_id=extract_program_id(unit.content),
            referenced_modules=referenced,
            success=False,
            error=step.error,
        )
    return AnalysisRecord(
        unit_id=unit.unit_id,
        raw_text=step.raw_output,
        program_id=extract_program_id(unit.content),
        referenced_modules=referenced,
        summary=_first_line(step.raw_output),
    )


def structural_analysis_agent(max_output_tokens: int = 32768) -> Agent:
    return Agent(
        name=ANALYSIS_AGENT,
        system_prompt=ANALYSIS_SYSTEM_PROMPT,
        options=GenerationOptions(max_output_tokens=max_output_tokens, temperature=0.1, top_p=0.5),
        build_prompt=build_analysis_prompt,
        handle_result=handle_analysis,
    )


# Conversion

@dataclass
class ConversionOutcome:
    artifacts: List[GeneratedArtifact]
    error: str = ""


def build_conversion_prompt(
    unit: SourceUnit,
    analysis: AnalysisRecord,
    sanitize: Optional[Dict[str, str]] = None,
) -> str:
    return (
        "Convert the following COBOL program to Java with Quarkus:\n\n"
        f"```cobol\n{sanitize_source(unit.content, sanitize)}\n```\n\n"
        "Here is the analysis of the COBOL program to help you understand its structure:\n\n"
        f"{analysis.raw_text}\n\n"
        "Provide the complete Java Quarkus implementation; its behaviour must match the COBOL program."
    )


def handle_conversion(step: AgentStepResult, unit: SourceUnit, **_context) -> ConversionOutcome:
    if not step.success:
        return ConversionOutcome(artifacts=[], error=step.error)
    parsed = parse_generated_files(step.raw_output)
    if not parsed.ok:
        return ConversionOutcome(artifacts=[], error=parsed.error)
    return ConversionOutcome(artifacts=build_artifacts(parsed.files, unit.unit_id))


def transformation_agent(max_output_tokens: int = 32768) -> Agent:
    return Agent(
        name=CONVERSION_AGENT,
        system_prompt=CONVERSION_SYSTEM_PROMPT,
        options=GenerationOptions(max_output_tokens=max_output_tokens, temperature=0.1, top_p=0.5),
        build_prompt=build_conversion_prompt,
        handle_result=handle_conversion,
    )
