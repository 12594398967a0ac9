"""Typer-based CLI for CobolGraph: dependency analysis and LLM-driven COBOL migration."""

from __future__ import annotations

import dataclasses
import logging
import threading
import time
from pathlib import Path
from typing import Dict, List, Optional

import typer
from rich.console import Console
from rich.progress import BarColumn, Progress, SpinnerColumn, TaskProgressColumn, TextColumn
from rich.table import Table

from . import __version__, config, config_manager
from .artifacts import write_artifacts
from .dependency_graph import DependencyGraph, build_dependency_graph
from .errors import ConfigurationError
from .graph_export import export_dot, export_json, export_mermaid_markdown
from .llm import LLMClient
from .logging_config import setup_logging
from .models import PipelineResult, SourceUnit
from .observer import RunObserver
from .orchestrator import STAGE_ANALYSIS, STAGE_CONVERSION, STAGE_INSIGHT, PipelineOptions, run_pipeline
from .report import render_report
from .scanner import scan_directory

logger = logging.getLogger(__name__)

console = Console()

app = typer.Typer(
    help="CobolGraph CLI: COBOL dependency graphs and LLM-driven migration to Java.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

ALL_PROVIDERS = list(config_manager.DEFAULT_CONFIGS)

STAGE_LABELS = {
    STAGE_INSIGHT: "Dependency insight",
    STAGE_ANALYSIS: "Analysing programs",
    STAGE_CONVERSION: "Converting to Java",
}


def version_callback(value: bool):
    """Print version and exit."""
    if value:
        typer.echo(f"CobolGraph CLI v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Optional[bool] = typer.Option(
        None,
        "--version",
        "-v",
        help="Show version and exit.",
        callback=version_callback,
        is_eager=True,
    )
):
    """CobolGraph CLI: analyse COBOL copybook dependencies and migrate programs with an LLM."""
    pass


def print_success(message: str):
    typer.echo(typer.style("✓ ", fg=typer.colors.GREEN, bold=True) + message)


def print_error(message: str):
    typer.echo(typer.style("✗ ", fg=typer.colors.RED, bold=True) + message, err=True)


def print_info(message: str):
    typer.echo(typer.style("ℹ ", fg=typer.colors.BLUE, bold=True) + message)


def _scan_or_exit(source: Path) -> List[SourceUnit]:
    try:
        units = scan_directory(source)
    except ConfigurationError as exc:
        print_error(str(exc))
        raise typer.Exit(code=1)
    if not units:
        print_error(f"No COBOL files (.cbl, .cob, .cpy) found in {source}")
        raise typer.Exit(code=1)
    return units


def _settings_or_exit() -> config_manager.Settings:
    try:
        return config_manager.load_settings()
    except ConfigurationError as exc:
        print_error(f"Invalid configuration in {config_manager.CONFIG_FILE}: {exc}")
        raise typer.Exit(code=1)


def _metrics_table(graph: DependencyGraph) -> Table:
    m = graph.metrics
    table = Table(title="Dependency Metrics", show_header=True)
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right")
    table.add_row("Programs", str(m.program_count))
    table.add_row("Copybooks", str(m.module_count))
    table.add_row("Referenced units", str(m.referenced_module_count))
    table.add_row("Distinct references", str(m.edge_count))
    table.add_row("Reference statements", str(m.reference_occurrences))
    table.add_row("Average per program", f"{m.average_fan_out:.2f}")
    if m.most_referenced:
        table.add_row("Most used", f"{m.most_referenced} ({m.most_referenced_count})")
    table.add_row("Unresolved", str(m.unresolved_count))
    table.add_row("Cycles", str(len(m.cycles)))
    return table


def _print_graph_details(graph: DependencyGraph) -> None:
    for cycle in graph.metrics.cycles:
        console.print(f"[yellow]cycle:[/yellow] {' -> '.join(cycle + cycle[:1])}")
    if graph.unresolved:
        console.print(f"[yellow]unresolved:[/yellow] {', '.join(graph.unresolved)}")


@app.command("deps")
def deps(
    source: Path = typer.Argument(..., help="Directory containing .cbl/.cob programs and .cpy copybooks."),
    json_out: Optional[Path] = typer.Option(None, "--json", help="Write the dependency map as JSON."),
    dot_out: Optional[Path] = typer.Option(None, "--dot", help="Write a Graphviz DOT file."),
    mermaid_out: Optional[Path] = typer.Option(None, "--mermaid", help="Write a Mermaid markdown diagram."),
    verbose: bool = typer.Option(False, "--verbose", help="Enable debug logging."),
):
    """Build the copybook dependency graph without calling any LLM."""
    setup_logging(verbose=verbose)
    units = _scan_or_exit(source)
    graph = build_dependency_graph(units)

    console.print(_metrics_table(graph))
    _print_graph_details(graph)

    usage = Table(title="Copybook Usage", show_header=True)
    usage.add_column("Unit", style="green")
    usage.add_column("References")
    for unit_id, targets in graph.forward.items():
        usage.add_row(unit_id, ", ".join(targets) or "-")
    console.print(usage)

    if json_out:
        print_success(f"Dependency map written to {export_json(graph, json_out)}")
    if dot_out:
        print_success(f"DOT graph written to {export_dot(graph, dot_out)}")
    if mermaid_out:
        print_success(f"Mermaid diagram written to {export_mermaid_markdown(graph, mermaid_out)}")


def _apply_overrides(
    settings: config_manager.Settings,
    provider: Optional[str],
    model: Optional[str],
    api_key: Optional[str],
    endpoint: Optional[str],
    max_attempts: Optional[int],
    base_delay_ms: Optional[int],
) -> config_manager.Settings:
    llm = settings.llm
    if provider and provider.lower() != llm.provider:
        defaults = config_manager.get_provider_config(provider.lower())
        llm = config_manager.LLMSettings(
            provider=provider.lower(),
            model=defaults.get("model", ""),
            endpoint=defaults.get("endpoint", ""),
            deployment=defaults.get("deployment", ""),
        )
    changes: Dict[str, str] = {}
    if model:
        changes["model"] = model
    if api_key:
        changes["api_key"] = api_key
    if endpoint:
        changes["endpoint"] = endpoint
    llm = dataclasses.replace(llm, **changes)

    retry = settings.retry
    if max_attempts is not None:
        retry = dataclasses.replace(retry, max_attempts=max_attempts)
    if base_delay_ms is not None:
        retry = dataclasses.replace(retry, base_delay_ms=base_delay_ms)
    return dataclasses.replace(settings, llm=llm, retry=retry)


def _run_with_interrupt(target, cancel_event: threading.Event):
    """Run ``target`` on a worker thread so Ctrl-C can set ``cancel_event`` instead of killing it."""
    outcome: Dict[str, object] = {}

    def work():
        try:
            outcome["result"] = target()
        except BaseException as exc:  # re-raised on the calling thread
            outcome["error"] = exc

    worker = threading.Thread(target=work, name="cobolgraph-pipeline", daemon=True)
    worker.start()
    while worker.is_alive():
        try:
            worker.join(0.2)
        except KeyboardInterrupt:
            if cancel_event.is_set():
                raise
            cancel_event.set()
            console.print("\n[yellow]Cancelling after the current step; press Ctrl-C again to abort.[/yellow]")

    if "error" in outcome:
        raise outcome["error"]
    return outcome["result"]


def _write_outputs(
    result: PipelineResult,
    units: List[SourceUnit],
    output: Path,
    observer: RunObserver,
    elapsed: float,
) -> List[str]:
    output.mkdir(parents=True, exist_ok=True)
    written, errors = write_artifacts(result.artifacts, output)
    export_json(result.graph, output / config.DEPENDENCY_MAP_FILE)
    export_mermaid_markdown(result.graph, output / config.DEPENDENCY_DIAGRAM_FILE)
    (output / config.REPORT_FILE).write_text(render_report(result, units, elapsed), encoding="utf-8")
    observer.export_json(output / config.API_CALL_LOG_FILE)
    print_success(f"{len(written)} generated file(s) written to {output}")
    return errors


def _summary_table(result: PipelineResult) -> Table:
    stats = result.stats
    table = Table(title="Migration Summary", show_header=True)
    table.add_column("Item", style="cyan")
    table.add_column("Value", justify="right")
    table.add_row("Programs analysed", f"{len(result.successful_analyses)}/{result.graph.metrics.program_count}")
    table.add_row("Generated files", str(len(result.artifacts)))
    table.add_row("Errors", str(len(result.errors)))
    table.add_row("Skipped", str(len(result.skipped)))
    table.add_row("API calls", str(stats.get("total_calls", 0)))
    table.add_row("Retries", str(stats.get("retries", 0)))
    table.add_row("Estimated tokens", f"{stats.get('total_tokens', 0):,}")
    table.add_row("Estimated cost", f"${stats.get('total_cost', 0.0):.4f}")
    return table


@app.command("migrate")
def migrate(
    source: Path = typer.Argument(..., help="Directory containing .cbl/.cob programs and .cpy copybooks."),
    output: Path = typer.Argument(..., help="Directory for generated Java sources and reports."),
    provider: Optional[str] = typer.Option(None, "--provider", "-p", help=f"LLM provider: {', '.join(ALL_PROVIDERS)}."),
    model: Optional[str] = typer.Option(None, "--model", "-m", help="Model or deployment name."),
    api_key: Optional[str] = typer.Option(None, "--api-key", "-k", help="API key for cloud providers."),
    endpoint: Optional[str] = typer.Option(None, "--endpoint", "-e", help="Custom endpoint URL."),
    max_attempts: Optional[int] = typer.Option(None, "--max-attempts", min=1, help="Attempts per LLM call."),
    base_delay_ms: Optional[int] = typer.Option(None, "--base-delay-ms", min=0, help="First retry delay in ms."),
    verbose: bool = typer.Option(False, "--verbose", help="Enable debug logging."),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Only log errors."),
    log_file: Optional[Path] = typer.Option(None, "--log-file", help="Also write a full debug log here."),
):
    """Analyse every program with the configured LLM and convert it to Java."""
    setup_logging(verbose=verbose, quiet=quiet, log_file=log_file)
    settings = _apply_overrides(
        _settings_or_exit(), provider, model, api_key, endpoint, max_attempts, base_delay_ms
    )

    units = _scan_or_exit(source)
    programs = sum(1 for unit in units if not unit.is_module)
    print_info(f"Found {programs} program(s) and {len(units) - programs} copybook(s) in {source}")

    try:
        llm_call = LLMClient(settings.llm).complete
    except ConfigurationError as exc:
        print_error(str(exc))
        raise typer.Exit(code=1)
    print_info(f"Using {settings.llm.provider}/{settings.llm.model}")

    options = PipelineOptions.from_settings(settings)
    observer = RunObserver(cost_per_1k_tokens=options.cost_per_1k_tokens)
    cancel_event = threading.Event()
    started = time.perf_counter()

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TaskProgressColumn(),
        console=console,
        disable=quiet,
    ) as progress:
        tasks: Dict[str, int] = {}

        def on_progress(stage: str, current: int, total: int) -> None:
            if stage not in tasks:
                tasks[stage] = progress.add_task(STAGE_LABELS.get(stage, stage), total=total)
            progress.update(tasks[stage], completed=current, total=total)

        try:
            result = _run_with_interrupt(
                lambda: run_pipeline(
                    units,
                    options=options,
                    llm_call=llm_call,
                    progress_sink=on_progress,
                    cancel_event=cancel_event,
                    observer=observer,
                ),
                cancel_event,
            )
        except ConfigurationError as exc:
            print_error(str(exc))
            raise typer.Exit(code=1)

    elapsed = time.perf_counter() - started
    write_errors = _write_outputs(result, units, output, observer, elapsed)

    console.print(_summary_table(result))
    _print_graph_details(result.graph)
    for error in result.errors:
        console.print(f"[red]{error}[/red]")
    for warning in result.warnings:
        console.print(f"[yellow]warning:[/yellow] {warning}")
    for message in write_errors:
        console.print(f"[red]write failed:[/red] {message}")

    if result.cancelled:
        print_error("Migration cancelled; partial results were written.")
        raise typer.Exit(code=130)
    print_success(f"Migration finished in {elapsed:.1f}s. Report: {output / config.REPORT_FILE}")


@app.command("set-llm")
def set_llm(
    provider: str = typer.Argument(..., help=f"LLM provider: {', '.join(ALL_PROVIDERS)}"),
    model: Optional[str] = typer.Option(None, "--model", "-m", help="Model name (uses provider default if not set)."),
    api_key: Optional[str] = typer.Option(None, "--api-key", "-k", help="API key for cloud providers."),
    endpoint: Optional[str] = typer.Option(None, "--endpoint", "-e", help="Custom endpoint URL."),
    deployment: Optional[str] = typer.Option(None, "--deployment", "-d", help="Azure OpenAI deployment name."),
):
    """Switch the LLM provider used by 'cbg migrate'.

    Examples:
        cbg set-llm openai -k YOUR_API_KEY
        cbg set-llm azure-openai -k KEY -e https://NAME.openai.azure.com -d gpt-4.1
        cbg set-llm ollama -m qwen2.5-coder:7b
    """
    provider = provider.lower().strip()
    if provider not in ALL_PROVIDERS:
        print_error(f"Unknown provider '{provider}'. Choose from: {', '.join(ALL_PROVIDERS)}")
        raise typer.Exit(code=1)

    current = config_manager.load_config()
    defaults = config_manager.get_provider_config(provider)

    resolved_model = model or defaults.get("model", "")
    resolved_endpoint = endpoint or defaults.get("endpoint", "")
    resolved_deployment = deployment or defaults.get("deployment", "")
    resolved_api_key = api_key or ""

    if provider != "ollama" and not resolved_api_key:
        if current.get("provider") == provider and current.get("api_key"):
            resolved_api_key = current["api_key"]
            print_info(f"Reusing existing API key for {provider}")
        else:
            resolved_api_key = typer.prompt(f"Enter your {provider} API key", hide_input=True)

    if provider == "azure-openai" and not resolved_endpoint:
        print_error("Azure OpenAI needs --endpoint.")
        raise typer.Exit(code=1)

    if not config_manager.save_config(provider, resolved_model, resolved_api_key, resolved_endpoint, resolved_deployment):
        print_error(f"Could not write {config_manager.CONFIG_FILE}")
        raise typer.Exit(code=1)
    print_success(f"LLM set to {provider}/{resolved_model}")


@app.command("show-llm")
def show_llm():
    """Show current LLM provider configuration."""
    llm = _settings_or_exit().llm
    typer.echo(f"  Provider  {typer.style(llm.provider, bold=True)}")
    typer.echo(f"  Model     {typer.style(llm.model, bold=True)}")
    if llm.endpoint:
        typer.echo(f"  Endpoint  {typer.style(llm.endpoint, dim=True)}")
    if llm.deployment:
        typer.echo(f"  Deploy    {llm.deployment}")
    if llm.api_key:
        masked = llm.api_key[:8] + "•" * min(max(len(llm.api_key) - 8, 0), 16)
        typer.echo(f"  API Key   {masked}")
    else:
        typer.echo(f"  API Key   {typer.style('(not set)', dim=True)}")
    typer.echo(f"  Config    {typer.style(str(config_manager.CONFIG_FILE), dim=True)}")


@app.command("unset-llm")
def unset_llm(
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation."),
):
    """Remove the stored LLM settings (API keys included); other sections are kept."""
    if not config_manager.CONFIG_FILE.exists():
        print_info("No LLM configuration found. Nothing to unset.")
        raise typer.Exit(code=0)
    if not yes and not typer.confirm("Remove the [llm] section from the config file?", default=False):
        print_info("Cancelled.")
        raise typer.Exit(code=0)
    if not config_manager.clear_config():
        print_error(f"Could not write {config_manager.CONFIG_FILE}")
        raise typer.Exit(code=1)
    print_success("LLM configuration reset to defaults.")


if __name__ == "__main__":
    app()
