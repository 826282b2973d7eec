"""Branchwright CLI - typer application entry point."""

from __future__ import annotations

import json
from pathlib import Path
from typing import TYPE_CHECKING, Annotated

import typer
from dotenv import load_dotenv
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from branchwright.graph.errors import GraphCorruptionError
from branchwright.graph.validation import run_all_checks
from branchwright.models.raw import DocumentDecodeError, decode_graph, parse_generator_output
from branchwright.observability import close_file_logging, configure_logging, get_logger
from branchwright.pipeline.config import (
    RepairConfig,
    RepairConfigError,
    load_cast_file,
    load_repair_config,
)
from branchwright.pipeline.orchestrator import repair_graph

if TYPE_CHECKING:
    from branchwright.graph.validation import ValidationReport
    from branchwright.pipeline.orchestrator import PipelineResult

# Load environment variables from .env file
load_dotenv()

app = typer.Typer(
    name="bw",
    help="Branchwright: deterministic repair of generated branching stories.",
    no_args_is_help=True,
)
console = Console()
err_console = Console(stderr=True)

log = get_logger(__name__)

_SEVERITY_STYLE = {"pass": "green", "warn": "yellow", "fail": "red"}


@app.callback()
def main(
    verbose: Annotated[
        int,
        typer.Option(
            "-v",
            "--verbose",
            count=True,
            help="Increase verbosity: -v for INFO, -vv for DEBUG.",
        ),
    ] = 0,
    log_dir: Annotated[
        Path | None,
        typer.Option(
            "--log-dir",
            help="Write all log events to {log_dir}/debug.jsonl.",
            envvar="BW_LOG_DIR",
        ),
    ] = None,
) -> None:
    """Branchwright: deterministic repair of generated branching stories."""
    configure_logging(verbosity=verbose, log_dir=log_dir)


def _read_document(path: Path) -> dict:
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        err_console.print(f"[red]Error:[/red] cannot read {escape(str(path))}: {escape(str(e))}")
        raise typer.Exit(1) from e
    try:
        return parse_generator_output(text)
    except DocumentDecodeError as e:
        err_console.print(f"[red]Error:[/red] {escape(str(e))}")
        raise typer.Exit(1) from e


def _resolve_config(
    config_path: Path | None,
    cast_path: Path | None,
    language: str | None,
    strict: bool,
) -> RepairConfig:
    try:
        config = load_repair_config(config_path) if config_path else RepairConfig()
        if cast_path is not None:
            config.cast = load_cast_file(cast_path)
    except RepairConfigError as e:
        err_console.print(f"[red]Error:[/red] {escape(str(e))}")
        raise typer.Exit(1) from e
    if language:
        config.language = language
    config.strict = config.strict or strict
    return config


def _report_table(report: ValidationReport) -> Table:
    table = Table(title="Invariant checks")
    table.add_column("Check", no_wrap=True)
    table.add_column("Result", no_wrap=True)
    table.add_column("Detail")
    for check in report.checks:
        style = _SEVERITY_STYLE[check.severity]
        table.add_row(check.name, f"[{style}]{check.severity}[/{style}]", escape(check.message))
    return table


def _stage_table(result: PipelineResult) -> Table:
    table = Table(title="Repair stages")
    table.add_column("Stage", no_wrap=True)
    table.add_column("Status", no_wrap=True)
    table.add_column("Detail")
    for stage in result.stages:
        table.add_row(stage.stage, stage.status, escape(stage.detail))
    return table


@app.command()
def version() -> None:
    """Show version information."""
    from branchwright import __version__

    console.print(f"Branchwright v{__version__}")


@app.command()
def repair(
    input_path: Annotated[
        Path,
        typer.Argument(help="Generator output (JSON, optionally in a Markdown code fence)."),
    ],
    output: Annotated[
        Path | None,
        typer.Option("--output", "-o", help="Write the repaired graph here instead of stdout."),
    ] = None,
    config_path: Annotated[
        Path | None,
        typer.Option("--config", "-c", help="YAML repair configuration."),
    ] = None,
    cast_path: Annotated[
        Path | None,
        typer.Option("--cast", help="YAML/JSON roster the cast must be restricted to."),
    ] = None,
    language: Annotated[
        str | None,
        typer.Option("--language", "-l", help="Language tag for graphs without one."),
    ] = None,
    strict: Annotated[
        bool,
        typer.Option("--strict", help="Fail if any invariant is still violated after repair."),
    ] = False,
) -> None:
    """Repair a generated story graph and print it as JSON."""
    config = _resolve_config(config_path, cast_path, language, strict)
    document = _read_document(input_path)
    graph = decode_graph(document, language=config.effective_language())

    try:
        result = repair_graph(graph, cast=config.cast, strict=config.strict)
    except GraphCorruptionError as e:
        err_console.print(f"[red]Error:[/red] {escape(str(e))}")
        close_file_logging()
        raise typer.Exit(1) from e

    log.info(
        "repair_finished",
        input=str(input_path),
        nodes=len(result.graph.nodes),
        warnings=len(result.warnings),
    )
    close_file_logging()
    payload = json.dumps(result.graph.to_document(), ensure_ascii=False, indent=2)
    if output is not None:
        output.write_text(payload + "\n", encoding="utf-8")
        err_console.print(f"Wrote repaired graph to [bold]{escape(str(output))}[/bold]")
    else:
        typer.echo(payload)

    err_console.print(_stage_table(result))
    for warning in result.warnings:
        err_console.print(f"[yellow]Warning:[/yellow] {escape(warning)}")


@app.command()
def check(
    input_path: Annotated[
        Path,
        typer.Argument(help="Story graph (raw or repaired) to check without repairing."),
    ],
) -> None:
    """Check a story graph against every invariant without repairing it."""
    document = _read_document(input_path)
    report = run_all_checks(decode_graph(document))
    console.print(_report_table(report))
    console.print(report.summary)
    if report.has_failures:
        raise typer.Exit(1)


if __name__ == "__main__":
    app()
