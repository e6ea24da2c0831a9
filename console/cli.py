"""CLI interface for running snippets."""

from __future__ import annotations

import asyncio
import json
import logging
from enum import Enum
from pathlib import Path
from typing import Optional

import typer

from pyconsole_core.config import ConsoleConfig, dump_config, load_config, save_config
from pyconsole_core.schemas import BackendKind, ExecutionResult, Verdict
from console.service import ExecutionService
from sandbox.runtime import STATUS_STREAM

app = typer.Typer(help="PyConsole snippet runner")


class BackendChoice(str, Enum):
    embedded = "embedded"
    isolated = "isolated"
    auto = "auto"


def _read_snippet(path: Path) -> str:
    if not path.exists():
        typer.secho(f"❌ File not found: {path}", fg=typer.colors.RED, err=True)
        raise typer.Exit(1)
    return path.read_text(encoding="utf-8")


def _load(config_path: Optional[Path]) -> ConsoleConfig:
    try:
        return load_config(config_path)
    except FileNotFoundError as e:
        typer.secho(f"❌ Config file not found: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(1)
    except ValueError as e:
        typer.secho(f"❌ Invalid config: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(1)


def select_backend(service: ExecutionService, code: str, choice: BackendChoice) -> BackendKind:
    if choice is BackendChoice.embedded:
        return BackendKind.EMBEDDED_SANDBOX
    if choice is BackendChoice.isolated:
        return BackendKind.ISOLATED_PROCESS
    if any(v is Verdict.UNSUPPORTED for v in service.classify(code).values()):
        return BackendKind.ISOLATED_PROCESS
    return BackendKind.EMBEDDED_SANDBOX


@app.command()
def classify(
    path: Path = typer.Argument(..., help="Python file to scan"),
    config_path: Optional[Path] = typer.Option(None, "--config", help="YAML configuration"),
) -> None:
    """Show the capability verdict of every imported module."""
    code = _read_snippet(path)
    service = ExecutionService(_load(config_path))
    verdicts = service.classify(code)
    if not verdicts:
        typer.echo("(no imports)")
    for module in sorted(verdicts):
        typer.echo(f"{module}: {verdicts[module].value}")
    reason = service.explain(code)
    if reason:
        typer.secho(f"⚠️  {reason}", fg=typer.colors.YELLOW)


@app.command()
def run(
    path: Path = typer.Argument(..., help="Python file to run"),
    backend: BackendChoice = typer.Option(BackendChoice.auto, "--backend", case_sensitive=False),
    config_path: Optional[Path] = typer.Option(None, "--config", help="YAML configuration"),
    as_json: bool = typer.Option(False, "--json", help="Print the result as JSON"),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
) -> None:
    """Run a snippet on the embedded sandbox or an isolated process."""
    logging.basicConfig(level=logging.INFO if verbose else logging.WARNING)
    code = _read_snippet(path)
    service = ExecutionService(_load(config_path))
    kind = select_backend(service, code, backend)

    def on_output(stream: str, text: str) -> None:
        if stream == STATUS_STREAM:
            typer.echo(text, nl=False, err=True)
        elif not as_json:
            typer.echo(text, nl=False, err=stream == "stderr")

    result: ExecutionResult = asyncio.run(service.run(code, kind, on_output))

    if as_json:
        typer.echo(json.dumps(result.to_dict(), indent=2))
    else:
        # program output was already echoed as it arrived
        if result.diagnostic and result.diagnostic not in result.stderr:
            typer.secho(result.diagnostic, fg=typer.colors.RED, err=True)
        elif not (result.stdout or result.stderr or result.diagnostic):
            typer.echo("(no output)")

    if result.diagnostic:
        raise typer.Exit(1)
    if result.exit_code != 0:
        raise typer.Exit(result.exit_code or 1)


@app.command("config")
def show_config(
    config_path: Optional[Path] = typer.Option(None, "--config", help="YAML configuration"),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Write the YAML here"),
) -> None:
    """Print the effective configuration, environment overrides included."""
    config = _load(config_path)
    if output is None:
        typer.echo(dump_config(config), nl=False)
        return
    save_config(config, output)
    typer.secho(f"✅ Configuration saved to {output}", fg=typer.colors.GREEN)
