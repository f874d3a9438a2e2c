"""Typer-based CLI for running Polaris analysis and the assistant against a local project."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from . import __version__, code_search, config, config_manager, llm, lsp, relevance
from .conversation import build_orchestrator
from .models import ChatMessage, ProjectFile, StepResult
from .store import LocalDirectoryStore, fetch_snapshot

app = typer.Typer(
    help="🧭 Polaris: code intelligence and a tool-calling assistant for TypeScript/JavaScript projects.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

console = Console()

LOCAL_PROJECT_ID = "local"

ROOT_OPTION = typer.Option(
    Path("."), "--root", "-r", exists=True, file_okay=False, help="Project directory to analyze."
)


def version_callback(value: bool):
    """Print version and exit."""
    if value:
        typer.echo(f"Polaris Engine v{__version__}")
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
    ),
    verbose: bool = typer.Option(False, "--verbose", help="Log debug output to stderr."),
):
    """Polaris Engine: project-wide symbol, search and relevance tools for the assistant."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
    )


def _snapshot(root: Path) -> List[ProjectFile]:
    return asyncio.run(fetch_snapshot(LocalDirectoryStore(root), LOCAL_PROJECT_ID))


def _check_position(line: int, column: int) -> None:
    if line < 1 or column < 1:
        raise typer.BadParameter("Line and column are 1-based.")


# ===================================================================
# Code analysis
# ===================================================================

@app.command("symbols")
def symbols(
    query: str = typer.Argument(..., help="Symbol name or partial name."),
    kind: Optional[str] = typer.Option(
        None, "--kind", "-k", help="function, class, variable, interface, type or all."
    ),
    root: Path = ROOT_OPTION,
):
    """Find declarations whose name contains QUERY."""
    if kind and kind not in lsp.SYMBOL_KINDS:
        raise typer.BadParameter(f"Unknown symbol kind '{kind}'.")
    typer.echo(lsp.find_symbol(_snapshot(root), query, kind))


@app.command("references")
def references(
    path: str = typer.Argument(..., help="File path relative to the project root."),
    line: int = typer.Argument(..., help="Line number (1-based)."),
    column: int = typer.Argument(..., help="Column number (1-based)."),
    root: Path = ROOT_OPTION,
):
    """List every reference to the symbol at PATH:LINE:COLUMN."""
    _check_position(line, column)
    typer.echo(lsp.get_references(_snapshot(root), path, line, column))


@app.command("definition")
def definition(
    path: str = typer.Argument(..., help="File path relative to the project root."),
    line: int = typer.Argument(..., help="Line number (1-based)."),
    column: int = typer.Argument(..., help="Column number (1-based)."),
    root: Path = ROOT_OPTION,
):
    """Show where the symbol at PATH:LINE:COLUMN is defined."""
    _check_position(line, column)
    typer.echo(lsp.go_to_definition(_snapshot(root), path, line, column))


@app.command("diagnostics")
def diagnostics(
    path: str = typer.Argument(..., help="File path relative to the project root."),
    severity: Optional[str] = typer.Option(None, "--severity", "-s", help="error, warning or all."),
    root: Path = ROOT_OPTION,
):
    """Report errors, warnings and suggestions for one file."""
    if severity and severity not in lsp.SEVERITY_FILTERS:
        raise typer.BadParameter(f"Unknown severity '{severity}'.")
    typer.echo(lsp.get_diagnostics(_snapshot(root), path, severity))


# ===================================================================
# Search and relevance
# ===================================================================

@app.command("grep")
def grep(
    pattern: str = typer.Argument(..., help="Regular expression to search for."),
    file_pattern: Optional[str] = typer.Option(None, "--files", "-f", help="Glob filter, e.g. 'src/**/*.ts'."),
    case_sensitive: bool = typer.Option(False, "--case-sensitive", "-c", help="Match case exactly."),
    root: Path = ROOT_OPTION,
):
    """Search file contents with a regular expression."""
    typer.echo(code_search.search_files(_snapshot(root), pattern, file_pattern, case_sensitive))


@app.command("patterns")
def patterns(
    pattern_type: str = typer.Argument(
        "all", help="import, function, class, variable, export, call or all."
    ),
    term: Optional[str] = typer.Option(None, "--term", "-t", help="Only names containing this text."),
    file_pattern: Optional[str] = typer.Option(None, "--files", "-f", help="Glob filter, e.g. 'src/**/*.ts'."),
    root: Path = ROOT_OPTION,
):
    """Find structural code patterns across source files."""
    if pattern_type != "all" and pattern_type not in code_search.PATTERN_TYPES:
        raise typer.BadParameter(f"Unknown pattern type '{pattern_type}'.")
    typer.echo(code_search.search_codebase(_snapshot(root), pattern_type, term, file_pattern))


@app.command("files")
def files(
    pattern: str = typer.Argument(..., help="Glob pattern, e.g. '**/*.test.ts'."),
    root: Path = ROOT_OPTION,
):
    """List files whose path matches a glob pattern."""
    typer.echo(code_search.find_files_by_pattern(_snapshot(root), pattern))


@app.command("relevant")
def relevant(
    query: str = typer.Argument(..., help="What you are working on."),
    current_file: Optional[str] = typer.Option(None, "--current", "-c", help="File currently open."),
    max_files: int = typer.Option(
        config.DEFAULT_MAX_RELEVANT_FILES, "--max", "-n", min=1, help="Maximum files to return."
    ),
    root: Path = ROOT_OPTION,
):
    """Rank project files by relevance to QUERY."""
    typer.echo(relevance.get_relevant_files(_snapshot(root), query, current_file, max_files))


# ===================================================================
# Assistant
# ===================================================================

@app.command("ask")
def ask(
    prompt: str = typer.Argument(..., help="Request for the assistant."),
    stream: bool = typer.Option(True, "--stream/--no-stream", help="Print text as it arrives."),
    root: Path = ROOT_OPTION,
):
    """Run one assistant turn with the project tools against a local directory."""
    store = LocalDirectoryStore(root)
    orchestrator = build_orchestrator(store, LOCAL_PROJECT_ID)
    messages = [ChatMessage.user(prompt)]

    def on_step_finish(step: StepResult) -> None:
        for call in step.tool_calls:
            console.print(f"[dim]→ {call.name}({escape(str(call.arguments))})[/dim]")

    def on_text_chunk(chunk: str, full_text: str) -> None:
        console.print(chunk, end="", markup=False, highlight=False)

    try:
        if stream:
            result = asyncio.run(orchestrator.stream(messages, on_text_chunk, on_step_finish))
            console.print()
        else:
            result = asyncio.run(orchestrator.generate(messages, on_step_finish))
            console.print(result.text, markup=False, highlight=False)
    except Exception as exc:
        console.print(f"[red]Request failed:[/red] {escape(str(exc))}")
        raise typer.Exit(code=1)

    suffix = " (fallback)" if result.used_fallback else ""
    console.print(f"[dim]{result.provider}/{result.model}, {len(result.steps)} step(s){suffix}[/dim]")


# ===================================================================
# Provider configuration
# ===================================================================

@app.command("set-llm")
def set_llm(
    role: str = typer.Argument(..., help="Provider role: primary or fallback."),
    model: Optional[str] = typer.Option(None, "--model", "-m", help="Model name."),
    api_key: Optional[str] = typer.Option(None, "--api-key", "-k", help="API key for the provider."),
    endpoint: Optional[str] = typer.Option(None, "--endpoint", "-e", help="Custom endpoint URL."),
    provider: Optional[str] = typer.Option(None, "--provider", "-p", help="Provider label shown in logs."),
    protocol: Optional[str] = typer.Option(None, "--protocol", help="Wire protocol: openai or anthropic."),
):
    """Update the primary or fallback provider settings.

    Examples:
        polaris set-llm primary -k YOUR_API_KEY
        polaris set-llm fallback -m anthropic/claude-sonnet-4
        polaris set-llm primary --protocol anthropic -e https://api.anthropic.com/v1/messages
    """
    role = role.lower().strip()
    if role not in config_manager.PROVIDER_ROLES:
        raise typer.BadParameter(f"Unknown role '{role}'. Choose from: {', '.join(config_manager.PROVIDER_ROLES)}")
    if protocol and protocol not in llm.PROVIDER_CLASSES:
        raise typer.BadParameter(f"Unknown protocol '{protocol}'. Choose from: {', '.join(llm.PROVIDER_CLASSES)}")

    saved = config_manager.save_provider_config(
        role, model=model or "", api_key=api_key or "", endpoint=endpoint or "", provider=provider or "",
        protocol=protocol or "",
    )
    if not saved:
        typer.echo(typer.style(f"Could not write {config.CONFIG_FILE}", fg=typer.colors.RED))
        raise typer.Exit(code=1)
    settings = config_manager.load_provider_config(role)
    typer.echo(f"Updated {role} provider: {settings.get('provider')} ({settings.get('model')})")


@app.command("show-llm")
def show_llm():
    """Show the configured primary and fallback providers."""
    table = Table(title="LLM Configuration")
    table.add_column("Role", style="cyan", no_wrap=True)
    table.add_column("Provider", no_wrap=True)
    table.add_column("Protocol")
    table.add_column("Model", style="bold")
    table.add_column("Endpoint", style="dim")
    table.add_column("API Key")

    for role in config_manager.PROVIDER_ROLES:
        settings = config_manager.load_provider_config(role)
        api_key = settings.get("api_key", "")
        masked = api_key[:8] + "•" * min(max(len(api_key) - 8, 0), 16) if api_key else "(not set)"
        table.add_row(
            role,
            str(settings.get("provider", "")),
            str(settings.get("protocol", "")),
            str(settings.get("model", "")),
            str(settings.get("endpoint", "")),
            masked,
        )
    console.print(table)
    console.print(f"[dim]Config {config.CONFIG_FILE}[/dim]")
