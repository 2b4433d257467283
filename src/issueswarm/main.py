from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path

import typer
from rich import box
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from . import __version__
from .core.config import AppConfig, ConfigLoadResult, load_config
from .core.console import console, setup_logging
from .core.process import find_processes, reap_processes
from .core.result import Err, Ok, SwarmError
from .git import AsyncRepo
from .github import GitHubCLI
from .swarm.controller import SwarmController
from .swarm.service import ProcessServiceLauncher, ServiceRegistry
from .swarm.types import IssueId, parse_identifier

app = typer.Typer(help="issue-swarm: one coding agent per GitHub issue, in parallel.")
logger = logging.getLogger(__name__)


@dataclass
class AppState:
    config: AppConfig
    config_meta: ConfigLoadResult
    logger: logging.Logger


@app.callback()
def main(
    ctx: typer.Context,
    config: Path | None = typer.Option(
        None, "--config", "-c", help="Path to an issue-swarm config file (TOML or JSON)."
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
) -> None:
    loaded_config, meta = load_config(config_path=config)
    logger = setup_logging(level=loaded_config.log_level, verbose=verbose)

    ctx.obj = AppState(config=loaded_config, config_meta=meta, logger=logger)

    if meta.error:
        # Display "Safe Mode" Warning
        console.print(
            Panel(
                f"[bold red]Configuration Error - Safe Mode Active[/bold red]\n\n"
                f"Failed to load {meta.path}:\n{meta.error}\n\n"
                f"[yellow]Using default settings.[/yellow]",
                border_style="red",
            )
        )
    else:
        logger.debug(
            "Loaded configuration from %s (env overrides: %s)",
            meta.path,
            sorted(meta.env_overrides),
        )


def _parse_identifiers(raw: list[str]) -> list[IssueId]:
    identifiers: list[IssueId] = []
    for token in raw:
        try:
            identifiers.append(parse_identifier(token))
        except ValueError as exc:
            raise typer.BadParameter(str(exc), param_hint="ISSUES") from exc
    return identifiers


async def _run_swarm(config: AppConfig, identifiers: list[IssueId]) -> int:
    match await AsyncRepo.open(Path.cwd()):
        case Err(err):
            console.print(f"[red]Error:[/red] {escape(str(err))}")
            return 1
        case Ok(repo):
            pass

    registry = ServiceRegistry()
    controller = SwarmController(
        config,
        repo,
        GitHubCLI(repo.path),
        launcher=ProcessServiceLauncher(
            config.agent.server_command, host=config.agent.host, registry=registry
        ),
        registry=registry,
    )
    try:
        report = await controller.run(identifiers)
    except SwarmError as exc:
        console.print(f"[red]Error:[/red] {escape(str(exc))}")
        return 1
    return report.exit_code


@app.command("run")
def run_swarm(
    ctx: typer.Context,
    issues: list[str] = typer.Argument(None, help="Issue numbers to work on.", show_default=False),
    agent: str | None = typer.Option(None, "--agent", help="Agent profile to use."),
    model: str | None = typer.Option(
        None, "--model", help="Model in <provider>/<model> form, e.g. anthropic/claude-sonnet-4."
    ),
    push: bool | None = typer.Option(
        None, "--push/--no-push", help="Push the issue branch after completion."
    ),
    pr: bool | None = typer.Option(
        None, "--pr/--no-pr", help="Open a pull request after completion (implies --push)."
    ),
    cleanup: bool | None = typer.Option(
        None, "--cleanup/--no-cleanup", help="Remove the worktree after success."
    ),
) -> None:
    """Run one agent per issue, each in its own worktree."""
    state: AppState = ctx.obj
    if not issues:
        raise typer.BadParameter("At least one issue number is required", param_hint="ISSUES")
    identifiers = _parse_identifiers(issues)

    agent_overrides = {
        key: value for key, value in (("profile", agent), ("model", model)) if value is not None
    }
    publish_overrides = {
        key: value
        for key, value in (("push", push), ("create_pr", pr), ("cleanup", cleanup))
        if value is not None
    }
    try:
        config = state.config.with_overrides(agent=agent_overrides, publish=publish_overrides)
    except ValueError as exc:
        console.print(f"[red]Invalid option:[/red] {escape(str(exc))}")
        raise typer.Exit(code=2) from exc

    state.logger.debug("Effective publish options: %s", config.publish.model_dump())
    exit_code = asyncio.run(_run_swarm(config, identifiers))
    raise typer.Exit(code=exit_code)


@app.command("config")
def show_config(ctx: typer.Context) -> None:
    """Show the active configuration and where it came from."""
    state: AppState = ctx.obj
    config = state.config
    meta = state.config_meta

    table = Table(title="Config", box=box.SIMPLE, expand=True)
    table.add_column("Key", style="cyan", no_wrap=True)
    table.add_column("Value", style="white")

    for section, values in config.model_dump().items():
        if isinstance(values, dict):
            for key, value in values.items():
                table.add_row(f"{section}.{key}", str(value))
        else:
            table.add_row(section, str(values))

    console.print(table)

    meta_lines = [
        f"Path: {meta.path}",
        "File loaded: yes" if meta.file_loaded else "File loaded: no (using defaults + env)",
    ]

    if meta.env_overrides:
        meta_lines.append("Env overrides: " + ", ".join(sorted(meta.env_overrides)))

    console.print(Panel("\n".join(meta_lines), title="Config source", box=box.SIMPLE))


@app.command("reap")
def reap_servers(
    ctx: typer.Context,
    dry_run: bool = typer.Option(
        False, "--dry-run", help="List matching agent servers without stopping them."
    ),
) -> None:
    """Stop agent servers left behind by an earlier run."""
    state: AppState = ctx.obj
    pattern = state.config.swarm.stale_server_pattern

    if dry_run:
        result = asyncio.run(find_processes(pattern))
    else:
        result = asyncio.run(reap_processes(pattern))

    match result:
        case Err(err):
            console.print(f"[red]Error:[/red] {escape(str(err))}")
            raise typer.Exit(code=1)
        case Ok(found):
            pass

    if not found:
        console.print(f"No processes matching [cyan]{escape(pattern)}[/cyan].")
        return

    table = Table(title="Would stop" if dry_run else "Stopped", box=box.SIMPLE)
    table.add_column("PID", style="cyan", no_wrap=True)
    table.add_column("User", style="white")
    table.add_column("Command", style="white")
    for info in found:
        table.add_row(str(info.pid), info.username, info.cmdline)
    console.print(table)


@app.command("version")
def show_version() -> None:
    """Print the issueswarm version."""
    console.print(__version__)


def cli() -> None:
    app()


if __name__ == "__main__":
    cli()
