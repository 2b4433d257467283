"""Swarm controller: runs one item pipeline per issue, concurrently."""

from __future__ import annotations

import asyncio
import contextlib
import signal
from collections.abc import Iterable, Sequence
from pathlib import Path
from typing import Protocol

from rich import box
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.text import Text

from issueswarm.core.config import AppConfig
from issueswarm.core.console import get_console, get_logger
from issueswarm.core.process import reap_processes
from issueswarm.core.result import Err, Ok, Result, SwarmError
from issueswarm.git import AsyncRepo
from issueswarm.swarm.pipeline import (
    ClientFactory,
    ItemPipeline,
    default_client_factory,
)
from issueswarm.swarm.publish import Publisher
from issueswarm.swarm.service import (
    ProcessServiceLauncher,
    ServiceLauncher,
    ServiceRegistry,
    assign_ports,
)
from issueswarm.swarm.types import (
    FailureReason,
    IssueId,
    Outcome,
    SwarmReport,
    WorkItem,
)
from issueswarm.swarm.worktree import WorkspaceManager

logger = get_logger(__name__)

INTERRUPT_SIGNALS: tuple[signal.Signals, ...] = (signal.SIGINT, signal.SIGTERM)


class CodeHost(Protocol):
    """Issue tracker and pull-request host for one repository."""

    async def repo_name(self) -> Result[str, SwarmError]: ...

    async def fetch_issue(self, identifier: IssueId) -> Result[WorkItem, SwarmError]: ...

    async def create_pull_request(
        self, worktree: Path, identifier: IssueId
    ) -> Result[str, SwarmError]: ...


def _signal_name(signum: int) -> str:
    try:
        return signal.Signals(signum).name
    except ValueError:
        return f"signal {signum}"


def dedupe(identifiers: Iterable[IssueId]) -> list[IssueId]:
    """Drop repeated identifiers, keeping the first occurrence."""
    seen: set[IssueId] = set()
    ordered: list[IssueId] = []
    for identifier in identifiers:
        if identifier in seen:
            continue
        seen.add(identifier)
        ordered.append(identifier)
    return ordered


class SwarmController:
    """Runs the item pipelines for a set of issues and aggregates their outcomes.

    Pipelines are launched in input order, ``stagger_delay`` seconds apart,
    and run concurrently. A SIGINT or SIGTERM cancels every pipeline and
    synchronously kills every agent service started so far; unfinished
    issues are reported as interrupted and the run exits with 128 + signal.

    Attributes:
        config: Application configuration (CLI overrides already applied)
        repo: The main repository
        host: Issue tracker and PR host
        registry: Every agent service started during the run

    [invariant:async-io] All I/O uses async patterns
    """

    def __init__(
        self,
        config: AppConfig,
        repo: AsyncRepo,
        host: CodeHost,
        *,
        launcher: ServiceLauncher | None = None,
        registry: ServiceRegistry | None = None,
        client_factory: ClientFactory = default_client_factory,
        console: Console | None = None,
        install_signal_handlers: bool = True,
    ) -> None:
        self.config = config
        self.repo = repo
        self.host = host
        self.registry = registry or ServiceRegistry()
        self._launcher = launcher or ProcessServiceLauncher(
            config.agent.server_command, host=config.agent.host, registry=self.registry
        )
        self._client_factory = client_factory
        self._console = console or get_console()
        self._install_signal_handlers = install_signal_handlers
        self.workspaces = WorkspaceManager(repo, config.swarm.worktree_dir)

        self._main_task: asyncio.Task[object] | None = None
        self._interrupted_by: int | None = None

    @property
    def interrupted_by(self) -> int | None:
        return self._interrupted_by

    def build_pipeline(self) -> ItemPipeline:
        return ItemPipeline(
            tracker=self.host,
            workspaces=self.workspaces,
            launcher=self._launcher,
            publisher=Publisher(self.config.publish, self.host),
            agent=self.config.agent,
            cleanup=self.config.publish.cleanup,
            client_factory=self._client_factory,
            console=self._console,
        )

    async def preflight(self) -> Result[str, SwarmError]:
        """Confirm the repository is reachable and clear leftovers from earlier runs.

        Returns:
            Ok(repository name), or the error that should abort the run
        """
        match await self.host.repo_name():
            case Err(err):
                return Err(err)
            case Ok(name):
                repo_name = name

        if self.config.swarm.reap_stale_servers:
            match await reap_processes(self.config.swarm.stale_server_pattern):
                case Ok(reaped) if reaped:
                    logger.info("Stopped %d stale agent server(s)", len(reaped))
                case Ok(_):
                    pass
                case Err(err):
                    logger.warning("Could not reap stale agent servers: %s", err)

        match await self.workspaces.initialize():
            case Err(err):
                return Err(err)
            case Ok(_):
                pass

        return Ok(repo_name)

    async def run(self, identifiers: Sequence[IssueId]) -> SwarmReport:
        """Process every issue and return the aggregate report.

        Raises:
            ValueError: If no identifiers were given
            SwarmError: If preflight fails; no pipeline is started
        """
        ordered = dedupe(identifiers)
        if not ordered:
            raise ValueError("At least one issue identifier is required")
        if len(ordered) < len(identifiers):
            logger.warning("Ignoring duplicate issue identifiers in %s", list(identifiers))

        match await self.preflight():
            case Err(err):
                raise err
            case Ok(repo_name):
                pass

        self._print_header(repo_name, ordered)
        tasks = await self._run_pipelines(ordered)

        outcomes: dict[IssueId, Outcome] = {}
        for identifier in ordered:
            task = tasks.get(identifier)
            if task is not None and task.done() and not task.cancelled():
                outcomes[identifier] = task.result()
            else:
                outcomes[identifier] = Outcome.failure(
                    identifier, FailureReason.INTERRUPTED, "Run interrupted"
                )

        report = SwarmReport.from_outcomes(
            ordered, outcomes, interrupted_by=self._interrupted_by
        )
        self.print_summary(report)
        return report

    async def _run_pipelines(
        self, ordered: list[IssueId]
    ) -> dict[IssueId, asyncio.Task[Outcome]]:
        pipeline = self.build_pipeline()
        agent = self.config.agent
        ports = assign_ports(ordered, base=agent.base_port, span=agent.port_span)
        tasks: dict[IssueId, asyncio.Task[Outcome]] = {}
        current = asyncio.current_task()
        self._main_task = current
        self._interrupted_by = None

        loop = asyncio.get_running_loop()
        installed = self._add_signal_handlers(loop)
        try:
            async with asyncio.TaskGroup() as tg:
                for index, identifier in enumerate(ordered):
                    if index and self.config.swarm.stagger_delay > 0:
                        await asyncio.sleep(self.config.swarm.stagger_delay)
                    tasks[identifier] = tg.create_task(
                        pipeline.run(identifier, index, ports[identifier]),
                        name=f"issue-{identifier}",
                    )
                    self._console.print(f"Started issue #{escape(str(identifier))}")

                self._console.print()
                self._console.print("⏳ Waiting for all agents to complete...")
                logs = escape(str(self.workspaces.worktree_root))
                self._console.print(f"Monitor with: tail -f {logs}/issue-*.log")
                self._console.print()
        except asyncio.CancelledError:
            if self._interrupted_by is None or current is None:
                raise
            current.uncancel()
        finally:
            for sig in installed:
                loop.remove_signal_handler(sig)
            self.registry.terminate_all()
            self._main_task = None

        return tasks

    def _add_signal_handlers(self, loop: asyncio.AbstractEventLoop) -> list[signal.Signals]:
        if not self._install_signal_handlers:
            return []
        installed: list[signal.Signals] = []
        for sig in INTERRUPT_SIGNALS:
            # Not available on every platform/loop; the run still works without it.
            with contextlib.suppress(NotImplementedError, RuntimeError):
                loop.add_signal_handler(sig, self.interrupt, sig)
                installed.append(sig)
        return installed

    def interrupt(self, signum: int) -> None:
        """Cancel the run: kill every agent service now, then cancel the pipelines."""
        if self._main_task is None:
            return

        first = self._interrupted_by is None
        if first:
            self._interrupted_by = int(signum)
            self._console.print(
                f"\n[yellow]Received {_signal_name(signum)}, stopping all agents...[/yellow]"
            )

        killed = self.registry.terminate_all()
        logger.debug("Terminated %d agent service(s) on interrupt", killed)
        if first:
            self._main_task.cancel()

    # ------------------------------------------------------------------
    # Output
    # ------------------------------------------------------------------

    def _print_header(self, repo_name: str, ordered: list[IssueId]) -> None:
        self._console.print(f"🐝 Issue Swarm starting for [bold]{escape(repo_name)}[/bold]")
        issues = " ".join(str(i) for i in ordered)
        self._console.print(f"📋 Issues: {escape(issues)}")
        if self.config.agent.model:
            self._console.print(f"🧠 Model: {escape(self.config.agent.model)}")
        if self.config.agent.profile:
            self._console.print(f"🤖 Agent: {escape(self.config.agent.profile)}")
        self._console.print()
        self._console.print(f"🚀 Spawning {len(ordered)} parallel agents...")

    def print_summary(self, report: SwarmReport) -> None:
        root = self.workspaces.worktree_root
        lines = Text()
        succeeded = " ".join(str(i) for i in report.succeeded) or "none"
        lines.append(f"✅ Succeeded: {succeeded}\n", style="green")
        if report.failed:
            lines.append(f"❌ Failed: {' '.join(str(i) for i in report.failed)}\n", style="red")
            for identifier in report.failed:
                outcome = report.outcomes[identifier]
                reason = outcome.reason.value if outcome.reason else "unknown"
                lines.append(f"   #{identifier} {reason}: {outcome.detail}\n", style="dim")
        if report.interrupted:
            lines.append("⚠️ Run interrupted; worktrees were left in place\n", style="yellow")
        lines.append(f"\nLogs: {root}/issue-*.log\n")
        lines.append(f"Worktrees: {root}/issue-*/")

        self._console.print()
        self._console.print(Panel(lines, title="🐝 Swarm Complete", box=box.DOUBLE))


__all__ = ["CodeHost", "SwarmController", "dedupe"]
