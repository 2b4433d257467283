"""Per-issue pipeline: fetch → worktree → agent service → task → publish.

An ItemPipeline turns one issue identifier into exactly one Outcome. Every
error in the swarm taxonomy is caught here and classified; only cancellation
propagates. The agent service is stopped and the event tap detached on every
exit path.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol

import httpx
from rich.console import Console

from issueswarm.core.config import AgentConfig
from issueswarm.core.console import color_for, get_logger
from issueswarm.core.result import (
    Err,
    FetchError,
    NoChangeError,
    Ok,
    ProvisionError,
    PublishError,
    ReadinessTimeoutError,
    Result,
    ServiceStartError,
    SessionError,
    SubmitError,
    SwarmError,
)
from issueswarm.swarm.events import EventTap
from issueswarm.swarm.itemlog import ItemLog
from issueswarm.swarm.prompting import build_task_request
from issueswarm.swarm.publish import Publisher
from issueswarm.swarm.service import AgentService, ServiceLauncher, port_for
from issueswarm.swarm.session import SessionDriver
from issueswarm.swarm.types import (
    FailureReason,
    IssueId,
    Outcome,
    PipelineState,
    WorkItem,
    WorkspaceState,
)
from issueswarm.swarm.worktree import WorkspaceManager

logger = get_logger(__name__)

_REASONS: dict[type[SwarmError], FailureReason] = {
    FetchError: FailureReason.FETCH,
    ProvisionError: FailureReason.PROVISION,
    ServiceStartError: FailureReason.SERVICE_START,
    ReadinessTimeoutError: FailureReason.READINESS_TIMEOUT,
    SessionError: FailureReason.SESSION,
    SubmitError: FailureReason.SUBMIT,
    NoChangeError: FailureReason.NO_CHANGE,
    PublishError: FailureReason.PUBLISH,
}


class IssueTracker(Protocol):
    """Source of issue titles and bodies."""

    async def fetch_issue(self, identifier: IssueId) -> Result[WorkItem, SwarmError]: ...


ClientFactory = Callable[[AgentService], httpx.AsyncClient]


def default_client_factory(service: AgentService) -> httpx.AsyncClient:
    return httpx.AsyncClient(base_url=service.base_url, timeout=30.0)


def classify(exc: SwarmError) -> FailureReason:
    for error_type in type(exc).__mro__:
        reason = _REASONS.get(error_type)  # type: ignore[call-overload]
        if reason is not None:
            return reason
    return FailureReason.UNEXPECTED


@dataclass
class PipelineContext:
    """Everything one pipeline run needs, built once at pipeline start.

    Attributes:
        identifier: Issue being processed
        port: Port the issue's agent service binds
        log: The issue's progress sink
        state: Current pipeline phase
    """

    identifier: IssueId
    port: int
    log: ItemLog
    state: PipelineState = PipelineState.FETCHING

    def advance(self, state: PipelineState) -> None:
        self.state = state


class ItemPipeline:
    """Drives one issue from fetch to publish.

    Attributes:
        tracker: Issue source
        workspaces: Worktree manager
        launcher: Agent service launcher
        publisher: Push/diff/PR steps
        agent: Agent service settings (ports, timeouts, model, profile)
        cleanup: Remove the worktree after success

    [invariant:async-io] All I/O uses async patterns.
    """

    def __init__(
        self,
        *,
        tracker: IssueTracker,
        workspaces: WorkspaceManager,
        launcher: ServiceLauncher,
        publisher: Publisher,
        agent: AgentConfig,
        cleanup: bool = True,
        client_factory: ClientFactory = default_client_factory,
        console: Console | None = None,
    ) -> None:
        self._tracker = tracker
        self._workspaces = workspaces
        self._launcher = launcher
        self._publisher = publisher
        self._agent = agent
        self._cleanup = cleanup
        self._client_factory = client_factory
        self._console = console

    def context_for(
        self, identifier: IssueId, index: int = 0, port: int | None = None
    ) -> PipelineContext:
        log = ItemLog(
            identifier,
            self._workspaces.log_path_for(identifier),
            color=color_for(index),
            console=self._console,
        )
        if port is None:
            port = port_for(identifier, base=self._agent.base_port, span=self._agent.port_span)
        return PipelineContext(identifier=identifier, port=port, log=log)

    async def run(
        self, identifier: IssueId, index: int = 0, port: int | None = None
    ) -> Outcome:
        """Process one issue and classify the result.

        ``port`` is the service port the controller reserved for this issue;
        without one the port is derived from the identifier alone.

        Never raises except asyncio.CancelledError.
        """
        ctx = self.context_for(identifier, index, port)
        with ctx.log.open():
            try:
                outcome = await self._drive(ctx)
            except asyncio.CancelledError:
                ctx.log.error(f"Interrupted while {ctx.state.value}")
                raise
            except SwarmError as exc:
                reason = classify(exc)
                ctx.log.error(f"{reason.value}: {exc}")
                outcome = Outcome.failure(identifier, reason, str(exc), state=ctx.state)
            except Exception as exc:
                logger.exception("Pipeline for issue %s crashed", identifier)
                ctx.log.error(f"unexpected: {exc!r}")
                outcome = Outcome.failure(
                    identifier, FailureReason.UNEXPECTED, repr(exc), state=ctx.state
                )
            ctx.advance(PipelineState.DONE)
            return outcome

    async def _drive(self, ctx: PipelineContext) -> Outcome:
        log = ctx.log
        log.info("Starting...")

        ctx.advance(PipelineState.FETCHING)
        item = await self._fetch(ctx.identifier)
        log.info(f"Title: {item.title}")

        ctx.advance(PipelineState.PROVISIONING)
        workspace = await self._workspaces.ensure(ctx.identifier)
        if workspace.state is WorkspaceState.EXISTING:
            log.info("Worktree exists, reusing...")
        else:
            log.info(f"Created worktree {workspace.path.name} on branch {workspace.branch}")

        request = build_task_request(
            item, model=self._agent.model_selector, agent=self._agent.profile
        )

        ctx.advance(PipelineState.STARTING)
        log.info(f"Starting agent server on port {ctx.port}...")
        service = await self._launcher.start(workspace, ctx.port, log.path)
        try:
            ctx.advance(PipelineState.AWAITING_READY)
            await service.await_ready(
                attempts=self._agent.readiness_attempts,
                interval=self._agent.readiness_interval,
            )
            log.info("Server ready, starting event stream...")

            ctx.advance(PipelineState.SUBMITTING)
            async with self._client_factory(service) as client:
                tap = EventTap(client, log).attach()
                try:
                    driver = SessionDriver(client, log)
                    log.info("Creating session...")
                    session = await driver.open(f"Issue #{ctx.identifier}")
                    log.info(f"Session {session.id} created, sending prompt...")
                    await driver.submit(session, request, timeout=self._agent.request_timeout)
                finally:
                    await tap.detach()
        finally:
            await service.stop(grace=self._agent.stop_grace)

        ctx.advance(PipelineState.CLASSIFYING)
        log.success("Agent completed")

        ctx.advance(PipelineState.PUBLISHING)
        await self._publisher.publish(workspace, log)

        ctx.advance(PipelineState.RECLAIMING)
        if self._cleanup:
            log.info("Cleaning up worktree...")
            removed = await self._workspaces.reclaim(workspace, succeeded=True, enabled=True)
            if not removed:
                log.warning(f"Could not remove worktree {workspace.path}")

        log.success("Done")
        return Outcome.success(ctx.identifier)

    async def _fetch(self, identifier: IssueId) -> WorkItem:
        match await self._tracker.fetch_issue(identifier):
            case Ok(item):
                return item
            case Err(err):
                raise FetchError("Failed to fetch issue", context={"error": err.message})


__all__ = [
    "ClientFactory",
    "IssueTracker",
    "ItemPipeline",
    "PipelineContext",
    "classify",
    "default_client_factory",
]
