"""Post-completion publishing: push, change detection, pull request."""

from __future__ import annotations

from pathlib import Path
from typing import Protocol

from issueswarm.core.config import PublishConfig
from issueswarm.core.result import Err, NoChangeError, Ok, PublishError, Result, SwarmError
from issueswarm.git import AsyncRepo
from issueswarm.swarm.itemlog import ItemLog
from issueswarm.swarm.types import IssueId, Workspace

ALREADY_EXISTS_MARKER = "already exists"


class PullRequestHost(Protocol):
    """Code host able to open a pull request for a worktree's branch."""

    async def create_pull_request(
        self, worktree: Path, identifier: IssueId
    ) -> Result[str, SwarmError]: ...


class Publisher:
    """Runs the publishing steps for one finished issue, in order.

    1. push the branch (if enabled)
    2. require a difference against the integration ref
    3. open a pull request (if enabled); "already exists" is only a warning
    """

    def __init__(self, options: PublishConfig, host: PullRequestHost | None = None) -> None:
        self._options = options
        self._host = host

    @property
    def options(self) -> PublishConfig:
        return self._options

    async def publish(self, workspace: Workspace, log: ItemLog) -> None:
        """Publish the worktree's branch.

        Raises:
            PublishError: If pushing, diffing, or opening the PR fails
            NoChangeError: If the branch does not differ from the integration ref
        """
        repo = AsyncRepo(workspace.path)

        if self._options.push:
            log.info("Pushing branch...")
            match await repo.push(workspace.branch, remote=self._options.remote):
                case Ok(output):
                    if output.strip():
                        log.detail(output)
                case Err(err):
                    log.detail(err.message)
                    raise PublishError(
                        f"Push of {workspace.branch} failed", context={"error": err.message}
                    )

        match await repo.differs_from(self._options.integration_ref):
            case Ok(True):
                pass
            case Ok(False):
                raise NoChangeError(
                    f"No changes detected compared to {self._options.integration_ref}"
                )
            case Err(err):
                raise PublishError(
                    f"Could not compare with {self._options.integration_ref}",
                    context={"error": err.message},
                )

        if self._options.create_pr:
            await self._open_pull_request(workspace, log)

    async def _open_pull_request(self, workspace: Workspace, log: ItemLog) -> None:
        if self._host is None:
            raise PublishError("Pull request creation enabled but no code host configured")

        log.info("Creating PR...")
        match await self._host.create_pull_request(workspace.path, workspace.identifier):
            case Ok(url):
                if url.strip():
                    log.info(url.strip())
            case Err(err) if ALREADY_EXISTS_MARKER in err.message.lower():
                log.warning("PR creation failed (likely already exists), continuing...")
                log.detail(err.message)
            case Err(err):
                raise PublishError("PR creation failed", context={"error": err.message})


__all__ = ["Publisher", "PullRequestHost"]
