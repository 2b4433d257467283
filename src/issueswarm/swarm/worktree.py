"""Git worktree management for per-issue isolation."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path

from issueswarm.core.result import Err, GitError, Ok, ProvisionError, Result
from issueswarm.git import AsyncRepo
from issueswarm.swarm.types import (
    IssueId,
    Workspace,
    WorkspaceState,
    branch_name_for,
    log_name_for,
    workspace_name_for,
)

logger = logging.getLogger(__name__)


class WorkspaceManager:
    """Manages one git worktree per issue under a shared root.

    Paths and branch names are pure functions of the issue identifier, so a
    re-run for the same issue finds and reuses what an earlier run left behind
    instead of failing.

    Attributes:
        repo: The main repository
        worktree_root: Directory holding worktrees and per-issue logs

    [invariant:async-io] All operations use async subprocess
    """

    def __init__(self, repo: AsyncRepo, worktree_root: Path) -> None:
        self._repo = repo
        if not worktree_root.is_absolute():
            worktree_root = repo.path / worktree_root
        self._worktree_root = worktree_root
        # Worktree metadata lives in the shared .git directory
        self._git_lock = asyncio.Lock()

    @property
    def worktree_root(self) -> Path:
        """Get the worktree root directory."""
        return self._worktree_root

    @property
    def repo(self) -> AsyncRepo:
        return self._repo

    def path_for(self, identifier: IssueId) -> Path:
        return self._worktree_root / workspace_name_for(identifier)

    def log_path_for(self, identifier: IssueId) -> Path:
        return self._worktree_root / log_name_for(identifier)

    async def initialize(self) -> Result[None, GitError]:
        """Create the worktree root directory if it doesn't exist.

        [invariant:async-io] Uses asyncio.to_thread for mkdir
        """

        def _create_root() -> None:
            self._worktree_root.mkdir(parents=True, exist_ok=True)

        try:
            await asyncio.to_thread(_create_root)
        except OSError as exc:
            return Err(GitError(f"Failed to create worktree root: {exc}"))
        return Ok(None)

    async def ensure(self, identifier: IssueId) -> Workspace:
        """Return the issue's worktree, creating it (and its branch) if needed.

        Raises:
            ProvisionError: If git could not create the worktree
        """
        branch = branch_name_for(identifier)
        path = self.path_for(identifier)

        if path.is_dir():
            logger.debug("Reusing worktree %s for %s", path, branch)
            return Workspace(
                identifier=identifier, path=path, branch=branch, state=WorkspaceState.EXISTING
            )

        async with self._git_lock:
            return await self._create(identifier, branch, path)

    async def _create(self, identifier: IssueId, branch: str, path: Path) -> Workspace:
        # Stale registrations block `worktree add`; failure here is not fatal.
        match await self._repo.worktree_prune():
            case Err(err):
                logger.debug("worktree prune failed: %s", err)
            case Ok(_):
                pass

        if path.exists() or path.is_symlink():
            try:
                await asyncio.to_thread(path.unlink)
            except OSError as exc:
                raise ProvisionError(
                    f"Stale entry blocks worktree at {path}", context={"error": str(exc)}
                ) from exc

        match await self._repo.branch_exists(branch):
            case Ok(exists):
                pass
            case Err(err):
                raise ProvisionError(
                    f"Could not inspect branch {branch}", context={"error": err.message}
                )

        result = await self._repo.worktree_add(path, branch, new_branch=not exists, force=True)
        if isinstance(result, Err):
            raise ProvisionError(
                f"Failed to create worktree for {branch}",
                context={"path": str(path), "error": result.error.message},
            )

        return Workspace(
            identifier=identifier,
            path=result.value,
            branch=branch,
            state=WorkspaceState.FRESH,
        )

    async def reclaim(
        self,
        workspace: Workspace,
        *,
        succeeded: bool,
        enabled: bool,
    ) -> bool:
        """Remove a worktree after a successful run when cleanup is enabled.

        The branch is kept. Removal failures are logged and reported through
        the return value only.

        Returns:
            True if the worktree directory was removed
        """
        if not (succeeded and enabled):
            return False

        async with self._git_lock:
            result = await self._repo.worktree_remove(workspace.path)
        match result:
            case Ok(_):
                return True
            case Err(err):
                logger.warning("Could not remove worktree %s: %s", workspace.path, err)
                return False


__all__ = [
    "WorkspaceManager",
]
