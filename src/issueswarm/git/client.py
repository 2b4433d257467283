from __future__ import annotations

import asyncio
from pathlib import Path

from issueswarm.core.result import Err, GitError, Ok, Result


async def _run_git(cwd: Path, *args: str) -> Result[str, GitError]:
    """Run git with asyncio and return stdout as text, wrapping failures."""
    if not cwd.exists():
        return Err(GitError("Repository path does not exist", context={"cwd": str(cwd)}))

    try:
        process = await asyncio.create_subprocess_exec(
            "git",
            *args,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            stdin=asyncio.subprocess.DEVNULL,
            cwd=cwd,
        )
    except FileNotFoundError:
        return Err(GitError("git executable not found on PATH", context={"cwd": str(cwd)}))
    except OSError as exc:
        return Err(
            GitError(
                "Failed to start git",
                context={"cwd": str(cwd), "args": list(args), "error": str(exc)},
            )
        )

    stdout, stderr = await process.communicate()
    if process.returncode != 0:
        message = stderr.decode("utf-8", errors="replace").strip()
        stdout_text = stdout.decode("utf-8", errors="replace").strip()
        detail = message or stdout_text or f"git {' '.join(args)} failed"
        return Err(
            GitError(
                detail,
                context={"cwd": str(cwd), "args": list(args), "returncode": process.returncode},
            )
        )

    return Ok(stdout.decode("utf-8", errors="replace"))


async def _resolve_worktree(path: Path) -> Result[Path, GitError]:
    match await _run_git(path, "rev-parse", "--show-toplevel"):
        case Ok(raw):
            resolved = Path(raw.strip()).resolve()
            return Ok(resolved)
        case Err(err):
            return Err(err)


class AsyncRepo:
    """Async git wrapper built on subprocess plumbing."""

    def __init__(self, root: Path) -> None:
        self._root = root

    @property
    def path(self) -> Path:
        return self._root

    @classmethod
    async def open(cls, path: Path | str = ".") -> Result[AsyncRepo, GitError]:
        root = Path(path).expanduser()
        match await _resolve_worktree(root):
            case Ok(resolved_root):
                return Ok(cls(resolved_root))
            case Err(err):
                return Err(err)

    # -------------------------------------------------------------------------
    # Branch operations
    # -------------------------------------------------------------------------

    async def branch_exists(self, branch: str) -> Result[bool, GitError]:
        """Check for a local branch via `git show-ref --verify --quiet`.

        Exit status 1 means the ref is missing; anything else non-zero is an error.
        """
        match await _run_git(self._root, "show-ref", "--verify", "--quiet", f"refs/heads/{branch}"):
            case Ok(_):
                return Ok(True)
            case Err(err) if err.returncode == 1:
                return Ok(False)
            case Err(err):
                return Err(err)

    async def push(self, branch: str, *, remote: str = "origin") -> Result[str, GitError]:
        """Push a branch and set its upstream.

        Returns:
            Ok(combined output) on success, Err(GitError) on failure

        [invariant:async-io] Uses asyncio subprocess
        """
        return await _run_git(self._root, "push", "-u", remote, branch)

    async def differs_from(self, ref: str) -> Result[bool, GitError]:
        """Return whether HEAD differs from ``ref``.

        `git diff --quiet` exits 1 when a difference exists and 0 when none does;
        any other exit status (unknown ref, corrupt repo) is an error.

        [invariant:async-io] Uses asyncio subprocess
        """
        match await _run_git(self._root, "diff", "--quiet", ref, "HEAD"):
            case Ok(_):
                return Ok(False)
            case Err(err) if err.returncode == 1:
                return Ok(True)
            case Err(err):
                return Err(err)

    # -------------------------------------------------------------------------
    # Worktree operations
    # -------------------------------------------------------------------------

    async def worktree_add(
        self,
        path: Path,
        branch: str,
        *,
        new_branch: bool = True,
        force: bool = False,
    ) -> Result[Path, GitError]:
        """Create a new worktree.

        Args:
            path: Directory for the new worktree
            branch: Branch name (created if new_branch=True)
            new_branch: If True, create branch with -b flag
            force: Pass -f so a branch checked out elsewhere or a stale
                registration does not block creation

        Returns:
            Ok(worktree_path) on success, Err(GitError) on failure

        [invariant:async-io] Uses asyncio subprocess
        """
        args: list[str] = ["worktree", "add"]
        if force:
            args.append("-f")
        if new_branch:
            args.extend(["-b", branch])
        args.append(str(path))
        if not new_branch:
            args.append(branch)

        match await _run_git(self._root, *args):
            case Ok(_):
                return Ok(path.resolve())
            case Err(err):
                return Err(err)

    async def worktree_remove(
        self,
        path: Path,
        *,
        force: bool = False,
    ) -> Result[None, GitError]:
        """Remove a worktree.

        Args:
            path: Worktree directory to remove
            force: If True, remove even if dirty

        Returns:
            Ok(None) on success, Err(GitError) on failure

        [invariant:async-io] Uses asyncio subprocess
        """
        args = ["worktree", "remove"]
        if force:
            args.append("--force")
        args.append(str(path))

        result = await _run_git(self._root, *args)
        return result.map(lambda _: None)

    async def worktree_prune(self) -> Result[None, GitError]:
        """Prune stale worktree references.

        [invariant:async-io] Uses asyncio subprocess
        """
        result = await _run_git(self._root, "worktree", "prune")
        return result.map(lambda _: None)
