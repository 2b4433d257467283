"""Thin async wrapper around the `gh` CLI.

Covers the three calls the swarm needs: resolving the current repository,
fetching an issue's title and body, and opening a pull request from a worktree.
"""

from __future__ import annotations

import asyncio
import json
from pathlib import Path

from issueswarm.core.result import Err, GitHubError, Ok, Result
from issueswarm.swarm.types import IssueId, WorkItem


async def _run_gh(cwd: Path, *args: str) -> Result[str, GitHubError]:
    """Run gh with asyncio and return stdout as text, wrapping failures."""
    try:
        process = await asyncio.create_subprocess_exec(
            "gh",
            *args,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            stdin=asyncio.subprocess.DEVNULL,
            cwd=cwd,
        )
    except FileNotFoundError:
        return Err(GitHubError("gh executable not found on PATH", context={"cwd": str(cwd)}))
    except OSError as exc:
        return Err(
            GitHubError(
                "Failed to start gh",
                context={"cwd": str(cwd), "args": list(args), "error": str(exc)},
            )
        )

    stdout, stderr = await process.communicate()
    stdout_text = stdout.decode("utf-8", errors="replace")
    if process.returncode != 0:
        message = stderr.decode("utf-8", errors="replace").strip()
        detail = message or stdout_text.strip() or f"gh {' '.join(args)} failed"
        return Err(
            GitHubError(
                detail,
                context={"args": list(args), "returncode": process.returncode},
            )
        )

    return Ok(stdout_text)


class GitHubCLI:
    """Issue tracker and pull-request host backed by an authenticated `gh`."""

    def __init__(self, repo_root: Path) -> None:
        self._root = repo_root

    async def repo_name(self) -> Result[str, GitHubError]:
        """Return `owner/name` of the repository the working directory belongs to."""
        match await _run_gh(
            self._root, "repo", "view", "--json", "nameWithOwner", "-q", ".nameWithOwner"
        ):
            case Ok(output) if output.strip():
                return Ok(output.strip())
            case Ok(_):
                return Err(GitHubError("Not in a GitHub repository or gh not authenticated"))
            case Err(err):
                return Err(err)

    async def fetch_issue(self, identifier: IssueId) -> Result[WorkItem, GitHubError]:
        match await _run_gh(
            self._root, "issue", "view", str(identifier), "--json", "title,body"
        ):
            case Err(err):
                return Err(err)
            case Ok(output):
                pass

        try:
            data = json.loads(output)
        except json.JSONDecodeError as exc:
            return Err(
                GitHubError("Unparsable issue payload", context={"error": str(exc)})
            )
        if not isinstance(data, dict) or not data.get("title"):
            return Err(GitHubError("Issue payload has no title", context={"issue": identifier}))

        return Ok(WorkItem(identifier=identifier, title=data["title"], body=data.get("body")))

    async def create_pull_request(
        self, worktree: Path, identifier: IssueId
    ) -> Result[str, GitHubError]:
        """Open a PR for the branch checked out in ``worktree``.

        Title and commits come from `--fill`; the body closes the issue.
        """
        return await _run_gh(
            worktree, "pr", "create", "--fill", "--body", f"Closes #{identifier}"
        )
