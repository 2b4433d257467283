from __future__ import annotations

from pathlib import Path

import pytest

from issueswarm.core.result import Err, Ok
from issueswarm.git import AsyncRepo
from tests.mocks.agent_service import commit_change, git


async def _open(path: Path) -> AsyncRepo:
    match await AsyncRepo.open(path):
        case Ok(repo):
            return repo
        case Err(err):
            pytest.fail(f"Failed to open repo: {err}")


@pytest.mark.asyncio
async def test_open_outside_repository(tmp_path: Path) -> None:
    result = await AsyncRepo.open(tmp_path)
    assert isinstance(result, Err)


@pytest.mark.asyncio
async def test_open_missing_path(tmp_path: Path) -> None:
    result = await AsyncRepo.open(tmp_path / "missing")
    assert isinstance(result, Err)
    assert "does not exist" in result.error.message


@pytest.mark.asyncio
async def test_branch_exists(temp_git_repo: Path) -> None:
    repo = await _open(temp_git_repo)
    assert await repo.branch_exists("main") == Ok(True)
    assert await repo.branch_exists("issue/10") == Ok(False)


@pytest.mark.asyncio
async def test_differs_from(temp_git_repo: Path) -> None:
    repo = await _open(temp_git_repo)
    assert await repo.differs_from("main") == Ok(False)

    git(temp_git_repo, "checkout", "-b", "issue/10")
    commit_change(temp_git_repo, 10)
    assert await repo.differs_from("main") == Ok(True)


@pytest.mark.asyncio
async def test_differs_from_unknown_ref_is_error(temp_git_repo: Path) -> None:
    repo = await _open(temp_git_repo)
    result = await repo.differs_from("origin/main")
    assert isinstance(result, Err)
    assert result.error.returncode not in (0, 1)


@pytest.mark.asyncio
async def test_worktree_add_and_remove(temp_git_repo: Path, tmp_path: Path) -> None:
    repo = await _open(temp_git_repo)
    path = tmp_path / "worktrees" / "issue-10"

    match await repo.worktree_add(path, "issue/10", new_branch=True):
        case Ok(created):
            assert created == path.resolve()
        case Err(err):
            pytest.fail(f"worktree add failed: {err}")

    assert (path / "README.md").exists()
    assert await repo.branch_exists("issue/10") == Ok(True)

    assert isinstance(await repo.worktree_remove(path), Ok)
    assert not path.exists()
    # branch survives worktree removal
    assert await repo.branch_exists("issue/10") == Ok(True)


@pytest.mark.asyncio
async def test_worktree_remove_refuses_dirty_tree(temp_git_repo: Path, tmp_path: Path) -> None:
    repo = await _open(temp_git_repo)
    path = tmp_path / "worktrees" / "issue-11"
    await repo.worktree_add(path, "issue/11", new_branch=True)
    (path / "scratch.txt").write_text("uncommitted")

    assert isinstance(await repo.worktree_remove(path), Err)
    assert isinstance(await repo.worktree_remove(path, force=True), Ok)


@pytest.mark.asyncio
async def test_push_to_remote(repo_with_remote: Path, tmp_path: Path) -> None:
    repo = await _open(repo_with_remote)
    git(repo_with_remote, "checkout", "-b", "issue/12")
    commit_change(repo_with_remote, 12)

    assert isinstance(await repo.push("issue/12"), Ok)
    remote_branches = git(tmp_path / "origin.git", "branch", "--list")
    assert "issue/12" in remote_branches


@pytest.mark.asyncio
async def test_push_failure(temp_git_repo: Path) -> None:
    repo = await _open(temp_git_repo)
    assert isinstance(await repo.push("main", remote="nowhere"), Err)
