from __future__ import annotations

import os
import sys
from pathlib import Path
from typing import Any

import pytest
from rich.console import Console
from typer.testing import CliRunner

ROOT = Path(__file__).resolve().parent.parent
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from tests.mocks.agent_service import git  # noqa: E402


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


@pytest.fixture(autouse=True)
def isolate_config(tmp_path: Path, monkeypatch: Any) -> Path:
    """Point config to a temp path so tests don't touch user state."""
    cfg_path = tmp_path / "config.toml"
    monkeypatch.setenv("ISSUESWARM_CONFIG", str(cfg_path))
    for key in list(os.environ):
        if key.startswith("ISSUESWARM_") and key != "ISSUESWARM_CONFIG":
            monkeypatch.delenv(key)
    return cfg_path


@pytest.fixture(autouse=True)
def capture_console(monkeypatch: Any) -> Console:
    """Use an in-memory Rich console during tests."""
    test_console = Console(record=True, width=200)
    import issueswarm.core.console as core_console
    import issueswarm.main as swarm_main

    monkeypatch.setattr(core_console, "console", test_console)
    monkeypatch.setattr(swarm_main, "console", test_console)
    return test_console


@pytest.fixture
def temp_git_repo(tmp_path: Path) -> Path:
    """Create a temporary git repository on branch `main` with one commit."""
    repo_path = tmp_path / "test_repo"
    repo_path.mkdir()

    git(repo_path, "init")
    git(repo_path, "symbolic-ref", "HEAD", "refs/heads/main")
    git(repo_path, "config", "user.email", "test@test.com")
    git(repo_path, "config", "user.name", "Test User")
    git(repo_path, "config", "commit.gpgsign", "false")

    (repo_path / "README.md").write_text("# Test Repo\n")
    git(repo_path, "add", ".")
    git(repo_path, "commit", "-m", "Initial commit")

    return repo_path


@pytest.fixture
def repo_with_remote(temp_git_repo: Path, tmp_path: Path) -> Path:
    """temp_git_repo with a bare `origin` that already has `main` pushed."""
    remote = tmp_path / "origin.git"
    git(tmp_path, "init", "--bare", str(remote))
    git(temp_git_repo, "remote", "add", "origin", str(remote))
    git(temp_git_repo, "push", "-u", "origin", "main")
    return temp_git_repo
