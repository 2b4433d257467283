"""Item pipeline scenarios against in-memory collaborators and real git."""

from __future__ import annotations

import asyncio
from pathlib import Path

import httpx
import pytest
from rich.console import Console

from issueswarm.core.config import AgentConfig, PublishConfig
from issueswarm.core.result import NoChangeError, SubmitError, SwarmError
from issueswarm.git import AsyncRepo
from issueswarm.swarm.pipeline import ItemPipeline, classify
from issueswarm.swarm.publish import Publisher
from issueswarm.swarm.service import ServiceRegistry
from issueswarm.swarm.types import FailureReason, OutcomeStatus, PipelineState
from issueswarm.swarm.worktree import WorkspaceManager
from tests.mocks.agent_service import (
    FakeAgentAPI,
    FakeAgentFleet,
    FakeCodeHost,
    FakeLauncher,
    git,
)

ISSUES = {
    7: {"title": "Flaky retry logic", "body": "Retries twice instead of three times"},
    10: {"title": "Crash on empty input", "body": "Steps to reproduce..."},
    11: {"title": "Typo in README", "body": None},
}


class Harness:
    def __init__(
        self,
        repo_root: Path,
        worktree_root: Path,
        console: Console,
        *,
        publish: PublishConfig | None = None,
        agent: AgentConfig | None = None,
        host: FakeCodeHost | None = None,
        launcher: FakeLauncher | None = None,
        fleet: FakeAgentFleet | None = None,
    ) -> None:
        self.registry = ServiceRegistry()
        self.host = host or FakeCodeHost(ISSUES)
        self.launcher = launcher or FakeLauncher(self.registry, edits=[7, 10, 11])
        self.launcher.registry = self.registry
        self.fleet = fleet or FakeAgentFleet()
        self.workspaces = WorkspaceManager(AsyncRepo(repo_root), worktree_root)
        options = publish or PublishConfig()
        self.pipeline = ItemPipeline(
            tracker=self.host,
            workspaces=self.workspaces,
            launcher=self.launcher,
            publisher=Publisher(options, self.host),
            agent=agent or AgentConfig(model="anthropic/claude", profile="build"),
            cleanup=options.cleanup,
            client_factory=self.fleet,
            console=console,
        )

    def log_text(self, identifier: int) -> str:
        return self.workspaces.log_path_for(identifier).read_text()


@pytest.fixture
def harness(repo_with_remote: Path, tmp_path: Path, capture_console: Console) -> Harness:
    return Harness(repo_with_remote, tmp_path / "worktrees", capture_console)


@pytest.mark.asyncio
async def test_success_path(harness: Harness, tmp_path: Path) -> None:
    outcome = await harness.pipeline.run(10)

    assert outcome.status is OutcomeStatus.SUCCEEDED
    assert outcome.reason is None

    api = harness.fleet.api_for(10)
    paths = [(r.method, r.url.path) for r in api.requests]
    assert ("POST", "/session") in paths
    assert ("POST", "/session/ses_test/message") in paths
    assert api.submissions[0]["model"] == {"providerID": "anthropic", "modelID": "claude"}
    assert api.submissions[0]["agent"] == "build"
    assert api.submissions[0]["parts"][0]["text"].startswith(
        "Work on GitHub Issue #10: Crash on empty input"
    )

    service = harness.launcher.started[10]
    assert service.port == 4110
    assert not service.is_running()
    assert len(harness.registry) == 0

    assert harness.host.pr_calls and harness.host.pr_calls[0][1] == 10
    # cleanup removed the worktree but the log survives
    assert not harness.workspaces.path_for(10).exists()
    log = harness.log_text(10)
    assert "[Issue #10] Title: Crash on empty input" in log
    assert "[Issue #10] Starting agent server on port 4110..." in log
    assert "[Issue #10] Session ses_test created, sending prompt..." in log
    assert "[Issue #10] ✅ Agent completed" in log
    assert "[Issue #10] Cleaning up worktree..." in log


@pytest.mark.asyncio
async def test_local_only_run_skips_push_and_pr(
    repo_with_remote: Path, tmp_path: Path, capture_console: Console
) -> None:
    harness = Harness(
        repo_with_remote,
        tmp_path / "worktrees",
        capture_console,
        publish=PublishConfig(push=False, create_pr=False),
    )

    outcome = await harness.pipeline.run(7)

    assert outcome.succeeded
    assert harness.host.pr_calls == []
    assert "issue/7" not in _remote_branches(tmp_path)
    assert not harness.workspaces.path_for(7).exists()
    assert "Pushing branch..." not in harness.log_text(7)


@pytest.mark.asyncio
async def test_submit_failure_keeps_worktree(
    repo_with_remote: Path, tmp_path: Path, capture_console: Console
) -> None:
    fleet = FakeAgentFleet({11: FakeAgentAPI(message_status=500, message_reply="overloaded")})
    harness = Harness(repo_with_remote, tmp_path / "worktrees", capture_console, fleet=fleet)

    outcome = await harness.pipeline.run(11)

    assert outcome.status is OutcomeStatus.FAILED
    assert outcome.reason is FailureReason.SUBMIT
    assert "HTTP 500" in outcome.detail
    assert outcome.state is PipelineState.SUBMITTING
    assert harness.workspaces.path_for(11).is_dir()
    assert not harness.launcher.started[11].is_running()
    assert harness.host.pr_calls == []
    log = harness.log_text(11)
    assert "HTTP 500 - Error: overloaded" in log
    assert "❌ submit: Agent failed (HTTP 500)" in log


@pytest.mark.asyncio
async def test_no_diff_is_no_change_failure(
    repo_with_remote: Path, tmp_path: Path, capture_console: Console
) -> None:
    harness = Harness(
        repo_with_remote,
        tmp_path / "worktrees",
        capture_console,
        launcher=FakeLauncher(edits=[]),
    )

    outcome = await harness.pipeline.run(10)

    assert outcome.reason is FailureReason.NO_CHANGE
    assert harness.host.pr_calls == []
    assert harness.workspaces.path_for(10).is_dir()
    assert "No changes detected compared to origin/main" in harness.log_text(10)


@pytest.mark.asyncio
async def test_fetch_failure(harness: Harness) -> None:
    outcome = await harness.pipeline.run(99)

    assert outcome.reason is FailureReason.FETCH
    assert outcome.state is PipelineState.FETCHING
    assert harness.launcher.started == {}
    assert not harness.workspaces.path_for(99).exists()


@pytest.mark.asyncio
async def test_service_start_failure(
    repo_with_remote: Path, tmp_path: Path, capture_console: Console
) -> None:
    harness = Harness(
        repo_with_remote,
        tmp_path / "worktrees",
        capture_console,
        launcher=FakeLauncher(fail_start=[10]),
    )

    outcome = await harness.pipeline.run(10)

    assert outcome.reason is FailureReason.SERVICE_START
    assert outcome.state is PipelineState.STARTING


@pytest.mark.asyncio
async def test_readiness_timeout_stops_service(
    repo_with_remote: Path, tmp_path: Path, capture_console: Console
) -> None:
    harness = Harness(
        repo_with_remote,
        tmp_path / "worktrees",
        capture_console,
        launcher=FakeLauncher(not_ready=[10]),
    )

    outcome = await harness.pipeline.run(10)

    assert outcome.reason is FailureReason.READINESS_TIMEOUT
    assert not harness.launcher.started[10].is_running()
    assert harness.fleet.apis == {}


@pytest.mark.asyncio
async def test_session_without_id(
    repo_with_remote: Path, tmp_path: Path, capture_console: Console
) -> None:
    fleet = FakeAgentFleet({10: FakeAgentAPI(session_reply={})})
    harness = Harness(repo_with_remote, tmp_path / "worktrees", capture_console, fleet=fleet)

    outcome = await harness.pipeline.run(10)

    assert outcome.reason is FailureReason.SESSION
    assert harness.launcher.started[10].stop_calls == 1


@pytest.mark.asyncio
async def test_submit_timeout(
    repo_with_remote: Path, tmp_path: Path, capture_console: Console
) -> None:
    fleet = FakeAgentFleet({10: FakeAgentAPI(message_error=httpx.ReadTimeout("timed out"))})
    harness = Harness(
        repo_with_remote,
        tmp_path / "worktrees",
        capture_console,
        fleet=fleet,
        agent=AgentConfig(request_timeout=3),
    )

    outcome = await harness.pipeline.run(10)

    assert outcome.reason is FailureReason.SUBMIT
    assert "within 3s" in outcome.detail


@pytest.mark.asyncio
async def test_unexpected_exception_becomes_failure(
    harness: Harness, monkeypatch: pytest.MonkeyPatch
) -> None:
    async def explode(identifier: int) -> object:
        raise RuntimeError("tracker exploded")

    monkeypatch.setattr(harness.host, "fetch_issue", explode)

    outcome = await harness.pipeline.run(10)

    assert outcome.reason is FailureReason.UNEXPECTED
    assert "tracker exploded" in outcome.detail


@pytest.mark.asyncio
async def test_rerun_reuses_worktree(
    repo_with_remote: Path, tmp_path: Path, capture_console: Console
) -> None:
    harness = Harness(
        repo_with_remote,
        tmp_path / "worktrees",
        capture_console,
        publish=PublishConfig(cleanup=False, create_pr=False, push=False, integration_ref="main"),
    )

    first = await harness.pipeline.run(10)
    harness.launcher.edits.clear()
    second = await harness.pipeline.run(10)

    assert first.succeeded and second.succeeded
    assert harness.workspaces.path_for(10).is_dir()
    assert "Worktree exists, reusing..." in harness.log_text(10)


@pytest.mark.asyncio
async def test_cancellation_still_stops_service(
    repo_with_remote: Path, tmp_path: Path, capture_console: Console
) -> None:
    harness = Harness(
        repo_with_remote,
        tmp_path / "worktrees",
        capture_console,
        launcher=FakeLauncher(hang=True),
    )

    task = asyncio.create_task(harness.pipeline.run(10))
    for _ in range(200):
        if 10 in harness.launcher.started:
            break
        await asyncio.sleep(0.01)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert harness.launcher.started[10].stop_calls == 1
    assert "Interrupted while awaiting-ready" in harness.log_text(10)


def test_classify_follows_error_hierarchy() -> None:
    assert classify(SubmitError("Agent failed (HTTP 500)")) is FailureReason.SUBMIT
    assert classify(NoChangeError("No changes")) is FailureReason.NO_CHANGE
    assert classify(SwarmError("generic")) is FailureReason.UNEXPECTED


def _remote_branches(tmp_path: Path) -> str:
    return git(tmp_path / "origin.git", "branch", "--list")
