"""Issue swarm: one isolated agent per issue, run concurrently.

Each issue is processed by an ItemPipeline: fetch the issue, provision its
git worktree, start a dedicated agent service, submit the task, stream
progress, then publish the branch. The SwarmController launches the
pipelines, handles interrupts, and aggregates a SwarmReport.

Key classes:
- SwarmController: Runs all pipelines and prints the summary
- ItemPipeline: Drives a single issue to an Outcome
- WorkspaceManager: Per-issue git worktrees
- ProcessServiceLauncher / ServiceRegistry: Agent service processes
- SessionDriver / EventTap: Agent service HTTP protocol
- Publisher: Push, change detection, pull request

[invariant:async-io] All I/O operations use async patterns.
"""

from issueswarm.swarm.controller import CodeHost, SwarmController, dedupe
from issueswarm.swarm.events import EventTap, decode_event
from issueswarm.swarm.itemlog import ItemLog
from issueswarm.swarm.pipeline import ItemPipeline
from issueswarm.swarm.publish import Publisher
from issueswarm.swarm.service import (
    AgentServiceHandle,
    ProcessServiceLauncher,
    ServiceRegistry,
    port_for,
)
from issueswarm.swarm.session import SessionDriver
from issueswarm.swarm.types import Outcome, SwarmReport, WorkItem, parse_identifier
from issueswarm.swarm.worktree import WorkspaceManager

__all__ = [
    "AgentServiceHandle",
    "CodeHost",
    "EventTap",
    "ItemLog",
    "ItemPipeline",
    "Outcome",
    "ProcessServiceLauncher",
    "Publisher",
    "ServiceRegistry",
    "SessionDriver",
    "SwarmController",
    "SwarmReport",
    "WorkItem",
    "WorkspaceManager",
    "decode_event",
    "dedupe",
    "parse_identifier",
    "port_for",
]
