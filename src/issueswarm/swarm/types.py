"""Data types for issue swarm execution.

[invariant:typing] All types are explicit; mypy --strict compliant.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from issueswarm.core.config import ModelSelector

IssueId = int | str

NO_DESCRIPTION = "No description provided"
BRANCH_PREFIX = "issue/"
WORKSPACE_PREFIX = "issue-"


def parse_identifier(raw: str | int) -> IssueId:
    """Normalize a command-line token into an issue identifier.

    Decimal tokens become integers so that `007` and `7` name the same issue.
    """
    if isinstance(raw, int):
        return raw
    token = raw.strip().lstrip("#")
    if token.isdigit():
        return int(token)
    if not token:
        raise ValueError("Issue identifier must not be empty")
    return token


def branch_name_for(identifier: IssueId) -> str:
    return f"{BRANCH_PREFIX}{identifier}"


def workspace_name_for(identifier: IssueId) -> str:
    return f"{WORKSPACE_PREFIX}{identifier}"


def log_name_for(identifier: IssueId) -> str:
    return f"{WORKSPACE_PREFIX}{identifier}.log"


class WorkItem(BaseModel):
    """An issue fetched from the tracker.

    Attributes:
        identifier: Issue number or token
        title: Issue title
        body: Issue description, never empty
    """

    model_config = ConfigDict(frozen=True)

    identifier: IssueId
    title: str
    body: str = NO_DESCRIPTION

    @field_validator("body", mode="before")
    @classmethod
    def default_body(cls, v: Any) -> str:
        if v is None or (isinstance(v, str) and not v.strip()):
            return NO_DESCRIPTION
        return str(v)


class WorkspaceState(str, Enum):
    """Whether a worktree existed before this run."""

    ABSENT = "absent"
    EXISTING = "present-existing"
    FRESH = "present-fresh"


class Workspace(BaseModel):
    """An isolated worktree bound to the issue's branch.

    Attributes:
        identifier: Issue the worktree belongs to
        path: Worktree directory
        branch: Branch checked out in the worktree
        state: Whether the worktree was reused or freshly created
    """

    model_config = ConfigDict(frozen=True)

    identifier: IssueId
    path: Path
    branch: str
    state: WorkspaceState = WorkspaceState.ABSENT


class TaskRequest(BaseModel):
    """The rendered prompt plus optional model and agent profile."""

    model_config = ConfigDict(frozen=True)

    prompt: str
    model: ModelSelector | None = None
    agent: str | None = None

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"parts": [{"type": "text", "text": self.prompt}]}
        if self.model is not None:
            payload["model"] = self.model.to_payload()
        if self.agent:
            payload["agent"] = self.agent
        return payload

    def describe(self) -> dict[str, Any]:
        """Payload without the prompt parts, for logging."""
        summary = self.to_payload()
        summary.pop("parts")
        return summary


@dataclass(frozen=True)
class Session:
    """A conversation scope on one agent service; used for one submission."""

    id: str
    title: str


@dataclass
class AgentResponse:
    """A 2xx reply to a task submission.

    The parts are kept opaque; only their count and the last one are logged.
    """

    status_code: int
    parts: list[Any] = field(default_factory=list)
    raw: str = ""

    @property
    def last_part(self) -> Any | None:
        return self.parts[-1] if self.parts else None


class OutcomeStatus(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class FailureReason(str, Enum):
    """Why a pipeline ended in failure."""

    FETCH = "fetch"
    PROVISION = "provision"
    SERVICE_START = "service-start"
    READINESS_TIMEOUT = "readiness-timeout"
    SESSION = "session"
    SUBMIT = "submit"
    NO_CHANGE = "no-change"
    PUBLISH = "publish"
    INTERRUPTED = "interrupted"
    UNEXPECTED = "unexpected"


class PipelineState(str, Enum):
    """Phases of one item pipeline, in order."""

    FETCHING = "fetching"
    PROVISIONING = "provisioning"
    STARTING = "starting"
    AWAITING_READY = "awaiting-ready"
    SUBMITTING = "submitting"
    CLASSIFYING = "classifying"
    PUBLISHING = "publishing"
    RECLAIMING = "reclaiming"
    DONE = "done"


@dataclass(frozen=True)
class Outcome:
    """Terminal classification of one item pipeline.

    Attributes:
        identifier: Issue the pipeline processed
        status: Succeeded or failed
        reason: Failure category (None on success)
        detail: Human-readable failure detail
        state: Phase the pipeline was in when it finished
    """

    identifier: IssueId
    status: OutcomeStatus
    reason: FailureReason | None = None
    detail: str = ""
    state: PipelineState = PipelineState.DONE

    @property
    def succeeded(self) -> bool:
        return self.status is OutcomeStatus.SUCCEEDED

    @classmethod
    def success(cls, identifier: IssueId) -> Outcome:
        return cls(identifier=identifier, status=OutcomeStatus.SUCCEEDED)

    @classmethod
    def failure(
        cls,
        identifier: IssueId,
        reason: FailureReason,
        detail: str = "",
        state: PipelineState = PipelineState.DONE,
    ) -> Outcome:
        return cls(
            identifier=identifier,
            status=OutcomeStatus.FAILED,
            reason=reason,
            detail=detail,
            state=state,
        )


class SwarmReport(BaseModel):
    """Aggregate result of a swarm run.

    Attributes:
        succeeded: Identifiers that succeeded, in input order
        failed: Identifiers that failed, in input order
        outcomes: Outcome per identifier
        interrupted: Whether the run was cut short by a signal
        exit_code: Process exit status for the run
    """

    model_config = ConfigDict(extra="forbid", arbitrary_types_allowed=True)

    succeeded: list[IssueId] = Field(default_factory=list)
    failed: list[IssueId] = Field(default_factory=list)
    outcomes: dict[IssueId, Outcome] = Field(default_factory=dict)
    interrupted: bool = False
    exit_code: int = 0

    @classmethod
    def from_outcomes(
        cls,
        identifiers: list[IssueId],
        outcomes: dict[IssueId, Outcome],
        *,
        interrupted_by: int | None = None,
    ) -> SwarmReport:
        succeeded = [i for i in identifiers if outcomes[i].succeeded]
        failed = [i for i in identifiers if not outcomes[i].succeeded]
        if interrupted_by is not None:
            exit_code = 128 + interrupted_by
        else:
            exit_code = 1 if failed else 0
        return cls(
            succeeded=succeeded,
            failed=failed,
            outcomes={i: outcomes[i] for i in identifiers},
            interrupted=interrupted_by is not None,
            exit_code=exit_code,
        )


__all__ = [
    "AgentResponse",
    "FailureReason",
    "IssueId",
    "NO_DESCRIPTION",
    "Outcome",
    "OutcomeStatus",
    "PipelineState",
    "Session",
    "SwarmReport",
    "TaskRequest",
    "WorkItem",
    "Workspace",
    "WorkspaceState",
    "branch_name_for",
    "log_name_for",
    "parse_identifier",
    "workspace_name_for",
]
