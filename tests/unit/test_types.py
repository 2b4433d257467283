from __future__ import annotations

import pytest

from issueswarm.core.config import ModelSelector
from issueswarm.swarm.types import (
    NO_DESCRIPTION,
    AgentResponse,
    FailureReason,
    Outcome,
    SwarmReport,
    TaskRequest,
    WorkItem,
    branch_name_for,
    log_name_for,
    parse_identifier,
    workspace_name_for,
)


class TestIdentifiers:
    @pytest.mark.parametrize(
        ("raw", "expected"),
        [("42", 42), ("#42", 42), (" 007 ", 7), (12, 12), ("PROJ-9", "PROJ-9")],
    )
    def test_parse_identifier(self, raw: str | int, expected: int | str) -> None:
        assert parse_identifier(raw) == expected

    def test_empty_identifier_rejected(self) -> None:
        with pytest.raises(ValueError):
            parse_identifier("  ")

    def test_names_are_derived_from_identifier(self) -> None:
        assert branch_name_for(42) == "issue/42"
        assert workspace_name_for(42) == "issue-42"
        assert log_name_for(42) == "issue-42.log"


class TestWorkItem:
    @pytest.mark.parametrize("body", [None, "", "   "])
    def test_missing_body_gets_placeholder(self, body: str | None) -> None:
        item = WorkItem(identifier=1, title="Fix it", body=body)
        assert item.body == NO_DESCRIPTION

    def test_body_is_kept(self) -> None:
        assert WorkItem(identifier=1, title="t", body="details").body == "details"


class TestTaskRequest:
    def test_payload_with_model_and_agent(self) -> None:
        request = TaskRequest(
            prompt="do it",
            model=ModelSelector(provider_id="anthropic", model_id="claude"),
            agent="build",
        )
        assert request.to_payload() == {
            "parts": [{"type": "text", "text": "do it"}],
            "model": {"providerID": "anthropic", "modelID": "claude"},
            "agent": "build",
        }
        assert request.describe() == {
            "model": {"providerID": "anthropic", "modelID": "claude"},
            "agent": "build",
        }

    def test_payload_without_options(self) -> None:
        request = TaskRequest(prompt="do it")
        assert request.to_payload() == {"parts": [{"type": "text", "text": "do it"}]}
        assert request.describe() == {}


def test_agent_response_last_part() -> None:
    assert AgentResponse(status_code=200).last_part is None
    assert AgentResponse(status_code=200, parts=[{"a": 1}, {"b": 2}]).last_part == {"b": 2}


class TestSwarmReport:
    def test_lists_follow_input_order(self) -> None:
        outcomes = {
            11: Outcome.failure(11, FailureReason.SUBMIT, "HTTP 500"),
            10: Outcome.success(10),
            12: Outcome.success(12),
        }
        report = SwarmReport.from_outcomes([12, 10, 11], outcomes)
        assert report.succeeded == [12, 10]
        assert report.failed == [11]
        assert list(report.outcomes) == [12, 10, 11]
        assert report.exit_code == 1
        assert report.interrupted is False

    def test_all_succeeded_exits_zero(self) -> None:
        report = SwarmReport.from_outcomes([1], {1: Outcome.success(1)})
        assert report.exit_code == 0

    def test_interrupt_exit_code(self) -> None:
        outcomes = {1: Outcome.failure(1, FailureReason.INTERRUPTED)}
        report = SwarmReport.from_outcomes([1], outcomes, interrupted_by=2)
        assert report.interrupted is True
        assert report.exit_code == 130
