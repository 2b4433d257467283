from __future__ import annotations

from issueswarm.core.config import ModelSelector
from issueswarm.swarm.prompting import build_task_request, render_task_prompt
from issueswarm.swarm.types import WorkItem

EXPECTED_PROMPT = """Work on GitHub Issue #42: Crash on empty input

The parser raises IndexError when given "".

Instructions:
1. Read the issue carefully and understand what needs to be done
2. Implement the changes described
3. Run tests to verify your changes work
4. Run linting and formatting
5. Commit your changes with a descriptive message that references issue #42
6. Summarize what you did at the end"""


def test_prompt_renders_exactly() -> None:
    item = WorkItem(
        identifier=42,
        title="Crash on empty input",
        body='The parser raises IndexError when given "".',
    )
    assert render_task_prompt(item) == EXPECTED_PROMPT


def test_prompt_uses_placeholder_body() -> None:
    prompt = render_task_prompt(WorkItem(identifier=3, title="Docs", body=None))
    assert "\n\nNo description provided\n\n" in prompt


def test_prompt_does_not_escape_markup() -> None:
    prompt = render_task_prompt(WorkItem(identifier=3, title="<b>&</b>", body="{{ x }}"))
    assert "<b>&</b>" in prompt
    assert "{{ x }}" in prompt


def test_build_task_request() -> None:
    model = ModelSelector(provider_id="anthropic", model_id="claude")
    request = build_task_request(WorkItem(identifier=1, title="t"), model=model, agent="")
    assert request.model == model
    assert request.agent is None
    assert request.prompt.startswith("Work on GitHub Issue #1: t")
