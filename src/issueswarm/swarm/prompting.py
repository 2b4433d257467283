"""Task prompt rendering.

The prompt sent to the agent is rendered from `templates/issue_task.txt.j2`
shipped inside the package.
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from jinja2 import Environment, FileSystemLoader, StrictUndefined, TemplateNotFound

from issueswarm.core.console import get_logger
from issueswarm.core.config import ModelSelector
from issueswarm.swarm.types import TaskRequest, WorkItem

logger = get_logger(__name__)

TASK_TEMPLATE_NAME = "issue_task.txt.j2"


def _resolve_template_root() -> Path:
    return Path(__file__).resolve().parent.parent / "templates"


@lru_cache(maxsize=1)
def _get_template_environment(template_root: Path) -> Environment:
    return Environment(
        loader=FileSystemLoader(str(template_root)),
        autoescape=False,
        undefined=StrictUndefined,
        keep_trailing_newline=False,
    )


def render_task_prompt(item: WorkItem) -> str:
    template_root = _resolve_template_root()
    try:
        template = _get_template_environment(template_root).get_template(TASK_TEMPLATE_NAME)
    except TemplateNotFound as exc:
        logger.error("Task template %s missing in %s", TASK_TEMPLATE_NAME, template_root)
        raise FileNotFoundError(
            f"Template {TASK_TEMPLATE_NAME} not found in {template_root}"
        ) from exc
    return template.render(identifier=item.identifier, title=item.title, body=item.body)


def build_task_request(
    item: WorkItem,
    *,
    model: ModelSelector | None = None,
    agent: str | None = None,
) -> TaskRequest:
    return TaskRequest(prompt=render_task_prompt(item), model=model, agent=agent or None)


__all__ = ["build_task_request", "render_task_prompt"]
