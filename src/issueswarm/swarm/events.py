"""Streaming side of the agent service protocol.

The EventTap subscribes to `GET /event` on an agent service and renders the
progress it reports into the issue's log while the task submission is in
flight. It is a pure sink: nothing it sees or fails on reaches the
submission's outcome.

Events arrive as server-sent `data:` lines carrying JSON. Depending on the
service version the fields sit at the top level or under a `payload` wrapper,
so every lookup tries both shapes.
"""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass
from typing import Any

import httpx

from issueswarm.core.console import get_logger
from issueswarm.swarm.itemlog import ItemLog

logger = get_logger(__name__)

EVENT_PATH = "/event"
TOOL_OUTPUT_PREVIEW = 200

_MISSING = object()


# ---------------------------------------------------------------------------
# Decoded events
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TextDelta:
    delta: str


@dataclass(frozen=True)
class ToolStarted:
    tool: str
    title: str
    command: str | None = None


@dataclass(frozen=True)
class ToolCompleted:
    tool: str
    output: str


@dataclass(frozen=True)
class SessionFailure:
    message: str


ProgressEvent = TextDelta | ToolStarted | ToolCompleted | SessionFailure


def _dig(data: Any, path: tuple[str, ...]) -> Any:
    node = data
    for key in path:
        if not isinstance(node, dict) or key not in node:
            return _MISSING
        node = node[key]
    return node


def _field(data: dict[str, Any], *path: str) -> Any:
    """Read ``path`` from the top level, falling back to the `payload` wrapper."""
    value = _dig(data, path)
    if value is _MISSING or value is None:
        value = _dig(data, ("payload", *path))
    return None if value is _MISSING else value


def _text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    return json.dumps(value)


def _preview(output: str, limit: int = TOOL_OUTPUT_PREVIEW) -> str:
    short = output[:limit].replace("\n", " ")
    return f"{short}..." if len(output) > limit else short


def decode_event(raw: str) -> ProgressEvent | None:
    """Decode one `data:` payload; anything unrecognized yields None."""
    try:
        data = json.loads(raw)
    except json.JSONDecodeError:
        return None
    if not isinstance(data, dict):
        return None

    match _field(data, "type"):
        case "message.part.updated":
            return _decode_part(data)
        case "session.error":
            message = _field(data, "properties", "error", "message")
            if message is None:
                message = _field(data, "properties", "error")
            text = _text(message)
            return SessionFailure(text) if text else None
        case _:
            return None


def _decode_part(data: dict[str, Any]) -> ProgressEvent | None:
    match _field(data, "properties", "part", "type"):
        case "text":
            delta = _text(_field(data, "properties", "delta"))
            return TextDelta(delta) if delta else None
        case "tool":
            tool = _text(_field(data, "properties", "part", "tool"))
            status = _field(data, "properties", "part", "state", "status")
            if status == "running":
                command = _field(data, "properties", "part", "state", "input", "command")
                return ToolStarted(
                    tool=tool,
                    title=_text(_field(data, "properties", "part", "state", "title")),
                    command=_text(command) or None,
                )
            if status == "completed":
                output = _text(_field(data, "properties", "part", "state", "output"))
                return ToolCompleted(tool=tool, output=output)
            return None
        case _:
            return None


def render_event(event: ProgressEvent, log: ItemLog) -> None:
    match event:
        case TextDelta(delta=delta):
            log.stream(delta)
        case ToolStarted(tool=tool, title=title, command=command):
            log.info(f"🛠️  {tool}: {title}")
            if command:
                log.info(f"   Command: {command}")
        case ToolCompleted(output=output):
            log.info(f"   Output: {_preview(output)}")
        case SessionFailure(message=message):
            log.info(f"ERROR: {message}")


# ---------------------------------------------------------------------------
# Tap
# ---------------------------------------------------------------------------


class EventTap:
    """Background subscriber to an agent service's event stream.

    Usage:
        tap = EventTap(client, log)
        tap.attach()
        try:
            ...  # submit the task
        finally:
            await tap.detach()
    """

    def __init__(self, client: httpx.AsyncClient, log: ItemLog) -> None:
        self._client = client
        self._log = log
        self._task: asyncio.Task[None] | None = None

    @property
    def attached(self) -> bool:
        return self._task is not None and not self._task.done()

    def attach(self) -> EventTap:
        if self._task is None:
            self._task = asyncio.create_task(
                self._consume(), name=f"event-tap-{self._log.identifier}"
            )
        return self

    async def detach(self) -> None:
        """Stop the subscriber; a no-op if it already ended or never started.

        A cancellation of the caller while waiting for the subscriber to wind
        down propagates.
        """
        task, self._task = self._task, None
        if task is None:
            return
        if not task.done():
            task.cancel()
        await asyncio.wait({task})
        self._log.flush_stream()

    async def _consume(self) -> None:
        try:
            async with self._client.stream(
                "GET", EVENT_PATH, timeout=httpx.Timeout(10.0, read=None)
            ) as resp:
                async for line in resp.aiter_lines():
                    self._handle_line(line)
        except httpx.HTTPError as exc:
            logger.debug("Event stream for %s ended: %s", self._log.identifier, exc)
        except Exception:
            # Rendering must never reach the submission; keep the trace for debugging.
            logger.warning("Event tap for %s failed", self._log.identifier, exc_info=True)

    def _handle_line(self, line: str) -> None:
        if not line.startswith("data:"):
            return
        event = decode_event(line[len("data:") :].strip())
        if event is None:
            return
        render_event(event, self._log)


__all__ = [
    "EventTap",
    "ProgressEvent",
    "SessionFailure",
    "TextDelta",
    "ToolCompleted",
    "ToolStarted",
    "decode_event",
    "render_event",
]
