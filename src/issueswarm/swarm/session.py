"""Request/response side of the agent service protocol.

A SessionDriver opens one session on a ready agent service and submits exactly
one task to it. It never retries; a timeout or error ends the submission.
"""

from __future__ import annotations

import json
from typing import Any

import httpx

from issueswarm.core.result import SessionError, SubmitError
from issueswarm.swarm.itemlog import ItemLog
from issueswarm.swarm.types import AgentResponse, Session, TaskRequest

ERROR_BODY_LIMIT = 500
LAST_PART_PREVIEW = 300


def _excerpt(text: str, limit: int) -> str:
    return text.strip()[:limit]


class SessionDriver:
    """Opens a session and drives a single task submission.

    Attributes:
        client: HTTP client whose base URL points at the agent service
        log: The issue's progress sink
    """

    def __init__(self, client: httpx.AsyncClient, log: ItemLog) -> None:
        self._client = client
        self._log = log

    async def open(self, title: str) -> Session:
        """Create a session labelled ``title``.

        Raises:
            SessionError: On transport failure, non-2xx reply, or a reply
                without a session id
        """
        try:
            resp = await self._client.post("/session", json={"title": title})
        except httpx.HTTPError as exc:
            raise SessionError(
                "Session request failed", context={"error": type(exc).__name__}
            ) from exc

        if not resp.is_success:
            raise SessionError(
                "Session creation rejected",
                context={"status": resp.status_code, "body": _excerpt(resp.text, ERROR_BODY_LIMIT)},
            )

        try:
            data = resp.json()
        except json.JSONDecodeError as exc:
            raise SessionError(
                "Session reply is not JSON",
                context={"body": _excerpt(resp.text, ERROR_BODY_LIMIT)},
            ) from exc

        session_id = data.get("id") if isinstance(data, dict) else None
        if not session_id:
            raise SessionError(
                "Failed to create session", context={"reply": _excerpt(resp.text, 200)}
            )

        return Session(id=str(session_id), title=title)

    async def submit(
        self,
        session: Session,
        request: TaskRequest,
        *,
        timeout: float,
    ) -> AgentResponse:
        """Send the task and block until the agent replies or ``timeout`` elapses.

        Raises:
            SubmitError: On timeout, transport failure, or a non-2xx reply
                (carrying the status code and up to 500 characters of body)
        """
        self._log.info(f"Request: {json.dumps(request.describe(), separators=(',', ':'))}")
        self._log.info("Running agent...")

        try:
            resp = await self._client.post(
                f"/session/{session.id}/message",
                json=request.to_payload(),
                timeout=httpx.Timeout(timeout, connect=10.0),
            )
        except httpx.TimeoutException as exc:
            raise SubmitError(
                f"Agent did not reply within {timeout:g}s", context={"session": session.id}
            ) from exc
        except httpx.HTTPError as exc:
            raise SubmitError(
                "Task submission failed",
                context={"session": session.id, "error": type(exc).__name__},
            ) from exc

        body = resp.text
        if not resp.is_success:
            excerpt = _excerpt(body, ERROR_BODY_LIMIT)
            self._log.info(f"HTTP {resp.status_code} - Error: {excerpt}")
            raise SubmitError(
                f"Agent failed (HTTP {resp.status_code})",
                status_code=resp.status_code,
                body=excerpt,
            )

        parts = self._parse_parts(body)
        response = AgentResponse(status_code=resp.status_code, parts=parts, raw=body)
        self._log_response(response)
        return response

    def _parse_parts(self, body: str) -> list[Any]:
        try:
            data = json.loads(body)
        except json.JSONDecodeError:
            return []
        if isinstance(data, dict) and isinstance(data.get("parts"), list):
            return list(data["parts"])
        return []

    def _log_response(self, response: AgentResponse) -> None:
        self._log.detail("Full agent response:")
        try:
            self._log.detail(json.dumps(json.loads(response.raw), indent=2))
        except json.JSONDecodeError:
            self._log.detail(response.raw)

        last = response.last_part
        preview = "null"
        if last is not None:
            preview = json.dumps(last, separators=(",", ":"))[:LAST_PART_PREVIEW]
        self._log.info(f"Response: {len(response.parts)} parts, last: {preview}")


__all__ = ["SessionDriver"]
