"""Agent service process lifecycle.

One agent service (``opencode serve`` by default) runs per issue, rooted at
the issue's worktree and bound to a port derived from the issue identifier.
Every started handle is tracked in a ServiceRegistry owned by the controller,
which can synchronously kill all of them when the run is interrupted.
"""

from __future__ import annotations

import asyncio
import zlib
from collections.abc import Iterator, Sequence
from pathlib import Path
from typing import Protocol

import httpx

from issueswarm.core.console import get_logger
from issueswarm.core.process import listening_ports, terminate_tree
from issueswarm.core.result import ReadinessTimeoutError, ServiceStartError
from issueswarm.swarm.types import IssueId, Workspace

logger = get_logger(__name__)

LIVENESS_PATH = "/doc"


def port_for(identifier: IssueId, *, base: int = 4100, span: int = 1000) -> int:
    """Derive a reproducible port for an issue.

    Integer identifiers map to ``base + id % span``; string tokens use a CRC32
    of the token so the mapping is stable across processes.
    """
    if isinstance(identifier, int):
        offset = identifier % span
    else:
        offset = zlib.crc32(identifier.encode("utf-8")) % span
    return base + offset


def assign_ports(
    identifiers: Sequence[IssueId], *, base: int = 4100, span: int = 1000
) -> dict[IssueId, int]:
    """Give every identifier of a run its own port.

    Each identifier starts at ``port_for``; when an earlier identifier already
    holds that port it takes the next free slot, wrapping within the span.
    Earlier identifiers win, so the assignment depends only on input order.

    Raises:
        ValueError: If there are more identifiers than ports in the span
    """
    if len(identifiers) > span:
        raise ValueError(f"Cannot assign {len(identifiers)} ports from a span of {span}")
    taken: set[int] = set()
    ports: dict[IssueId, int] = {}
    for identifier in identifiers:
        offset = port_for(identifier, base=base, span=span) - base
        while base + offset in taken:
            offset = (offset + 1) % span
        ports[identifier] = base + offset
        taken.add(base + offset)
    return ports


class AgentService(Protocol):
    """A running agent service bound to one worktree."""

    identifier: IssueId
    port: int

    @property
    def base_url(self) -> str: ...

    @property
    def pid(self) -> int | None: ...

    def is_running(self) -> bool: ...

    async def await_ready(self, *, attempts: int, interval: float) -> None: ...

    async def stop(self, *, grace: float) -> None: ...

    def terminate_now(self) -> None: ...


class ServiceLauncher(Protocol):
    """Starts agent services; implementations must register what they start."""

    async def start(self, workspace: Workspace, port: int, log_path: Path) -> AgentService: ...


class ServiceRegistry:
    """Tracks every agent service started during a run.

    The registry is the controller's handle on processes independent of the
    pipelines that own them, so an interrupted run can still kill a service
    whose pipeline never got to its own cleanup.
    """

    def __init__(self) -> None:
        self._services: dict[IssueId, AgentService] = {}

    def register(self, service: AgentService) -> None:
        self._services[service.identifier] = service

    def discard(self, service: AgentService) -> None:
        if self._services.get(service.identifier) is service:
            del self._services[service.identifier]

    def __iter__(self) -> Iterator[AgentService]:
        return iter(list(self._services.values()))

    def __len__(self) -> int:
        return len(self._services)

    def terminate_all(self) -> int:
        """Synchronously kill every tracked service; returns how many were running."""
        killed = 0
        for service in self:
            if service.is_running():
                killed += 1
            service.terminate_now()
        return killed


class AgentServiceHandle:
    """A spawned agent service process.

    States: starting → ready → terminated, or failed-to-start. The handle
    never raises from stop(), and stop() may be called any number of times.
    """

    def __init__(
        self,
        identifier: IssueId,
        process: asyncio.subprocess.Process,
        port: int,
        *,
        host: str = "127.0.0.1",
        registry: ServiceRegistry | None = None,
    ) -> None:
        self.identifier = identifier
        self.port = port
        self.host = host
        self._process = process
        self._registry = registry

    @property
    def base_url(self) -> str:
        return f"http://{self.host}:{self.port}"

    @property
    def pid(self) -> int | None:
        return self._process.pid

    @property
    def returncode(self) -> int | None:
        return self._process.returncode

    def is_running(self) -> bool:
        return self._process.returncode is None

    def owns_port(self) -> bool:
        """Whether this service's process tree is the one listening on its port.

        Falls back to liveness alone when the tree cannot be inspected.
        """
        if not self.is_running() or self.pid is None:
            return False
        ports = listening_ports(self.pid)
        return ports is None or self.port in ports

    async def await_ready(self, *, attempts: int = 30, interval: float = 1.0) -> None:
        """Poll the liveness endpoint until it answers.

        Any HTTP response counts as ready once this service's own process is
        the one listening; a reply from some other process holding the port
        does not. Failed checks are retried every ``interval`` seconds up to
        ``attempts`` times.

        Raises:
            ServiceStartError: If the process exits before answering (e.g. the
                port was already taken)
            ReadinessTimeoutError: If the retry budget is exhausted; the
                process is stopped first
        """
        last_error = "none"
        async with httpx.AsyncClient(base_url=self.base_url, timeout=interval) as client:
            for _ in range(attempts):
                if not self.is_running():
                    await self.stop(grace=0)
                    raise ServiceStartError(
                        "Agent service exited before becoming ready",
                        context={"port": self.port, "returncode": self.returncode},
                    )
                try:
                    await client.get(LIVENESS_PATH)
                except httpx.HTTPError as exc:
                    last_error = type(exc).__name__
                else:
                    if self.owns_port():
                        return
                    last_error = "port answered by another process"
                await asyncio.sleep(interval)

        await self.stop(grace=interval)
        raise ReadinessTimeoutError(
            "Agent service failed to start",
            context={"port": self.port, "attempts": attempts, "last_error": last_error},
        )

    async def stop(self, *, grace: float = 5.0) -> None:
        """Terminate the process tree, escalating to SIGKILL after ``grace`` seconds."""
        try:
            if self.is_running() and self.pid is not None:
                terminate_tree(self.pid)
                try:
                    await asyncio.wait_for(self._process.wait(), timeout=grace)
                except TimeoutError:
                    logger.debug("Service for %s ignored SIGTERM; killing", self.identifier)
                    terminate_tree(self.pid, force=True)
                    try:
                        await asyncio.wait_for(self._process.wait(), timeout=1.0)
                    except TimeoutError:
                        logger.warning(
                            "Service PID %s for %s did not exit after SIGKILL",
                            self.pid,
                            self.identifier,
                        )
        finally:
            if self._registry is not None:
                self._registry.discard(self)

    def terminate_now(self) -> None:
        """Kill the process tree without waiting; safe on a dead handle."""
        if self.is_running() and self.pid is not None:
            terminate_tree(self.pid, force=True)


class ProcessServiceLauncher:
    """Launch the configured server command inside a worktree.

    ``command`` items may contain ``{port}`` and ``{host}`` placeholders.
    """

    def __init__(
        self,
        command: list[str],
        *,
        host: str = "127.0.0.1",
        registry: ServiceRegistry | None = None,
    ) -> None:
        if not command:
            raise ValueError("Agent server command must not be empty")
        self._command = list(command)
        self._host = host
        self._registry = registry

    def argv_for(self, port: int) -> list[str]:
        return [part.format(port=port, host=self._host) for part in self._command]

    async def start(self, workspace: Workspace, port: int, log_path: Path) -> AgentServiceHandle:
        """Spawn the service and return immediately.

        The service's stdout and stderr are appended to ``log_path``. It runs in
        its own session so terminal signals reach the controller first.

        Raises:
            ServiceStartError: If the executable cannot be launched
        """
        argv = self.argv_for(port)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        with log_path.open("ab") as log_stream:
            try:
                process = await asyncio.create_subprocess_exec(
                    *argv,
                    cwd=workspace.path,
                    stdin=asyncio.subprocess.DEVNULL,
                    stdout=log_stream,
                    stderr=asyncio.subprocess.STDOUT,
                    start_new_session=True,
                )
            except OSError as exc:
                raise ServiceStartError(
                    f"Failed to launch {argv[0]}",
                    context={"port": port, "error": str(exc)},
                ) from exc

        handle = AgentServiceHandle(
            workspace.identifier, process, port, host=self._host, registry=self._registry
        )
        if self._registry is not None:
            self._registry.register(handle)
        logger.debug(
            "Started %s (PID %s) for %s", " ".join(argv), process.pid, workspace.identifier
        )
        return handle


__all__ = [
    "AgentService",
    "AgentServiceHandle",
    "ProcessServiceLauncher",
    "ServiceLauncher",
    "ServiceRegistry",
    "assign_ports",
    "port_for",
]
