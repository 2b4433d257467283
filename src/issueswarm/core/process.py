"""Process management utilities.

Provides:
- ProcessInfo dataclass for process metadata
- find_processes for discovering running agent servers
- terminate_tree for synchronously stopping a process and its children
- listening_ports for checking which ports a process tree has bound
- reap_processes for terminating leftovers from earlier runs
"""

from __future__ import annotations

import asyncio
import os
from dataclasses import dataclass

import psutil

from issueswarm.core.console import get_logger
from issueswarm.core.result import Err, Ok, Result, SystemResourceError

logger = get_logger(__name__)


@dataclass
class ProcessInfo:
    """Information about a running process."""

    pid: int
    username: str
    name: str
    cmdline: str


def _format_cmdline(proc: psutil.Process) -> str:
    """Format process command line, falling back to name on error."""
    try:
        return " ".join(proc.cmdline()) or proc.name()
    except (psutil.ZombieProcess, psutil.AccessDenied, psutil.NoSuchProcess):
        return proc.name()


def terminate_tree(pid: int, *, force: bool = False) -> list[int]:
    """Signal a process and all of its descendants.

    Children are collected before the parent is signalled so that servers which
    spawn helper processes do not leave them re-parented to init.

    Args:
        pid: Root process ID
        force: If True, use SIGKILL; otherwise use SIGTERM

    Returns:
        PIDs that were signalled (empty when the process was already gone)
    """
    try:
        root = psutil.Process(pid)
    except psutil.NoSuchProcess:
        return []

    try:
        children = root.children(recursive=True)
    except (psutil.NoSuchProcess, psutil.AccessDenied):
        children = []

    signalled: list[int] = []
    for proc in [*children, root]:
        try:
            if force:
                proc.kill()
            else:
                proc.terminate()
            signalled.append(proc.pid)
        except psutil.NoSuchProcess:
            continue
        except psutil.AccessDenied:
            logger.warning("Permission denied signalling PID %s", proc.pid)
    return signalled


def listening_ports(pid: int) -> set[int] | None:
    """Ports a process tree is listening on.

    Returns:
        The ports, or None when no process in the tree could be inspected
    """
    try:
        root = psutil.Process(pid)
        procs = [root, *root.children(recursive=True)]
    except psutil.NoSuchProcess:
        return set()
    except psutil.AccessDenied:
        return None

    ports: set[int] = set()
    inspected = False
    for proc in procs:
        try:
            connections = proc.net_connections(kind="inet")
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            continue
        inspected = True
        ports.update(c.laddr.port for c in connections if c.status == psutil.CONN_LISTEN)
    return ports if inspected else None


async def find_processes(
    name_filter: str | None = None,
) -> Result[list[ProcessInfo], SystemResourceError]:
    """Find processes whose command line contains ``name_filter``.

    The current process is never included.
    """
    own_pid = os.getpid()

    def _collect() -> list[ProcessInfo]:
        matches: list[ProcessInfo] = []
        for proc in psutil.process_iter(["pid", "name", "username"]):
            if proc.pid == own_pid:
                continue
            try:
                cmd = _format_cmdline(proc)
                if name_filter and name_filter.lower() not in cmd.lower():
                    continue

                matches.append(
                    ProcessInfo(
                        pid=proc.pid,
                        username=proc.username(),
                        name=proc.name(),
                        cmdline=cmd,
                    )
                )
            except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
                continue

        return sorted(matches, key=lambda p: p.pid)

    try:
        matches = await asyncio.to_thread(_collect)
    except Exception as exc:
        return Err(
            SystemResourceError("Failed to enumerate processes", context={"error": str(exc)})
        )

    return Ok(matches)


async def reap_processes(
    name_filter: str, *, grace: float = 1.0
) -> Result[list[ProcessInfo], SystemResourceError]:
    """Terminate every process matching ``name_filter`` and wait briefly for exit.

    Survivors of the grace period are killed.

    Returns:
        Result containing the processes that were signalled
    """
    match await find_processes(name_filter):
        case Err(err):
            return Err(err)
        case Ok(found):
            pass

    if not found:
        return Ok([])

    def _reap() -> None:
        procs: list[psutil.Process] = []
        for info in found:
            terminate_tree(info.pid)
            try:
                procs.append(psutil.Process(info.pid))
            except psutil.NoSuchProcess:
                continue
        _, alive = psutil.wait_procs(procs, timeout=grace)
        for proc in alive:
            terminate_tree(proc.pid, force=True)

    await asyncio.to_thread(_reap)
    logger.info("Reaped %d stale process(es) matching %r", len(found), name_filter)
    return Ok(found)


__all__ = [
    "ProcessInfo",
    "find_processes",
    "listening_ports",
    "reap_processes",
    "terminate_tree",
]
