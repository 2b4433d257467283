"""Per-issue progress sink.

Every pipeline owns one ItemLog. Lines go to the shared Rich console prefixed
with a colored `[Issue #<id>]` tag, and in plain text to the issue's own
append-only log file, which outlives worktree cleanup.

Writes are whole lines only: streamed text fragments are buffered until a
newline arrives so concurrent pipelines never interleave mid-line.
"""

from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import IO

from rich.console import Console
from rich.text import Text

from issueswarm.core.console import get_console
from issueswarm.swarm.types import IssueId

RUN_SEPARATOR = "New run"


class ItemLog:
    """Tagged console output plus the issue's log file."""

    def __init__(
        self,
        identifier: IssueId,
        path: Path,
        *,
        color: str = "blue",
        console: Console | None = None,
    ) -> None:
        self.identifier = identifier
        self.path = path
        self.color = color
        self.tag = f"[Issue #{identifier}]"
        self._console = console or get_console()
        self._handle: IO[str] | None = None
        self._pending = ""

    def open(self) -> ItemLog:
        """Open the log file for appending.

        Earlier runs are kept; a separator line marks where this run starts.
        """
        self.path.parent.mkdir(parents=True, exist_ok=True)
        previous = self.path.exists() and self.path.stat().st_size > 0
        self._handle = self.path.open("a", encoding="utf-8")
        if previous:
            self._write_file(f"===== {RUN_SEPARATOR} {datetime.now():%Y-%m-%d %H:%M:%S} =====")
        return self

    def close(self) -> None:
        self.flush_stream()
        if self._handle is not None:
            self._handle.close()
            self._handle = None

    def __enter__(self) -> ItemLog:
        if self._handle is None:
            self.open()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Writing
    # ------------------------------------------------------------------

    def _write_file(self, line: str) -> None:
        if self._handle is None:
            return
        self._handle.write(line + "\n")
        self._handle.flush()

    def _emit(self, message: str, style: str | None) -> None:
        text = Text(self.tag, style=self.color)
        text.append(" ")
        text.append(message, style=style)
        self._console.print(text, soft_wrap=True)
        self._write_file(f"{self.tag} {message}")

    def info(self, message: str) -> None:
        self.flush_stream()
        for line in message.splitlines() or [""]:
            self._emit(line, None)

    def success(self, message: str) -> None:
        self.flush_stream()
        self._emit(f"✅ {message}", "green")

    def warning(self, message: str) -> None:
        self.flush_stream()
        self._emit(f"⚠️ {message}", "yellow")

    def error(self, message: str) -> None:
        self.flush_stream()
        self._emit(f"❌ {message}", "red")

    def detail(self, message: str) -> None:
        """Write to the log file only (full responses, diagnostics)."""
        self.flush_stream()
        for line in message.splitlines():
            self._write_file(line)

    def stream(self, fragment: str) -> None:
        """Accept a text fragment; complete lines are emitted immediately."""
        self._pending += fragment
        while "\n" in self._pending:
            line, self._pending = self._pending.split("\n", 1)
            self._emit(line, self.color)

    def flush_stream(self) -> None:
        if self._pending:
            line, self._pending = self._pending, ""
            self._emit(line, self.color)


__all__ = ["ItemLog"]
