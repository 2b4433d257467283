"""Console output and logging configuration.

Provides Rich-based console output and logging setup:
    - console: Main Rich console for stdout (per-item progress lines)
    - stderr_console: Rich console for stderr (log records)
    - setup_logging(): Configure logging with Rich handler
    - get_logger(): Get a named logger instance
"""

from __future__ import annotations

import logging

from rich.console import Console
from rich.logging import RichHandler

console = Console(highlight=False)
stderr_console = Console(stderr=True)

# Tag colors cycled across items by launch index.
ITEM_PALETTE: tuple[str, ...] = ("blue", "green", "yellow", "magenta", "cyan", "red")


def _normalize_level(level: str | int) -> int:
    if isinstance(level, str):
        return getattr(logging, level.upper(), logging.INFO)
    return int(level)


def setup_logging(level: str | int = logging.INFO, verbose: bool = False) -> logging.Logger:
    """Configure logging with a Rich handler and return the app logger."""
    numeric_level = logging.DEBUG if verbose else _normalize_level(level)

    handler = RichHandler(
        console=stderr_console,
        markup=False,
        rich_tracebacks=True,
        tracebacks_show_locals=False,
        show_path=False,
    )
    handler.setFormatter(logging.Formatter("%(message)s"))
    handler.setLevel(numeric_level)

    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(numeric_level)
    root.addHandler(handler)

    # httpx logs every request at INFO; keep it out of the swarm output.
    logging.getLogger("httpx").setLevel(max(numeric_level, logging.WARNING))

    logger = logging.getLogger("issueswarm")
    logger.setLevel(numeric_level)

    return logger


def color_for(index: int) -> str:
    return ITEM_PALETTE[index % len(ITEM_PALETTE)]


def get_console(stderr: bool = False) -> Console:
    return stderr_console if stderr else console


def get_logger(name: str | None = None) -> logging.Logger:
    return logging.getLogger(name or "issueswarm")
