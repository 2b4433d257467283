"""GitHub integration via the `gh` CLI."""

from __future__ import annotations

from .client import GitHubCLI

__all__ = ["GitHubCLI"]
