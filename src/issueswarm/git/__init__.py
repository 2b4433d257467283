"""Git operations and repository management.

This package provides async git operations:
    - AsyncRepo: Non-blocking git commands
    - Worktree management
    - Branch push and diff checks
"""

from __future__ import annotations

from .client import AsyncRepo

__all__ = ["AsyncRepo"]
