"""issueswarm - run one coding agent per GitHub issue, in parallel.

Each issue gets its own git worktree, branch, and agent service process; the
agent's work is pushed and opened as a pull request when it finishes.

Exports:
    __version__: Package version string.
"""

from __future__ import annotations

__all__ = ["__version__"]

__version__ = "0.3.0"
