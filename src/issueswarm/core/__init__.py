"""Core shared infrastructure for issueswarm.

This package contains foundational utilities:
    - config: Application configuration management
    - console: Rich console output and logging
    - process: Process-tree discovery and termination
    - result: Error handling patterns
"""

from __future__ import annotations

from . import config, console

__all__ = ["config", "console"]
