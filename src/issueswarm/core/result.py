"""
Unified Result types and error hierarchy for issue-swarm.

This module provides:
1. Result[T, E] type for explicit error handling in collaborator clients
2. Domain-specific exception hierarchy for the item pipeline
3. Helper functions for Result operations

Usage:
    from issueswarm.core.result import Ok, Err, Result, GitError

    async def head(repo: Path) -> Result[str, GitError]:
        if not repo.exists():
            return Err(GitError("Repository path does not exist"))
        return Ok("abc1234")

    match await head(path):
        case Ok(sha):
            print(sha)
        case Err(err):
            print(err)
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Generic, TypeVar

T = TypeVar("T")
U = TypeVar("U")
E = TypeVar("E", bound=Exception)
F = TypeVar("F", bound=Exception)


@dataclass(frozen=True, slots=True)
class Ok(Generic[T]):
    """Represents a successful result containing a value."""

    value: T

    def is_ok(self) -> bool:
        return True

    def is_err(self) -> bool:
        return False

    def unwrap(self) -> T:
        """Return the contained value."""
        return self.value

    def unwrap_or(self, default: T) -> T:
        """Return the contained value (ignores default for Ok)."""
        return self.value

    def map(self, fn: Callable[[T], U]) -> Ok[U]:
        """Apply a function to the contained value."""
        return Ok(fn(self.value))

    def map_err(self, fn: Callable[[E], F]) -> Ok[T]:
        """No-op for Ok - returns self unchanged."""
        return self


@dataclass(frozen=True, slots=True)
class Err(Generic[E]):
    """Represents a failed result containing an error."""

    error: E

    def is_ok(self) -> bool:
        return False

    def is_err(self) -> bool:
        return True

    def unwrap(self) -> T:
        """Raise the contained error."""
        raise self.error

    def unwrap_or(self, default: T) -> T:
        """Return the default value."""
        return default

    def map(self, fn: Callable[[T], U]) -> Err[E]:
        """No-op for Err - returns self unchanged."""
        return self

    def map_err(self, fn: Callable[[E], F]) -> Err[F]:
        """Apply a function to the contained error."""
        return Err(fn(self.error))


# Type alias for Result
Result = Ok[T] | Err[E]


# ---------------------------------------------------------------------------
# Base error
# ---------------------------------------------------------------------------


class SwarmError(Exception):
    """Base exception for all issue-swarm errors.

    Carries a human-readable message and an optional context mapping that is
    rendered alongside the message for diagnostics.
    """

    def __init__(self, message: str, *, context: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def __str__(self) -> str:
        if self.context:
            ctx_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            return f"{self.message} [{ctx_str}]"
        return self.message


# ---------------------------------------------------------------------------
# Collaborator errors (returned inside Err by the thin client wrappers)
# ---------------------------------------------------------------------------


class GitError(SwarmError):
    """Raised when a git subprocess fails.

    The context carries ``returncode`` when git ran but exited non-zero.
    """

    @property
    def returncode(self) -> int | None:
        code = self.context.get("returncode")
        return code if isinstance(code, int) else None


class GitHubError(SwarmError):
    """Raised when a `gh` CLI invocation fails."""


class ConfigurationError(SwarmError):
    """Raised for configuration issues.

    Examples:
    - Malformed model selector
    - Config file parse errors
    """


class SystemResourceError(SwarmError):
    """Raised when process inspection or termination fails."""


# ---------------------------------------------------------------------------
# Pipeline error taxonomy (each maps to one FailureReason)
# ---------------------------------------------------------------------------


class FetchError(SwarmError):
    """Issue tracker unreachable or issue missing."""


class ProvisionError(SwarmError):
    """Workspace or branch creation failed."""


class ServiceStartError(SwarmError):
    """Agent service process failed to launch."""


class ReadinessTimeoutError(SwarmError):
    """Liveness check never succeeded within the retry budget."""


class SessionError(SwarmError):
    """Session creation failed or returned no identifier."""


class SubmitError(SwarmError):
    """Task submission returned non-2xx or timed out."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        body: str = "",
        context: dict[str, Any] | None = None,
    ) -> None:
        merged = dict(context or {})
        if status_code is not None:
            merged.setdefault("status", status_code)
        super().__init__(message, context=merged)
        self.status_code = status_code
        self.body = body


class NoChangeError(SwarmError):
    """Task completed but produced no difference against the integration branch."""


class PublishError(SwarmError):
    """Push or publish-request creation failed."""


__all__ = [
    # Result types
    "Ok",
    "Err",
    "Result",
    # Error hierarchy
    "SwarmError",
    "GitError",
    "GitHubError",
    "ConfigurationError",
    "SystemResourceError",
    "FetchError",
    "ProvisionError",
    "ServiceStartError",
    "ReadinessTimeoutError",
    "SessionError",
    "SubmitError",
    "NoChangeError",
    "PublishError",
]
