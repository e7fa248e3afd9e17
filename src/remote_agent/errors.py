"""Exception hierarchy shared by the router, workspace manager and orchestrator."""

from __future__ import annotations

from typing import Sequence


class RemoteAgentError(RuntimeError):
    """Base class for remote agent errors."""


class CommandUsageError(RemoteAgentError):
    """Raised when a slash command is missing or given invalid arguments."""


class LookupMiss(RemoteAgentError):
    """Raised when no registered codebase matches a repository URL."""


class ToolInvocationError(RemoteAgentError):
    """Raised when an external tool (git) exits unsuccessfully."""

    def __init__(
        self,
        message: str,
        *,
        args: Sequence[str] = (),
        returncode: int | None = None,
        stderr: str = "",
    ) -> None:
        super().__init__(message)
        self.command = tuple(args)
        self.returncode = returncode
        self.stderr = stderr


class ToolTimeoutError(ToolInvocationError):
    """Raised when an external tool does not finish within its timeout."""


class DirtyWorkspaceError(ToolInvocationError):
    """Raised when git refuses to remove a worktree with local changes."""


class StoreError(RemoteAgentError):
    """Raised when a persistence operation fails."""


class SessionStateError(StoreError):
    """Raised when stored session state violates the one-active-session rule."""


class AssistantStreamError(RemoteAgentError):
    """Raised when the assistant process fails or emits an unusable stream."""


class AssistantNotFoundError(AssistantStreamError):
    """Raised when the assistant CLI executable cannot be located."""


__all__ = [
    "AssistantNotFoundError",
    "AssistantStreamError",
    "CommandUsageError",
    "DirtyWorkspaceError",
    "LookupMiss",
    "RemoteAgentError",
    "SessionStateError",
    "StoreError",
    "ToolInvocationError",
    "ToolTimeoutError",
]
