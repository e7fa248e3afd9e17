"""Assistant client selection by configured type."""

from __future__ import annotations

from pathlib import Path

from ..config import RemoteAgentSettings, get_settings
from .base import AssistantClient
from .claude import ClaudeClient
from .codex import CodexClient


def get_assistant_client(
    assistant_type: str, settings: RemoteAgentSettings | None = None
) -> AssistantClient:
    """Return a new client for ``assistant_type`` (case sensitive)."""

    settings = settings or get_settings()
    if assistant_type == "claude":
        return ClaudeClient(
            Path(settings.claude_path) if settings.claude_path else None,
            timeout=settings.assistant_timeout,
        )
    if assistant_type == "codex":
        return CodexClient(
            Path(settings.codex_path) if settings.codex_path else None,
            timeout=settings.assistant_timeout,
        )
    raise ValueError(
        f"Unknown assistant type: {assistant_type}. Supported types: 'claude', 'codex'"
    )


__all__ = ["get_assistant_client"]
