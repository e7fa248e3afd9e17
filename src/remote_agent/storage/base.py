"""Persistence contract consumed by the router and orchestrator."""

from __future__ import annotations

from typing import Any, Mapping, Protocol

from ..models import Codebase, CommandTemplate, Conversation, Session

CONVERSATION_FIELDS = frozenset({"codebase_id", "cwd", "ai_assistant_type"})


class Store(Protocol):
    """Conversation, codebase and session persistence.

    Every method may raise :class:`remote_agent.errors.StoreError`; callers
    treat that as fatal for the message being handled.
    """

    async def get_or_create_conversation(
        self,
        platform_type: str,
        platform_conversation_id: str,
        *,
        ai_assistant_type: str = "claude",
    ) -> Conversation:
        ...

    async def get_conversation(self, conversation_id: str) -> Conversation | None:
        ...

    async def update_conversation(
        self, conversation_id: str, changes: Mapping[str, Any]
    ) -> Conversation:
        ...

    async def get_codebase(self, codebase_id: str) -> Codebase | None:
        ...

    async def create_codebase(
        self,
        *,
        name: str,
        default_cwd: str,
        repository_url: str | None = None,
        ai_assistant_type: str = "claude",
    ) -> Codebase:
        ...

    async def find_codebase_by_repo_url(self, repository_url: str) -> Codebase | None:
        ...

    async def update_codebase_commands(
        self, codebase_id: str, commands: Mapping[str, CommandTemplate]
    ) -> Codebase:
        ...

    async def get_active_session(self, conversation_id: str) -> Session | None:
        ...

    async def list_sessions(self, conversation_id: str) -> list[Session]:
        ...

    async def create_session(
        self,
        *,
        conversation_id: str,
        codebase_id: str | None,
        ai_assistant_type: str = "claude",
    ) -> Session:
        ...

    async def update_session(self, session_id: str, assistant_session_id: str) -> Session:
        ...

    async def deactivate_session(self, session_id: str) -> Session:
        ...


def validate_conversation_changes(changes: Mapping[str, Any]) -> dict[str, Any]:
    unknown = set(changes) - CONVERSATION_FIELDS
    if unknown:
        raise ValueError(f"Cannot update conversation fields: {sorted(unknown)}")
    return dict(changes)


__all__ = ["CONVERSATION_FIELDS", "Store", "validate_conversation_changes"]
