"""In-process store, used for development and tests."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Mapping

from ..errors import SessionStateError, StoreError
from ..models import Codebase, CommandTemplate, Conversation, Session
from .base import validate_conversation_changes


def _now() -> datetime:
    return datetime.now(timezone.utc)


class InMemoryStore:
    """Dictionary-backed implementation of :class:`~remote_agent.storage.base.Store`.

    Returned models are copies, so callers see persisted state only after a
    reload, the same as with a database-backed store.
    """

    def __init__(self) -> None:
        self.conversations: dict[str, Conversation] = {}
        self.codebases: dict[str, Codebase] = {}
        self.sessions: dict[str, Session] = {}

    async def get_or_create_conversation(
        self,
        platform_type: str,
        platform_conversation_id: str,
        *,
        ai_assistant_type: str = "claude",
    ) -> Conversation:
        for conversation in self.conversations.values():
            if (
                conversation.platform_type == platform_type
                and conversation.platform_conversation_id == platform_conversation_id
            ):
                return conversation.model_copy(deep=True)

        conversation = Conversation(
            platform_type=platform_type,
            platform_conversation_id=platform_conversation_id,
            ai_assistant_type=ai_assistant_type,
        )
        self.conversations[conversation.id] = conversation
        return conversation.model_copy(deep=True)

    async def get_conversation(self, conversation_id: str) -> Conversation | None:
        conversation = self.conversations.get(conversation_id)
        return conversation.model_copy(deep=True) if conversation else None

    async def update_conversation(
        self, conversation_id: str, changes: Mapping[str, Any]
    ) -> Conversation:
        conversation = self._require(self.conversations, conversation_id, "Conversation")
        updated = conversation.model_copy(
            update={**validate_conversation_changes(changes), "updated_at": _now()}
        )
        self.conversations[conversation_id] = updated
        return updated.model_copy(deep=True)

    async def get_codebase(self, codebase_id: str) -> Codebase | None:
        codebase = self.codebases.get(codebase_id)
        return codebase.model_copy(deep=True) if codebase else None

    async def create_codebase(
        self,
        *,
        name: str,
        default_cwd: str,
        repository_url: str | None = None,
        ai_assistant_type: str = "claude",
    ) -> Codebase:
        codebase = Codebase(
            name=name,
            default_cwd=default_cwd,
            repository_url=repository_url,
            ai_assistant_type=ai_assistant_type,
        )
        self.codebases[codebase.id] = codebase
        return codebase.model_copy(deep=True)

    async def find_codebase_by_repo_url(self, repository_url: str) -> Codebase | None:
        for codebase in self.codebases.values():
            if codebase.repository_url == repository_url:
                return codebase.model_copy(deep=True)
        return None

    async def update_codebase_commands(
        self, codebase_id: str, commands: Mapping[str, CommandTemplate]
    ) -> Codebase:
        codebase = self._require(self.codebases, codebase_id, "Codebase")
        updated = codebase.model_copy(update={"commands": dict(commands), "updated_at": _now()})
        self.codebases[codebase_id] = updated
        return updated.model_copy(deep=True)

    async def get_active_session(self, conversation_id: str) -> Session | None:
        active = [
            session
            for session in self.sessions.values()
            if session.conversation_id == conversation_id and session.active
        ]
        if len(active) > 1:
            raise SessionStateError(
                f"Conversation {conversation_id} has {len(active)} active sessions"
            )
        return active[0].model_copy(deep=True) if active else None

    async def list_sessions(self, conversation_id: str) -> list[Session]:
        return [
            session.model_copy(deep=True)
            for session in self.sessions.values()
            if session.conversation_id == conversation_id
        ]

    async def create_session(
        self,
        *,
        conversation_id: str,
        codebase_id: str | None,
        ai_assistant_type: str = "claude",
    ) -> Session:
        if await self.get_active_session(conversation_id) is not None:
            raise SessionStateError(
                f"Conversation {conversation_id} already has an active session"
            )
        session = Session(
            conversation_id=conversation_id,
            codebase_id=codebase_id,
            ai_assistant_type=ai_assistant_type,
        )
        self.sessions[session.id] = session
        return session.model_copy(deep=True)

    async def update_session(self, session_id: str, assistant_session_id: str) -> Session:
        session = self._require(self.sessions, session_id, "Session")
        updated = session.model_copy(update={"assistant_session_id": assistant_session_id})
        self.sessions[session_id] = updated
        return updated.model_copy(deep=True)

    async def deactivate_session(self, session_id: str) -> Session:
        session = self._require(self.sessions, session_id, "Session")
        updated = session.model_copy(update={"active": False, "ended_at": _now()})
        self.sessions[session_id] = updated
        return updated.model_copy(deep=True)

    @staticmethod
    def _require(table: dict, key: str, kind: str):
        try:
            return table[key]
        except KeyError as exc:
            raise StoreError(f"{kind} '{key}' not found") from exc


__all__ = ["InMemoryStore"]
