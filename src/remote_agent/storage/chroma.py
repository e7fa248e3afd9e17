"""Chroma-based persistence layer.

Entities are stored as an append-only log of snapshots; reads replay the log
and keep the latest snapshot per entity.
"""

from __future__ import annotations

import json
import uuid
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Iterable, Mapping, Protocol, TypeVar

from pydantic import BaseModel

from ..errors import SessionStateError, StoreError
from ..models import Codebase, CommandTemplate, Conversation, Session
from .base import validate_conversation_changes

ModelT = TypeVar("ModelT", bound=BaseModel)


class ChromaUnavailableError(StoreError):
    """Raised when the Chroma client cannot be constructed."""


class CollectionProtocol(Protocol):
    """Protocol for the minimal Chroma collection API used by the store."""

    def add(
        self,
        *,
        documents: Iterable[str],
        metadatas: Iterable[dict[str, Any]],
        ids: Iterable[str],
    ) -> None:
        ...

    def get(
        self,
        *,
        ids: Iterable[str] | None = None,
        where: dict[str, Any] | None = None,
        limit: int | None = None,
    ) -> dict[str, list[Any]]:
        ...


class ClientProtocol(Protocol):
    """Protocol for the minimal Chroma client API used by the store."""

    def get_or_create_collection(self, name: str) -> CollectionProtocol:
        ...


@dataclass(slots=True)
class ChromaEvent:
    """Represents a stored event in Chroma."""

    id: str
    stream_id: str
    event_type: str
    document: str
    metadata: dict[str, Any]
    timestamp: datetime


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _index_metadata(values: Mapping[str, Any]) -> dict[str, Any]:
    # Chroma metadata only accepts scalar, non-null values.
    return {
        key: value
        for key, value in values.items()
        if isinstance(value, (str, int, float, bool))
    }


class ChromaStore:
    """Store conversations, codebases and sessions in a ChromaDB collection."""

    def __init__(
        self,
        path: Path,
        *,
        collection_name: str = "remote_agent",
        client_factory: Callable[[], ClientProtocol] | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._path = Path(path)
        self._collection_name = collection_name
        self._client_factory = client_factory or self._default_client_factory
        self._clock = clock or _now
        self._client: ClientProtocol | None = None
        self._collection: CollectionProtocol | None = None
        self._counters: dict[str, int] = defaultdict(int)

    def _default_client_factory(self) -> ClientProtocol:
        try:
            import chromadb
        except ImportError as exc:  # pragma: no cover - depends on environment
            raise ChromaUnavailableError(
                "chromadb package is not installed; install remote-agent with persistence extras"
            ) from exc

        return chromadb.PersistentClient(path=str(self._path))

    def _ensure_collection(self) -> CollectionProtocol:
        if self._collection is None:
            client = self._client or self._client_factory()
            self._client = client
            self._collection = client.get_or_create_collection(self._collection_name)
        return self._collection

    def _convert_result(self, result: dict[str, list[Any]]) -> list[ChromaEvent]:
        events: list[ChromaEvent] = []
        ids = result.get("ids", [])
        documents = result.get("documents", [])
        metadatas = result.get("metadatas", [])
        for event_id, document, metadata in zip(ids, documents, metadatas):
            timestamp_raw = metadata.get("timestamp")
            timestamp = (
                datetime.fromisoformat(timestamp_raw)
                if isinstance(timestamp_raw, str)
                else self._clock()
            )
            events.append(
                ChromaEvent(
                    id=event_id,
                    stream_id=metadata.get("stream_id", ""),
                    event_type=metadata.get("event_type", ""),
                    document=document,
                    metadata=metadata,
                    timestamp=timestamp,
                )
            )
        events.sort(key=lambda event: (event.timestamp, event.metadata.get("sequence", 0)))
        return events

    def ping(self) -> bool:
        """Verify that the underlying collection can be obtained."""

        self._ensure_collection()
        return True

    def record_event(
        self,
        *,
        stream_id: str,
        event_type: str,
        body: Any,
        metadata: dict[str, Any] | None = None,
    ) -> ChromaEvent:
        collection = self._ensure_collection()
        counter = self._counters[stream_id] = self._counters[stream_id] + 1
        event_id = f"{stream_id}:{uuid.uuid4().hex}"
        timestamp = self._clock()

        document = body if isinstance(body, str) else json.dumps(body)
        record_metadata = {
            "stream_id": stream_id,
            "event_type": event_type,
            "timestamp": timestamp.isoformat(),
            "sequence": counter,
        }
        if metadata:
            record_metadata.update(_index_metadata(metadata))

        try:
            collection.add(documents=[document], metadatas=[record_metadata], ids=[event_id])
        except Exception as exc:
            raise StoreError(f"Failed to write {event_type} to Chroma: {exc}") from exc

        return ChromaEvent(
            id=event_id,
            stream_id=stream_id,
            event_type=event_type,
            document=document,
            metadata=record_metadata,
            timestamp=timestamp,
        )

    def search_events(
        self,
        *,
        filters: dict[str, Any] | None = None,
        event_type: str | None = None,
        limit: int | None = None,
    ) -> list[ChromaEvent]:
        collection = self._ensure_collection()
        try:
            result = collection.get(where=filters)
        except Exception as exc:
            raise StoreError(f"Failed to query Chroma: {exc}") from exc
        events = self._convert_result(result)
        if event_type:
            events = [event for event in events if event.event_type == event_type]
        return events[:limit] if limit else events

    # Snapshot helpers

    def _save(self, kind: str, model: BaseModel, index: Mapping[str, Any]) -> None:
        self.record_event(
            stream_id=f"{kind}::{getattr(model, 'id')}",
            event_type=f"{kind}_snapshot",
            body=model.model_dump(mode="json"),
            metadata={"entity_id": getattr(model, "id"), **index},
        )

    def _latest(self, kind: str, model_cls: type[ModelT], filters: dict[str, Any]) -> list[ModelT]:
        """Latest snapshot of each entity matching ``filters``, in creation order."""

        latest: dict[str, ChromaEvent] = {}
        for event in self.search_events(filters=filters, event_type=f"{kind}_snapshot"):
            latest[event.metadata.get("entity_id", event.stream_id)] = event
        return [model_cls.model_validate_json(event.document) for event in latest.values()]

    def _get(self, kind: str, model_cls: type[ModelT], entity_id: str) -> ModelT | None:
        matches = self._latest(kind, model_cls, {"stream_id": f"{kind}::{entity_id}"})
        return matches[-1] if matches else None

    def _require(self, kind: str, model_cls: type[ModelT], entity_id: str) -> ModelT:
        model = self._get(kind, model_cls, entity_id)
        if model is None:
            raise StoreError(f"{kind.title()} '{entity_id}' not found")
        return model

    def _save_conversation(self, conversation: Conversation) -> None:
        self._save(
            "conversation",
            conversation,
            {
                "conversation_key": f"{conversation.platform_type}::{conversation.platform_conversation_id}",
                "codebase_id": conversation.codebase_id,
            },
        )

    def _save_codebase(self, codebase: Codebase) -> None:
        self._save(
            "codebase",
            codebase,
            {"repository_url": codebase.repository_url, "name": codebase.name},
        )

    def _save_session(self, session: Session) -> None:
        self._save(
            "session",
            session,
            {"conversation_id": session.conversation_id, "active": session.active},
        )

    # Store protocol

    async def get_or_create_conversation(
        self,
        platform_type: str,
        platform_conversation_id: str,
        *,
        ai_assistant_type: str = "claude",
    ) -> Conversation:
        key = f"{platform_type}::{platform_conversation_id}"
        existing = self._latest("conversation", Conversation, {"conversation_key": key})
        if existing:
            return existing[0]
        conversation = Conversation(
            platform_type=platform_type,
            platform_conversation_id=platform_conversation_id,
            ai_assistant_type=ai_assistant_type,
        )
        self._save_conversation(conversation)
        return conversation

    async def get_conversation(self, conversation_id: str) -> Conversation | None:
        return self._get("conversation", Conversation, conversation_id)

    async def update_conversation(
        self, conversation_id: str, changes: Mapping[str, Any]
    ) -> Conversation:
        conversation = self._require("conversation", Conversation, conversation_id)
        updated = conversation.model_copy(
            update={**validate_conversation_changes(changes), "updated_at": self._clock()}
        )
        self._save_conversation(updated)
        return updated

    async def get_codebase(self, codebase_id: str) -> Codebase | None:
        return self._get("codebase", Codebase, codebase_id)

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
        self._save_codebase(codebase)
        return codebase

    async def find_codebase_by_repo_url(self, repository_url: str) -> Codebase | None:
        matches = self._latest("codebase", Codebase, {"repository_url": repository_url})
        return matches[0] if matches else None

    async def update_codebase_commands(
        self, codebase_id: str, commands: Mapping[str, CommandTemplate]
    ) -> Codebase:
        codebase = self._require("codebase", Codebase, codebase_id)
        updated = codebase.model_copy(update={"commands": dict(commands), "updated_at": self._clock()})
        self._save_codebase(updated)
        return updated

    async def list_sessions(self, conversation_id: str) -> list[Session]:
        return self._latest("session", Session, {"conversation_id": conversation_id})

    async def get_active_session(self, conversation_id: str) -> Session | None:
        active = [session for session in await self.list_sessions(conversation_id) if session.active]
        if len(active) > 1:
            raise SessionStateError(
                f"Conversation {conversation_id} has {len(active)} active sessions"
            )
        return active[0] if active else None

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
        self._save_session(session)
        return session

    async def update_session(self, session_id: str, assistant_session_id: str) -> Session:
        session = self._require("session", Session, session_id)
        updated = session.model_copy(update={"assistant_session_id": assistant_session_id})
        self._save_session(updated)
        return updated

    async def deactivate_session(self, session_id: str) -> Session:
        session = self._require("session", Session, session_id)
        updated = session.model_copy(update={"active": False, "ended_at": self._clock()})
        self._save_session(updated)
        return updated


__all__ = ["ChromaEvent", "ChromaStore", "ChromaUnavailableError"]
