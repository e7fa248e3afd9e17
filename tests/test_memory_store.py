from __future__ import annotations

import asyncio

import pytest

from remote_agent.errors import SessionStateError, StoreError
from remote_agent.storage import InMemoryStore


def test_get_or_create_is_keyed_by_platform_and_thread() -> None:
    store = InMemoryStore()

    async def scenario():
        first = await store.get_or_create_conversation("telegram", "42")
        again = await store.get_or_create_conversation("telegram", "42", ai_assistant_type="codex")
        other = await store.get_or_create_conversation("github", "42")
        return first, again, other

    first, again, other = asyncio.run(scenario())

    assert first.id == again.id
    assert again.ai_assistant_type == "claude"
    assert other.id != first.id


def test_returned_models_are_copies() -> None:
    store = InMemoryStore()
    conversation = asyncio.run(store.get_or_create_conversation("test", "1"))
    conversation.cwd = "/mutated"

    assert asyncio.run(store.get_conversation(conversation.id)).cwd is None


def test_update_conversation_rejects_unknown_fields() -> None:
    store = InMemoryStore()
    conversation = asyncio.run(store.get_or_create_conversation("test", "1"))

    with pytest.raises(ValueError):
        asyncio.run(store.update_conversation(conversation.id, {"platform_type": "other"}))


def test_one_active_session_per_conversation() -> None:
    store = InMemoryStore()

    async def scenario():
        session = await store.create_session(conversation_id="c1", codebase_id=None)
        with pytest.raises(SessionStateError):
            await store.create_session(conversation_id="c1", codebase_id=None)
        await store.deactivate_session(session.id)
        replacement = await store.create_session(conversation_id="c1", codebase_id=None)
        return session, replacement

    session, replacement = asyncio.run(scenario())
    sessions = asyncio.run(store.list_sessions("c1"))

    assert [s.active for s in sessions] == [False, True]
    assert sessions[0].ended_at is not None
    assert asyncio.run(store.get_active_session("c1")).id == replacement.id


def test_missing_entities_raise_store_error() -> None:
    store = InMemoryStore()

    with pytest.raises(StoreError, match="Session 'nope' not found"):
        asyncio.run(store.update_session("nope", "token"))
    with pytest.raises(StoreError):
        asyncio.run(store.update_conversation("nope", {"cwd": "/x"}))


def test_find_codebase_by_repo_url_exact_match() -> None:
    store = InMemoryStore()
    codebase = asyncio.run(
        store.create_codebase(name="app", default_cwd="/w/app", repository_url="https://github.com/u/app")
    )

    assert asyncio.run(store.find_codebase_by_repo_url("https://github.com/u/app")).id == codebase.id
    assert asyncio.run(store.find_codebase_by_repo_url("https://github.com/u/app.git")) is None
