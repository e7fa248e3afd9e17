from __future__ import annotations

import asyncio
import gc
import logging
from pathlib import Path

from remote_agent.assistants import FakeAssistantClient
from remote_agent.commands import NO_CODEBASE_MESSAGE, CommandHandler
from remote_agent.errors import AssistantStreamError, StoreError
from remote_agent.models import StreamEvent, TaskRef
from remote_agent.orchestrator import ERROR_MESSAGE, Orchestrator
from remote_agent.platforms import McpPlatformAdapter
from remote_agent.storage import InMemoryStore
from remote_agent.workspace import FakeGitRunner, WorktreeManager

THREAD = "chat-1"


class RecordingFactory:
    def __init__(self, *clients: FakeAssistantClient) -> None:
        self._clients = list(clients)
        self.requested: list[str] = []

    def __call__(self, assistant_type: str) -> FakeAssistantClient:
        self.requested.append(assistant_type)
        return self._clients.pop(0) if len(self._clients) > 1 else self._clients[0]


def _build(settings, store, factory, *, mode: str = "batch", git: FakeGitRunner | None = None):
    git = git or FakeGitRunner()
    platform = McpPlatformAdapter(mode)
    orchestrator = Orchestrator(
        store,
        platform,
        assistant_factory=factory,
        settings=settings,
        command_handler=CommandHandler(store, settings, git=git),
        worktrees=WorktreeManager(settings, git=git),
    )
    return orchestrator, platform


def _link_codebase(store: InMemoryStore, cwd: Path, *, conversation_cwd: str | None = None):
    async def scenario():
        conversation = await store.get_or_create_conversation("mcp", THREAD)
        codebase = await store.create_codebase(name="app", default_cwd=str(cwd))
        await store.update_conversation(
            conversation.id, {"codebase_id": codebase.id, "cwd": conversation_cwd or str(cwd)}
        )
        return conversation.id, codebase

    return asyncio.run(scenario())


def _turn_events() -> list[StreamEvent]:
    return [
        StreamEvent.text("Looking at the tests"),
        StreamEvent.tool("Bash", {"command": "pytest"}),
        StreamEvent.text("All passing"),
        StreamEvent.result("assistant-session-1"),
    ]


def test_message_without_codebase(settings, store) -> None:
    factory = RecordingFactory(FakeAssistantClient(_turn_events()))
    orchestrator, platform = _build(settings, store, factory)

    asyncio.run(orchestrator.handle_message(THREAD, "hello"))

    assert platform.drain(THREAD) == [NO_CODEBASE_MESSAGE]
    assert factory.requested == []
    assert store.sessions == {}


def test_batch_mode_sends_one_message(settings, store, tmp_path: Path) -> None:
    fake = FakeAssistantClient(_turn_events())
    factory = RecordingFactory(fake)
    orchestrator, platform = _build(settings, store, factory)
    conversation_id, _ = _link_codebase(store, tmp_path)

    asyncio.run(orchestrator.handle_message(THREAD, "run the tests"))

    assert platform.drain(THREAD) == [
        "Looking at the tests\n\n🔧 BASH\n`pytest`\n\nAll passing"
    ]
    assert factory.requested == ["claude"]
    assert fake.calls == [{"prompt": "run the tests", "cwd": str(tmp_path), "resume_session_id": None}]
    session = asyncio.run(store.get_active_session(conversation_id))
    assert session.assistant_session_id == "assistant-session-1"


def test_stream_mode_sends_each_event(settings, store, tmp_path: Path) -> None:
    orchestrator, platform = _build(
        settings, store, RecordingFactory(FakeAssistantClient(_turn_events())), mode="stream"
    )
    _link_codebase(store, tmp_path)

    asyncio.run(orchestrator.handle_message(THREAD, "run the tests"))

    assert platform.drain(THREAD) == ["Looking at the tests", "🔧 BASH\n`pytest`", "All passing"]


def test_second_message_resumes_session(settings, store, tmp_path: Path) -> None:
    first = FakeAssistantClient(_turn_events())
    second = FakeAssistantClient([StreamEvent.text("Continuing"), StreamEvent.result("assistant-session-2")])
    orchestrator, platform = _build(settings, store, RecordingFactory(first, second))
    conversation_id, _ = _link_codebase(store, tmp_path)

    async def scenario() -> None:
        await orchestrator.handle_message(THREAD, "start")
        await orchestrator.handle_message(THREAD, "continue")

    asyncio.run(scenario())

    assert second.calls[0]["resume_session_id"] == "assistant-session-1"
    sessions = asyncio.run(store.list_sessions(conversation_id))
    assert len(sessions) == 1
    assert sessions[0].assistant_session_id == "assistant-session-2"


def test_stream_failure_sends_single_apology(settings, store, tmp_path: Path) -> None:
    fake = FakeAssistantClient([StreamEvent.text("partial"), AssistantStreamError("claude exited with code 1")])
    orchestrator, platform = _build(settings, store, RecordingFactory(fake), mode="stream")
    _link_codebase(store, tmp_path)

    asyncio.run(orchestrator.handle_message(THREAD, "hi"))

    assert platform.drain(THREAD) == ["partial", ERROR_MESSAGE]


def test_batch_failure_discards_buffer(settings, store, tmp_path: Path) -> None:
    fake = FakeAssistantClient([StreamEvent.text("partial"), AssistantStreamError("claude exited with code 1")])
    orchestrator, platform = _build(settings, store, RecordingFactory(fake))
    _link_codebase(store, tmp_path)

    asyncio.run(orchestrator.handle_message(THREAD, "hi"))

    assert platform.drain(THREAD) == [ERROR_MESSAGE]


def test_unknown_assistant_type_reports_error(settings, store, tmp_path: Path) -> None:
    def factory(assistant_type: str):
        raise ValueError(f"Unknown assistant type: {assistant_type}. Supported types: 'claude', 'codex'")

    orchestrator, platform = _build(settings, store, factory)
    _link_codebase(store, tmp_path)

    asyncio.run(orchestrator.handle_message(THREAD, "hi"))

    assert platform.drain(THREAD) == [ERROR_MESSAGE]


def test_commands_are_routed(settings, store) -> None:
    factory = RecordingFactory(FakeAssistantClient(_turn_events()))
    orchestrator, platform = _build(settings, store, factory)

    async def scenario() -> None:
        await orchestrator.handle_message(THREAD, "/setcwd /srv/app")
        await orchestrator.handle_message(THREAD, "  /getcwd")

    asyncio.run(scenario())

    assert platform.drain(THREAD) == [
        "Working directory set to: /srv/app",
        "Current working directory: /srv/app",
    ]
    assert factory.requested == []


def test_concurrent_messages_share_one_session(settings, store, tmp_path: Path) -> None:
    class SlowAssistant(FakeAssistantClient):
        async def send_query(self, prompt, cwd, resume_session_id=None):
            await asyncio.sleep(0.05)
            async for event in super().send_query(prompt, cwd, resume_session_id):
                yield event

    slow = SlowAssistant([StreamEvent.text("ok"), StreamEvent.result("assistant-session-1")])
    orchestrator, platform = _build(settings, store, RecordingFactory(slow))
    conversation_id, _ = _link_codebase(store, tmp_path)

    async def scenario() -> None:
        await asyncio.gather(
            orchestrator.handle_message(THREAD, "one"),
            orchestrator.handle_message(THREAD, "two"),
        )

    asyncio.run(scenario())

    assert len(asyncio.run(store.list_sessions(conversation_id))) == 1
    assert platform.drain(THREAD) == ["ok", "ok"]
    assert [call["resume_session_id"] for call in slow.calls] == [None, "assistant-session-1"]


def test_task_runs_in_its_worktree(settings, store, tmp_path: Path) -> None:
    repo = tmp_path / "app"
    (repo / ".git").mkdir(parents=True)
    git = FakeGitRunner()
    fake = FakeAssistantClient(_turn_events())
    orchestrator, platform = _build(settings, store, RecordingFactory(fake), git=git)
    conversation_id, _ = _link_codebase(store, repo)

    asyncio.run(orchestrator.handle_message(THREAD, "fix it", task=TaskRef(number=5)))

    expected = str(tmp_path / "worktrees" / "issue-5")
    assert fake.calls[0]["cwd"] == expected
    assert ("-C", str(repo), "worktree", "add", expected, "-b", "issue-5") in git.invocations
    assert asyncio.run(store.get_conversation(conversation_id)).cwd == expected


def test_stale_worktree_cwd_falls_back_to_codebase(settings, store, tmp_path: Path) -> None:
    repo = tmp_path / "app"
    repo.mkdir()
    fake = FakeAssistantClient(_turn_events())
    orchestrator, _ = _build(settings, store, RecordingFactory(fake))
    _link_codebase(store, repo, conversation_cwd=str(tmp_path / "worktrees" / "issue-1"))

    asyncio.run(orchestrator.handle_message(THREAD, "hi"))

    assert fake.calls[0]["cwd"] == str(repo)


def test_delivery_failure_is_contained(settings, store) -> None:
    class BrokenPlatform(McpPlatformAdapter):
        async def send_message(self, conversation_id: str, text: str) -> None:
            raise ConnectionError("platform offline")

    orchestrator = Orchestrator(
        store,
        BrokenPlatform(),
        assistant_factory=RecordingFactory(FakeAssistantClient()),
        settings=settings,
        command_handler=CommandHandler(store, settings, git=FakeGitRunner()),
        worktrees=WorktreeManager(settings, git=FakeGitRunner()),
    )

    asyncio.run(orchestrator.handle_message(THREAD, "/help"))


def test_failure_is_logged_with_context(settings, store, tmp_path: Path, caplog) -> None:
    caplog.set_level(logging.ERROR, logger="remote_agent.orchestrator")
    fake = FakeAssistantClient([AssistantStreamError("codex exited with code 1")])
    orchestrator, _ = _build(settings, store, RecordingFactory(fake))
    _link_codebase(store, tmp_path)

    asyncio.run(orchestrator.handle_message(THREAD, "hi"))

    records = [record for record in caplog.records if record.getMessage() == "Message handling failed"]
    assert len(records) == 1
    assert records[0].conversation_id == THREAD
    assert records[0].exc_info is not None


def test_cwd_override_under_unrelated_worktrees_directory(settings, store, tmp_path: Path) -> None:
    repo = tmp_path / "app"
    repo.mkdir()
    notes = tmp_path / "projects" / "worktrees" / "notes"
    notes.mkdir(parents=True)
    fake = FakeAssistantClient(_turn_events())
    orchestrator, _ = _build(settings, store, RecordingFactory(fake))
    _link_codebase(store, repo, conversation_cwd=str(notes))

    asyncio.run(orchestrator.handle_message(THREAD, "hi"))

    assert fake.calls[0]["cwd"] == str(notes)


def test_cwd_inside_live_worktree_is_kept(settings, store, tmp_path: Path) -> None:
    repo = tmp_path / "app"
    (repo / ".git").mkdir(parents=True)
    worktree = tmp_path / "worktrees" / "issue-1"
    (worktree / "src").mkdir(parents=True)
    (worktree / ".git").write_text(f"gitdir: {repo}/.git/worktrees/issue-1\n")
    fake = FakeAssistantClient(_turn_events())
    orchestrator, _ = _build(settings, store, RecordingFactory(fake))
    _link_codebase(store, repo, conversation_cwd=str(worktree / "src"))

    asyncio.run(orchestrator.handle_message(THREAD, "hi"))

    assert fake.calls[0]["cwd"] == str(worktree / "src")


def test_command_store_failure_sends_one_reply(settings, tmp_path: Path) -> None:
    class BrokenStore(InMemoryStore):
        async def update_conversation(self, conversation_id, changes):
            raise StoreError("database is locked")

        async def get_conversation(self, conversation_id):
            raise StoreError("database is locked")

    store = BrokenStore()
    orchestrator, platform = _build(settings, store, RecordingFactory(FakeAssistantClient()))

    asyncio.run(orchestrator.handle_message(THREAD, f"/setcwd {tmp_path}"))

    assert platform.drain(THREAD) == ["Command failed: database is locked"]


def test_conversation_locks_are_released_when_idle(settings, store, tmp_path: Path) -> None:
    orchestrator, platform = _build(settings, store, RecordingFactory(FakeAssistantClient(_turn_events())))
    _link_codebase(store, tmp_path)

    asyncio.run(orchestrator.handle_message(THREAD, "hi"))
    gc.collect()

    assert platform.drain(THREAD)
    assert len(orchestrator._locks) == 0
