from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from remote_agent.assistants import (
    ClaudeClient,
    CliAssistantClient,
    CodexClient,
    FakeAssistantClient,
    format_tool_call,
    get_assistant_client,
)
from remote_agent.errors import AssistantNotFoundError, AssistantStreamError
from remote_agent.models import StreamEvent


def _script(tmp_path: Path, name: str, body: str) -> Path:
    script = tmp_path / name
    script.write_text(f"#!/bin/sh\n{body}\n", encoding="utf-8")
    script.chmod(0o755)
    return script


async def _collect(client, prompt: str, cwd: Path, resume: str | None = None) -> list[StreamEvent]:
    return [event async for event in client.send_query(prompt, str(cwd), resume)]


CLAUDE_OUTPUT = """echo "$@" > "$(dirname "$0")/args.txt"
echo 'warming up'
echo '{"type":"system","subtype":"init","session_id":"sess-1"}'
echo '{"type":"assistant","message":{"content":[{"type":"text","text":"Looking"},{"type":"tool_use","name":"Bash","input":{"command":"ls"}},{"type":"text","text":"Done"}]}}'
echo '{"type":"user","message":{"content":[{"type":"tool_result","content":"a.py"}]}}'
echo '{"type":"result","subtype":"success","session_id":"sess-1"}'"""


def test_claude_client_streams_events(tmp_path: Path) -> None:
    client = ClaudeClient(_script(tmp_path, "claude", CLAUDE_OUTPUT))

    events = asyncio.run(_collect(client, "list files", tmp_path))

    assert events == [
        StreamEvent.text("Looking"),
        StreamEvent.tool("Bash", {"command": "ls"}),
        StreamEvent.text("Done"),
        StreamEvent.result("sess-1"),
    ]
    args = (tmp_path / "args.txt").read_text(encoding="utf-8").split()
    assert args[:6] == ["--print", "--output-format", "stream-json", "--verbose", "--permission-mode", "bypassPermissions"]
    assert args[-2:] == ["list", "files"]


def test_claude_client_passes_resume_token(tmp_path: Path) -> None:
    client = ClaudeClient(_script(tmp_path, "claude", CLAUDE_OUTPUT))

    asyncio.run(_collect(client, "continue", tmp_path, "sess-1"))

    args = (tmp_path / "args.txt").read_text(encoding="utf-8").split()
    assert args[-3:] == ["--resume", "sess-1", "continue"]


def test_nonzero_exit_raises(tmp_path: Path) -> None:
    client = ClaudeClient(_script(tmp_path, "claude", "echo 'auth failed' >&2\nexit 2"))

    with pytest.raises(AssistantStreamError) as excinfo:
        asyncio.run(_collect(client, "hi", tmp_path))

    assert "exited with code 2" in str(excinfo.value)
    assert "auth failed" in str(excinfo.value)


def test_timeout_raises(tmp_path: Path) -> None:
    client = ClaudeClient(_script(tmp_path, "claude", "exec sleep 5"), timeout=0.2)

    with pytest.raises(AssistantStreamError) as excinfo:
        asyncio.run(_collect(client, "hi", tmp_path))

    assert "did not finish" in str(excinfo.value)


def test_early_stop_lets_process_finish(tmp_path: Path) -> None:
    body = (
        "echo '{\"type\":\"assistant\",\"message\":{\"content\":[{\"type\":\"text\",\"text\":\"first\"}]}}'\n"
        "sleep 0.2\n"
        "echo '{\"type\":\"result\",\"session_id\":\"s\"}'\n"
        "touch \"$(dirname \"$0\")/finished\""
    )
    client = ClaudeClient(_script(tmp_path, "claude", body))

    async def scenario() -> StreamEvent:
        stream = client.send_query("hi", str(tmp_path))
        first = await stream.__anext__()
        await stream.aclose()
        await asyncio.gather(*list(CliAssistantClient._background))
        return first

    assert asyncio.run(scenario()) == StreamEvent.text("first")
    assert (tmp_path / "finished").exists()


def test_missing_executable(tmp_path: Path) -> None:
    with pytest.raises(AssistantNotFoundError):
        ClaudeClient(tmp_path / "missing")


def test_codex_translation(tmp_path: Path) -> None:
    body = "\n".join(
        [
            "echo '{\"type\":\"thread.started\",\"thread_id\":\"thread-9\"}'",
            "echo '{\"type\":\"turn.started\"}'",
            "echo '{\"type\":\"item.started\",\"item\":{\"type\":\"command_execution\",\"command\":\"pytest -q\"}}'",
            "echo '{\"type\":\"item.started\",\"item\":{\"type\":\"reasoning\"}}'",
            "echo '{\"type\":\"item.completed\",\"item\":{\"type\":\"agent_message\",\"text\":\"All green\"}}'",
            "echo '{\"type\":\"turn.completed\",\"usage\":{}}'",
        ]
    )
    client = CodexClient(_script(tmp_path, "codex", body))

    events = asyncio.run(_collect(client, "run tests", tmp_path))

    assert events == [
        StreamEvent.tool("Bash", {"command": "pytest -q"}),
        StreamEvent.text("All green"),
        StreamEvent.result("thread-9"),
    ]


def test_codex_build_args(tmp_path: Path) -> None:
    client = CodexClient(_script(tmp_path, "codex", "true"))

    assert client.build_args("fix it", None) == ["exec", "--json", "--skip-git-repo-check", "fix it"]
    assert client.build_args("more", "thread-9") == [
        "exec",
        "--json",
        "--skip-git-repo-check",
        "resume",
        "thread-9",
        "more",
    ]


def test_codex_failed_turn_raises(tmp_path: Path) -> None:
    client = CodexClient(_script(tmp_path, "codex", "true"))

    with pytest.raises(AssistantStreamError, match="rate limited"):
        list(client.translate({"type": "turn.failed", "error": {"message": "rate limited"}}, {}))


def test_factory_selects_client(settings, tmp_path: Path) -> None:
    settings.claude_path = str(_script(tmp_path, "claude", "true"))
    settings.codex_path = str(_script(tmp_path, "codex", "true"))

    first = get_assistant_client("claude", settings)
    second = get_assistant_client("claude", settings)

    assert isinstance(first, ClaudeClient)
    assert first is not second
    assert isinstance(get_assistant_client("codex", settings), CodexClient)
    assert get_assistant_client("codex", settings).get_type() == "codex"


@pytest.mark.parametrize("assistant_type", ["gpt", "Claude", ""])
def test_factory_rejects_unknown_type(settings, assistant_type: str) -> None:
    with pytest.raises(ValueError) as excinfo:
        get_assistant_client(assistant_type, settings)

    assert str(excinfo.value) == (
        f"Unknown assistant type: {assistant_type}. Supported types: 'claude', 'codex'"
    )


def test_format_tool_call() -> None:
    assert format_tool_call("Bash", {"command": "npm test"}) == "🔧 BASH\n`npm test`"
    assert format_tool_call("Read", {"file_path": "src/app.py", "limit": 10}) == "🔧 READ\nsrc/app.py"
    assert format_tool_call("TodoWrite") == "🔧 TODOWRITE"
    assert format_tool_call("Custom", {"n": 1}) == '🔧 CUSTOM\n{"n": 1}'

    long_command = "echo " + "x" * 300
    rendered = format_tool_call("Bash", {"command": long_command})
    assert rendered.endswith("...`")
    assert len(rendered.splitlines()[1]) == 122


def test_fake_assistant_records_calls() -> None:
    fake = FakeAssistantClient([StreamEvent.text("hi"), RuntimeError("boom")])

    async def scenario() -> list[StreamEvent]:
        received = []
        with pytest.raises(RuntimeError):
            async for event in fake.send_query("prompt", "/repo", "resume-1"):
                received.append(event)
        return received

    assert asyncio.run(scenario()) == [StreamEvent.text("hi")]
    assert fake.calls == [{"prompt": "prompt", "cwd": "/repo", "resume_session_id": "resume-1"}]
