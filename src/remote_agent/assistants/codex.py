"""Codex CLI client (``codex exec --json``)."""

from __future__ import annotations

from typing import Any, Iterable

from ..errors import AssistantStreamError
from ..models import StreamEvent
from .base import CliAssistantClient


class CodexClient(CliAssistantClient):
    """Stream responses from ``codex exec`` in the working directory.

    The thread id announced by ``thread.started`` is the resume token; it is
    reported once the turn completes.
    """

    executable_name = "codex"
    assistant_type = "codex"

    def build_args(self, prompt: str, resume_session_id: str | None) -> list[str]:
        args = ["exec", "--json", "--skip-git-repo-check"]
        if resume_session_id:
            args.extend(["resume", resume_session_id])
        args.append(prompt)
        return args

    def translate(self, payload: dict[str, Any], state: dict[str, Any]) -> Iterable[StreamEvent]:
        kind = payload.get("type")
        if kind == "thread.started":
            state["thread_id"] = payload.get("thread_id")
        elif kind == "item.started":
            tool = self._tool_event(payload.get("item") or {})
            if tool is not None:
                yield tool
        elif kind == "item.completed":
            item = payload.get("item") or {}
            if item.get("type") == "agent_message" and item.get("text"):
                yield StreamEvent.text(item["text"])
        elif kind == "turn.completed":
            yield StreamEvent.result(state.get("thread_id"))
        elif kind in {"turn.failed", "error"}:
            error = payload.get("error") or {}
            message = error.get("message") if isinstance(error, dict) else None
            raise AssistantStreamError(message or payload.get("message") or "Codex turn failed")

    @staticmethod
    def _tool_event(item: dict[str, Any]) -> StreamEvent | None:
        item_type = item.get("type")
        if item_type == "command_execution":
            return StreamEvent.tool("Bash", {"command": item.get("command", "")})
        if item_type == "file_change":
            paths = [change.get("path") for change in item.get("changes") or [] if isinstance(change, dict)]
            return StreamEvent.tool("Edit", {"file_path": ", ".join(p for p in paths if p)})
        if item_type == "mcp_tool_call":
            arguments = item.get("arguments") or {}
            if not isinstance(arguments, dict):
                arguments = {"arguments": arguments}
            return StreamEvent.tool(item.get("tool") or "mcp", arguments)
        if item_type == "web_search":
            return StreamEvent.tool("WebSearch", {"query": item.get("query", "")})
        return None


__all__ = ["CodexClient"]
