"""Claude Code CLI client (``--output-format stream-json``)."""

from __future__ import annotations

from typing import Any, Iterable

from ..models import StreamEvent
from .base import CliAssistantClient


class ClaudeClient(CliAssistantClient):
    """Stream responses from ``claude --print`` in the working directory."""

    executable_name = "claude"
    assistant_type = "claude"

    def build_args(self, prompt: str, resume_session_id: str | None) -> list[str]:
        args = [
            "--print",
            "--output-format",
            "stream-json",
            "--verbose",
            "--permission-mode",
            "bypassPermissions",
        ]
        if resume_session_id:
            args.extend(["--resume", resume_session_id])
        args.append(prompt)
        return args

    def translate(self, payload: dict[str, Any], state: dict[str, Any]) -> Iterable[StreamEvent]:
        kind = payload.get("type")
        if kind == "assistant":
            yield from self._assistant_blocks(payload.get("message") or {})
        elif kind == "result":
            yield StreamEvent.result(payload.get("session_id"))
        # system, user (tool results) and thinking payloads are not forwarded

    @staticmethod
    def _assistant_blocks(message: dict[str, Any]) -> Iterable[StreamEvent]:
        text_parts: list[str] = []
        for block in message.get("content") or []:
            if not isinstance(block, dict):
                continue
            if block.get("type") == "text" and block.get("text"):
                text_parts.append(block["text"])
            elif block.get("type") == "tool_use":
                if text_parts:
                    yield StreamEvent.text("".join(text_parts))
                    text_parts = []
                yield StreamEvent.tool(block.get("name", "tool"), block.get("input") or {})
        if text_parts:
            yield StreamEvent.text("".join(text_parts))


__all__ = ["ClaudeClient"]
