"""Platform adapter for replies returned through MCP tool calls."""

from __future__ import annotations

import logging
from collections import defaultdict

from .base import StreamingMode

logger = logging.getLogger(__name__)


class McpPlatformAdapter:
    """Collects outbound messages per conversation until the tool call drains them.

    MCP tool calls return a single payload, so ``batch`` is the natural mode;
    ``stream`` still works and yields one entry per forwarded event.
    """

    def __init__(self, streaming_mode: StreamingMode = "batch", *, platform_type: str = "mcp") -> None:
        if streaming_mode not in ("stream", "batch"):
            raise ValueError("streaming_mode must be 'stream' or 'batch'")
        self._streaming_mode: StreamingMode = streaming_mode
        self._platform_type = platform_type
        self._outbox: defaultdict[str, list[str]] = defaultdict(list)
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    async def send_message(self, conversation_id: str, text: str) -> None:
        self._outbox[conversation_id].append(text)
        logger.debug(
            "Queued outbound message",
            extra={"conversation_id": conversation_id, "length": len(text)},
        )

    def get_streaming_mode(self) -> StreamingMode:
        return self._streaming_mode

    def get_platform_type(self) -> str:
        return self._platform_type

    def pending(self, conversation_id: str) -> list[str]:
        return list(self._outbox.get(conversation_id, []))

    def drain(self, conversation_id: str) -> list[str]:
        """Return and clear the messages queued for ``conversation_id``."""

        return self._outbox.pop(conversation_id, [])

    async def start(self) -> None:
        self._running = True
        logger.info("MCP platform adapter started", extra={"streaming_mode": self._streaming_mode})

    async def stop(self) -> None:
        self._running = False
        self._outbox.clear()


__all__ = ["McpPlatformAdapter"]
