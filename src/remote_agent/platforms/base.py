"""Platform adapter contract."""

from __future__ import annotations

from typing import Literal, Protocol

StreamingMode = Literal["stream", "batch"]


class PlatformAdapter(Protocol):
    """A chat surface the orchestrator replies through."""

    async def send_message(self, conversation_id: str, text: str) -> None:
        ...

    def get_streaming_mode(self) -> StreamingMode:
        ...

    def get_platform_type(self) -> str:
        ...

    async def start(self) -> None:
        ...

    async def stop(self) -> None:
        ...


__all__ = ["PlatformAdapter", "StreamingMode"]
