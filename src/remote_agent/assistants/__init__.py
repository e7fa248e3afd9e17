"""Assistant CLI clients and their shared streaming contract."""

from .base import AssistantClient, CliAssistantClient, FakeAssistantClient
from .claude import ClaudeClient
from .codex import CodexClient
from .factory import get_assistant_client
from .formatting import format_tool_call

__all__ = [
    "AssistantClient",
    "ClaudeClient",
    "CliAssistantClient",
    "CodexClient",
    "FakeAssistantClient",
    "format_tool_call",
    "get_assistant_client",
]
