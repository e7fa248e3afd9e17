"""Platform adapters."""

from .base import PlatformAdapter, StreamingMode
from .mcp import McpPlatformAdapter

__all__ = ["McpPlatformAdapter", "PlatformAdapter", "StreamingMode"]
