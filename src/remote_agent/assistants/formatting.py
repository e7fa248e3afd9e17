"""Human-readable rendering of tool invocation notices."""

from __future__ import annotations

import json
from typing import Any

from ..utils import truncate

_DETAIL_KEYS = ("command", "file_path", "path", "pattern", "query", "url", "description")
_DETAIL_LIMIT = 120


def format_tool_call(tool_name: str, tool_input: dict[str, Any] | None = None) -> str:
    """Render a tool notice as an uppercase tool name plus its most telling argument."""

    message = f"🔧 {tool_name.upper()}"
    detail = _describe(tool_input or {})
    if detail:
        message += f"\n{detail}"
    return message


def _describe(tool_input: dict[str, Any]) -> str:
    for key in _DETAIL_KEYS:
        value = tool_input.get(key)
        if isinstance(value, str) and value.strip():
            text = truncate(value.strip(), _DETAIL_LIMIT)
            return f"`{text}`" if key == "command" else text
    if tool_input:
        return truncate(json.dumps(tool_input, default=str), _DETAIL_LIMIT)
    return ""


__all__ = ["format_tool_call"]
