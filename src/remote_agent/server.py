"""FastMCP server bootstrap for the remote agent."""

from __future__ import annotations

import asyncio
import json
import logging
import shutil
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable
from weakref import WeakValueDictionary

from fastmcp import FastMCP

from . import __version__
from .config import RemoteAgentSettings, get_settings
from .models import TaskRef
from .orchestrator import AssistantFactory, Orchestrator
from .platforms import McpPlatformAdapter
from .storage import ChromaUnavailableError, InMemoryStore, Store, create_store
from .utils import lock_for

logger = logging.getLogger(__name__)

INVALID_ISSUE_MESSAGE = "Usage: issue_number must be a positive integer."


def configure_logging(level: str) -> None:
    """Configure root logging for the remote agent server."""

    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="[%(asctime)s] [%(levelname)s] %(name)s: %(message)s",
    )


@dataclass(slots=True)
class ServerHandles:
    send_message: Callable[..., Any]
    status: Callable[[], str]
    orchestrator: Orchestrator
    platform: McpPlatformAdapter
    store: Store


def create_server(
    settings: RemoteAgentSettings | None = None,
    *,
    store: Store | None = None,
    assistant_factory: AssistantFactory | None = None,
) -> FastMCP:
    """Instantiate the FastMCP server wired to an orchestrator."""

    settings = settings or get_settings()

    store_metadata: dict[str, Any] = {
        "backend": settings.store_backend,
        "available": True,
        "error": None,
    }
    if store is None:
        try:
            store = create_store(settings)
        except ChromaUnavailableError as exc:
            logger.warning("Chroma unavailable, using in-memory store", extra={"error": str(exc)})
            store_metadata.update({"backend": "memory", "available": False, "error": str(exc)})
            store = InMemoryStore()
    else:
        store_metadata["backend"] = type(store).__name__

    platform = McpPlatformAdapter(settings.platform_streaming_mode)
    orchestrator = Orchestrator(
        store,
        platform,
        assistant_factory=assistant_factory,
        settings=settings,
    )

    counters: dict[str, int] = {"messages": 0, "commands": 0}
    conversation_locks: WeakValueDictionary[str, asyncio.Lock] = WeakValueDictionary()

    server = FastMCP(
        name="Remote Agent",
        instructions=(
            "Routes chat messages to a coding assistant working in a cloned repository. "
            "Send slash commands such as /clone <repo-url>, /status or /reset, or plain "
            "messages for the assistant, with a stable conversation_id."
        ),
    )

    async def _send_message(
        conversation_id: str,
        message: str,
        issue_number: int | None = None,
        is_pr: bool = False,
    ) -> dict[str, Any]:
        """Handle one message and return the replies it produced."""

        task = None
        if issue_number is not None:
            if issue_number <= 0:
                return {"conversation_id": conversation_id, "replies": [INVALID_ISSUE_MESSAGE]}
            task = TaskRef(number=issue_number, is_pr=is_pr)

        async with lock_for(conversation_locks, conversation_id):
            await orchestrator.handle_message(conversation_id, message, task=task)
            replies = platform.drain(conversation_id)

        counters["commands" if message.lstrip().startswith("/") else "messages"] += 1
        return {"conversation_id": conversation_id, "replies": replies}

    def _status() -> str:
        """Return a JSON string summarizing basic runtime state."""

        payload = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "server_version": __version__,
            "log_level": settings.log_level,
            "workspace_path": str(settings.workspace_path),
            "worktree_base": settings.worktree_base,
            "default_ai_assistant": settings.default_ai_assistant,
            "streaming_mode": platform.get_streaming_mode(),
            "assistants": {
                "claude": settings.claude_path or shutil.which("claude"),
                "codex": settings.codex_path or shutil.which("codex"),
            },
            "storage": store_metadata,
            "handled": dict(counters),
        }
        return json.dumps(payload)

    server.tool(
        name="send_message",
        description=(
            "Send a chat message (or /command) for a conversation. Optionally pass an issue "
            "or pull request number to work inside that task's isolated worktree. Returns "
            "the replies produced."
        ),
    )(_send_message)

    server.resource(
        "resource://remote-agent/status",
        name="remote_agent_status",
        description="Provides the current runtime status for the remote agent server.",
        mime_type="application/json",
    )(_status)

    handles = ServerHandles(
        send_message=_send_message,
        status=_status,
        orchestrator=orchestrator,
        platform=platform,
        store=store,
    )
    setattr(server, "handles", handles)
    return server


def main() -> None:
    """Entry point for running the remote agent MCP server via CLI."""

    settings = get_settings()
    configure_logging(settings.log_level)

    server = create_server(settings)
    handles: ServerHandles = getattr(server, "handles")
    logger.info(
        "Launching remote agent MCP server",
        extra={
            "version": __version__,
            "log_level": settings.log_level,
            "store": type(handles.store).__name__,
            "streaming_mode": handles.platform.get_streaming_mode(),
        },
    )
    asyncio.run(handles.platform.start())
    server.run()


if __name__ == "__main__":
    main()
