"""Top-level message handling: command routing, sessions and assistant streaming."""

from __future__ import annotations

import asyncio
import logging
from functools import partial
from typing import AsyncIterator, Awaitable, Callable
from weakref import WeakValueDictionary

from .assistants import AssistantClient, format_tool_call, get_assistant_client
from .commands import NO_CODEBASE_MESSAGE, CommandHandler
from .config import RemoteAgentSettings, get_settings
from .errors import SessionStateError
from .models import Codebase, Conversation, Session, StreamEvent, TaskRef
from .platforms import PlatformAdapter
from .storage import Store
from .utils import lock_for
from .workspace import WorktreeManager, get_canonical_repo_path, is_stale_worktree_cwd

logger = logging.getLogger(__name__)

ERROR_MESSAGE = "⚠️ An error occurred. Try /reset to start a fresh session."

AssistantFactory = Callable[[str], AssistantClient]


class Orchestrator:
    """Handle one inbound message per call.

    Slash commands go to the :class:`CommandHandler`; anything else is sent to
    the conversation's assistant inside its active session. Session lookup,
    creation and the assistant turn run under a per-conversation lock so a
    conversation never ends up with two active sessions.
    """

    def __init__(
        self,
        store: Store,
        platform: PlatformAdapter,
        *,
        assistant_factory: AssistantFactory | None = None,
        settings: RemoteAgentSettings | None = None,
        command_handler: CommandHandler | None = None,
        worktrees: WorktreeManager | None = None,
    ) -> None:
        self._store = store
        self._platform = platform
        self._settings = settings or get_settings()
        self._assistant_factory = assistant_factory or partial(
            get_assistant_client, settings=self._settings
        )
        self._commands = command_handler or CommandHandler(store, self._settings)
        self._worktrees = worktrees or WorktreeManager(self._settings)
        self._locks: WeakValueDictionary[str, asyncio.Lock] = WeakValueDictionary()

    @property
    def platform(self) -> PlatformAdapter:
        return self._platform

    async def handle_message(
        self,
        conversation_id: str,
        message: str,
        *,
        task: TaskRef | None = None,
    ) -> None:
        """Process ``message`` for the platform conversation ``conversation_id``.

        Failures are logged and reported to the user as a single apology; they
        never propagate to the transport.
        """

        logger.info("Handling message", extra={"conversation_id": conversation_id})
        try:
            conversation = await self._store.get_or_create_conversation(
                self._platform.get_platform_type(),
                conversation_id,
                ai_assistant_type=self._settings.default_ai_assistant,
            )

            if message.lstrip().startswith("/"):
                await self._handle_command(conversation, conversation_id, message)
                return

            await self._handle_assistant_message(conversation, conversation_id, message, task)
        except Exception:
            logger.exception(
                "Message handling failed",
                extra={"conversation_id": conversation_id, "platform": self._platform.get_platform_type()},
            )
            await self._send_error(conversation_id)

    async def _handle_command(
        self, conversation: Conversation, conversation_id: str, message: str
    ) -> Conversation:
        logger.info("Processing slash command", extra={"conversation_id": conversation_id})
        result = await self._commands.handle(conversation, message)
        await self._platform.send_message(conversation_id, result.message)

        if result.success and result.modified:
            reloaded = await self._store.get_conversation(conversation.id)
            if reloaded is None:
                raise SessionStateError(f"Conversation {conversation.id} disappeared after update")
            conversation = reloaded
        return conversation

    async def _handle_assistant_message(
        self,
        conversation: Conversation,
        conversation_id: str,
        message: str,
        task: TaskRef | None,
    ) -> None:
        if not conversation.codebase_id:
            await self._platform.send_message(conversation_id, NO_CODEBASE_MESSAGE)
            return

        codebase = await self._store.get_codebase(conversation.codebase_id)
        if codebase is None:
            raise SessionStateError(
                f"Conversation {conversation.id} references missing codebase {conversation.codebase_id}"
            )

        async with lock_for(self._locks, conversation.id):
            session = await self._resolve_session(conversation)
            cwd = await self._resolve_cwd(conversation, codebase, task)
            assistant = self._assistant_factory(conversation.ai_assistant_type)
            mode = self._platform.get_streaming_mode()
            logger.info(
                "Starting assistant turn",
                extra={
                    "conversation_id": conversation.id,
                    "session_id": session.id,
                    "cwd": cwd,
                    "streaming_mode": mode,
                },
            )

            events = assistant.send_query(message, cwd, session.assistant_session_id)
            if mode == "stream":
                await self._consume(events, session, partial(self._platform.send_message, conversation_id))
            else:
                buffer: list[str] = []

                async def collect(text: str) -> None:
                    buffer.append(text)

                await self._consume(events, session, collect)
                if buffer:
                    await self._platform.send_message(conversation_id, "\n\n".join(buffer))

        logger.info("Message handling complete", extra={"conversation_id": conversation.id})

    async def _resolve_session(self, conversation: Conversation) -> Session:
        session = await self._store.get_active_session(conversation.id)
        if session is not None:
            logger.info("Resuming session", extra={"session_id": session.id})
            return session

        session = await self._store.create_session(
            conversation_id=conversation.id,
            codebase_id=conversation.codebase_id,
            ai_assistant_type=conversation.ai_assistant_type,
        )
        logger.info(
            "Created session",
            extra={"conversation_id": conversation.id, "session_id": session.id},
        )
        return session

    async def _resolve_cwd(
        self, conversation: Conversation, codebase: Codebase, task: TaskRef | None
    ) -> str:
        if task is not None:
            repo = get_canonical_repo_path(codebase.default_cwd)
            path = await self._worktrees.ensure_worktree_for_task(repo, task)
            if conversation.cwd != path:
                await self._store.update_conversation(conversation.id, {"cwd": path})
            return path

        if conversation.cwd:
            base = self._worktrees.worktree_base(get_canonical_repo_path(codebase.default_cwd))
            if not is_stale_worktree_cwd(conversation.cwd, base):
                return conversation.cwd
            logger.warning(
                "Working directory points at a removed worktree; using codebase default",
                extra={"conversation_id": conversation.id, "cwd": conversation.cwd},
            )

        return codebase.default_cwd or self._settings.fallback_cwd

    async def _consume(
        self,
        events: AsyncIterator[StreamEvent],
        session: Session,
        emit: Callable[[str], Awaitable[None]],
    ) -> None:
        async for event in events:
            if event.type == "assistant" and event.content:
                await emit(event.content)
            elif event.type == "tool" and event.tool_name:
                await emit(format_tool_call(event.tool_name, event.tool_input))
            elif event.type == "result" and event.session_id:
                await self._store.update_session(session.id, event.session_id)

    async def _send_error(self, conversation_id: str) -> None:
        try:
            await self._platform.send_message(conversation_id, ERROR_MESSAGE)
        except Exception:
            logger.exception(
                "Failed to deliver error message", extra={"conversation_id": conversation_id}
            )


__all__ = ["ERROR_MESSAGE", "Orchestrator"]
