"""Deterministic slash-command execution.

Nothing here talks to the assistant. Every failure is turned into a failed
:class:`CommandResult`. ``modified`` is set only on success and tells the
caller to reload the conversation because its persisted state changed.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Awaitable, Callable

from ..config import RemoteAgentSettings, get_settings
from ..errors import CommandUsageError, LookupMiss, StoreError, ToolInvocationError
from ..models import Codebase, CommandResult, Conversation
from ..storage import Store
from ..workspace import GitRunner, normalize_repo_url, repo_name_from_url, repo_url_variants
from .parser import parse_command
from .templates import TemplateLoadError, detect_command_folder, load_command_templates, load_template

logger = logging.getLogger(__name__)

NO_CODEBASE_MESSAGE = "No codebase configured. Use /clone <repo-url> to get started."

HELP_TEXT = """Available Commands:
/help - Show this help message
/status - Show conversation state
/getcwd - Show current working directory
/setcwd <path> - Set working directory
/clone <repo-url> - Clone repository into the workspace
/repos - List repositories in the workspace
/commands - List registered command templates
/load-commands <folder> - Register command templates from a folder
/command-set <name> <path> - Register a single command template
/reset - Clear active session"""

CommandFn = Callable[[Conversation, list[str]], Awaitable[CommandResult]]


def _failure(message: str) -> CommandResult:
    return CommandResult(success=False, message=message)


class CommandHandler:
    """Route ``/command`` messages to their implementations."""

    def __init__(
        self,
        store: Store,
        settings: RemoteAgentSettings | None = None,
        *,
        git: GitRunner | None = None,
    ) -> None:
        self._store = store
        self._settings = settings or get_settings()
        self._git = git or GitRunner(timeout=self._settings.git_timeout)
        self._commands: dict[str, CommandFn] = {
            "help": self._help,
            "status": self._status,
            "getcwd": self._getcwd,
            "setcwd": self._setcwd,
            "clone": self._clone,
            "reset": self._reset,
            "repos": self._repos,
            "commands": self._list_commands,
            "load-commands": self._load_commands,
            "command-set": self._command_set,
        }

    @property
    def command_names(self) -> list[str]:
        return list(self._commands)

    async def handle(self, conversation: Conversation, message: str) -> CommandResult:
        parsed = parse_command(message)
        command = self._commands.get(parsed.command)
        if command is None:
            return _failure(
                f"Unknown command: /{parsed.command}\n\nType /help to see available commands."
            )

        try:
            return await command(conversation, parsed.args)
        except (CommandUsageError, LookupMiss, TemplateLoadError) as exc:
            return _failure(str(exc))
        except StoreError as exc:
            logger.exception(
                "Store failure while handling command",
                extra={"command": parsed.command, "conversation_id": conversation.id},
            )
            return _failure(f"Command failed: {exc}")
        except Exception as exc:  # never escape the router
            logger.exception(
                "Unexpected failure while handling command",
                extra={"command": parsed.command, "conversation_id": conversation.id},
            )
            return _failure(f"Command failed: {exc}")

    async def _help(self, conversation: Conversation, args: list[str]) -> CommandResult:
        return CommandResult(success=True, message=HELP_TEXT)

    async def _status(self, conversation: Conversation, args: list[str]) -> CommandResult:
        message = (
            f"Platform: {conversation.platform_type}\n"
            f"AI Assistant: {conversation.ai_assistant_type}"
        )

        codebase = (
            await self._store.get_codebase(conversation.codebase_id)
            if conversation.codebase_id
            else None
        )
        if codebase is not None:
            message += f"\n\nCodebase: {codebase.name}"
            if codebase.repository_url:
                message += f"\nRepository: {codebase.repository_url}"
        else:
            message += f"\n\n{NO_CODEBASE_MESSAGE}"

        message += f"\n\nCurrent Working Directory: {conversation.cwd or 'Not set'}"

        session = await self._store.get_active_session(conversation.id)
        if session is not None:
            message += f"\nActive Session: {session.id[:8]}..."

        return CommandResult(success=True, message=message)

    async def _getcwd(self, conversation: Conversation, args: list[str]) -> CommandResult:
        return CommandResult(
            success=True,
            message=f"Current working directory: {conversation.cwd or 'Not set'}",
        )

    async def _setcwd(self, conversation: Conversation, args: list[str]) -> CommandResult:
        if not args:
            raise CommandUsageError("Usage: /setcwd <path>")
        new_cwd = " ".join(args)
        await self._store.update_conversation(conversation.id, {"cwd": new_cwd})
        logger.info(
            "Working directory updated",
            extra={"conversation_id": conversation.id, "cwd": new_cwd},
        )
        return CommandResult(
            success=True, message=f"Working directory set to: {new_cwd}", modified=True
        )

    async def _clone(self, conversation: Conversation, args: list[str]) -> CommandResult:
        if len(args) != 1:
            raise CommandUsageError("Usage: /clone <repo-url>")

        source_url = args[0].rstrip("/")
        repository_url = normalize_repo_url(source_url)
        name = repo_name_from_url(repository_url)
        target = self._settings.workspace_path / name

        if target.exists():
            return await self._link_existing(conversation, repository_url, target)

        logger.info("Cloning repository", extra={"url": source_url, "target": str(target)})
        try:
            result = await self._git.run("clone", "--", source_url, str(target))
        except ToolInvocationError as exc:
            logger.warning("Clone failed", extra={"url": source_url, "error": str(exc)})
            return _failure(f"Failed to clone repository: {exc}")
        if not result.ok:
            error_text = result.stderr.strip() or f"git exited with code {result.returncode}"
            logger.warning("Clone failed", extra={"url": source_url, "returncode": result.returncode})
            return _failure(f"Failed to clone repository: {error_text}")

        codebase = await self._store.create_codebase(
            name=name,
            repository_url=repository_url,
            default_cwd=str(target),
            ai_assistant_type=conversation.ai_assistant_type,
        )
        session_reset = await self._deactivate_active_session(conversation)
        await self._store.update_conversation(
            conversation.id, {"codebase_id": codebase.id, "cwd": str(target)}
        )

        message = f"Repository cloned successfully!\n\nCodebase: {name}\nPath: {target}"
        message += self._link_notes(codebase, session_reset)
        message += "\n\nYou can now start asking questions about the code."
        return CommandResult(success=True, message=message, modified=True)

    async def _link_existing(
        self, conversation: Conversation, repository_url: str, target: Path
    ) -> CommandResult:
        codebase: Codebase | None = None
        for candidate in repo_url_variants(repository_url):
            codebase = await self._store.find_codebase_by_repo_url(candidate)
            if codebase is not None:
                break

        if codebase is None:
            raise LookupMiss(
                f"Directory already exists: {target}\n\n"
                "No matching codebase found in database.\n\n"
                "Options:\n"
                "- Remove the directory and re-clone\n"
                f"- Use /setcwd {target} to work in the existing directory"
            )

        session_reset = await self._deactivate_active_session(conversation)
        await self._store.update_conversation(
            conversation.id, {"codebase_id": codebase.id, "cwd": codebase.default_cwd}
        )
        logger.info(
            "Linked conversation to existing codebase",
            extra={"conversation_id": conversation.id, "codebase_id": codebase.id},
        )

        message = (
            "Repository already cloned.\n\n"
            f"Linked to existing codebase: {codebase.name}\n"
            f"Path: {codebase.default_cwd}"
        )
        message += self._link_notes(codebase, session_reset)
        return CommandResult(success=True, message=message, modified=True)

    @staticmethod
    def _link_notes(codebase: Codebase, session_reset: bool) -> str:
        notes = ""
        if session_reset:
            notes += "\n\nSession reset - starting fresh on next message."
        folder = detect_command_folder(codebase.default_cwd)
        if folder is not None:
            notes += f"\n\nFound: {folder}/\nUse /load-commands {folder} to register commands."
        return notes

    async def _deactivate_active_session(self, conversation: Conversation) -> bool:
        session = await self._store.get_active_session(conversation.id)
        if session is None:
            return False
        await self._store.deactivate_session(session.id)
        logger.info(
            "Deactivated session",
            extra={"conversation_id": conversation.id, "session_id": session.id},
        )
        return True

    async def _reset(self, conversation: Conversation, args: list[str]) -> CommandResult:
        if await self._deactivate_active_session(conversation):
            return CommandResult(
                success=True,
                message=(
                    "Session cleared. Starting fresh on next message.\n\n"
                    "Codebase configuration preserved."
                ),
            )
        return CommandResult(success=True, message="No active session to reset.")

    async def _repos(self, conversation: Conversation, args: list[str]) -> CommandResult:
        root = self._settings.workspace_path
        repos = sorted(p for p in root.iterdir() if p.is_dir()) if root.is_dir() else []
        if not repos:
            return CommandResult(success=True, message=f"No repositories found in {root}")

        current = conversation.cwd
        lines = [f"Repositories in {root}:"]
        for repo in repos:
            marker = " (current)" if current and Path(current) == repo else ""
            lines.append(f"- {repo.name}{marker}")
        return CommandResult(success=True, message="\n".join(lines))

    async def _require_codebase(self, conversation: Conversation) -> Codebase:
        codebase = (
            await self._store.get_codebase(conversation.codebase_id)
            if conversation.codebase_id
            else None
        )
        if codebase is None:
            raise CommandUsageError(NO_CODEBASE_MESSAGE)
        return codebase

    @staticmethod
    def _resolve_inside(base: Path, relative: str) -> Path:
        candidate = (base / relative).resolve()
        if not candidate.is_relative_to(base.resolve()):
            raise CommandUsageError(f"Path must stay inside the codebase: {relative}")
        return candidate

    async def _list_commands(self, conversation: Conversation, args: list[str]) -> CommandResult:
        codebase = await self._require_codebase(conversation)
        if not codebase.commands:
            return CommandResult(
                success=True,
                message="No commands registered. Use /load-commands <folder> to add some.",
            )
        lines = [f"Commands for {codebase.name}:"]
        for name, template in sorted(codebase.commands.items()):
            suffix = f" - {template.description}" if template.description else ""
            lines.append(f"- {name} ({template.path}){suffix}")
        return CommandResult(success=True, message="\n".join(lines))

    async def _load_commands(self, conversation: Conversation, args: list[str]) -> CommandResult:
        if len(args) != 1:
            raise CommandUsageError("Usage: /load-commands <folder>")
        codebase = await self._require_codebase(conversation)
        base = Path(codebase.default_cwd)
        folder = self._resolve_inside(base, args[0])

        templates = load_command_templates(folder, base.resolve())
        if not templates:
            return _failure(f"No .md command templates found in {args[0]}")

        await self._store.update_codebase_commands(codebase.id, {**codebase.commands, **templates})
        logger.info(
            "Loaded command templates",
            extra={"codebase_id": codebase.id, "count": len(templates)},
        )
        return CommandResult(
            success=True,
            message=f"Loaded {len(templates)} commands: {', '.join(sorted(templates))}",
        )

    async def _command_set(self, conversation: Conversation, args: list[str]) -> CommandResult:
        if len(args) != 2:
            raise CommandUsageError("Usage: /command-set <name> <path>")
        name, relative = args
        codebase = await self._require_codebase(conversation)
        base = Path(codebase.default_cwd)
        path = self._resolve_inside(base, relative)
        if not path.is_file():
            raise CommandUsageError(f"File not found: {relative}")

        template = load_template(path, base.resolve())
        await self._store.update_codebase_commands(codebase.id, {**codebase.commands, name: template})
        return CommandResult(success=True, message=f"Command '{name}' registered: {template.path}")


__all__ = ["CommandHandler", "HELP_TEXT", "NO_CODEBASE_MESSAGE"]
