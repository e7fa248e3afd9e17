"""Entity models for conversations, codebases, sessions and stream events."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Literal
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid4())


class CommandTemplate(BaseModel):
    """A markdown command template registered on a codebase."""

    path: str = Field(..., description="Template path relative to the codebase working directory.")
    description: str | None = Field(default=None, description="Short human description.")


class Conversation(BaseModel):
    """Durable binding between a chat thread and assistant state."""

    id: str = Field(default_factory=_new_id)
    platform_type: str = Field(..., description="Chat surface kind, e.g. telegram or mcp.")
    platform_conversation_id: str = Field(..., description="Platform-native thread identifier.")
    codebase_id: str | None = None
    cwd: str | None = None
    ai_assistant_type: str = "claude"
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)


class Codebase(BaseModel):
    """A registered source location."""

    id: str = Field(default_factory=_new_id)
    name: str
    repository_url: str | None = None
    default_cwd: str
    ai_assistant_type: str = "claude"
    commands: dict[str, CommandTemplate] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    @field_validator("name")
    @classmethod
    def _normalize_name(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError("Codebase name must not be empty")
        return normalized


class Session(BaseModel):
    """Resumable unit of assistant state for one conversation."""

    id: str = Field(default_factory=_new_id)
    conversation_id: str
    codebase_id: str | None = None
    ai_assistant_type: str = "claude"
    assistant_session_id: str | None = Field(
        default=None, description="Opaque resume token returned by the assistant backend."
    )
    active: bool = True
    metadata: dict[str, Any] = Field(default_factory=dict)
    started_at: datetime = Field(default_factory=_utcnow)
    ended_at: datetime | None = None


class StreamEvent(BaseModel):
    """One item produced by an assistant stream."""

    type: Literal["assistant", "tool", "result"]
    content: str | None = None
    tool_name: str | None = None
    tool_input: dict[str, Any] = Field(default_factory=dict)
    session_id: str | None = None

    @classmethod
    def text(cls, content: str) -> "StreamEvent":
        return cls(type="assistant", content=content)

    @classmethod
    def tool(cls, name: str, tool_input: dict[str, Any] | None = None) -> "StreamEvent":
        return cls(type="tool", tool_name=name, tool_input=tool_input or {})

    @classmethod
    def result(cls, session_id: str | None) -> "StreamEvent":
        return cls(type="result", session_id=session_id)


class CommandResult(BaseModel):
    """Outcome of a deterministic slash command."""

    success: bool
    message: str
    modified: bool = False


class TaskRef(BaseModel):
    """Issue or pull request a message is about."""

    number: int = Field(..., gt=0)
    is_pr: bool = False

    @property
    def branch_name(self) -> str:
        return f"pr-{self.number}" if self.is_pr else f"issue-{self.number}"


__all__ = [
    "CommandResult",
    "CommandTemplate",
    "Codebase",
    "Conversation",
    "Session",
    "StreamEvent",
    "TaskRef",
]
