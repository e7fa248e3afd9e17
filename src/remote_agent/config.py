"""Configuration management for the remote agent."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

SUPPORTED_ASSISTANTS = ("claude", "codex")
STREAMING_MODES = ("stream", "batch")
STORE_BACKENDS = ("memory", "chroma")


class RemoteAgentSettings(BaseSettings):
    """Runtime configuration sourced from environment variables and optional .env file."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    workspace_path: Path = Field(default=Path("/workspace"), validation_alias="WORKSPACE_PATH")
    fallback_cwd: str = Field(default="/workspace", validation_alias="FALLBACK_CWD")
    worktree_base: str | None = Field(default=None, validation_alias="WORKTREE_BASE")
    default_ai_assistant: str = Field(default="claude", validation_alias="DEFAULT_AI_ASSISTANT")
    platform_streaming_mode: str = Field(default="batch", validation_alias="MCP_STREAMING_MODE")
    git_timeout: float = Field(default=30.0, validation_alias="GIT_TIMEOUT_SECONDS")
    assistant_timeout: float = Field(default=900.0, validation_alias="ASSISTANT_TIMEOUT_SECONDS")
    claude_path: str | None = Field(default=None, validation_alias="CLAUDE_PATH")
    codex_path: str | None = Field(default=None, validation_alias="CODEX_PATH")
    store_backend: str = Field(default="memory", validation_alias="REMOTE_AGENT_STORE")
    chroma_persist_path: Path = Field(
        default=Path("./storage/chroma"), validation_alias="CHROMA_PERSIST_PATH"
    )
    log_level: str = Field(default="INFO", validation_alias="REMOTE_AGENT_LOG_LEVEL")

    @field_validator("log_level")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        normalized = value.strip().upper()
        if normalized not in {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}:
            raise ValueError(
                "REMOTE_AGENT_LOG_LEVEL must be one of CRITICAL, ERROR, WARNING, INFO, DEBUG"
            )
        return normalized

    @field_validator("default_ai_assistant")
    @classmethod
    def _validate_assistant(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in SUPPORTED_ASSISTANTS:
            raise ValueError("DEFAULT_AI_ASSISTANT must be 'claude' or 'codex'")
        return normalized

    @field_validator("platform_streaming_mode")
    @classmethod
    def _validate_streaming_mode(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in STREAMING_MODES:
            raise ValueError("MCP_STREAMING_MODE must be 'stream' or 'batch'")
        return normalized

    @field_validator("store_backend")
    @classmethod
    def _validate_store_backend(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in STORE_BACKENDS:
            raise ValueError("REMOTE_AGENT_STORE must be 'memory' or 'chroma'")
        return normalized

    @field_validator("worktree_base", mode="before")
    @classmethod
    def _blank_worktree_base(cls, value):
        if value is None or (isinstance(value, str) and not value.strip()):
            return None
        return value

    @field_validator("git_timeout", "assistant_timeout")
    @classmethod
    def _validate_timeout(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("Timeouts must be > 0 seconds")
        return value


@lru_cache(maxsize=1)
def get_settings() -> RemoteAgentSettings:
    """Return cached settings instance."""

    settings = RemoteAgentSettings()
    settings.workspace_path = settings.workspace_path.expanduser().resolve()
    settings.chroma_persist_path = settings.chroma_persist_path.expanduser().resolve()
    return settings


__all__ = ["RemoteAgentSettings", "get_settings", "SUPPORTED_ASSISTANTS", "STREAMING_MODES"]
