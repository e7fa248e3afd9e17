from __future__ import annotations

from pathlib import Path

import pytest

from remote_agent.config import RemoteAgentSettings
from remote_agent.storage import InMemoryStore
from remote_agent.workspace import FakeGitRunner


@pytest.fixture
def settings(tmp_path: Path) -> RemoteAgentSettings:
    workspace = tmp_path / "workspace"
    workspace.mkdir()
    settings = RemoteAgentSettings()
    settings.workspace_path = workspace
    settings.fallback_cwd = str(workspace)
    settings.worktree_base = None
    settings.default_ai_assistant = "claude"
    settings.platform_streaming_mode = "batch"
    settings.git_timeout = 5.0
    settings.store_backend = "memory"
    return settings


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def fake_git() -> FakeGitRunner:
    return FakeGitRunner()
