"""Workspace isolation: git invocation, worktrees and repository URLs."""

from .git import FakeGitRunner, GitResult, GitRunner
from .repo_url import normalize_repo_url, repo_name_from_url, repo_url_variants
from .worktrees import (
    WorktreeInfo,
    WorktreeManager,
    get_canonical_repo_path,
    get_worktree_base,
    is_stale_worktree_cwd,
    is_worktree_path,
    worktree_exists,
)

__all__ = [
    "FakeGitRunner",
    "GitResult",
    "GitRunner",
    "WorktreeInfo",
    "WorktreeManager",
    "get_canonical_repo_path",
    "get_worktree_base",
    "is_stale_worktree_cwd",
    "is_worktree_path",
    "normalize_repo_url",
    "repo_name_from_url",
    "repo_url_variants",
    "worktree_exists",
]
