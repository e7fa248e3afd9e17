"""Per-task isolated checkouts built on ``git worktree``.

A worktree's ``.git`` entry is a *file* of the form
``gitdir: <canonical>/.git/worktrees/<branch>`` while the canonical checkout
has a ``.git`` *directory*. Every helper here relies on that distinction.
"""

from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from weakref import WeakValueDictionary

from ..config import RemoteAgentSettings, get_settings
from ..errors import DirtyWorkspaceError, ToolInvocationError
from ..models import TaskRef
from ..utils import lock_for
from .git import GitRunner

logger = logging.getLogger(__name__)

GITDIR_PREFIX = "gitdir:"
WORKTREES_MARKER = "/.git/worktrees/"
_DIRTY_MARKERS = ("contains modified or untracked files", "use --force to delete it")


@dataclass(slots=True)
class WorktreeInfo:
    """One entry of ``git worktree list --porcelain``."""

    path: str
    branch: str | None


def branch_name_for(number: int, is_pr: bool) -> str:
    return f"pr-{number}" if is_pr else f"issue-{number}"


def _read_git_file(path: str | Path) -> str | None:
    git_path = Path(path) / ".git"
    if not git_path.is_file():
        return None
    try:
        return git_path.read_text(encoding="utf-8")
    except OSError:
        return None


def is_worktree_path(path: str | Path) -> bool:
    """Return True when ``path`` holds a worktree checkout rather than a canonical one."""

    content = _read_git_file(path)
    return content is not None and content.startswith(GITDIR_PREFIX)


def get_canonical_repo_path(path: str | Path) -> str:
    """Resolve a worktree path to its canonical repository; other paths pass through."""

    content = _read_git_file(path)
    if content is not None and content.startswith(GITDIR_PREFIX):
        gitdir = content[len(GITDIR_PREFIX):].strip().splitlines()[0].strip()
        index = gitdir.find(WORKTREES_MARKER)
        if index > 0:
            return gitdir[:index]
    return str(path)


def get_worktree_base(repo_path: str | Path, base: str | None = None) -> str:
    """Directory that holds task worktrees for ``repo_path``."""

    if base:
        return str(Path(base).expanduser())
    return os.path.normpath(os.path.join(str(repo_path), "..", "worktrees"))


def worktree_exists(path: str | Path) -> bool:
    candidate = Path(path)
    return candidate.exists() and (candidate / ".git").exists()


def is_stale_worktree_cwd(path: str | Path, worktree_base: str | Path) -> bool:
    """True when ``path`` lies in a task worktree under ``worktree_base`` that is gone.

    The worktree root is the first component below the base, so any
    subdirectory of a live worktree is not stale. Paths outside the base never
    are.
    """

    base = Path(os.path.normpath(str(worktree_base)))
    candidate = Path(os.path.normpath(str(path)))
    if not candidate.is_relative_to(base) or candidate == base:
        return False
    root = base / candidate.relative_to(base).parts[0]
    return not worktree_exists(root)


def parse_worktree_porcelain(output: str) -> list[WorktreeInfo]:
    """Parse ``git worktree list --porcelain`` output into ordered entries."""

    entries: list[WorktreeInfo] = []
    current: WorktreeInfo | None = None
    for line in output.splitlines():
        line = line.strip()
        if not line:
            if current is not None:
                entries.append(current)
                current = None
            continue
        key, _, value = line.partition(" ")
        if key == "worktree":
            if current is not None:
                entries.append(current)
            current = WorktreeInfo(path=value, branch=None)
        elif key == "branch" and current is not None:
            current.branch = value.removeprefix("refs/heads/")
    if current is not None:
        entries.append(current)
    return entries


class WorktreeManager:
    """Create, locate and remove per-issue/PR worktrees.

    Create and remove calls are serialized per canonical repository so two
    handlers never race git's worktree metadata.
    """

    def __init__(
        self,
        settings: RemoteAgentSettings | None = None,
        *,
        git: GitRunner | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._git = git or GitRunner(timeout=self._settings.git_timeout)
        self._locks: WeakValueDictionary[str, asyncio.Lock] = WeakValueDictionary()

    def worktree_base(self, repo_path: str | Path) -> str:
        return get_worktree_base(repo_path, self._settings.worktree_base)

    def worktree_path_for(self, repo_path: str | Path, branch: str) -> str:
        return os.path.join(self.worktree_base(repo_path), branch)

    def _lock_for(self, repo_path: str | Path) -> asyncio.Lock:
        key = os.path.realpath(get_canonical_repo_path(repo_path))
        return lock_for(self._locks, key)

    async def create_worktree_for_issue(self, repo_path: str | Path, number: int, is_pr: bool) -> str:
        """Create the worktree for an issue or PR and return its path."""

        branch = branch_name_for(number, is_pr)
        async with self._lock_for(repo_path):
            return await self._add_worktree(repo_path, branch)

    async def _add_worktree(self, repo_path: str | Path, branch: str) -> str:
        repo = str(repo_path)
        path = self.worktree_path_for(repo, branch)
        result = await self._git.run("-C", repo, "worktree", "add", path, "-b", branch)
        if not result.ok:
            if "already exists" not in result.stderr:
                raise ToolInvocationError(
                    f"Failed to create worktree: {result.stderr.strip()}",
                    args=result.args,
                    returncode=result.returncode,
                    stderr=result.stderr,
                )
            logger.info("Branch exists, attaching worktree", extra={"branch": branch, "path": path})
            await self._git.check("-C", repo, "worktree", "add", path, branch)

        logger.info("Created worktree", extra={"repo": repo, "branch": branch, "path": path})
        return path

    async def ensure_worktree_for_task(self, repo_path: str | Path, task: TaskRef) -> str:
        """Return the worktree for ``task``, creating it on first dispatch."""

        async with self._lock_for(repo_path):
            existing = await self.find_worktree_by_branch(repo_path, task.branch_name)
            if existing is not None and worktree_exists(existing):
                return existing
            expected = self.worktree_path_for(repo_path, task.branch_name)
            if worktree_exists(expected):
                return expected
            return await self._add_worktree(repo_path, task.branch_name)

    async def remove_worktree(self, repo_path: str | Path, worktree_path: str | Path) -> None:
        """Remove a worktree; git refuses when uncommitted or untracked files remain."""

        repo = str(repo_path)
        async with self._lock_for(repo):
            result = await self._git.run("-C", repo, "worktree", "remove", str(worktree_path))
        if result.ok:
            logger.info("Removed worktree", extra={"repo": repo, "path": str(worktree_path)})
            return

        stderr = result.stderr.strip()
        error_cls = (
            DirtyWorkspaceError
            if any(marker in stderr for marker in _DIRTY_MARKERS)
            else ToolInvocationError
        )
        raise error_cls(
            f"Failed to remove worktree {worktree_path}: {stderr}",
            args=result.args,
            returncode=result.returncode,
            stderr=result.stderr,
        )

    async def list_worktrees(self, repo_path: str | Path) -> list[WorktreeInfo]:
        """List worktrees of ``repo_path``; failures yield an empty list."""

        try:
            result = await self._git.check("-C", str(repo_path), "worktree", "list", "--porcelain")
        except (ToolInvocationError, OSError) as exc:
            logger.warning(
                "Could not list worktrees",
                extra={"repo": str(repo_path), "error": str(exc)},
            )
            return []
        return parse_worktree_porcelain(result.stdout)

    async def find_worktree_by_branch(self, repo_path: str | Path, branch: str) -> str | None:
        """Path of the worktree on ``branch``, matching literal or slug (``/`` -> ``-``) names."""

        slug = branch.replace("/", "-")
        for entry in await self.list_worktrees(repo_path):
            if entry.branch is None:
                continue
            if entry.branch == branch or entry.branch.replace("/", "-") == slug:
                return entry.path
        return None

    async def find_orphaned_worktrees(self, repo_path: str | Path) -> list[WorktreeInfo]:
        """Registered worktrees whose directory no longer exists on disk."""

        canonical = os.path.realpath(str(repo_path))
        return [
            entry
            for entry in await self.list_worktrees(repo_path)
            if os.path.realpath(entry.path) != canonical and not Path(entry.path).exists()
        ]

    async def prune_worktrees(self, repo_path: str | Path) -> None:
        async with self._lock_for(repo_path):
            await self._git.check("-C", str(repo_path), "worktree", "prune")


__all__ = [
    "WorktreeInfo",
    "WorktreeManager",
    "branch_name_for",
    "get_canonical_repo_path",
    "get_worktree_base",
    "is_stale_worktree_cwd",
    "is_worktree_path",
    "parse_worktree_porcelain",
    "worktree_exists",
]
