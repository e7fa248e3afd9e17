"""Subprocess and locking helpers shared by the workspace, orchestrator and server."""

from __future__ import annotations

import asyncio
import os
from typing import Mapping
from weakref import WeakValueDictionary

# Interpreter and repository overrides inherited from the parent process.
_STRIPPED_VARS = frozenset(
    {
        "PYTHONHOME",
        "PYTHONPATH",
        "VIRTUAL_ENV",
        "PIP_RESPECT_VIRTUALENV",
        "GIT_DIR",
        "GIT_WORK_TREE",
        "GIT_INDEX_FILE",
    }
)


def sanitize_environment(additional: Mapping[str, str] | None = None) -> dict[str, str]:
    """Copy of ``os.environ`` without interpreter and repository overrides."""

    env = {key: value for key, value in os.environ.items() if key not in _STRIPPED_VARS}
    if additional:
        env.update(additional)
    return env


def truncate(text: str, limit: int) -> str:
    """Shorten ``text`` to ``limit`` characters, marking the cut with an ellipsis."""

    if len(text) <= limit:
        return text
    return text[: max(limit - 3, 0)] + "..."


def lock_for(locks: WeakValueDictionary[str, asyncio.Lock], key: str) -> asyncio.Lock:
    """Return the lock for ``key``, creating it on first use.

    Locks live only while a holder or waiter references them, so idle keys
    drop out of ``locks`` on their own.
    """

    lock = locks.get(key)
    if lock is None:
        lock = asyncio.Lock()
        locks[key] = lock
    return lock
