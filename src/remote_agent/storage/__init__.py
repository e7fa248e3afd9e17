"""Storage abstractions for the remote agent."""

from __future__ import annotations

from ..config import RemoteAgentSettings
from .base import Store
from .chroma import ChromaEvent, ChromaStore, ChromaUnavailableError
from .memory import InMemoryStore


def create_store(settings: RemoteAgentSettings) -> Store:
    """Build the store selected by ``settings.store_backend``."""

    if settings.store_backend == "chroma":
        store = ChromaStore(settings.chroma_persist_path)
        store.ping()
        return store
    return InMemoryStore()


__all__ = [
    "ChromaEvent",
    "ChromaStore",
    "ChromaUnavailableError",
    "InMemoryStore",
    "Store",
    "create_store",
]
