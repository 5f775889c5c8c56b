"""
Storage abstraction layer for TrackArena.

Pluggable backends for the arena snapshot:

- JSON file (default)
- Memory (for testing)

Usage:
    from trackarena.storage import get_storage_backend

    storage = get_storage_backend("json", "/data/submissions.json")
    storage.save_state(arena.snapshot())
    data = storage.load_state()
"""

import os

from .base import StorageBackend, StorageError, StorageReadError, StorageWriteError
from .json_file import JSONFileStorage
from .memory import MemoryStorage

__all__ = [
    "JSONFileStorage",
    "MemoryStorage",
    "StorageBackend",
    "StorageError",
    "StorageReadError",
    "StorageWriteError",
    "get_storage_backend",
]


def get_storage_backend(
    backend_type: str | None = None,
    state_file: str | None = None,
) -> StorageBackend:
    """
    Build a storage backend.

    Args:
        backend_type: "json" or "memory" (STORAGE_BACKEND when omitted)
        state_file: Snapshot path for the JSON backend (ARENA_STATE_FILE when omitted)

    Raises:
        StorageError: For an unknown backend type
    """
    backend_type = (backend_type or os.getenv("STORAGE_BACKEND", "json")).lower()

    if backend_type == "json":
        from ..config import default_state_file

        return JSONFileStorage(state_file or os.getenv("ARENA_STATE_FILE") or default_state_file())

    elif backend_type == "memory":
        return MemoryStorage()

    raise StorageError(
        f"Unknown storage backend: {backend_type}",
        action="get_storage_backend",
    )
