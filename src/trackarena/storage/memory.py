"""
In-memory storage backend.

Keeps the snapshot in process memory only. Used by the test-suite and
for throwaway local runs.
"""

import copy
import threading
from typing import Any

from .base import StorageBackend


class MemoryStorage(StorageBackend):
    """In-memory storage backend. All data is lost when the process exits."""

    def __init__(self):
        self._data: dict[str, Any] | None = None
        self._lock = threading.Lock()
        self.save_count = 0

    def load_state(self) -> dict[str, Any] | None:
        with self._lock:
            if self._data is None:
                return None
            return copy.deepcopy(self._data)

    def save_state(self, state: dict[str, Any]) -> None:
        with self._lock:
            self._data = copy.deepcopy(state)
            self.save_count += 1

    def is_available(self) -> bool:
        return True

    def get_info(self) -> dict[str, Any]:
        info = super().get_info()
        with self._lock:
            info["has_data"] = self._data is not None
            info["save_count"] = self.save_count
        return info

    def clear(self) -> None:
        with self._lock:
            self._data = None
