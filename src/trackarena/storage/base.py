"""
Abstract base class for state storage backends.

A backend persists one document: the arena snapshot (round state,
pending entries, participants, voters and the treasury ledger).
"""

from abc import ABC, abstractmethod
from typing import Any

from ..exceptions import ArenaError


class StorageError(ArenaError):
    """Base exception for storage-related errors."""

    component = "storage"


class StorageReadError(StorageError):
    """Raised when reading from storage fails."""


class StorageWriteError(StorageError):
    """Raised when writing to storage fails."""


class StorageBackend(ABC):
    """
    Abstract base class for arena state backends.

    Writes replace the whole snapshot, so a reader never sees a partial
    round.
    """

    @abstractmethod
    def load_state(self) -> dict[str, Any] | None:
        """
        Load the last saved snapshot.

        Returns:
            Snapshot dictionary, or None if nothing was saved yet.

        Raises:
            StorageReadError: If reading fails
        """

    @abstractmethod
    def save_state(self, state: dict[str, Any]) -> None:
        """
        Replace the saved snapshot.

        Raises:
            StorageWriteError: If writing fails
        """

    @abstractmethod
    def is_available(self) -> bool:
        """True if the backend can currently be written to."""

    def get_info(self) -> dict[str, Any]:
        """Backend type and status, for the health endpoint."""
        return {
            "backend_type": self.__class__.__name__,
            "available": self.is_available(),
        }

    def close(self) -> None:
        """Release resources. Nothing to do by default."""

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
