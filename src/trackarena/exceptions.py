"""
TrackArena - Exception Hierarchy

Every failure the settlement core can surface belongs to one of these
families:

- Validation: bad amount, address, reference or phase. Rejected, no state change.
- Venue / Purchase: a market could not convert the fee into reward tokens.
- Transfer: the purchase succeeded but delivery to a payer failed.
- Notification: a chat message could not be delivered. Always best effort.
- Config: missing or malformed settings detected at startup.

Storage failures live in trackarena.storage.base alongside the backends.
"""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any


@dataclass
class ErrorContext:
    """Structured context for error tracking and debugging."""
    component: str
    action: str
    timestamp: str = field(default_factory=lambda: datetime.now(UTC).isoformat())
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        return {
            "component": self.component,
            "action": self.action,
            "timestamp": self.timestamp,
            "details": self.details,
        }


class ArenaError(Exception):
    """
    Base exception for all arena errors.

    Carries a structured context so handlers can log the failure
    without re-deriving what was being attempted.
    """

    component = "arena"

    def __init__(
        self,
        message: str,
        action: str = "unknown",
        details: dict[str, Any] | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.context = ErrorContext(
            component=self.component,
            action=action,
            details=details or {},
        )
        self.cause = cause
        if cause:
            self.__cause__ = cause

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging/serialization."""
        result = {
            "error_type": type(self).__name__,
            "message": self.message,
            **self.context.to_dict(),
        }
        if self.cause:
            result["cause"] = str(self.cause)
        return result


class ValidationError(ArenaError):
    """Rejected input. Raised before any state is mutated."""

    component = "validation"


class VenueError(ArenaError):
    """A single venue failed to quote or build a transaction."""

    component = "venue"

    def __init__(self, venue: str, message: str, **kwargs):
        super().__init__(f"{venue}: {message}", **kwargs)
        self.venue = venue
        self.reason = message


class PurchaseError(ArenaError):
    """The whole purchase failed; every venue reason is in the message."""

    component = "market"

    def __init__(self, message: str, reasons: list[str] | None = None, **kwargs):
        super().__init__(message, **kwargs)
        self.reasons = reasons or []


class ChainError(ArenaError):
    """A ledger primitive (balance read, broadcast, confirmation) failed."""

    component = "chain"


class TransferError(ChainError):
    """A token or native transfer could not be delivered."""


class NotificationError(ArenaError):
    """A chat notification could not be delivered."""

    component = "notifier"


class ConfigError(ArenaError):
    """Missing or malformed configuration. Fatal at startup."""

    component = "config"
