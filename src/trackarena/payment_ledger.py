"""
TrackArena - Payment Ledger

Tracks entry-fee notifications by reference so that a payment is settled
exactly once, no matter how many times the payment notifier reports it.

Core Properties:
- A reference is the idempotency key. Once confirmed or consumed it is
  never processed again and never reused.
- At most one pending entry per payer.
- Bad amounts are rejected before anything is mutated.
- Stale entries are found against their own creation time, falling back
  to the round start.
"""

import logging
import secrets
from dataclasses import dataclass
from enum import Enum
from typing import Any

import base58

from .exceptions import ValidationError
from .models import EntryChoice, PendingEntry

logger = logging.getLogger(__name__)


class NotificationStatus(Enum):
    """Outcome of recording a payment notification."""
    CONFIRMED = "confirmed"                # Ready for settlement
    AWAITING_MEDIA = "awaiting_media"      # Paid upload, no media yet
    ALREADY_PROCESSED = "already_processed"


@dataclass
class NotificationResult:
    """Result of record_notification."""
    status: NotificationStatus
    entry: PendingEntry | None = None


def new_reference() -> str:
    """Fresh random reference, encoded like a public key."""
    return base58.b58encode(secrets.token_bytes(32)).decode("ascii")


class PaymentLedger:
    """
    Pending entries keyed by payment reference.

    The ledger knows nothing about phases or settlement; it only answers
    "is this notification new, and for which entry".
    """

    def __init__(
        self,
        min_amount: float = 0.01,
        max_amount: float = 100.0,
        timeout_seconds: float = 600.0,
    ):
        self.min_amount = min_amount
        self.max_amount = max_amount
        self.timeout_seconds = timeout_seconds

        # reference -> entry, insertion ordered
        self.entries: dict[str, PendingEntry] = {}
        # Every reference that finished processing, across rounds
        self.consumed: set[str] = set()

    # ==================== Lookups ====================

    def get(self, reference: str) -> PendingEntry | None:
        return self.entries.get(reference)

    def find_by_payer(self, payer_id: str) -> PendingEntry | None:
        for entry in self.entries.values():
            if entry.payer_id == payer_id:
                return entry
        return None

    def is_processed(self, reference: str) -> bool:
        """True if this reference must not be settled again."""
        if reference in self.consumed:
            return True
        entry = self.entries.get(reference)
        return entry is not None and entry.confirmed

    def __len__(self) -> int:
        return len(self.entries)

    # ==================== Mutations ====================

    def register_choice(self, payer_id: str, choice: EntryChoice, now: float) -> PendingEntry:
        """
        Open a pending entry for a payer.

        Raises:
            ValidationError: If the payer already holds a pending entry
        """
        if self.find_by_payer(payer_id) is not None:
            raise ValidationError(
                "Payer already has an entry in progress",
                action="register_choice",
                details={"payer_id": payer_id},
            )

        reference = new_reference()
        while reference in self.entries or reference in self.consumed:
            reference = new_reference()

        entry = PendingEntry(
            payer_id=payer_id,
            reference=reference,
            choice=choice,
            created_at=now,
        )
        self.entries[reference] = entry
        logger.info(
            "Pending entry opened",
            extra={"payer_id": payer_id, "reference": reference, "choice": choice.value},
        )
        return entry

    def attach_media(
        self,
        payer_id: str,
        media_ref: str,
        duration: int = 0,
        title: str | None = None,
        display_name: str | None = None,
    ) -> PendingEntry:
        """
        Attach media to the payer's pending upload.

        Raises:
            ValidationError: If there is no upload entry waiting for media
        """
        if not media_ref:
            raise ValidationError("media_ref is required", action="attach_media")

        entry = self.find_by_payer(payer_id)
        if entry is None or entry.choice != EntryChoice.UPLOAD or entry.has_media:
            raise ValidationError(
                "No upload entry waiting for media",
                action="attach_media",
                details={"payer_id": payer_id},
            )

        entry.media_ref = media_ref
        entry.duration = max(0, int(duration or 0))
        entry.title = title or "Untitled"
        entry.display_name = display_name or payer_id
        return entry

    def validate_amount(self, amount: Any) -> float:
        """
        Check an amount against the accepted range.

        Raises:
            ValidationError: If the amount is not a number within bounds
        """
        if isinstance(amount, bool):
            raise ValidationError("Amount must be a number", action="record_notification")
        try:
            value = float(amount)
        except (TypeError, ValueError) as e:
            raise ValidationError("Amount must be a number", action="record_notification") from e

        if value != value or not self.min_amount <= value <= self.max_amount:
            raise ValidationError(
                f"Amount must be between {self.min_amount} and {self.max_amount}",
                action="record_notification",
                details={"amount": amount},
            )
        return value

    def record_notification(
        self,
        reference: str,
        payer_id: str,
        amount: Any,
        payer_address: str | None = None,
        now: float = 0.0,
    ) -> NotificationResult:
        """
        Record a "payment received" notification.

        Safe to call any number of times for the same reference: only the
        first call confirms the entry.

        Raises:
            ValidationError: On a bad amount, or a payer mismatch
        """
        value = self.validate_amount(amount)

        if self.is_processed(reference):
            return NotificationResult(NotificationStatus.ALREADY_PROCESSED, self.entries.get(reference))

        entry = self.entries.get(reference)
        if entry is None:
            existing = self.find_by_payer(payer_id)
            if existing is not None:
                raise ValidationError(
                    "Payer already has a different entry in progress",
                    action="record_notification",
                    details={"payer_id": payer_id, "reference": reference},
                )
            entry = PendingEntry(
                payer_id=payer_id,
                reference=reference,
                choice=EntryChoice.VOTE_ONLY,
                created_at=now,
            )
            self.entries[reference] = entry
            logger.info(
                "Payment for unknown reference, opened vote-only entry",
                extra={"payer_id": payer_id, "reference": reference},
            )
        elif entry.payer_id != payer_id:
            raise ValidationError(
                "Reference belongs to a different payer",
                action="record_notification",
                details={"reference": reference},
            )

        entry.paid = True
        entry.confirmed = True
        entry.amount = value
        if payer_address:
            entry.payer_address = payer_address

        if entry.choice == EntryChoice.UPLOAD and not entry.has_media:
            return NotificationResult(NotificationStatus.AWAITING_MEDIA, entry)
        return NotificationResult(NotificationStatus.CONFIRMED, entry)

    def consume(self, reference: str) -> PendingEntry | None:
        """Remove an entry for good; its reference can never be processed again."""
        self.consumed.add(reference)
        return self.entries.pop(reference, None)

    def purge(self, reference: str) -> PendingEntry | None:
        """Drop an unpaid entry (timeout or round end)."""
        return self.entries.pop(reference, None)

    def expired(self, now: float, round_start: float | None = None) -> list[PendingEntry]:
        """Entries older than the timeout, oldest first."""
        stale = []
        for entry in self.entries.values():
            created = entry.created_at or round_start or now
            if now - created > self.timeout_seconds:
                stale.append(entry)
        return stale

    def paid_awaiting_media(self) -> list[PendingEntry]:
        return [
            e for e in self.entries.values()
            if e.confirmed and e.choice == EntryChoice.UPLOAD and not e.has_media
        ]

    def clear(self) -> list[PendingEntry]:
        """Drop every pending entry (new round). Consumed references are kept."""
        dropped = list(self.entries.values())
        self.entries.clear()
        return dropped

    # ==================== Persistence ====================

    def to_dict(self) -> dict[str, Any]:
        return {
            "entries": [e.to_dict() for e in self.entries.values()],
            "consumed": sorted(self.consumed),
        }

    def load_dict(self, data: dict[str, Any]) -> None:
        self.entries = {}
        for raw in data.get("entries", []):
            entry = PendingEntry.from_dict(raw)
            self.entries[entry.reference] = entry
        self.consumed = set(data.get("consumed", []))
