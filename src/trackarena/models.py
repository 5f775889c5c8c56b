"""
Round state records.

Every record serializes to plain JSON-compatible dicts so the whole arena
can be snapshotted after each externally visible change and restored after
a restart.
"""

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any


class Phase(Enum):
    """Round phases, in cycle order."""
    SUBMISSION = "submission"
    VOTING = "voting"
    COOLDOWN = "cooldown"


class EntryChoice(Enum):
    """Participation path chosen by a payer."""
    UPLOAD = "upload"
    VOTE_ONLY = "vote"


@dataclass
class PendingEntry:
    """A payer's entry awaiting payment settlement."""
    payer_id: str
    reference: str
    choice: EntryChoice
    created_at: float
    media_ref: str | None = None
    title: str | None = None
    duration: int = 0
    display_name: str | None = None
    payer_address: str | None = None
    amount: float = 0.0
    paid: bool = False
    confirmed: bool = False

    @property
    def has_media(self) -> bool:
        return bool(self.media_ref)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["choice"] = self.choice.value
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PendingEntry":
        data = dict(data)
        data["choice"] = EntryChoice(data["choice"])
        return cls(**data)


@dataclass
class Participant:
    """A settled upload entrant competing for votes."""
    payer_id: str
    payer_address: str
    display_name: str
    media_ref: str
    title: str
    duration: int
    tier_badge: str
    multiplier: float
    weighted_amount: float
    sequence: int
    votes: int = 0
    voter_ids: list[str] = field(default_factory=list)
    bonus_won: int = 0
    message_id: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Participant":
        return cls(**data)


@dataclass
class Voter:
    """A settled vote-only entrant."""
    payer_id: str
    payer_address: str
    tier_badge: str
    multiplier: float
    weighted_amount: float
    voted_for: str | None = None
    bonus_won: int = 0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Voter":
        return cls(**data)


@dataclass
class RoundState:
    """The singleton round record."""
    phase: Phase = Phase.SUBMISSION
    cycle_start: float | None = None
    phase_deadline: float | None = None
    round_number: int = 0
    carry_pool: bool = False

    @property
    def started(self) -> bool:
        return self.cycle_start is not None

    def to_dict(self) -> dict[str, Any]:
        return {
            "phase": self.phase.value,
            "cycle_start": self.cycle_start,
            "phase_deadline": self.phase_deadline,
            "round_number": self.round_number,
            "carry_pool": self.carry_pool,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RoundState":
        return cls(
            phase=Phase(data.get("phase", Phase.SUBMISSION.value)),
            cycle_start=data.get("cycle_start"),
            phase_deadline=data.get("phase_deadline"),
            round_number=data.get("round_number", 0),
            carry_pool=data.get("carry_pool", False),
        )
