"""
TrackArena - Treasury Ledger

Bookkeeping for the reward tokens held by the treasury wallet.

Purpose:
- Splits every purchase between the payer and the shared pool
- Splits the pool share between the current round pool and the perpetual reserve
- Runs the bonus lottery funded by the perpetual reserve
- Records payouts that could not be delivered, so gaps can be reconciled

Core Properties:
- All amounts are whole reward tokens; floor arithmetic never loses or
  fabricates units (payer + pool == received, round + reserve == pool)
- The reserve only decreases by amounts previously added to it and never
  goes negative
- Every mutation is emitted as an event for the audit trail
"""

import logging
import math
import random
from dataclasses import asdict, dataclass
from datetime import UTC, datetime
from typing import Any

logger = logging.getLogger(__name__)

# Bonus percentage by reserve size: (upper bound, percentage)
BONUS_STEPS = (
    (100_000, 0.20),
    (500_000, 0.15),
    (1_000_000, 0.10),
    (5_000_000, 0.05),
)
BONUS_FLOOR_PERCENT = 0.02

MAX_EVENTS = 500


@dataclass(frozen=True)
class PurchaseSplit:
    """How one purchase was divided."""
    tokens_received: int
    payer_share: int
    pool_share: int
    round_share: int
    reserve_share: int


@dataclass
class UndeliveredPayout:
    """A payout the ledger owes but the chain never delivered."""
    payer_id: str
    amount: int
    reason: str
    kind: str
    reference: str | None = None
    timestamp: str = ""


def bonus_percentage(reserve: int) -> float:
    """Step function of reserve size: a bigger reserve pays a smaller share."""
    for upper_bound, percent in BONUS_STEPS:
        if reserve < upper_bound:
            return percent
    return BONUS_FLOOR_PERCENT


class TreasuryLedger:
    """
    Round pool and perpetual reserve for the arena.

    Key Design Principles:
    - The round pool is distributed at round end and then emptied
    - The perpetual reserve grows across rounds and funds the bonus
    - Nothing here talks to the chain; callers mutate the ledger only after
      the corresponding on-chain action succeeded
    """

    DEFAULT_ROUND_POOL_SHARE = 0.65
    DEFAULT_BONUS_ODDS = 500

    def __init__(
        self,
        round_pool_share: float = DEFAULT_ROUND_POOL_SHARE,
        bonus_odds: int = DEFAULT_BONUS_ODDS,
        rng: random.Random | None = None,
    ):
        """
        Initialize treasury ledger.

        Args:
            round_pool_share: Fraction of each pool share credited to the round pool
            bonus_odds: N in the 1-in-N bonus lottery
            rng: Random source for the lottery (injectable for tests)
        """
        self.round_pool_share = round_pool_share
        self.bonus_odds = bonus_odds
        self.rng = rng or random.SystemRandom()

        self.round_pool = 0
        self.perpetual_reserve = 0
        self.trans_fee_collected = 0.0

        # payer_id -> bonus already taken out of the reserve
        self.bonus_held: dict[str, int] = {}
        self.undelivered: list[UndeliveredPayout] = []
        # Round-end payouts planned and closed but not yet sent
        self.payouts_due: list[dict[str, Any]] = []

        # Audit trail
        self.events: list[dict[str, Any]] = []

    # ==================== PURCHASE SPLIT ====================

    def split_purchase(self, tokens_received: int, retention: float) -> PurchaseSplit:
        """Compute the split for a purchase without touching balances."""
        tokens = int(tokens_received)
        if tokens < 0:
            raise ValueError("tokens_received must not be negative")

        payer_share = min(tokens, int(math.floor(tokens * retention)))
        pool_share = tokens - payer_share
        round_share = int(math.floor(pool_share * self.round_pool_share))
        reserve_share = pool_share - round_share

        return PurchaseSplit(
            tokens_received=tokens,
            payer_share=payer_share,
            pool_share=pool_share,
            round_share=round_share,
            reserve_share=reserve_share,
        )

    def apply_purchase(
        self,
        tokens_received: int,
        retention: float,
        reference: str | None = None,
    ) -> PurchaseSplit:
        """
        Credit the pool side of a purchase.

        Args:
            tokens_received: Balance delta measured for the purchase
            retention: Fraction kept by the payer
            reference: Payment reference for the audit trail

        Returns:
            The PurchaseSplit that was applied
        """
        split = self.split_purchase(tokens_received, retention)

        self.round_pool += split.round_share
        self.perpetual_reserve += split.reserve_share

        self._emit_event("PurchaseApplied", {
            "reference": reference,
            **asdict(split),
            "round_pool": self.round_pool,
            "perpetual_reserve": self.perpetual_reserve,
        })
        return split

    def record_trans_fee(self, amount: float) -> None:
        """Add a delivered trans fee (native currency) to the running total."""
        if amount <= 0:
            return
        self.trans_fee_collected += amount
        self._emit_event("TransFeeCollected", {
            "amount": amount,
            "total": self.trans_fee_collected,
        })

    # ==================== BONUS LOTTERY ====================

    def bonus_percentage(self) -> float:
        return bonus_percentage(self.perpetual_reserve)

    def bonus_amount(self) -> int:
        """Bonus a winner of the lottery would receive right now."""
        return int(math.floor(self.perpetual_reserve * self.bonus_percentage()))

    def roll_bonus(self) -> bool:
        """One independent 1-in-N draw."""
        return self.rng.randint(1, self.bonus_odds) == 1

    def hold_bonus(self, payer_id: str) -> int:
        """
        Take a won bonus out of the reserve and hold it for a payer.

        Returns:
            Amount held (clamped to the reserve)
        """
        amount = min(self.bonus_amount(), self.perpetual_reserve)
        if amount <= 0:
            return 0

        self.perpetual_reserve -= amount
        self.bonus_held[payer_id] = self.bonus_held.get(payer_id, 0) + amount

        self._emit_event("BonusHeld", {
            "payer_id": payer_id,
            "amount": amount,
            "perpetual_reserve": self.perpetual_reserve,
        })
        return amount

    def take_bonus(self, payer_id: str) -> int:
        """Release a held bonus for payout."""
        amount = self.bonus_held.pop(payer_id, 0)
        if amount:
            self._emit_event("BonusPaid", {"payer_id": payer_id, "amount": amount})
        return amount

    def release_bonuses(self) -> int:
        """Return every unclaimed held bonus to the reserve."""
        total = sum(self.bonus_held.values())
        if total:
            self.perpetual_reserve += total
            self._emit_event("BonusReleased", {
                "amount": total,
                "payers": sorted(self.bonus_held),
                "perpetual_reserve": self.perpetual_reserve,
            })
        self.bonus_held.clear()
        return total

    # ==================== ROUND LIFECYCLE ====================

    def close_round(self, distributed: int) -> int:
        """
        Close the round pool after payouts were planned.

        The undistributed remainder moves to the perpetual reserve.

        Returns:
            Remainder moved to the reserve
        """
        distributed = max(0, min(int(distributed), self.round_pool))
        remainder = self.round_pool - distributed
        self.perpetual_reserve += remainder
        self.round_pool = 0

        self._emit_event("RoundClosed", {
            "distributed": distributed,
            "to_reserve": remainder,
            "perpetual_reserve": self.perpetual_reserve,
        })
        return remainder

    def reset_round_pool(self, carry: bool = False) -> None:
        """Start a new round's pool. A carried pool is left as is."""
        if carry:
            self._emit_event("RoundPoolCarried", {"round_pool": self.round_pool})
            return
        if self.round_pool:
            # Anything left unclosed belongs to the reserve, not to nobody
            self.perpetual_reserve += self.round_pool
        self.round_pool = 0

    def seed_reserve(self, wallet_balance: int) -> int:
        """
        Seed an empty perpetual reserve from the treasury wallet balance.

        Tokens already committed to the round pool, held bonuses and
        undelivered payouts are not counted.

        Returns:
            The reserve after seeding
        """
        if self.perpetual_reserve > 0:
            return self.perpetual_reserve

        committed = (
            self.round_pool
            + sum(self.bonus_held.values())
            + sum(u.amount for u in self.undelivered)
        )
        self.perpetual_reserve = max(0, int(wallet_balance) - committed)
        if self.perpetual_reserve:
            self._emit_event("ReserveSeeded", {
                "wallet_balance": int(wallet_balance),
                "committed": committed,
                "perpetual_reserve": self.perpetual_reserve,
            })
        return self.perpetual_reserve

    # ==================== RECONCILIATION ====================

    def record_undelivered(
        self,
        payer_id: str,
        amount: int,
        reason: str,
        kind: str,
        reference: str | None = None,
    ) -> UndeliveredPayout:
        """Record a payout the ledger credited but the chain did not deliver."""
        record = UndeliveredPayout(
            payer_id=payer_id,
            amount=int(amount),
            reason=reason,
            kind=kind,
            reference=reference,
            timestamp=datetime.now(UTC).isoformat(),
        )
        self.undelivered.append(record)
        logger.error(
            "Reconciliation gap: %s tokens owed to %s (%s): %s",
            amount, payer_id, kind, reason,
        )
        self._emit_event("PayoutUndelivered", asdict(record))
        return record

    def schedule_payouts(self, payouts: list[dict[str, Any]]) -> None:
        """Remember round-end payouts until each one is sent or written off."""
        self.payouts_due = [dict(p) for p in payouts]

    def complete_payout(self, payer_id: str, kind: str) -> None:
        for i, due in enumerate(self.payouts_due):
            if due["payer_id"] == payer_id and due["kind"] == kind:
                del self.payouts_due[i]
                return

    def write_off_due(self, reason: str) -> list[UndeliveredPayout]:
        """
        Move every payout still due into the undelivered register.

        Used after a restart interrupted round-end payouts: whether the
        transfer went out is unknown, so it is reconciled by hand rather
        than sent twice.
        """
        records = [
            self.record_undelivered(due["payer_id"], due["amount"], reason, kind=due["kind"])
            for due in self.payouts_due
        ]
        self.payouts_due = []
        return records

    # ==================== QUERIES ====================

    def get_balance(self) -> dict[str, Any]:
        """Current balances and statistics."""
        return {
            "round_pool": self.round_pool,
            "perpetual_reserve": self.perpetual_reserve,
            "trans_fee_collected": self.trans_fee_collected,
            "bonus_held": sum(self.bonus_held.values()),
            "bonus_percentage": self.bonus_percentage(),
            "bonus_amount": self.bonus_amount(),
            "bonus_odds": self.bonus_odds,
            "undelivered_total": sum(u.amount for u in self.undelivered),
        }

    # ==================== PERSISTENCE ====================

    def to_dict(self) -> dict[str, Any]:
        return {
            "round_pool": self.round_pool,
            "perpetual_reserve": self.perpetual_reserve,
            "trans_fee_collected": self.trans_fee_collected,
            "bonus_held": dict(self.bonus_held),
            "undelivered": [asdict(u) for u in self.undelivered],
            "payouts_due": [dict(p) for p in self.payouts_due],
            "events": list(self.events),
        }

    def load_dict(self, data: dict[str, Any]) -> None:
        self.round_pool = int(data.get("round_pool", 0))
        self.perpetual_reserve = max(0, int(data.get("perpetual_reserve", 0)))
        self.trans_fee_collected = float(data.get("trans_fee_collected", 0.0))
        self.bonus_held = {k: int(v) for k, v in data.get("bonus_held", {}).items()}
        self.undelivered = [UndeliveredPayout(**u) for u in data.get("undelivered", [])]
        self.payouts_due = [dict(p) for p in data.get("payouts_due", [])]
        self.events = list(data.get("events", []))

    def _emit_event(self, event_type: str, data: dict[str, Any]) -> None:
        """Emit an event for audit trail."""
        self.events.append({
            "event_type": event_type,
            "timestamp": datetime.now(UTC).isoformat(),
            "data": data,
        })
        if len(self.events) > MAX_EVENTS:
            del self.events[: len(self.events) - MAX_EVENTS]
