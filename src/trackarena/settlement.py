"""
TrackArena - Settlement Engine

Two jobs:

1. settle_payment(entry): turn one confirmed entry fee into a registered
   Participant or Voter. Trans fee, purchase, treasury split, payer
   transfer, bonus roll, registration.

2. settle_round(): at the end of voting, rank participants, plan the
   prize and voter payouts from the round pool and deliver them.

Failure policy:
- A failed purchase aborts the settlement; the reference stays consumed
  and the payer is told to start over.
- A failed payer transfer aborts WITHOUT rolling back the treasury credit.
  The amount is recorded as undelivered so the gap can be reconciled.
- Round payouts are attempted independently; one failure never stops the
  rest.
"""

import logging
import math
from collections.abc import Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

from .exceptions import PurchaseError, TransferError
from .models import EntryChoice, Participant, PendingEntry, Voter
from .monitoring.logging import LoggingContext
from .tiers import tier_of
from .treasury import PurchaseSplit

if TYPE_CHECKING:
    from .arena import Arena

logger = logging.getLogger(__name__)


class SettlementStatus(Enum):
    SETTLED = "settled"
    PURCHASE_FAILED = "purchase_failed"
    TRANSFER_FAILED = "transfer_failed"


@dataclass
class SettlementOutcome:
    """What happened to one payment."""
    reference: str
    payer_id: str
    status: SettlementStatus
    role: str | None = None
    tokens_received: int = 0
    split: PurchaseSplit | None = None
    bonus: int = 0
    venue: str | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.status == SettlementStatus.SETTLED

    def to_dict(self) -> dict:
        return {
            "reference": self.reference,
            "payer_id": self.payer_id,
            "status": self.status.value,
            "role": self.role,
            "tokens_received": self.tokens_received,
            "payer_share": self.split.payer_share if self.split else 0,
            "bonus": self.bonus,
            "venue": self.venue,
            "error": self.error,
        }


@dataclass(frozen=True)
class Payout:
    """One planned round-end transfer."""
    payer_id: str
    address: str
    amount: int
    kind: str                # "prize" or "voter"
    place: int | None = None
    bonus: int = 0


@dataclass
class RoundPlan:
    """Planned distribution of one round pool."""
    pool: int
    prize_pool: int
    voter_portion: int
    ranking: list[Participant] = field(default_factory=list)
    payouts: list[Payout] = field(default_factory=list)

    @property
    def distributed(self) -> int:
        """Pool tokens paid out, excluding reserve-funded bonus."""
        return sum(p.amount - p.bonus for p in self.payouts)

    @property
    def winner(self) -> Participant | None:
        return self.ranking[0] if self.ranking else None


@dataclass
class RoundSettlement:
    plan: RoundPlan
    delivered: list[Payout] = field(default_factory=list)
    failed: list[Payout] = field(default_factory=list)


def rank_participants(participants: Sequence[Participant]) -> list[Participant]:
    """Most votes first; earlier registration wins ties."""
    return sorted(participants, key=lambda p: (-p.votes, p.sequence))


def plan_round_payouts(
    participants: Sequence[Participant],
    voters: Sequence[Voter],
    pool: int,
    weights: Sequence[float],
    voter_share: float,
    top_bonus: int = 0,
) -> RoundPlan:
    """
    Plan round-end payouts. Pure: nothing is transferred or mutated.

    The voter portion is only carved out when at least one registered voter
    backed the top participant. Prize payouts are scaled by each winner's
    multiplier but clamped so their running total never exceeds the prize
    pool.

    Args:
        participants: Round participants (any order)
        voters: Round voters
        pool: Round pool at settlement start
        weights: Prize weights for 1st..Kth place
        voter_share: Fraction of the pool reserved for backers of the winner
        top_bonus: Held bonus added on top of the 1st-place prize
    """
    pool = max(0, int(pool))
    ranking = rank_participants(participants)
    if not ranking:
        return RoundPlan(pool=pool, prize_pool=pool, voter_portion=0)

    top = ranking[0]
    backers = [v for v in voters if v.voted_for == top.payer_id]
    voter_portion = int(math.floor(pool * voter_share)) if backers else 0
    prize_pool = pool - voter_portion

    plan = RoundPlan(pool=pool, prize_pool=prize_pool, voter_portion=voter_portion, ranking=ranking)

    paid = 0
    for place, (participant, weight) in enumerate(zip(ranking, weights), start=1):
        amount = int(math.floor(math.floor(prize_pool * weight) * participant.multiplier))
        amount = max(0, min(amount, prize_pool - paid))
        paid += amount

        bonus = top_bonus if place == 1 else 0
        if amount + bonus <= 0:
            continue
        plan.payouts.append(Payout(
            payer_id=participant.payer_id,
            address=participant.payer_address,
            amount=amount + bonus,
            kind="prize",
            place=place,
            bonus=bonus,
        ))

    total_weight = sum(v.weighted_amount for v in backers)
    if voter_portion > 0 and total_weight > 0:
        for voter in backers:
            share = int(math.floor(voter_portion * voter.weighted_amount / total_weight))
            if share < 1:
                continue
            plan.payouts.append(Payout(
                payer_id=voter.payer_id,
                address=voter.payer_address,
                amount=share,
                kind="voter",
            ))

    return plan


class SettlementEngine:
    """Drives payment and round settlement against the arena aggregate."""

    def __init__(self, arena: "Arena"):
        self.arena = arena

    @property
    def metrics(self):
        return self.arena.metrics

    def _notify_payer(self, payer_id: str, text: str) -> None:
        self.arena.notifier.try_send_message(payer_id, text)

    def _update_gauges(self) -> None:
        treasury = self.arena.treasury
        self.metrics.set_gauge("round_pool", treasury.round_pool)
        self.metrics.set_gauge("perpetual_reserve", treasury.perpetual_reserve)

    # ==================== PAYMENT SETTLEMENT ====================

    def settle_payment(self, entry: PendingEntry) -> SettlementOutcome:
        """
        Settle one confirmed entry fee.

        The reference is consumed and persisted before any external call, so
        a crash or a duplicate notification can never buy twice.
        """
        arena = self.arena
        config = arena.config

        arena.ledger.consume(entry.reference)
        arena.persist()

        with LoggingContext(reference=entry.reference, payer_id=entry.payer_id):
            tier = tier_of(entry.amount)
            trans_fee = round(entry.amount * config.trans_fee_rate, 9)
            purchase_amount = round(entry.amount - trans_fee, 9)
            logger.info(
                "Settling %.4f (%s): trans fee %.4f, purchase %.4f",
                entry.amount, tier.name, trans_fee, purchase_amount,
            )

            self._collect_trans_fee(trans_fee)

            try:
                receipt = arena.purchaser.purchase(purchase_amount)
            except PurchaseError as e:
                self.metrics.increment("purchases_failed")
                logger.error("Purchase failed: %s", e.message)
                self._notify_payer(
                    entry.payer_id,
                    "⚠️ Token purchase failed. Your entry was not registered, please start again.",
                )
                arena.persist()
                return SettlementOutcome(
                    reference=entry.reference,
                    payer_id=entry.payer_id,
                    status=SettlementStatus.PURCHASE_FAILED,
                    error=e.message,
                )

            split = arena.treasury.apply_purchase(
                receipt.tokens_received, tier.retention, reference=entry.reference
            )
            arena.persist()
            self._update_gauges()

            outcome = SettlementOutcome(
                reference=entry.reference,
                payer_id=entry.payer_id,
                status=SettlementStatus.SETTLED,
                tokens_received=receipt.tokens_received,
                split=split,
                venue=receipt.venue,
            )

            if split.payer_share > 0:
                try:
                    arena.gateway.transfer_tokens(split.payer_share, entry.payer_address or "")
                except TransferError as e:
                    self.metrics.increment("transfers_failed")
                    arena.treasury.record_undelivered(
                        entry.payer_id,
                        split.payer_share,
                        e.message,
                        kind="purchase_share",
                        reference=entry.reference,
                    )
                    self._notify_payer(
                        entry.payer_id,
                        "⚠️ Your tokens could not be sent right now. "
                        "Your funds are safe in the treasury and will be delivered.",
                    )
                    arena.persist()
                    outcome.status = SettlementStatus.TRANSFER_FAILED
                    outcome.error = e.message
                    return outcome

            if arena.treasury.roll_bonus():
                outcome.bonus = arena.treasury.hold_bonus(entry.payer_id)
                if outcome.bonus:
                    self.metrics.increment("bonus_won")
                    logger.info("Bonus won: %d tokens held", outcome.bonus)

            outcome.role = self._register(entry, tier, outcome.bonus)
            self.metrics.increment("payments_settled")
            self._update_gauges()
            arena.persist()

            text = (
                f"✅ Entry confirmed! {tier.badge} {tier.name}\n"
                f"You received {split.payer_share:,} tokens."
            )
            if outcome.bonus:
                text += f"\n🎰 You hit the bonus: {outcome.bonus:,} tokens if your track wins!"
            self._notify_payer(entry.payer_id, text)
            return outcome

    def _collect_trans_fee(self, trans_fee: float) -> None:
        wallet = self.arena.config.trans_fee_wallet
        if trans_fee <= 0 or not wallet:
            return
        try:
            self.arena.gateway.transfer_native(trans_fee, wallet)
        except TransferError as e:
            logger.warning("Trans fee transfer failed, continuing: %s", e.message)
            return
        self.arena.treasury.record_trans_fee(trans_fee)

    def _register(self, entry: PendingEntry, tier, bonus: int) -> str:
        arena = self.arena
        weighted = entry.amount * tier.multiplier

        if entry.choice == EntryChoice.UPLOAD and entry.has_media:
            arena.participants[entry.payer_id] = Participant(
                payer_id=entry.payer_id,
                payer_address=entry.payer_address or "",
                display_name=entry.display_name or entry.payer_id,
                media_ref=entry.media_ref,
                title=entry.title or "Untitled",
                duration=entry.duration,
                tier_badge=tier.badge,
                multiplier=tier.multiplier,
                weighted_amount=weighted,
                sequence=arena.next_sequence(),
                bonus_won=bonus,
            )
            return "participant"

        if entry.choice == EntryChoice.UPLOAD:
            logger.warning("Paid upload without media registered as voter")

        arena.voters[entry.payer_id] = Voter(
            payer_id=entry.payer_id,
            payer_address=entry.payer_address or "",
            tier_badge=tier.badge,
            multiplier=tier.multiplier,
            weighted_amount=weighted,
            bonus_won=bonus,
        )
        return "voter"

    # ==================== ROUND SETTLEMENT ====================

    def close_round(self) -> RoundPlan:
        """
        Plan the round-end distribution and close the books, in memory only.

        Bonuses are settled, the pool is closed into the reserve and every
        planned payout is registered as due. Nothing is persisted and nothing
        is sent; the caller persists this state together with the phase
        change and then calls pay_round().
        """
        arena = self.arena
        treasury = arena.treasury
        config = arena.config

        participants = list(arena.participants.values())
        ranking = rank_participants(participants)
        top_bonus = treasury.take_bonus(ranking[0].payer_id) if ranking else 0
        treasury.release_bonuses()

        plan = plan_round_payouts(
            participants,
            list(arena.voters.values()),
            treasury.round_pool,
            config.prize_weights,
            config.voter_reward_share,
            top_bonus=top_bonus,
        )

        if not ranking:
            logger.warning("Round settled without participants, pool carried over")
            arena.round.carry_pool = True
            return plan

        treasury.close_round(plan.distributed)
        treasury.schedule_payouts([
            {"payer_id": p.payer_id, "amount": p.amount, "kind": p.kind} for p in plan.payouts
        ])
        self._update_gauges()
        return plan

    def pay_round(self, plan: RoundPlan) -> RoundSettlement:
        """Send the payouts of a closed round. Each one is persisted as it completes."""
        arena = self.arena
        treasury = arena.treasury
        result = RoundSettlement(plan=plan)
        if not plan.ranking:
            return result

        for payout in plan.payouts:
            try:
                arena.gateway.transfer_tokens(payout.amount, payout.address)
            except TransferError as e:
                self.metrics.increment("payouts_failed")
                treasury.record_undelivered(
                    payout.payer_id, payout.amount, e.message, kind=payout.kind
                )
                self._notify_payer(
                    payout.payer_id,
                    f"⚠️ Your reward of {payout.amount:,} tokens could not be sent. "
                    "It has been recorded and will be delivered.",
                )
                result.failed.append(payout)
            else:
                self.metrics.increment("payouts_sent")
                result.delivered.append(payout)
            treasury.complete_payout(payout.payer_id, payout.kind)
            arena.persist()

        logger.info(
            "Round settled: pool %d, distributed %d, %d payouts (%d failed)",
            plan.pool, plan.distributed, len(plan.payouts), len(result.failed),
        )
        arena.notifier.try_send_message(arena.config.main_channel, self._summary(plan))
        return result

    def settle_round(self) -> RoundSettlement:
        """
        Distribute the round pool. Runs once per VOTING -> COOLDOWN.

        The treasury is closed and persisted before any transfer, so a
        restart never pays the same round twice.
        """
        plan = self.close_round()
        self.arena.persist()
        return self.pay_round(plan)

    def _summary(self, plan: RoundPlan) -> str:
        medals = {1: "🥇", 2: "🥈", 3: "🥉"}
        by_payer = {p.payer_id: p for p in plan.payouts if p.kind == "prize"}

        lines = ["🏆 ROUND COMPLETE!", ""]
        for place, participant in enumerate(plan.ranking[: len(self.arena.config.prize_weights)], start=1):
            payout = by_payer.get(participant.payer_id)
            prize = payout.amount if payout else 0
            lines.append(
                f"{medals.get(place, f'#{place}')} {participant.tier_badge} "
                f"{participant.display_name}: {prize:,} tokens ({participant.votes} votes)"
            )
            if payout and payout.bonus:
                lines.append(f"🎰 Includes a {payout.bonus:,} token bonus!")

        voter_payouts = [p for p in plan.payouts if p.kind == "voter"]
        if voter_payouts:
            total = sum(p.amount for p in voter_payouts)
            lines.append("")
            lines.append(f"🗳️ {len(voter_payouts)} voters shared {total:,} tokens!")

        lines.append("")
        lines.append(f"🔄 New round starts in {int(self.arena.config.cooldown_seconds)} seconds!")
        return "\n".join(lines)
