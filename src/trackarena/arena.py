"""
TrackArena - Arena

The single owner of all mutable round state.

Every externally triggered event (payment webhook, phase timer, vote,
sweep) runs on one dispatcher thread, one event at a time, and is
persisted before the next starts. Public methods may be called from any
thread; they hand their work to the dispatcher and wait for the result.
"""

import logging
import threading
import time
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any

from .chain import LedgerGateway, is_valid_address
from .config import ArenaConfig
from .exceptions import ArenaError, ChainError, ValidationError
from .market import MarketPurchaser
from .models import EntryChoice, Participant, Phase, PendingEntry, RoundState, Voter
from .monitoring.metrics import MetricsCollector
from .monitoring.metrics import metrics as default_metrics
from .notifier import Notifier, vote_button
from .payment_ledger import NotificationStatus, PaymentLedger
from .scheduler import PhaseScheduler, track_caption
from .settlement import SettlementEngine, SettlementOutcome
from .storage import StorageBackend, StorageError
from .treasury import TreasuryLedger

logger = logging.getLogger(__name__)

SNAPSHOT_VERSION = 1


@dataclass
class PaymentResult:
    """Result of a payment notification, as seen by the webhook."""
    status: NotificationStatus
    reference: str
    outcome: SettlementOutcome | None = None

    @property
    def failed(self) -> bool:
        return self.outcome is not None and not self.outcome.ok

    def to_dict(self) -> dict[str, Any]:
        result = {"status": self.status.value, "reference": self.reference}
        if self.outcome is not None:
            result["settlement"] = self.outcome.to_dict()
        return result


class Arena:
    """
    Round aggregate plus serial event dispatcher.

    Usage:
        arena = Arena(config, gateway, purchaser, notifier, storage)
        arena.resume()
        arena.record_notification(reference, payer_id, 0.1, address)
    """

    def __init__(
        self,
        config: ArenaConfig,
        gateway: LedgerGateway,
        purchaser: MarketPurchaser,
        notifier: Notifier,
        storage: StorageBackend,
        clock: Callable[[], float] = time.time,
        metrics: MetricsCollector | None = None,
        treasury: TreasuryLedger | None = None,
        timer_factory: Callable[..., threading.Timer] = threading.Timer,
    ):
        self.config = config
        self.gateway = gateway
        self.purchaser = purchaser
        self.notifier = notifier
        self.storage = storage
        self.clock = clock
        self.metrics = metrics or default_metrics

        # Aggregate state
        self.round = RoundState()
        self.ledger = PaymentLedger(
            min_amount=config.min_entry_amount,
            max_amount=config.max_entry_amount,
            timeout_seconds=config.payment_timeout_seconds,
        )
        self.treasury = treasury or TreasuryLedger(
            round_pool_share=config.round_pool_share,
            bonus_odds=config.bonus_odds,
        )
        self.participants: dict[str, Participant] = {}
        self.voters: dict[str, Voter] = {}
        self._sequence = 0

        self.settlement = SettlementEngine(self)
        self.scheduler = PhaseScheduler(self, timer_factory=timer_factory)

        self._worker_ident: int | None = None
        self._executor = ThreadPoolExecutor(
            max_workers=1,
            thread_name_prefix="arena",
            initializer=self._mark_worker,
        )

    # ==================== Dispatch ====================

    def _mark_worker(self) -> None:
        self._worker_ident = threading.get_ident()

    def submit(self, fn: Callable, *args, **kwargs) -> Future:
        """Queue work on the dispatcher without waiting for it."""
        future = self._executor.submit(fn, *args, **kwargs)
        future.add_done_callback(self._log_failure)
        return future

    def call(self, fn: Callable, *args, **kwargs) -> Any:
        """Run work on the dispatcher and return its result (or raise its error)."""
        if threading.get_ident() == self._worker_ident:
            return fn(*args, **kwargs)
        return self._executor.submit(fn, *args, **kwargs).result()

    @staticmethod
    def _log_failure(future: Future) -> None:
        if future.cancelled():
            return
        error = future.exception()
        if error is not None and not isinstance(error, ValidationError):
            logger.error("Arena event failed: %s", error, exc_info=error)

    def shutdown(self) -> None:
        """Stop timers and drain the dispatcher."""
        self.scheduler.stop()
        self._executor.shutdown(wait=True)
        self.storage.close()

    def next_sequence(self) -> int:
        self._sequence += 1
        return self._sequence

    # ==================== Persistence ====================

    def persist(self) -> bool:
        """
        Snapshot the aggregate to storage.

        A failed write is logged and counted; the arena keeps running in
        memory and the next persist retries.
        """
        try:
            self.storage.save_state(self._snapshot())
        except StorageError as e:
            self.metrics.increment("persist_failures")
            logger.error("Persist failed, continuing in memory: %s", e.message)
            return False
        return True

    def _snapshot(self) -> dict[str, Any]:
        return {
            "version": SNAPSHOT_VERSION,
            "saved_at": self.clock(),
            "round": self.round.to_dict(),
            "sequence": self._sequence,
            "ledger": self.ledger.to_dict(),
            "treasury": self.treasury.to_dict(),
            "participants": [p.to_dict() for p in self.participants.values()],
            "voters": [v.to_dict() for v in self.voters.values()],
        }

    def _restore(self, data: dict[str, Any]) -> None:
        version = data.get("version", SNAPSHOT_VERSION)
        if version > SNAPSHOT_VERSION:
            raise ValidationError(
                f"Snapshot version {version} is newer than supported",
                action="restore",
            )

        self.round = RoundState.from_dict(data.get("round", {}))
        self._sequence = int(data.get("sequence", 0))
        self.ledger.load_dict(data.get("ledger", {}))
        self.treasury.load_dict(data.get("treasury", {}))
        self.participants = {
            p["payer_id"]: Participant.from_dict(p) for p in data.get("participants", [])
        }
        self.voters = {v["payer_id"]: Voter.from_dict(v) for v in data.get("voters", [])}
        self.metrics.set_gauge("round_pool", self.treasury.round_pool)
        self.metrics.set_gauge("perpetual_reserve", self.treasury.perpetual_reserve)

    def snapshot(self) -> dict[str, Any]:
        return self.call(self._snapshot)

    def restore(self, data: dict[str, Any]) -> None:
        self.call(self._restore, data)

    def resume(self) -> Phase:
        """
        Load the last snapshot, catch up with the clock and start the timers.

        A fresh start (no snapshot) begins a new cycle immediately. An empty
        reserve is seeded from the treasury wallet balance.
        """

        def _resume() -> Phase:
            data = self.storage.load_state()
            if data:
                self._restore(data)
                interrupted = self.treasury.write_off_due("interrupted by restart before sending")
                if interrupted:
                    logger.warning(
                        "%d round-end payouts were interrupted and recorded as undelivered",
                        len(interrupted),
                    )
                    self.persist()
                logger.info(
                    "Resumed round %d in %s",
                    self.round.round_number, self.round.phase.value,
                    extra={
                        "round_pool": self.treasury.round_pool,
                        "perpetual_reserve": self.treasury.perpetual_reserve,
                    },
                )
            if self.treasury.perpetual_reserve == 0:
                self._seed_reserve()
            phase = self.scheduler.tick()
            self.scheduler.start_sweeper()
            return phase

        return self.call(_resume)

    def _seed_reserve(self) -> None:
        try:
            balance = self.gateway.token_balance()
        except ChainError as e:
            logger.warning("Could not read treasury balance, reserve stays at 0: %s", e)
            return
        if self.treasury.seed_reserve(balance):
            self.metrics.set_gauge("perpetual_reserve", self.treasury.perpetual_reserve)
            logger.info(
                "Perpetual reserve seeded from treasury wallet",
                extra={"wallet_balance": balance, "perpetual_reserve": self.treasury.perpetual_reserve},
            )
            self.persist()

    # ==================== Entry operations ====================

    def _require_phase(self, phase: Phase, action: str) -> None:
        if self.round.phase != phase or not self.round.started:
            raise ValidationError(
                f"Not allowed during {self.round.phase.value}",
                action=action,
                details={"phase": self.round.phase.value},
            )

    def _register_choice(self, payer_id: str, choice: EntryChoice) -> PendingEntry:
        self._require_phase(Phase.SUBMISSION, "register_choice")
        if payer_id in self.participants or payer_id in self.voters:
            raise ValidationError(
                "Payer is already entered this round",
                action="register_choice",
                details={"payer_id": payer_id},
            )
        entry = self.ledger.register_choice(payer_id, choice, self.clock())
        self.persist()
        return entry

    def register_choice(self, payer_id: str, choice: EntryChoice) -> PendingEntry:
        """Open a pending entry and hand out its payment reference."""
        return self.call(self._register_choice, str(payer_id), choice)

    def _attach_media(self, payer_id, media_ref, duration, title, display_name):
        self._require_phase(Phase.SUBMISSION, "attach_media")
        entry = self.ledger.attach_media(payer_id, media_ref, duration, title, display_name)
        if entry.confirmed:
            return entry, self.settlement.settle_payment(entry)
        self.persist()
        return entry, None

    def attach_media(
        self,
        payer_id: str,
        media_ref: str,
        duration: int = 0,
        title: str | None = None,
        display_name: str | None = None,
    ) -> tuple[PendingEntry, SettlementOutcome | None]:
        """
        Attach a track to a pending upload.

        If the entry was already paid it settles right away and the
        settlement outcome is returned alongside the entry.
        """
        return self.call(self._attach_media, str(payer_id), media_ref, duration, title, display_name)

    def _record_notification(self, reference, payer_id, amount, payer_address) -> PaymentResult:
        self.metrics.increment("payments_received")
        try:
            if self.round.phase != Phase.SUBMISSION or not self.round.started:
                raise ValidationError(
                    "Payments are only accepted during submission",
                    action="record_notification",
                    details={"phase": self.round.phase.value},
                )
            if payer_address is not None and not is_valid_address(payer_address):
                raise ValidationError(
                    "Invalid payer address",
                    action="record_notification",
                    details={"payer_address": payer_address},
                )
            if self.ledger.get(reference) is None and (
                payer_id in self.participants or payer_id in self.voters
            ):
                raise ValidationError(
                    "Payer is already entered this round",
                    action="record_notification",
                    details={"payer_id": payer_id},
                )
            result = self.ledger.record_notification(
                reference, payer_id, amount, payer_address, now=self.clock()
            )
        except ValidationError:
            self.metrics.increment("payments_rejected")
            raise

        if result.status == NotificationStatus.ALREADY_PROCESSED:
            self.metrics.increment("payments_duplicate")
            logger.info("Duplicate payment notification ignored", extra={"reference": reference})
            return PaymentResult(result.status, reference)

        # Confirmed before settlement starts; a repeat now reads as a duplicate
        self.persist()

        if result.status == NotificationStatus.AWAITING_MEDIA:
            self.notifier.try_send_message(payer_id, "💰 Payment received! Now upload your audio file.")
            return PaymentResult(result.status, reference)

        outcome = self.settlement.settle_payment(result.entry)
        return PaymentResult(result.status, reference, outcome)

    def record_notification(
        self,
        reference: str,
        payer_id: str,
        amount: Any,
        payer_address: str | None = None,
    ) -> PaymentResult:
        """
        Handle a "payment received" notification.

        Safe to repeat: only the first notification for a reference settles.

        Raises:
            ValidationError: Bad amount, address, payer or phase
        """
        return self.call(self._record_notification, reference, str(payer_id), amount, payer_address)

    # ==================== Voting ====================

    def _cast_vote(self, voter_id: str, participant_id: str) -> int:
        self._require_phase(Phase.VOTING, "cast_vote")

        participant = self.participants.get(participant_id)
        if participant is None:
            raise ValidationError("Track not found", action="cast_vote",
                                  details={"participant_id": participant_id})
        if voter_id in participant.voter_ids:
            raise ValidationError("Already voted for this track", action="cast_vote")

        voter = self.voters.get(voter_id)
        if voter is not None:
            if voter.voted_for is not None and voter.voted_for != participant_id:
                raise ValidationError("Vote already cast for another track", action="cast_vote")
            voter.voted_for = participant_id

        participant.votes += 1
        participant.voter_ids.append(voter_id)
        self.persist()

        self.notifier.try_edit_caption(
            self.config.arena_channel,
            participant.message_id,
            track_caption(participant),
            vote_button(participant.payer_id),
        )
        return participant.votes

    def cast_vote(self, voter_id: str, participant_id: str) -> int:
        """
        Record a vote. Returns the participant's new vote count.

        Raises:
            ValidationError: Outside voting, unknown track, or a repeat vote
        """
        return self.call(self._cast_vote, str(voter_id), str(participant_id))

    # ==================== Phases & sweep ====================

    def tick(self, now: float | None = None) -> Phase:
        return self.call(self.scheduler.tick, now)

    def _sweep(self, now: float | None = None) -> int:
        now = self.clock() if now is None else now
        handled = 0

        for entry in self.ledger.expired(now, self.round.cycle_start):
            try:
                if entry.confirmed:
                    logger.warning(
                        "Paid entry timed out waiting for media, settling as voter",
                        extra={"reference": entry.reference},
                    )
                    self.settlement.settle_payment(entry)
                else:
                    self.ledger.purge(entry.reference)
                    self.metrics.increment("entries_expired")
                    logger.info("Pending entry expired", extra={"reference": entry.reference})
                    self.notifier.try_send_message(
                        entry.payer_id, "⏰ Your entry expired before payment arrived. Please start again."
                    )
                handled += 1
            except ArenaError as e:
                logger.error("Sweep failed for entry: %s", e.message, extra={"reference": entry.reference})

        if handled:
            self.persist()
        return handled

    def sweep(self, now: float | None = None) -> int:
        """Expire stale pending entries. Never raises for a single bad entry."""
        return self.call(self._sweep, now)

    # ==================== Status ====================

    def _status(self) -> dict[str, Any]:
        return {
            "phase": self.round.phase.value,
            "round_number": self.round.round_number,
            "phase_deadline": self.round.phase_deadline,
            "round_pool": self.treasury.round_pool,
            "reserve": self.treasury.perpetual_reserve,
            "participant_count": len(self.participants),
            "voter_count": len(self.voters),
            "pending_count": len(self.ledger),
            "bonus": {
                "amount": self.treasury.bonus_amount(),
                "percentage": self.treasury.bonus_percentage(),
                "odds": self.treasury.bonus_odds,
            },
        }

    def status(self) -> dict[str, Any]:
        return self.call(self._status)
