"""
TrackArena - Phase Scheduler

SUBMISSION -> VOTING -> COOLDOWN -> SUBMISSION, on wall-clock deadlines.

Every transition goes through tick(): the deadline timer calls it when it
fires, and resume() calls it once after a restart. A deadline that already
passed fires immediately; otherwise a timer is armed for what is left.
Timers carry the generation they were armed in, so a timer that outlived
its deadline is ignored.
"""

import logging
import threading
from collections.abc import Callable
from typing import TYPE_CHECKING

from .models import Phase, RoundState
from .notifier import vote_button

if TYPE_CHECKING:
    from .arena import Arena

logger = logging.getLogger(__name__)


def track_caption(participant) -> str:
    return (
        f"{participant.tier_badge} {participant.display_name} — {participant.title}\n"
        f"🔥 {participant.votes}"
    )


class PhaseScheduler:
    """
    Round state machine for one arena.

    All methods run on the arena's dispatcher thread; timers only submit
    work to it.
    """

    def __init__(self, arena: "Arena", timer_factory: Callable[..., threading.Timer] = threading.Timer):
        self.arena = arena
        self.timer_factory = timer_factory
        self.generation = 0
        self._timer: threading.Timer | None = None
        self._sweep_timer: threading.Timer | None = None
        self._stopped = False

    @property
    def config(self):
        return self.arena.config

    @property
    def round(self) -> RoundState:
        return self.arena.round

    @property
    def timer(self) -> threading.Timer | None:
        """The armed deadline timer, if any."""
        return self._timer

    # ==================== Triggers ====================

    def tick(self, now: float | None = None) -> Phase:
        """
        Bring the round up to date with the clock and arm the next timer.

        Returns:
            The phase after any transition
        """
        now = self.arena.clock() if now is None else now

        if not self.round.started:
            logger.info("No cycle in progress, starting a new one")
            self.start_new_cycle(now)
        elif self.round.phase_deadline is None or now >= self.round.phase_deadline:
            self.advance_phase(now)

        self._arm()
        return self.round.phase

    def advance_phase(self, now: float | None = None) -> Phase:
        """Fire the transition out of the current phase."""
        now = self.arena.clock() if now is None else now
        previous = self.round.phase

        if previous == Phase.SUBMISSION:
            self._end_submission(now)
        elif previous == Phase.VOTING:
            self._end_voting(now)
        else:
            self.start_new_cycle(now)

        logger.info("Phase %s -> %s", previous.value, self.round.phase.value)
        return self.round.phase

    def _record_transition(self, phase: Phase, now: float, duration: float) -> None:
        self.round.phase = phase
        self.round.phase_deadline = now + duration
        self.arena.metrics.increment("phase_transitions", labels={"to": phase.value})

    # ==================== Transitions ====================

    def voting_duration(self, participants) -> float:
        """Sum of track lengths plus a decision buffer, or a per-track fallback."""
        if not participants:
            return 0.0
        durations = [p.duration for p in participants]
        if all(d > 0 for d in durations):
            return float(sum(durations)) + self.config.voting_decision_buffer_seconds
        return self.config.voting_per_track_seconds * len(participants)

    def _end_submission(self, now: float) -> None:
        arena = self.arena

        # Paid uploads that never got their media still take part, as voters
        for entry in arena.ledger.paid_awaiting_media():
            logger.warning("Submission closed before media arrived, settling as voter")
            arena.settlement.settle_payment(entry)

        for entry in arena.ledger.clear():
            arena.metrics.increment("entries_expired")
            arena.notifier.try_send_message(
                entry.payer_id, "⏰ Submission closed before your payment arrived. Join the next round!"
            )

        participants = sorted(arena.participants.values(), key=lambda p: p.sequence)

        if not participants:
            self._record_transition(Phase.COOLDOWN, now, self.config.empty_round_cooldown_seconds)
            self.round.carry_pool = True
            arena.persist()
            arena.notifier.try_send_message(
                self.config.main_channel,
                "⚠️ No tracks submitted this round. The prize pool carries over, new round soon!",
            )
            return

        self._record_transition(Phase.VOTING, now, self.voting_duration(participants))
        arena.persist()

        voters = len(arena.voters)
        arena.notifier.try_send_message(
            self.config.arena_channel,
            f"🗳️ VOTING OPEN!\n\n🎵 {len(participants)} track{'s' if len(participants) != 1 else ''}\n"
            f"👥 {voters} voter{'s' if voters != 1 else ''}\n\n🔥 Vote for your favorite!",
        )
        for participant in participants:
            participant.message_id = arena.notifier.try_send_media(
                self.config.arena_channel,
                participant.media_ref,
                track_caption(participant),
                vote_button(participant.payer_id),
            )
        arena.persist()

    def _end_voting(self, now: float) -> None:
        # The closed books and the COOLDOWN phase must land in the same write
        self.round.carry_pool = False
        plan = self.arena.settlement.close_round()
        self._record_transition(Phase.COOLDOWN, now, self.config.cooldown_seconds)
        self.arena.persist()
        self.arena.settlement.pay_round(plan)

    def start_new_cycle(self, now: float) -> None:
        """Reset round state and open submissions."""
        arena = self.arena
        carry = self.round.carry_pool and self.round.started

        for entry in arena.ledger.clear():
            logger.info("Dropping unsettled entry at round reset", extra={"reference": entry.reference})
        arena.participants.clear()
        arena.voters.clear()
        arena.treasury.release_bonuses()
        arena.treasury.reset_round_pool(carry=carry)

        self.round.cycle_start = now
        self.round.round_number += 1
        self.round.carry_pool = False
        self._record_transition(Phase.SUBMISSION, now, self.config.submission_seconds)
        arena.persist()

        treasury = arena.treasury
        arena.notifier.try_send_message(
            self.config.main_channel,
            f"🎬 NEW ROUND STARTED!\n\n"
            f"⏰ {int(self.config.submission_seconds // 60)} minutes to submit!\n\n"
            f"Upload tracks or vote to win prizes!\n"
            f"🎰 Bonus: {treasury.bonus_amount():,} tokens "
            f"({treasury.bonus_percentage() * 100:.0f}%), 1 in {treasury.bonus_odds} chance!",
        )
        logger.info("Round %d started", self.round.round_number, extra={"carry_pool": carry})

    # ==================== Timers ====================

    def _arm(self) -> None:
        """Arm the deadline timer for the current phase."""
        self.cancel()
        if self._stopped or self.round.phase_deadline is None:
            return

        self.generation += 1
        delay = max(0.0, self.round.phase_deadline - self.arena.clock())
        timer = self.timer_factory(delay, self._on_deadline, args=(self.generation,))
        timer.daemon = True
        timer.start()
        self._timer = timer
        logger.debug("Deadline timer armed for %.1fs (generation %d)", delay, self.generation)

    def _on_deadline(self, generation: int) -> None:
        self.arena.submit(self._fire, generation)

    def _fire(self, generation: int) -> None:
        if generation != self.generation:
            logger.debug("Ignoring stale timer (generation %d)", generation)
            return
        self.tick()

    def start_sweeper(self) -> None:
        """Run the pending-entry sweep every sweep interval."""
        if self._stopped:
            return
        timer = self.timer_factory(self.config.sweep_interval_seconds, self._on_sweep)
        timer.daemon = True
        timer.start()
        self._sweep_timer = timer

    def _on_sweep(self) -> None:
        self.arena.submit(self.arena.sweep)
        self.start_sweeper()

    def cancel(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def stop(self) -> None:
        """Cancel all timers; nothing is armed afterwards."""
        self._stopped = True
        self.cancel()
        if self._sweep_timer is not None:
            self._sweep_timer.cancel()
            self._sweep_timer = None
