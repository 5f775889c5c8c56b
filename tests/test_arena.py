"""
Tests for the arena aggregate (src/trackarena/arena.py)

Tests cover:
- Phase gating of entries, payments and votes
- Duplicate and concurrent payment notifications
- Vote rules
- Pending-entry sweep
- Persistence failures and snapshots
- Status view
"""

import threading
from unittest.mock import MagicMock

import pytest

from conftest import PAYER_A, PAYER_B, FailingStorage, pay
from trackarena.exceptions import ChainError, ValidationError
from trackarena.models import EntryChoice, Phase
from trackarena.payment_ledger import NotificationStatus, new_reference


def open_voting(arena, clock, config, uploads=("2001", "2002")):
    for payer_id in uploads:
        pay(arena, payer_id, address=PAYER_B, choice=EntryChoice.UPLOAD, media=f"file-{payer_id}", duration=60)
    clock.advance(config.submission_seconds)
    assert arena.tick() == Phase.VOTING


# =============================================================================
# Entries
# =============================================================================


class TestRegisterChoice:
    def test_returns_reference(self, arena, storage):
        entry = arena.register_choice("2001", EntryChoice.UPLOAD)

        assert entry.reference
        assert storage.load_state()["ledger"]["entries"][0]["reference"] == entry.reference

    def test_rejected_outside_submission(self, arena, clock, config):
        open_voting(arena, clock, config)

        with pytest.raises(ValidationError):
            arena.register_choice("3001", EntryChoice.VOTE_ONLY)

    def test_rejected_once_settled_this_round(self, arena):
        pay(arena, "1001")

        with pytest.raises(ValidationError):
            arena.register_choice("1001", EntryChoice.UPLOAD)

    def test_payer_ids_are_strings(self, arena):
        entry = arena.register_choice(1001, EntryChoice.VOTE_ONLY)

        assert entry.payer_id == "1001"


class TestAttachMedia:
    def test_media_after_payment_settles(self, arena, gateway):
        entry = arena.register_choice("2001", EntryChoice.UPLOAD)
        arena.record_notification(entry.reference, "2001", 0.1, PAYER_B)

        attached, outcome = arena.attach_media("2001", "file-1", duration=90, title="Late")

        assert attached.media_ref == "file-1"
        assert outcome.ok
        assert outcome.role == "participant"
        assert arena.participants["2001"].title == "Late"

    def test_media_before_payment_waits(self, arena):
        arena.register_choice("2001", EntryChoice.UPLOAD)

        entry, outcome = arena.attach_media("2001", "file-1")

        assert outcome is None
        assert not entry.confirmed


# =============================================================================
# Payment notifications
# =============================================================================


class TestRecordNotification:
    """The webhook path."""

    def test_rejected_outside_submission(self, arena, clock, config, metrics):
        clock.advance(config.submission_seconds)
        arena.tick()

        with pytest.raises(ValidationError):
            pay(arena, "1001")
        assert metrics.get_counter("payments_rejected") == 1

    def test_invalid_address_rejected_without_state_change(self, arena, gateway):
        entry = arena.register_choice("1001", EntryChoice.VOTE_ONLY)

        with pytest.raises(ValidationError):
            arena.record_notification(entry.reference, "1001", 0.1, "not-an-address")

        assert not arena.ledger.get(entry.reference).paid
        assert gateway.sent == []

    def test_bad_amount_rejected(self, arena, metrics):
        with pytest.raises(ValidationError):
            pay(arena, "1001", amount=1_000)
        assert metrics.get_counter("payments_rejected") == 1
        assert len(arena.ledger) == 0

    def test_upload_without_media_asks_for_it(self, arena, notifier):
        entry = arena.register_choice("2001", EntryChoice.UPLOAD)

        result = arena.record_notification(entry.reference, "2001", 0.1, PAYER_B)

        assert result.status == NotificationStatus.AWAITING_MEDIA
        assert result.outcome is None
        assert any("upload your audio" in text for text in notifier.messages_to("2001"))

    def test_duplicate_is_ignored(self, arena, gateway, metrics):
        first = pay(arena, "1001")

        for _ in range(3):
            repeat = arena.record_notification(first.reference, "1001", 0.1, PAYER_A)
            assert repeat.status == NotificationStatus.ALREADY_PROCESSED
            assert repeat.outcome is None

        assert len(gateway.sent) == 1
        assert len(gateway.transfers) == 1
        assert metrics.get_counter("payments_duplicate") == 3
        assert metrics.get_counter("payments_settled") == 1

    def test_settled_participant_cannot_pay_again(self, arena, gateway, metrics):
        pay(arena, "2001", amount=0.5, choice=EntryChoice.UPLOAD, media="file-1", duration=90)

        with pytest.raises(ValidationError, match="already entered"):
            arena.record_notification(new_reference(), "2001", 0.1, PAYER_A)

        assert len(gateway.sent) == 1
        assert "2001" not in arena.voters
        assert len(arena.ledger) == 0
        assert metrics.get_counter("payments_rejected") == 1

    def test_settled_voter_cannot_pay_again(self, arena, gateway):
        pay(arena, "1001")

        with pytest.raises(ValidationError):
            pay(arena, "1001", address=PAYER_B)

        assert gateway.transfers == [(6_000, PAYER_A)]
        assert arena.voters["1001"].payer_address == PAYER_A

    def test_concurrent_duplicates_settle_once(self, arena, gateway):
        reference = new_reference()
        results = []
        errors = []

        def notify():
            try:
                results.append(arena.record_notification(reference, "1001", 0.1, PAYER_A))
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=notify) for _ in range(10)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        statuses = [r.status for r in results]
        assert statuses.count(NotificationStatus.CONFIRMED) == 1
        assert statuses.count(NotificationStatus.ALREADY_PROCESSED) == 9
        assert len(gateway.sent) == 1

    def test_result_to_dict(self, arena):
        result = pay(arena, "1001")

        data = result.to_dict()

        assert data["status"] == "confirmed"
        assert data["settlement"]["status"] == "settled"
        assert data["settlement"]["payer_share"] == 6_000


# =============================================================================
# Voting
# =============================================================================


class TestCastVote:
    def test_rejected_outside_voting(self, arena):
        pay(arena, "2001", choice=EntryChoice.UPLOAD, media="file-1")

        with pytest.raises(ValidationError):
            arena.cast_vote("1001", "2001")

    def test_vote_counts(self, arena, clock, config):
        open_voting(arena, clock, config)

        assert arena.cast_vote("9001", "2001") == 1
        assert arena.cast_vote("9002", "2001") == 2
        assert arena.participants["2001"].voter_ids == ["9001", "9002"]

    def test_unknown_track(self, arena, clock, config):
        open_voting(arena, clock, config)

        with pytest.raises(ValidationError, match="not found"):
            arena.cast_vote("9001", "4040")

    def test_repeat_vote_rejected(self, arena, clock, config):
        open_voting(arena, clock, config)
        arena.cast_vote("9001", "2001")

        with pytest.raises(ValidationError):
            arena.cast_vote("9001", "2001")
        assert arena.participants["2001"].votes == 1

    def test_registered_voter_backs_one_track(self, arena, clock, config):
        pay(arena, "1001")
        open_voting(arena, clock, config)

        arena.cast_vote("1001", "2001")

        assert arena.voters["1001"].voted_for == "2001"
        with pytest.raises(ValidationError):
            arena.cast_vote("1001", "2002")
        assert arena.participants["2002"].votes == 0

    def test_caption_updated(self, arena, clock, config, notifier):
        open_voting(arena, clock, config)

        arena.cast_vote("9001", "2001")

        chat, message_id, caption = notifier.edits[-1]
        assert chat == config.arena_channel
        assert message_id == arena.participants["2001"].message_id
        assert caption.endswith("🔥 1")


# =============================================================================
# Sweep
# =============================================================================


class TestSweep:
    def test_unpaid_entry_expires(self, arena, clock, config, notifier, metrics):
        arena.register_choice("1001", EntryChoice.VOTE_ONLY)
        clock.advance(config.payment_timeout_seconds + 1)

        assert arena.sweep() == 1
        assert len(arena.ledger) == 0
        assert metrics.get_counter("entries_expired") == 1
        assert any("expired" in text for text in notifier.messages_to("1001"))

    def test_fresh_entry_kept(self, arena, clock):
        arena.register_choice("1001", EntryChoice.VOTE_ONLY)
        clock.advance(10)

        assert arena.sweep() == 0
        assert len(arena.ledger) == 1

    def test_paid_entry_without_media_settles_as_voter(self, arena, clock, config):
        entry = arena.register_choice("2001", EntryChoice.UPLOAD)
        arena.record_notification(entry.reference, "2001", 0.1, PAYER_B)
        clock.advance(config.payment_timeout_seconds + 1)

        assert arena.sweep() == 1
        assert "2001" in arena.voters
        assert entry.reference in arena.ledger.consumed

    def test_expired_reference_can_still_be_paid_later(self, arena, clock, config):
        """A purged reference was never consumed; a late payment opens a vote-only entry."""
        entry = arena.register_choice("1001", EntryChoice.VOTE_ONLY)
        clock.advance(config.payment_timeout_seconds + 1)
        arena.sweep()

        result = arena.record_notification(entry.reference, "1001", 0.1, PAYER_A)

        assert result.status == NotificationStatus.CONFIRMED


# =============================================================================
# Persistence
# =============================================================================


class TestPersistence:
    def test_write_failure_keeps_running(self, make_arena, metrics):
        storage = FailingStorage()
        arena = make_arena(storage=storage)

        result = pay(arena, "1001")

        assert result.outcome.ok
        assert metrics.get_counter("persist_failures") > 0
        assert arena.persist() is False

        storage.failing = False
        assert arena.persist() is True
        assert storage.load_state()["voters"][0]["payer_id"] == "1001"

    def test_snapshot_restore_round_trip(self, arena, make_arena):
        pay(arena, "1001")
        pay(arena, "2001", address=PAYER_B, choice=EntryChoice.UPLOAD, media="file-1")
        snapshot = arena.snapshot()

        other = make_arena(started=False)
        other.restore(snapshot)

        assert other.snapshot()["participants"] == snapshot["participants"]
        assert other.treasury.round_pool == arena.treasury.round_pool
        assert other.next_sequence() == 2

    def test_newer_snapshot_rejected(self, make_arena):
        arena = make_arena(started=False)

        with pytest.raises(ValidationError):
            arena.restore({"version": 99})


class TestReserveSeeding:
    """An empty reserve is seeded from the treasury wallet on start."""

    def test_fresh_start_seeds_from_wallet(self, make_arena, gateway, storage):
        gateway.balance = 50_000

        arena = make_arena(storage=storage)

        assert arena.treasury.perpetual_reserve == 50_000
        assert storage.load_state()["treasury"]["perpetual_reserve"] == 50_000

    def test_restart_skips_round_pool(self, make_arena, gateway, storage):
        first = make_arena(storage=storage)
        first.call(setattr, first.treasury, "round_pool", 2_000)
        first.persist()
        gateway.balance = 10_000

        restarted = make_arena(storage=storage)

        assert restarted.treasury.perpetual_reserve == 8_000
        assert restarted.treasury.round_pool == 2_000

    def test_restored_reserve_is_kept(self, make_arena, gateway, storage):
        first = make_arena(storage=storage)
        pay(first, "1001")
        gateway.balance = 1_000_000

        restarted = make_arena(storage=storage)

        assert restarted.treasury.perpetual_reserve == 1_400

    def test_balance_failure_starts_empty(self, make_arena, gateway):
        gateway.token_balance = MagicMock(side_effect=ChainError("rpc down", action="token_balance"))

        arena = make_arena()

        assert arena.treasury.perpetual_reserve == 0
        assert arena.round.phase == Phase.SUBMISSION


# =============================================================================
# Status
# =============================================================================


class TestStatus:
    def test_status_fields(self, arena, config):
        pay(arena, "1001")
        arena.register_choice("2001", EntryChoice.UPLOAD)

        status = arena.status()

        assert status["phase"] == "submission"
        assert status["round_number"] == 1
        assert status["round_pool"] == 2_600
        assert status["reserve"] == 1_400
        assert status["voter_count"] == 1
        assert status["participant_count"] == 0
        assert status["pending_count"] == 1
        assert status["bonus"] == {"amount": 280, "percentage": 0.20, "odds": config.bonus_odds}
