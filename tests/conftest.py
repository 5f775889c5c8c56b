"""
Pytest configuration and shared fixtures for TrackArena tests.

This module provides:
- A fake chain gateway with a scriptable treasury balance
- Fake venues and a recording notifier
- A fixed clock and manual timers, so phases move only when a test says so
- An Arena on memory storage and a Flask test client
"""

import os
import sys

import pytest

# Add src to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

from trackarena.arena import Arena
from trackarena.chain import LedgerGateway
from trackarena.config import ArenaConfig
from trackarena.exceptions import ChainError, TransferError, VenueError
from trackarena.market import MarketPurchaser
from trackarena.monitoring.metrics import MetricsCollector
from trackarena.notifier import Notifier
from trackarena.storage.memory import MemoryStorage
from trackarena.treasury import TreasuryLedger
from trackarena.venues import Quote, Venue, VenueConfig

# Well-known 32-byte public keys, valid base58 addresses
TREASURY = "6EF8rrecthR5Dkzon8Nwu78hRvfCKubJ14M5uBEwF6P"
FEE_WALLET = "Vote111111111111111111111111111111111111111"
PAYER_A = "TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA"
PAYER_B = "ATokenGPvbdGVxr1b2hvZbsiqW5xWH25efTNsLJA8knL"
PAYER_C = "SysvarRent111111111111111111111111111111111"
PAYER_D = "So11111111111111111111111111111111111111112"

START = 1_700_000_000.0


# ============================================================
# Fakes
# ============================================================

class FakeGateway(LedgerGateway):
    """In-memory chain: every confirmed buy adds `tokens_per_buy` to the balance."""

    def __init__(self, balance: int = 0, tokens_per_buy: int = 10_000, graduated: bool = True):
        self.balance = balance
        self.tokens_per_buy = tokens_per_buy
        self.graduated = graduated
        self.fail_send = False
        self.fail_confirm = False
        self.fail_transfers_to: set[str] = set()
        self.fail_native = False
        self.sent: list[bytes] = []
        self.transfers: list[tuple[int, str]] = []
        self.native_transfers: list[tuple[float, str]] = []
        self._pending = 0

    @property
    def treasury_address(self) -> str:
        return TREASURY

    def token_balance(self) -> int:
        return self.balance

    def is_graduated(self) -> bool:
        return self.graduated

    def sign_and_send(self, raw_transaction: bytes) -> str:
        if self.fail_send:
            raise ChainError("broadcast rejected", action="sign_and_send")
        self.sent.append(raw_transaction)
        self._pending += self.tokens_per_buy
        return f"sig{len(self.sent)}"

    def confirm(self, signature: str) -> None:
        if self.fail_confirm:
            raise ChainError("not confirmed", action="confirm")
        self.balance += self._pending
        self._pending = 0

    def transfer_tokens(self, amount: int, recipient: str) -> str:
        if recipient in self.fail_transfers_to or not recipient:
            raise TransferError(f"transfer to {recipient} failed", action="transfer_tokens")
        self.transfers.append((amount, recipient))
        self.balance -= amount
        return f"transfer{len(self.transfers)}"

    def transfer_native(self, amount: float, recipient: str) -> str:
        if self.fail_native:
            raise TransferError("native transfer failed", action="transfer_native")
        self.native_transfers.append((amount, recipient))
        return f"native{len(self.native_transfers)}"


class FakeVenue(Venue):
    """Venue that returns canned bytes, or fails with VenueError."""

    def __init__(self, name: str, fail: bool = False, expected_out: int | None = None):
        super().__init__(VenueConfig(name=name, base_url="http://venue.invalid"), PAYER_D, TREASURY)
        self.fail = fail
        self.expected_out = expected_out
        self.quotes: list[float] = []

    def quote(self, fee_amount: float) -> Quote:
        self.quotes.append(fee_amount)
        if self.fail:
            raise VenueError(self.name, "HTTP 503 - unavailable")
        return Quote(venue=self.name, fee_amount=fee_amount, request={}, expected_out=self.expected_out)

    def build_transaction(self, quote: Quote) -> bytes:
        return f"tx-{self.name}".encode()


class RecordingNotifier(Notifier):
    """Records every outbound message."""

    def __init__(self):
        self.messages: list[tuple[str, str]] = []
        self.media: list[tuple[str, str, str]] = []
        self.edits: list[tuple[str, int, str]] = []
        self._next_id = 100

    def send_message(self, chat_id, text, buttons=None):
        self.messages.append((str(chat_id), text))
        self._next_id += 1
        return self._next_id

    def send_media(self, chat_id, media_ref, caption, buttons=None):
        self.media.append((str(chat_id), media_ref, caption))
        self._next_id += 1
        return self._next_id

    def edit_caption(self, chat_id, message_id, caption, buttons=None):
        self.edits.append((str(chat_id), message_id, caption))

    def messages_to(self, chat_id: str) -> list[str]:
        return [text for target, text in self.messages if target == chat_id]


class FixedClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: float = START):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> float:
        self.now += seconds
        return self.now


class ManualTimer:
    """threading.Timer stand-in that never starts a thread."""

    def __init__(self, interval, function, args=None, kwargs=None):
        self.interval = interval
        self.function = function
        self.args = args or ()
        self.kwargs = kwargs or {}
        self.daemon = False
        self.started = False
        self.cancelled = False

    def start(self):
        self.started = True

    def cancel(self):
        self.cancelled = True


class StubRandom:
    """Deterministic stand-in for the bonus lottery RNG."""

    def __init__(self, value: int = 2):
        self.value = value
        self.calls = 0

    def randint(self, a, b):
        self.calls += 1
        return self.value


class FailingStorage(MemoryStorage):
    """Memory storage whose writes fail while `failing` is set."""

    def __init__(self):
        super().__init__()
        self.failing = True

    def save_state(self, state):
        from trackarena.storage import StorageWriteError

        if self.failing:
            raise StorageWriteError("disk full", action="save_state")
        super().save_state(state)


# ============================================================
# Fixtures
# ============================================================

@pytest.fixture
def config():
    """Arena config with short, round numbers and no settle delay."""
    return ArenaConfig(
        bot_token="123456:test-token",
        rpc_url="http://rpc.invalid",
        private_key="unused",
        token_mint=PAYER_D,
        trans_fee_wallet=FEE_WALLET,
        settle_delay_seconds=0,
        storage_backend="memory",
        state_file="unused.json",
    )


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def venues():
    """(bonding, graduated) venue chains."""
    return [FakeVenue("pumpportal")], [FakeVenue("pumpswap"), FakeVenue("jupiter")]


@pytest.fixture
def metrics():
    return MetricsCollector()


@pytest.fixture
def purchaser(gateway, venues, metrics):
    bonding, graduated = venues
    return MarketPurchaser(gateway, bonding, graduated, settle_delay=0, metrics=metrics)


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def storage():
    return MemoryStorage()


@pytest.fixture
def rng():
    return StubRandom()


@pytest.fixture
def make_arena(config, gateway, purchaser, notifier, clock, metrics, rng):
    """Factory for arenas sharing the test's fakes."""
    arenas = []

    def _make(storage=None, started=True):
        arena = Arena(
            config=config,
            gateway=gateway,
            purchaser=purchaser,
            notifier=notifier,
            storage=storage if storage is not None else MemoryStorage(),
            clock=clock,
            metrics=metrics,
            treasury=TreasuryLedger(
                round_pool_share=config.round_pool_share,
                bonus_odds=config.bonus_odds,
                rng=rng,
            ),
            timer_factory=ManualTimer,
        )
        arenas.append(arena)
        if started:
            arena.resume()
        return arena

    yield _make

    for arena in arenas:
        arena.shutdown()


@pytest.fixture
def arena(make_arena, storage):
    """A started arena, in SUBMISSION of round 1."""
    return make_arena(storage=storage)


def pay(arena, payer_id, amount=0.1, address=PAYER_A, choice=None, media=None, duration=0):
    """Register (optionally), attach media (optionally) and pay. Returns the PaymentResult."""
    from trackarena.models import EntryChoice

    if choice is None:
        from trackarena.payment_ledger import new_reference

        return arena.record_notification(new_reference(), payer_id, amount, address)

    entry = arena.register_choice(payer_id, choice)
    if choice == EntryChoice.UPLOAD and media:
        arena.attach_media(payer_id, media, duration=duration, title=f"{payer_id} track")
    return arena.record_notification(entry.reference, payer_id, amount, address)


@pytest.fixture
def flask_client(arena):
    """Flask test client bound to the started arena, auth disabled."""
    from trackarena.api import create_app

    app = create_app(arena, require_auth=False)
    app.config["TESTING"] = True
    return app.test_client()


@pytest.fixture
def auth_client(arena):
    """Flask test client with X-API-Key enforcement."""
    from trackarena.api import create_app

    app = create_app(arena, require_auth=True, api_key="test-api-key-12345")
    app.config["TESTING"] = True
    return app.test_client()


@pytest.fixture
def test_auth_headers():
    return {"Content-Type": "application/json", "X-API-Key": "test-api-key-12345"}
