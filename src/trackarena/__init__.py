"""
TrackArena - Round Lifecycle & Settlement Engine

A repeating, timed track competition where entry fees are converted into a
reward token, split between the payer and a shared pool, and paid out to
winners and voters at the end of each round.

Core Components:
    - Arena: Owner of all mutable round state and the serial event dispatcher
    - PhaseScheduler: Submission -> Voting -> Cooldown state machine
    - PaymentLedger: Idempotent tracking of entry-fee notifications
    - SettlementEngine: Payment settlement and round-end payouts
    - TreasuryLedger: Round pool, perpetual reserve and bonus lottery
    - MarketPurchaser: Venue fallback chain with balance-delta accounting

Infrastructure:
    - storage: Pluggable state snapshot backends (JSON file, Memory)
    - monitoring: Metrics and structured logging

Usage:
    from trackarena import ArenaConfig
    from trackarena.server import build_arena

    config = ArenaConfig.from_env()
    arena = build_arena(config)
    arena.resume()
"""

__version__ = "0.1.0"

# =============================================================================
# Core Components
# =============================================================================

from .arena import Arena
from .config import ArenaConfig
from .models import EntryChoice, Phase
from .tiers import tier_of


# =============================================================================
# Infrastructure Components
# =============================================================================

def get_storage_backend():
    """
    Get the configured storage backend.

    Returns storage backend based on STORAGE_BACKEND environment variable:
    - "json" (default): Local JSON file snapshot
    - "memory": In-memory storage (for testing)

    Example:
        storage = get_storage_backend()
        storage.save_state(arena.snapshot())
    """
    from .storage import get_storage_backend as _get_storage
    return _get_storage()


def get_metrics():
    """
    Get the global metrics collector.

    Example:
        metrics = get_metrics()
        metrics.increment("payments_settled")
    """
    from .monitoring import metrics
    return metrics


def get_logger(name: str):
    """
    Get a logger for a module.

    Args:
        name: Logger name (typically __name__)
    """
    from .monitoring import get_logger as _get_logger
    return _get_logger(name)


# =============================================================================
# Public API
# =============================================================================

__all__ = [
    "__version__",
    "Arena",
    "ArenaConfig",
    "EntryChoice",
    "Phase",
    "tier_of",
    "get_storage_backend",
    "get_metrics",
    "get_logger",
]
