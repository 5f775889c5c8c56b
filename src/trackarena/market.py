"""
TrackArena - Market Purchase

Turns an entry fee into reward tokens on whichever venue currently trades
the token.

Flow:
1. Ask the chain whether the token is still on its bonding curve
2. Pick the ordered venue chain for that status
3. For each venue: quote and build; a VenueError moves to the next venue
4. Sign, broadcast and confirm, then measure what actually arrived as the
   treasury balance delta

Once a transaction is broadcast there is no fallback: trying another venue
after an uncertain broadcast could buy twice.
"""

import logging
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass

from .chain import LedgerGateway
from .exceptions import ChainError, PurchaseError, VenueError
from .monitoring.metrics import MetricsCollector
from .monitoring.metrics import metrics as default_metrics
from .venues import Venue

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BalanceDelta:
    """Treasury balance around one broadcast transaction."""
    before: int
    after: int
    signature: str

    @property
    def received(self) -> int:
        return self.after - self.before


@dataclass(frozen=True)
class PurchaseReceipt:
    """A successful purchase."""
    tokens_received: int
    venue: str
    signature: str
    reported_out: int | None = None


def measure_balance_delta(
    gateway: LedgerGateway,
    submit: Callable[[], str],
    settle_delay: float = 3.0,
    sleep: Callable[[float], None] = time.sleep,
) -> BalanceDelta:
    """
    Measure how many tokens a transaction delivered to the treasury.

    The balance is read immediately before `submit` broadcasts, and again
    after confirmation plus a settle delay. Any venue-reported output is
    ignored.

    Args:
        gateway: Chain gateway for balance reads and confirmation
        submit: Broadcasts the transaction and returns its signature
        settle_delay: Seconds to wait after confirmation before re-reading
        sleep: Sleep function (injectable for tests)

    Raises:
        ChainError: If a balance read, the broadcast or the confirmation fails
    """
    before = gateway.token_balance()
    signature = submit()
    gateway.confirm(signature)
    if settle_delay > 0:
        sleep(settle_delay)
    after = gateway.token_balance()
    return BalanceDelta(before=before, after=after, signature=signature)


class MarketPurchaser:
    """
    Buys the reward token with venue fallback.

    Usage:
        purchaser = MarketPurchaser(gateway, [pumpportal], [pumpswap, jupiter])
        receipt = purchaser.purchase(0.09)
    """

    def __init__(
        self,
        gateway: LedgerGateway,
        bonding_venues: Sequence[Venue],
        graduated_venues: Sequence[Venue],
        settle_delay: float = 3.0,
        sleep: Callable[[float], None] = time.sleep,
        metrics: MetricsCollector | None = None,
    ):
        self.gateway = gateway
        self.bonding_venues = list(bonding_venues)
        self.graduated_venues = list(graduated_venues)
        self.settle_delay = settle_delay
        self.sleep = sleep
        self.metrics = metrics or default_metrics

    def select_venues(self) -> list[Venue]:
        """Venue chain for the token's current trading status."""
        try:
            graduated = self.gateway.is_graduated()
        except ChainError as e:
            logger.warning("Venue status unknown, assuming graduated: %s", e)
            graduated = True

        venues = self.graduated_venues if graduated else self.bonding_venues
        logger.info(
            "Token is %s, venues: %s",
            "graduated" if graduated else "on bonding curve",
            ", ".join(v.name for v in venues) or "none",
        )
        return venues

    def purchase(self, fee_amount: float) -> PurchaseReceipt:
        """
        Convert `fee_amount` native currency into reward tokens.

        Returns:
            PurchaseReceipt with the measured balance delta

        Raises:
            PurchaseError: If every venue failed, the broadcast failed, or
                nothing arrived
        """
        if fee_amount <= 0:
            raise PurchaseError("Purchase amount must be positive", action="purchase")

        start = time.perf_counter()
        reasons: list[str] = []

        for venue in self.select_venues():
            try:
                quote = venue.quote(fee_amount)
                raw_transaction = venue.build_transaction(quote)
            except VenueError as e:
                reasons.append(str(e))
                self.metrics.increment("venue_failures", labels={"venue": venue.name})
                logger.warning("Venue %s failed, trying next: %s", venue.name, e.reason)
                continue

            try:
                delta = measure_balance_delta(
                    self.gateway,
                    lambda: self.gateway.sign_and_send(raw_transaction),
                    settle_delay=self.settle_delay,
                    sleep=self.sleep,
                )
            except ChainError as e:
                reasons.append(f"{venue.name}: {e.message}")
                raise PurchaseError(
                    f"Purchase aborted on {venue.name}: {e.message}",
                    reasons=reasons,
                    action="purchase",
                    cause=e,
                ) from e

            if delta.received <= 0:
                reasons.append(f"{venue.name}: no tokens received")
                raise PurchaseError(
                    f"Purchase on {venue.name} confirmed but no tokens arrived "
                    f"(before={delta.before}, after={delta.after})",
                    reasons=reasons,
                    action="purchase",
                    details={"signature": delta.signature},
                )

            elapsed_ms = (time.perf_counter() - start) * 1000
            self.metrics.timing("purchase_duration_ms", elapsed_ms, labels={"venue": venue.name})
            logger.info(
                "Bought %d tokens on %s (reported %s)",
                delta.received, venue.name, quote.expected_out,
                extra={"signature": delta.signature},
            )
            return PurchaseReceipt(
                tokens_received=delta.received,
                venue=venue.name,
                signature=delta.signature,
                reported_out=quote.expected_out,
            )

        raise PurchaseError(
            "All venues failed: " + ("; ".join(reasons) or "no venue configured"),
            reasons=reasons,
            action="purchase",
        )
