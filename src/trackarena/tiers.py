"""
Entry tiers.

The paid amount decides how much of the purchased reward token the payer
keeps (retention) and how much weight their entry carries (multiplier).
The top band interpolates both values instead of using a fixed step.
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class Tier:
    """A static tier band."""
    name: str
    badge: str
    min_amount: float
    retention: float
    multiplier: float


@dataclass(frozen=True)
class TierInfo:
    """Tier resolved for a concrete amount."""
    name: str
    badge: str
    retention: float
    multiplier: float


BASIC = Tier(name="Basic", badge="🎤", min_amount=0.01, retention=0.50, multiplier=1.00)
MID = Tier(name="Mid Tier", badge="💎", min_amount=0.05, retention=0.55, multiplier=1.05)
HIGH = Tier(name="High Tier", badge="👑", min_amount=0.10, retention=0.60, multiplier=1.10)
WHALE = Tier(name="Whale", badge="🐋", min_amount=0.50, retention=0.65, multiplier=1.15)

# Highest band first
TIERS = (WHALE, HIGH, MID, BASIC)

# Whale interpolation window
WHALE_WINDOW_END = 5.00
WHALE_MAX_RETENTION = 0.75
WHALE_MAX_MULTIPLIER = 1.50


def _interpolate(amount: float, low: float, high: float) -> float:
    """Linear interpolation across the whale window, clamped at both ends."""
    if amount <= WHALE.min_amount:
        return low
    if amount >= WHALE_WINDOW_END:
        return high
    fraction = (amount - WHALE.min_amount) / (WHALE_WINDOW_END - WHALE.min_amount)
    return low + fraction * (high - low)


def whale_retention(amount: float) -> float:
    return _interpolate(amount, WHALE.retention, WHALE_MAX_RETENTION)


def whale_multiplier(amount: float) -> float:
    return _interpolate(amount, WHALE.multiplier, WHALE_MAX_MULTIPLIER)


def band_of(amount: float) -> Tier:
    """Static band for an amount. Amounts below Basic still map to Basic."""
    for tier in TIERS:
        if amount >= tier.min_amount:
            return tier
    return BASIC


def tier_of(amount: float) -> TierInfo:
    """
    Resolve the tier for a paid amount.

    Pure and deterministic: the same amount always yields the same result.

    Args:
        amount: Paid entry fee in native currency

    Returns:
        TierInfo with retention and multiplier for this amount
    """
    band = band_of(amount)
    if band is WHALE:
        return TierInfo(
            name=band.name,
            badge=band.badge,
            retention=whale_retention(amount),
            multiplier=whale_multiplier(amount),
        )
    return TierInfo(
        name=band.name,
        badge=band.badge,
        retention=band.retention,
        multiplier=band.multiplier,
    )
