"""
TrackArena - Market Venues

Every venue that can turn the entry fee into reward tokens implements the
same two-step capability:

- quote(fee_amount): price or prepare the trade
- build_transaction(quote): return raw, signable transaction bytes

Supported venues:
- PumpPortal (bonding-curve trading, before graduation)
- PumpSwap via pumpapi.fun (after graduation, preferred)
- Jupiter aggregator (after graduation, fallback)

Any network error, non-success response or missing transaction payload is
raised as VenueError so the purchaser can move on to the next venue.
"""

import base64
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

import requests

from .exceptions import VenueError

logger = logging.getLogger(__name__)

WRAPPED_SOL_MINT = "So11111111111111111111111111111111111111112"
LAMPORTS_PER_SOL = 1_000_000_000


@dataclass
class VenueConfig:
    """Configuration for a market venue."""

    name: str
    base_url: str
    timeout: float = 15.0
    slippage_percent: float = 10.0
    # Aggregator routes take slippage in basis points (1% = 100)
    slippage_bps: int = 500
    priority_fee: float = 0.0005
    extra_params: dict = field(default_factory=dict)


@dataclass
class Quote:
    """A prepared trade on one venue."""

    venue: str
    fee_amount: float
    request: dict[str, Any]
    expected_out: int | None = None
    raw: Any = None


class Venue(ABC):
    """
    Abstract base class for market venues.

    Venues only prepare transactions. Signing, broadcasting and measuring
    what actually arrived are the purchaser's job.
    """

    def __init__(
        self,
        config: VenueConfig,
        token_mint: str,
        payer: str,
        session: requests.Session | None = None,
    ):
        """
        Initialize the venue.

        Args:
            config: Venue configuration
            token_mint: Reward token mint address
            payer: Treasury address that signs and receives
            session: Optional shared HTTP session
        """
        self.config = config
        self.name = config.name
        self.token_mint = token_mint
        self.payer = payer
        self.session = session or requests.Session()

    @abstractmethod
    def quote(self, fee_amount: float) -> Quote:
        """Prepare a buy of `fee_amount` native currency worth of tokens."""

    @abstractmethod
    def build_transaction(self, quote: Quote) -> bytes:
        """Return raw signable transaction bytes for a quote."""

    def _request(self, method: str, path: str, **kwargs) -> requests.Response:
        url = f"{self.config.base_url.rstrip('/')}/{path.lstrip('/')}"
        try:
            response = self.session.request(method, url, timeout=self.config.timeout, **kwargs)
        except requests.RequestException as e:
            raise VenueError(self.name, f"request failed: {e}", action=path, cause=e) from e

        if not response.ok:
            raise VenueError(
                self.name,
                f"HTTP {response.status_code} - {response.text[:200]}",
                action=path,
            )
        return response

    def _json(self, response: requests.Response) -> dict[str, Any]:
        try:
            data = response.json()
        except ValueError as e:
            raise VenueError(self.name, "response is not JSON", cause=e) from e
        if not isinstance(data, dict):
            raise VenueError(self.name, "unexpected response shape")
        return data

    def _decode_base64(self, payload: Any) -> bytes:
        if not payload:
            raise VenueError(self.name, "no transaction returned")
        try:
            return base64.b64decode(payload)
        except (ValueError, TypeError) as e:
            raise VenueError(self.name, "transaction payload is not base64", cause=e) from e


class PumpPortalVenue(Venue):
    """
    PumpPortal local-trade API for tokens still on the bonding curve.

    The response body is the raw serialized transaction (not base64).
    """

    def __init__(self, token_mint: str, payer: str, config: VenueConfig | None = None, **kwargs):
        if config is None:
            config = VenueConfig(
                name="pumpportal",
                base_url="https://pumpportal.fun/api",
                priority_fee=0.0001,
            )
        super().__init__(config, token_mint, payer, **kwargs)

    def quote(self, fee_amount: float) -> Quote:
        payload = {
            "publicKey": self.payer,
            "action": "buy",
            "mint": self.token_mint,
            "denominatedInSol": "true",
            "amount": fee_amount,
            "slippage": self.config.slippage_percent,
            "priorityFee": self.config.priority_fee,
            "pool": "pump",
        }
        return Quote(venue=self.name, fee_amount=fee_amount, request=payload)

    def build_transaction(self, quote: Quote) -> bytes:
        response = self._request("POST", "trade-local", json=quote.request)
        if not response.content:
            raise VenueError(self.name, "no transaction returned")
        logger.debug("PumpPortal transaction received (%d bytes)", len(response.content))
        return response.content


class PumpSwapVenue(Venue):
    """PumpSwap trading through pumpapi.fun for graduated tokens."""

    def __init__(self, token_mint: str, payer: str, config: VenueConfig | None = None, **kwargs):
        if config is None:
            config = VenueConfig(name="pumpswap", base_url="https://pumpapi.fun/api")
        super().__init__(config, token_mint, payer, **kwargs)

    def quote(self, fee_amount: float) -> Quote:
        payload = {
            "action": "buy",
            "mint": self.token_mint,
            "amount": fee_amount,
            "denominatedInSol": "true",
            "slippage": self.config.slippage_percent,
            "priorityFee": self.config.priority_fee,
            "publicKey": self.payer,
        }
        return Quote(venue=self.name, fee_amount=fee_amount, request=payload)

    def build_transaction(self, quote: Quote) -> bytes:
        data = self._json(self._request("POST", "trade", json=quote.request))
        if not data.get("success"):
            raise VenueError(self.name, data.get("error") or "trade request unsuccessful")
        return self._decode_base64(data.get("transaction"))


class JupiterVenue(Venue):
    """Jupiter aggregator: a real quote followed by a swap build."""

    def __init__(self, token_mint: str, payer: str, config: VenueConfig | None = None, **kwargs):
        if config is None:
            config = VenueConfig(name="jupiter", base_url="https://quote-api.jup.ag/v6")
        super().__init__(config, token_mint, payer, **kwargs)

    def quote(self, fee_amount: float) -> Quote:
        lamports = int(fee_amount * LAMPORTS_PER_SOL)
        params = {
            "inputMint": WRAPPED_SOL_MINT,
            "outputMint": self.token_mint,
            "amount": lamports,
            "slippageBps": self.config.slippage_bps,
        }
        data = self._json(self._request("GET", "quote", params=params))
        if data.get("error") or "outAmount" not in data:
            raise VenueError(self.name, f"quote failed: {data.get('error', 'no outAmount')}")

        return Quote(
            venue=self.name,
            fee_amount=fee_amount,
            request=params,
            expected_out=int(data["outAmount"]),
            raw=data,
        )

    def build_transaction(self, quote: Quote) -> bytes:
        body = {
            "quoteResponse": quote.raw,
            "userPublicKey": self.payer,
            "wrapAndUnwrapSol": True,
            "dynamicComputeUnitLimit": True,
            "prioritizationFeeLamports": {
                "priorityLevelWithMaxLamports": {
                    "maxLamports": 100_000,
                    "priorityLevel": "high",
                }
            },
        }
        data = self._json(self._request("POST", "swap", json=body))
        return self._decode_base64(data.get("swapTransaction"))
