"""
TrackArena server.

Wires configuration, chain gateway, venues, notifier and storage into one
Arena, resumes the round and serves the HTTP API.
"""

import logging
import os
import sys

from .arena import Arena
from .chain import SolanaGateway, load_keypair
from .config import ArenaConfig
from .exceptions import ConfigError
from .market import MarketPurchaser
from .monitoring.logging import configure_logging
from .notifier import TelegramNotifier
from .storage import get_storage_backend
from .venues import JupiterVenue, PumpPortalVenue, PumpSwapVenue, VenueConfig

logger = logging.getLogger(__name__)


def build_venues(config: ArenaConfig, payer: str):
    """Venue chains: (bonding curve, graduated)."""
    common = {"timeout": config.venue_timeout_seconds, "slippage_percent": config.slippage_percent}
    bonding = [
        PumpPortalVenue(
            config.token_mint, payer,
            VenueConfig(name="pumpportal", base_url="https://pumpportal.fun/api",
                        priority_fee=0.0001, **common),
        ),
    ]
    graduated = [
        PumpSwapVenue(
            config.token_mint, payer,
            VenueConfig(name="pumpswap", base_url="https://pumpapi.fun/api", **common),
        ),
        JupiterVenue(
            config.token_mint, payer,
            VenueConfig(name="jupiter", base_url="https://quote-api.jup.ag/v6",
                        slippage_bps=config.aggregator_slippage_bps, **common),
        ),
    ]
    return bonding, graduated


def build_arena(config: ArenaConfig) -> Arena:
    """
    Build a production Arena from configuration.

    Raises:
        ConfigError: On missing or malformed settings, before any state is loaded
    """
    config.validate(require_credentials=True)
    keypair = load_keypair(config.private_key)

    gateway = SolanaGateway(config.rpc_url, keypair, config.token_mint)
    bonding, graduated = build_venues(config, gateway.treasury_address)
    purchaser = MarketPurchaser(
        gateway, bonding, graduated, settle_delay=config.settle_delay_seconds
    )
    storage = get_storage_backend(config.storage_backend, config.state_file)

    return Arena(
        config=config,
        gateway=gateway,
        purchaser=purchaser,
        notifier=TelegramNotifier(config.bot_token),
        storage=storage,
    )


def run_server(config: ArenaConfig | None = None) -> None:
    """Resume the arena and run the HTTP server until interrupted."""
    from .api import create_app

    config = config or ArenaConfig.from_env()
    arena = build_arena(config)
    phase = arena.resume()

    treasury = arena.treasury
    logger.info(
        "TrackArena listening on http://%s:%d (round %d, %s)",
        config.host, config.port, arena.round.round_number, phase.value,
        extra={
            "round_pool": treasury.round_pool,
            "perpetual_reserve": treasury.perpetual_reserve,
            "bonus_amount": treasury.bonus_amount(),
            "treasury": arena.gateway.treasury_address,
        },
    )

    app = create_app(arena)
    try:
        app.run(host=config.host, port=config.port, threaded=True, use_reloader=False)
    finally:
        arena.shutdown()


def main() -> int:
    configure_logging(level=os.getenv("LOG_LEVEL", "INFO"))
    try:
        run_server()
    except ConfigError as e:
        logger.critical("Configuration error: %s", e.message, extra=e.context.details)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
