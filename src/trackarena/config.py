"""
TrackArena - Configuration

All runtime settings come from environment variables (a local .env file is
loaded first). Required credentials are checked once at startup; a missing
one raises ConfigError before any round state is touched.

Environment Variables:
    BOT_TOKEN                       Chat bot token (required)
    SOLANA_RPC_URL                  JSON-RPC endpoint (required)
    BOT_PRIVATE_KEY                 Treasury keypair, JSON byte array or base58 (required)
    TOKEN_MINT                      Reward token mint address (required)
    TRANS_FEE_WALLET                Wallet receiving the trans fee
    ARENA_CHANNEL / MAIN_CHANNEL    Channels for tracks and announcements
    SUBMISSION_SECONDS=300
    COOLDOWN_SECONDS=30
    EMPTY_ROUND_COOLDOWN_SECONDS=30
    VOTING_DECISION_BUFFER_SECONDS=60
    VOTING_PER_TRACK_SECONDS=120
    PAYMENT_TIMEOUT_SECONDS=600
    SWEEP_INTERVAL_SECONDS=120
    MIN_ENTRY_AMOUNT=0.01
    MAX_ENTRY_AMOUNT=100
    TRANS_FEE_RATE=0.10
    ROUND_POOL_SHARE=0.65
    VOTER_REWARD_SHARE=0.20
    BONUS_ODDS=500
    SETTLE_DELAY_SECONDS=3
    STORAGE_BACKEND=json
    ARENA_STATE_FILE
"""

import os
from dataclasses import dataclass, field

from .chain import is_valid_address
from .exceptions import ConfigError

REQUIRED_ENV = ("BOT_TOKEN", "SOLANA_RPC_URL", "BOT_PRIVATE_KEY", "TOKEN_MINT")
STORAGE_BACKENDS = ("json", "memory")

# Prize weights for 1st..5th place
DEFAULT_PRIZE_WEIGHTS = (0.40, 0.25, 0.20, 0.10, 0.05)


def default_state_file() -> str:
    """Persist under /data when a volume is mounted there."""
    if os.path.isdir("/data"):
        return "/data/submissions.json"
    return "./submissions.json"


@dataclass
class ArenaConfig:
    """Settings for one arena process."""

    # Credentials
    bot_token: str = field(default="", repr=False)
    rpc_url: str = ""
    private_key: str = field(default="", repr=False)
    token_mint: str = ""
    trans_fee_wallet: str = ""

    # Channels
    arena_channel: str = "@xposure_tracks_arena"
    main_channel: str = "@xposuretoken"

    # Phase timing (seconds)
    submission_seconds: float = 300.0
    cooldown_seconds: float = 30.0
    empty_round_cooldown_seconds: float = 30.0
    voting_decision_buffer_seconds: float = 60.0
    voting_per_track_seconds: float = 120.0

    # Pending entries
    payment_timeout_seconds: float = 600.0
    sweep_interval_seconds: float = 120.0

    # Entry fee bounds (native currency)
    min_entry_amount: float = 0.01
    max_entry_amount: float = 100.0

    # Economics
    trans_fee_rate: float = 0.10
    round_pool_share: float = 0.65
    voter_reward_share: float = 0.20
    prize_weights: tuple = DEFAULT_PRIZE_WEIGHTS
    bonus_odds: int = 500

    # Market
    settle_delay_seconds: float = 3.0
    venue_timeout_seconds: float = 15.0
    slippage_percent: float = 10.0
    aggregator_slippage_bps: int = 500

    # Persistence
    storage_backend: str = "json"
    state_file: str = field(default_factory=default_state_file)

    # HTTP
    host: str = "0.0.0.0"
    port: int = 3000
    api_key: str | None = field(default=None, repr=False)
    require_auth: bool = False

    @classmethod
    def from_env(cls, load_dotenv_file: bool = True) -> "ArenaConfig":
        """Create configuration from environment variables."""
        if load_dotenv_file:
            from dotenv import load_dotenv
            load_dotenv()

        try:
            config = cls(
                bot_token=os.getenv("BOT_TOKEN", ""),
                rpc_url=os.getenv("SOLANA_RPC_URL", ""),
                private_key=os.getenv("BOT_PRIVATE_KEY", ""),
                token_mint=os.getenv("TOKEN_MINT", ""),
                trans_fee_wallet=os.getenv("TRANS_FEE_WALLET", ""),
                arena_channel=os.getenv("ARENA_CHANNEL", "@xposure_tracks_arena"),
                main_channel=os.getenv("MAIN_CHANNEL", "@xposuretoken"),
                submission_seconds=float(os.getenv("SUBMISSION_SECONDS", "300")),
                cooldown_seconds=float(os.getenv("COOLDOWN_SECONDS", "30")),
                empty_round_cooldown_seconds=float(
                    os.getenv("EMPTY_ROUND_COOLDOWN_SECONDS", "30")
                ),
                voting_decision_buffer_seconds=float(
                    os.getenv("VOTING_DECISION_BUFFER_SECONDS", "60")
                ),
                voting_per_track_seconds=float(os.getenv("VOTING_PER_TRACK_SECONDS", "120")),
                payment_timeout_seconds=float(os.getenv("PAYMENT_TIMEOUT_SECONDS", "600")),
                sweep_interval_seconds=float(os.getenv("SWEEP_INTERVAL_SECONDS", "120")),
                min_entry_amount=float(os.getenv("MIN_ENTRY_AMOUNT", "0.01")),
                max_entry_amount=float(os.getenv("MAX_ENTRY_AMOUNT", "100")),
                trans_fee_rate=float(os.getenv("TRANS_FEE_RATE", "0.10")),
                round_pool_share=float(os.getenv("ROUND_POOL_SHARE", "0.65")),
                voter_reward_share=float(os.getenv("VOTER_REWARD_SHARE", "0.20")),
                bonus_odds=int(os.getenv("BONUS_ODDS", "500")),
                settle_delay_seconds=float(os.getenv("SETTLE_DELAY_SECONDS", "3")),
                venue_timeout_seconds=float(os.getenv("VENUE_TIMEOUT_SECONDS", "15")),
                slippage_percent=float(os.getenv("SLIPPAGE_PERCENT", "10")),
                aggregator_slippage_bps=int(os.getenv("AGGREGATOR_SLIPPAGE_BPS", "500")),
                storage_backend=os.getenv("STORAGE_BACKEND", "json").lower(),
                state_file=os.getenv("ARENA_STATE_FILE", default_state_file()),
                host=os.getenv("HOST", "0.0.0.0"),
                port=int(os.getenv("PORT", "3000")),
                api_key=os.getenv("ARENA_API_KEY") or None,
                require_auth=os.getenv("ARENA_REQUIRE_AUTH", "false").lower() == "true",
            )
        except ValueError as e:
            raise ConfigError(f"Malformed numeric setting: {e}", action="from_env", cause=e) from e

        return config

    def validate(self, require_credentials: bool = True) -> None:
        """
        Check settings for consistency.

        Raises:
            ConfigError: On the first problem found
        """
        if require_credentials:
            missing = [
                name for name, value in (
                    ("BOT_TOKEN", self.bot_token),
                    ("SOLANA_RPC_URL", self.rpc_url),
                    ("BOT_PRIVATE_KEY", self.private_key),
                    ("TOKEN_MINT", self.token_mint),
                )
                if not value
            ]
            if missing:
                raise ConfigError(
                    f"Missing required settings: {', '.join(missing)}",
                    action="validate",
                    details={"missing": missing},
                )
            if not is_valid_address(self.token_mint):
                raise ConfigError(
                    "TOKEN_MINT is not a valid base58 address",
                    action="validate",
                    details={"token_mint": self.token_mint},
                )

        if not 0 < self.min_entry_amount <= self.max_entry_amount:
            raise ConfigError("Entry amount bounds must satisfy 0 < min <= max", action="validate")

        for name in ("trans_fee_rate", "round_pool_share", "voter_reward_share"):
            value = getattr(self, name)
            if not 0 <= value < 1:
                raise ConfigError(f"{name} must be in [0, 1)", action="validate")

        if len(self.prize_weights) > 5 or abs(sum(self.prize_weights) - 1.0) > 1e-9:
            raise ConfigError("Prize weights must have at most 5 places summing to 1", action="validate")

        if self.bonus_odds < 1:
            raise ConfigError("bonus_odds must be positive", action="validate")

        if self.storage_backend not in STORAGE_BACKENDS:
            raise ConfigError(
                f"Unknown STORAGE_BACKEND: {self.storage_backend}",
                action="validate",
                details={"supported": list(STORAGE_BACKENDS)},
            )

        if self.aggregator_slippage_bps < 0:
            raise ConfigError("aggregator_slippage_bps must not be negative", action="validate")

        if self.require_auth and not self.api_key:
            raise ConfigError("ARENA_REQUIRE_AUTH is set but ARENA_API_KEY is empty", action="validate")
