import base58
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

RAYDIUM_AMM_V4_PROGRAM_ID = "675kPX9MHTjS2zt1qfr1NYHuzeLXfQM9H24wFSUt1Mp8"
WSOL_MINT = "So11111111111111111111111111111111111111112"


class ConfigError(RuntimeError):
    """Required configuration is missing or invalid."""


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    # Database
    database_url: str = "sqlite+aiosqlite:///tokens.db"

    # Helius (Solana RPC + WebSocket + enhanced API)
    helius_api_key: str = ""
    helius_rpc_url: str = ""
    helius_ws_url: str = ""
    helius_max_rps: float = 10.0

    # Pool stream (logsSubscribe)
    raydium_program_id: str = RAYDIUM_AMM_V4_PROGRAM_ID
    stream_commitment: str = "processed"  # "processed" | "finalized"
    ws_ping_interval_sec: float = 30.0
    ws_reconnect_delay_sec: float = 5.0

    # Telegram user client (signal channels)
    telegram_api_id: int = 0
    telegram_api_hash: str = ""
    telegram_session: str = ""  # telethon StringSession — NEVER LOG THIS
    telegram_channel_ids: str = ""  # comma-separated allow-list, e.g. "1625691880,1629064884"

    # Jupiter (price + swap)
    jupiter_api_key: str = ""
    jupiter_price_url: str = "https://api.jup.ag/price/v2"
    jupiter_max_rps: float = 1.0

    # Rugcheck policy
    rugcheck_max_rps: float = 2.0
    allow_mint_authority: bool = False
    allow_freeze_authority: bool = False
    allow_mutable: bool = False

    # Trading
    simulation_mode: bool = True  # no trade is ever dispatched when set
    wallet_private_key: str = ""  # Base58 secret key — NEVER LOG THIS
    wsol_mint: str = WSOL_MINT
    concurrent_transactions: int = 2
    buy_amount_sol: float = 0.05
    slippage_bps: int = 500
    priority_fee_lamports: int = 100000
    buy_initial_delay_sec: float = 0.0

    # Lifecycle monitor
    buy_trigger_pct: float = 200.0  # price more than tripled
    buy_window_hours: float | None = None  # only buy within N hours of discovery
    poll_interval_sec: float = 10.0
    poll_token_delay_sec: float = 0.6
    cleanup_interval_sec: float = 24 * 60 * 60
    token_max_age_hours: int = 72
    event_queue_size: int = 1000
    max_concurrent_events: int = 10  # discovery events handled at once

    # Timeouts for every external call
    external_call_timeout_sec: float = 20.0
    swap_timeout_sec: float = 90.0

    @field_validator("stream_commitment")
    @classmethod
    def _check_commitment(cls, value: str) -> str:
        if value not in ("processed", "confirmed", "finalized"):
            raise ValueError(f"unknown commitment: {value}")
        return value

    @property
    def channel_ids(self) -> set[str]:
        # Telegram reports channel ids with a "-100" prefix in some APIs
        ids = set()
        for raw in self.telegram_channel_ids.split(","):
            raw = raw.strip()
            if raw.startswith("-100"):
                raw = raw[4:]
            if raw:
                ids.add(raw)
        return ids

    @property
    def rpc_url(self) -> str:
        return self.helius_rpc_url or f"https://mainnet.helius-rpc.com/?api-key={self.helius_api_key}"

    @property
    def ws_url(self) -> str:
        return self.helius_ws_url or f"wss://mainnet.helius-rpc.com/?api-key={self.helius_api_key}"


def validate_settings(cfg: Settings) -> None:
    """Raise ConfigError listing every missing required value."""
    missing = []
    if not cfg.helius_api_key:
        missing.append("HELIUS_API_KEY")
    if not cfg.telegram_api_id:
        missing.append("TELEGRAM_API_ID")
    if not cfg.telegram_api_hash:
        missing.append("TELEGRAM_API_HASH")
    if not cfg.telegram_session:
        missing.append("TELEGRAM_SESSION")
    if not cfg.channel_ids:
        missing.append("TELEGRAM_CHANNEL_IDS")
    if not cfg.simulation_mode and not cfg.wallet_private_key:
        missing.append("WALLET_PRIVATE_KEY")
    if missing:
        raise ConfigError(f"Missing required configuration: {', '.join(missing)}")
    if cfg.concurrent_transactions < 1:
        raise ConfigError("CONCURRENT_TRANSACTIONS must be >= 1")
    if cfg.max_concurrent_events < 1:
        raise ConfigError("MAX_CONCURRENT_EVENTS must be >= 1")
    if cfg.wallet_private_key and not _is_keypair(cfg.wallet_private_key):
        raise ConfigError("WALLET_PRIVATE_KEY is not a base58 64-byte secret key")


def _is_keypair(secret: str) -> bool:
    """Check the key decodes before solders sees it (it panics on bad input)."""
    try:
        return len(base58.b58decode(secret.strip())) == 64
    except ValueError:
        return False


settings = Settings()
