"""Config package"""
import os
from dataclasses import dataclass
from dotenv import load_dotenv

# Load environment variables
load_dotenv()

from .strategy_config import (
    StrategyConfig,
    Credential,
    UserAccount,
    UserRegistry,
    load_users,
)
from ..constants import (
    JUPITER_QUOTE_API, JUPITER_LITE_API, JUPITER_TOKEN_LIST_API,
    DEXSCREENER_API_BASE, DEFAULT_RPC_URL, BASE_SLIPPAGE_BPS,
    SCAN_INTERVAL_SEC, FEED_REFRESH_SEC, TOKEN_CACHE_TTL_SEC, MONITOR_POLL_SEC,
    DEDUP_TTL_SEC, DEDUP_HIGH_WATER, DEDUP_EVICT_BATCH, DEDUP_HARD_CAP,
)


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


def _env_float(name: str, default: float) -> float:
    return float(os.getenv(name, str(default)))


def _env_int(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))


# ============================================
# CREDENTIALS & ENDPOINTS
# ============================================
RPC_URL = os.getenv("RPC_URL", DEFAULT_RPC_URL)
TG_TOKEN = os.getenv("TELEGRAM_BOT_TOKEN")

# Default to True for safety if env var missing
PAPER_TRADING_MODE = _env_bool("PAPER_TRADING_MODE", "True")


@dataclass
class Settings:
    # Endpoints
    RPC_URL: str = DEFAULT_RPC_URL
    JUPITER_QUOTE_API_BASE: str = JUPITER_QUOTE_API
    JUPITER_LITE_API_BASE: str = JUPITER_LITE_API
    JUPITER_TOKEN_LIST_URL: str = JUPITER_TOKEN_LIST_API
    DEXSCREENER_API_BASE: str = DEXSCREENER_API_BASE
    DEXSCREENER_SEARCH_QUERY: str = "sol"
    DEXSCREENER_MAX_RETRIES: int = 3
    DEXSCREENER_RETRY_BACKOFF_SEC: float = 1.0
    API_TIMEOUT_SEC: float = 10.0
    SLIPPAGE_BPS: int = BASE_SLIPPAGE_BPS

    # Telegram
    TELEGRAM_BOT_TOKEN: str = ""
    TELEGRAM_ENABLED: bool = False

    # Paper trading
    PAPER_TRADING_MODE: bool = True
    PAPER_INITIAL_BALANCE: float = 10.0
    SIM_LATENCY_SEC: float = 0.2
    SIM_FAILURE_RATE: float = 0.0

    # Files
    USERS_FILE: str = "users.yaml"
    POSITION_SNAPSHOT_PATH: str = "data/positions.json"
    LOG_DIR: str = "logs"
    LOG_LEVEL: str = "INFO"

    # Timers
    SCAN_INTERVAL_SEC: float = SCAN_INTERVAL_SEC
    FEED_REFRESH_SEC: float = FEED_REFRESH_SEC
    TOKEN_CACHE_TTL_SEC: float = TOKEN_CACHE_TTL_SEC
    MONITOR_POLL_SEC: float = MONITOR_POLL_SEC

    # Dedup cache
    DEDUP_TTL_SEC: float = DEDUP_TTL_SEC
    DEDUP_HIGH_WATER: int = DEDUP_HIGH_WATER
    DEDUP_EVICT_BATCH: int = DEDUP_EVICT_BATCH
    DEDUP_HARD_CAP: int = DEDUP_HARD_CAP


def get_settings() -> Settings:
    """Build Settings from the environment (values from .env override defaults)."""
    return Settings(
        RPC_URL=RPC_URL,
        JUPITER_QUOTE_API_BASE=os.getenv("JUPITER_QUOTE_API", JUPITER_QUOTE_API),
        JUPITER_LITE_API_BASE=os.getenv("JUPITER_LITE_API", JUPITER_LITE_API),
        JUPITER_TOKEN_LIST_URL=os.getenv("JUPITER_TOKEN_LIST_URL", JUPITER_TOKEN_LIST_API),
        DEXSCREENER_API_BASE=os.getenv("DEXSCREENER_API_BASE", DEXSCREENER_API_BASE),
        DEXSCREENER_SEARCH_QUERY=os.getenv("DEXSCREENER_SEARCH_QUERY", "sol"),
        DEXSCREENER_MAX_RETRIES=_env_int("DEXSCREENER_MAX_RETRIES", 3),
        DEXSCREENER_RETRY_BACKOFF_SEC=_env_float("DEXSCREENER_RETRY_BACKOFF_SEC", 1.0),
        API_TIMEOUT_SEC=_env_float("API_TIMEOUT_SEC", 10.0),
        SLIPPAGE_BPS=_env_int("SLIPPAGE_BPS", BASE_SLIPPAGE_BPS),
        TELEGRAM_BOT_TOKEN=TG_TOKEN or "",
        TELEGRAM_ENABLED=_env_bool("TELEGRAM_ENABLED", "True") and bool(TG_TOKEN),
        PAPER_TRADING_MODE=PAPER_TRADING_MODE,
        PAPER_INITIAL_BALANCE=_env_float("PAPER_INITIAL_BALANCE", 10.0),
        SIM_LATENCY_SEC=_env_float("SIM_LATENCY_SEC", 0.2),
        SIM_FAILURE_RATE=_env_float("SIM_FAILURE_RATE", 0.0),
        USERS_FILE=os.getenv("USERS_FILE", "users.yaml"),
        POSITION_SNAPSHOT_PATH=os.getenv("POSITION_SNAPSHOT_PATH", "data/positions.json"),
        LOG_DIR=os.getenv("LOG_DIR", "logs"),
        LOG_LEVEL=os.getenv("LOG_LEVEL", "INFO").upper(),
        SCAN_INTERVAL_SEC=_env_float("SCAN_INTERVAL_SEC", SCAN_INTERVAL_SEC),
        FEED_REFRESH_SEC=_env_float("FEED_REFRESH_SEC", FEED_REFRESH_SEC),
        TOKEN_CACHE_TTL_SEC=_env_float("TOKEN_CACHE_TTL_SEC", TOKEN_CACHE_TTL_SEC),
        MONITOR_POLL_SEC=_env_float("MONITOR_POLL_SEC", MONITOR_POLL_SEC),
        DEDUP_TTL_SEC=_env_float("DEDUP_TTL_SEC", DEDUP_TTL_SEC),
        DEDUP_HIGH_WATER=_env_int("DEDUP_HIGH_WATER", DEDUP_HIGH_WATER),
        DEDUP_EVICT_BATCH=_env_int("DEDUP_EVICT_BATCH", DEDUP_EVICT_BATCH),
        DEDUP_HARD_CAP=_env_int("DEDUP_HARD_CAP", DEDUP_HARD_CAP),
    )
