# ============================================
# MINTS & UNITS
# ============================================
WSOL_MINT = "So11111111111111111111111111111111111111112"
LAMPORTS_PER_SOL = 1_000_000_000

# ============================================
# API ENDPOINTS
# ============================================
JUPITER_QUOTE_API = "https://quote-api.jup.ag/v6"
JUPITER_LITE_API = "https://lite-api.jup.ag/swap/v1"
JUPITER_TOKEN_LIST_API = "https://lite-api.jup.ag/tokens/v1/tagged/verified"
JUPITER_PRICE_API = "https://lite-api.jup.ag/price/v2"
DEXSCREENER_API_BASE = "https://api.dexscreener.com"
DEFAULT_RPC_URL = "https://api.mainnet-beta.solana.com"

# ============================================
# EXECUTION
# ============================================
BASE_SLIPPAGE_BPS = 100           # 1%
PROBE_AMOUNT_RAW = 1              # Smallest unit quoted for route discovery
CONFIRM_TIMEOUT_SEC = 60

# ============================================
# STRATEGY DEFAULTS
# ============================================
DEFAULT_BUY_AMOUNT_SOL = 0.01
DEFAULT_PROFIT_TARGET1 = 20.0
DEFAULT_SELL_PERCENT1 = 50.0
DEFAULT_STOP_LOSS_PCT = 15.0
DEFAULT_MAX_ACTIVE_TRADES = 1
FAST_LISTING_MAX_AGE_MIN = 30.0   # fast_listing only accepts tokens younger than this
MIN_RESERVE_SOL = 0.005           # Kept aside for fees when checking balance

# ============================================
# DEDUP CACHE
# ============================================
DEDUP_TTL_SEC = 24 * 60 * 60
DEDUP_HIGH_WATER = 500
DEDUP_EVICT_BATCH = 50
DEDUP_HARD_CAP = 1000

# ============================================
# TIMERS (seconds)
# ============================================
SCAN_INTERVAL_SEC = 5.0
FEED_REFRESH_SEC = 60.0
TOKEN_CACHE_TTL_SEC = 60.0
MONITOR_POLL_SEC = 2.0
