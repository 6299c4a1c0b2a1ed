# ============================
# SEED SCANNER CONFIG
# ============================
# All values overridable via environment variables.

import os


def _env_bool(name, default):
    return os.getenv(name, str(default)).strip().lower() in ("1", "true", "yes", "on")


# ============================
# LOGGING
# ============================

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_DIR = os.getenv("LOG_DIR", "data/logs")
LOG_FILE = os.getenv("LOG_FILE", "seed_scanner.log")
LOG_MAX_BYTES = int(os.getenv("LOG_MAX_BYTES", str(10 * 1024 * 1024)))
LOG_BACKUP_COUNT = int(os.getenv("LOG_BACKUP_COUNT", "3"))

# ============================
# API KEYS / ENDPOINTS
# ============================

ETHERSCAN_API_KEY = os.getenv("ETHERSCAN_API_KEY", "")
ETHERSCAN_URL = os.getenv("ETHERSCAN_URL", "https://api.etherscan.io/api")
BLOCKCHAIN_INFO_URL = os.getenv("BLOCKCHAIN_INFO_URL", "https://blockchain.info/rawaddr")
SOLANA_RPC_URL = os.getenv("SOLANA_RPC_URL", "https://api.mainnet-beta.solana.com")
COINGECKO_PRICE_URL = os.getenv(
    "COINGECKO_PRICE_URL",
    "https://api.coingecko.com/api/v3/simple/price"
)

HTTP_TIMEOUT = float(os.getenv("HTTP_TIMEOUT", "10"))

# ============================
# BALANCE CHECKING
# ============================

# Real API mode off = simulated balances (no network)
USE_REAL_API = _env_bool("USE_REAL_API", False)

SUPPORTED_CURRENCIES = ("ETH", "BTC", "SOL")

# Requests per second per upstream (free tiers)
REQUESTS_PER_SECOND = {
    "ETH": float(os.getenv("ETH_REQUESTS_PER_SECOND", "2.5")),  # balance + nonce per query
    "BTC": float(os.getenv("BTC_REQUESTS_PER_SECOND", "5")),
    "SOL": float(os.getenv("SOL_REQUESTS_PER_SECOND", "5")),
}
SIMULATED_REQUESTS_PER_SECOND = float(os.getenv("SIMULATED_REQUESTS_PER_SECOND", "1000"))

MAX_RETRIES = int(os.getenv("MAX_RETRIES", "3"))
BACKOFF_BASE_SECONDS = float(os.getenv("BACKOFF_BASE_SECONDS", "1.0"))

# Used when the price service is unreachable
FALLBACK_PRICES_USD = {
    "ETH": 2000.0,
    "BTC": 45000.0,
    "SOL": 100.0,
}
PRICE_CACHE_TTL = int(os.getenv("PRICE_CACHE_TTL", "60"))

# Simulation mode
SIMULATED_HIT_PROBABILITY = float(os.getenv("SIMULATED_HIT_PROBABILITY", "0.00001"))
SIMULATED_DELAY_SECONDS = float(os.getenv("SIMULATED_DELAY_SECONDS", "0.0"))

# ============================
# SCANNING
# ============================

DEFAULT_WORD_COUNT = int(os.getenv("DEFAULT_WORD_COUNT", "12"))
DEFAULT_CURRENCIES = tuple(
    c.strip().upper() for c in os.getenv("DEFAULT_CURRENCIES", "ETH,BTC").split(",") if c.strip()
)
DEFAULT_STRATEGY = os.getenv("DEFAULT_STRATEGY", "adaptive")
MAX_BATCH_COUNT = int(os.getenv("MAX_BATCH_COUNT", "100000"))
PROGRESS_LOG_EVERY = int(os.getenv("PROGRESS_LOG_EVERY", "1000"))

# ============================
# PERSISTENCE
# ============================

STORE_BACKEND = os.getenv("STORE_BACKEND", "JSON")  # JSON / SQLITE / MEMORY
STORE_BASE_PATH = os.getenv("STORE_BASE_PATH", "data/learning")
STORE_DB_PATH = os.getenv("STORE_DB_PATH", "data/learning.db")
