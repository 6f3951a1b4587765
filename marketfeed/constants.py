"""
Cache lifetimes, store names and chart resolution settings.
"""

from datetime import timedelta

# Durable cache stores
STORE_SYMBOLS = "symbols"
STORE_TOKEN_CACHE = "tokenCache"
STORE_LOGOS = "logos"
STORE_HISTORICAL = "historical"

DATA_STORES = (STORE_SYMBOLS, STORE_TOKEN_CACHE, STORE_LOGOS, STORE_HISTORICAL)

# Bumping this drops and recreates the cache tables on startup
SCHEMA_VERSION = 4

# Cache lifetimes
SYMBOLS_TTL = timedelta(minutes=30)
TOKEN_DATA_TTL = timedelta(minutes=10)
PRICE_DATA_TTL = timedelta(minutes=5)
LOGO_TTL = timedelta(hours=24)
HISTORICAL_DATA_TTL = timedelta(minutes=5)

MAX_SEARCH_RESULTS = 50
MAX_BARS = 240

# interval: seconds per bar
# update_interval: auto-sync tick in seconds
# lookback: window shown when auto-sync recomputes the range
RESOLUTION_CONFIG: dict[str, dict[str, int | timedelta]] = {
    "1min": {
        "interval": 60,
        "max_bars": 240,
        "update_interval": 15,
        "lookback": timedelta(hours=4),
    },
    "5min": {
        "interval": 300,
        "max_bars": 240,
        "update_interval": 30,
        "lookback": timedelta(hours=12),
    },
    "15min": {
        "interval": 900,
        "max_bars": 240,
        "update_interval": 60,
        "lookback": timedelta(days=1),
    },
    "60min": {
        "interval": 3600,
        "max_bars": 240,
        "update_interval": 300,
        "lookback": timedelta(days=3),
    },
    "1d": {
        "interval": 86400,
        "max_bars": 240,
        "update_interval": 1800,
        "lookback": timedelta(days=30),
    },
}

DEFAULT_RESOLUTION = "1d"
