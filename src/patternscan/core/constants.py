# Constants (centralize defaults instead of hardcoding inline)
DEFAULT_TIMEFRAME = "D1"     # default timeframe parameter
MIN_BARS = 20                # smallest series the engine scans
DEFAULT_LIMIT = 365          # default bar cap for the request-level tool
DISPLAY_DECIMALS = 8         # rounding applied to numeric response fields

# Freshness filter: a pattern must end within this many days of "now"
DEFAULT_RELEVANCE_DAYS = 7
RELEVANCE_DAYS_BY_TIMEFRAME = {
    "W1": 21,
    "MN1": 60,
}

# Approximate seconds per bar for timeframe window calculations
TIMEFRAME_SECONDS = {
    "M1": 60,
    "M5": 300,
    "M15": 900,
    "M30": 1800,
    "H1": 3600,
    "H2": 7200,
    "H4": 14400,
    "H6": 21600,
    "H8": 28800,
    "H12": 43200,
    "D1": 86400,
    "W1": 604800,
    # For months, use a rough average of 30 days
    "MN1": 2592000,
}

SECONDS_PER_DAY = 86400


def bars_per_day(timeframe: str) -> float:
    """Number of bars that make up one calendar day for a timeframe."""
    secs = TIMEFRAME_SECONDS.get(str(timeframe).upper(), TIMEFRAME_SECONDS[DEFAULT_TIMEFRAME])
    return float(SECONDS_PER_DAY) / float(secs)


def relevance_days_for(timeframe: str) -> int:
    return int(RELEVANCE_DAYS_BY_TIMEFRAME.get(str(timeframe).upper(), DEFAULT_RELEVANCE_DAYS))
