"""
Small helpers shared by the data service and scheduler.
"""

import time

from marketfeed.constants import DEFAULT_RESOLUTION, MAX_BARS, RESOLUTION_CONFIG

POLICY_ID_LENGTH = 56


def parse_currency(currency: str) -> tuple[str, str]:
    """Split a currency id into (policy_id, asset_name)."""
    if not currency or len(currency) < POLICY_ID_LENGTH:
        return "", ""
    return currency[:POLICY_ID_LENGTH], currency[POLICY_ID_LENGTH:]


def hex_to_ascii(value: str) -> str:
    """Decode a hex asset name, keeping printable ASCII only."""
    chars = []
    for i in range(0, len(value), 2):
        try:
            code = int(value[i : i + 2], 16)
        except ValueError:
            continue
        if 32 <= code <= 126:
            chars.append(chr(code))
    return "".join(chars)


def calculate_bars(from_ts: int, to_ts: int, resolution: str) -> int:
    config = RESOLUTION_CONFIG.get(resolution)
    if not config:
        return 0
    return int((to_ts - from_ts) // config["interval"])


def get_valid_resolutions(from_ts: int, to_ts: int) -> dict[str, object]:
    """
    Split resolutions into those that fit MAX_BARS for the range and those
    that don't, with a suggested maximum range for the latter.
    """
    valid: list[str] = []
    invalid: list[str] = []
    suggestions: dict[str, str] = {}

    for resolution, config in RESOLUTION_CONFIG.items():
        if calculate_bars(from_ts, to_ts, resolution) <= MAX_BARS:
            valid.append(resolution)
            continue

        invalid.append(resolution)
        max_seconds = MAX_BARS * config["interval"]
        max_days = max_seconds // 86400
        max_hours = max_seconds // 3600
        if max_days >= 1:
            amount, unit = max_days, "day"
        elif max_hours >= 1:
            amount, unit = max_hours, "hour"
        else:
            amount, unit = max_seconds // 60, "minute"
        plural = "s" if amount > 1 else ""
        suggestions[resolution] = f"Reduce timeframe to {amount} {unit}{plural} or less"

    return {"valid": valid, "invalid": invalid, "suggestions": suggestions}


def historical_cache_key(ticker: str, resolution: str, from_ts: int, to_ts: int) -> str:
    # Round to the minute so small clock drift still hits the cache
    rounded_from = (int(from_ts) // 60) * 60
    rounded_to = (int(to_ts) // 60) * 60
    return f"{ticker}_{resolution}_{rounded_from}_{rounded_to}"


def time_range_for(resolution: str, now: float | None = None) -> tuple[int, int]:
    """Default (from, to) window in epoch seconds for a resolution."""
    config = RESOLUTION_CONFIG.get(resolution) or RESOLUTION_CONFIG[DEFAULT_RESOLUTION]
    end = int(now if now is not None else time.time())
    start = end - int(config["lookback"].total_seconds())
    return start, end
