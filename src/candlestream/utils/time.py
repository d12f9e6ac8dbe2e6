from datetime import datetime, timedelta, timezone
from typing import Final

# Interval codes understood by kline endpoints, keyed by bucket width.
INTERVAL_CODES: Final[dict[timedelta, str]] = {
    timedelta(minutes=1): "1m",
    timedelta(minutes=5): "5m",
    timedelta(minutes=15): "15m",
    timedelta(minutes=30): "30m",
    timedelta(hours=1): "1h",
    timedelta(hours=4): "4h",
    timedelta(days=1): "1d",
    timedelta(weeks=1): "1w",
}


def utc_now() -> datetime:
    """Returns the current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(dt: datetime) -> datetime:
    """Returns `dt` in UTC. Naive datetimes are assumed to already be UTC."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def ms_to_datetime(timestamp_ms: int | float) -> datetime:
    """Converts a Unix timestamp in milliseconds to a UTC datetime.

    Raises:
        ValueError: If the timestamp is out of the platform's supported range.
    """
    try:
        return datetime.fromtimestamp(timestamp_ms / 1000, tz=timezone.utc)
    except (OSError, OverflowError, ValueError) as e:
        err_msg = f"Millisecond timestamp '{timestamp_ms}' is out of range."
        raise ValueError(err_msg) from e


def datetime_to_ms(dt: datetime) -> int:
    """Converts a datetime to Unix milliseconds (naive values are taken as UTC)."""
    return int(ensure_utc(dt).timestamp() * 1000)


def format_rfc3339(dt: datetime) -> str:
    """Formats a datetime as an RFC3339 UTC string with millisecond precision.

    Example: "2024-12-26T10:00:00.000Z"
    """
    return ensure_utc(dt).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def interval_to_code(interval: timedelta) -> str:
    """Maps a bucket width to its kline interval code (e.g. 5 minutes -> "5m").

    Raises:
        ValueError: If the interval has no kline equivalent.
    """
    try:
        return INTERVAL_CODES[interval]
    except KeyError:
        err_msg = f"Unsupported bucket interval: {interval}"
        raise ValueError(err_msg) from None
