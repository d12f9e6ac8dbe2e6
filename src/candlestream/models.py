import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal, InvalidOperation
from typing import Any, Final

from candlestream.errors import MalformedCandleError, UnknownTimeframeError
from candlestream.utils.time import ensure_utc


def to_decimal(value: Any, field_name: str = "value") -> Decimal:
    """Parses a numeric payload value (str, int, float or Decimal) to Decimal.

    Raises:
        MalformedCandleError: If the value is missing, not numeric, or not finite.
    """
    if isinstance(value, bool) or value is None:
        err_msg = f"Field '{field_name}' is not numeric: {value!r}"
        raise MalformedCandleError(err_msg, {"field": field_name})
    if isinstance(value, float) and not math.isfinite(value):
        err_msg = f"Field '{field_name}' is not finite: {value!r}"
        raise MalformedCandleError(err_msg, {"field": field_name})
    try:
        number = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, TypeError, ValueError) as e:
        err_msg = f"Field '{field_name}' is not numeric: {value!r}"
        raise MalformedCandleError(err_msg, {"field": field_name}) from e
    if not number.is_finite():
        err_msg = f"Field '{field_name}' is not finite: {value!r}"
        raise MalformedCandleError(err_msg, {"field": field_name})
    return number


@dataclass(frozen=True, slots=True)
class Candle:
    """One OHLC bar for a fixed-width time bucket.

    `time` is the bucket start in UTC. Prices are non-negative Decimals with
    `low <= open, close <= high`. Instances are immutable; an updated bar is a
    new Candle.

    Raises:
        MalformedCandleError: On construction with a non-numeric, negative or
            inconsistent price, or a `time` that is not a datetime.
    """

    time: datetime
    open: Decimal
    high: Decimal
    low: Decimal
    close: Decimal

    def __post_init__(self) -> None:
        if not isinstance(self.time, datetime):
            err_msg = f"Candle time must be a datetime, got {type(self.time).__name__}"
            raise MalformedCandleError(err_msg, {"field": "time"})
        object.__setattr__(self, "time", ensure_utc(self.time))

        for name in ("open", "high", "low", "close"):
            price = to_decimal(getattr(self, name), name)
            if price < 0:
                err_msg = f"Field '{name}' must be non-negative, got {price}"
                raise MalformedCandleError(err_msg, {"field": name})
            object.__setattr__(self, name, price)

        if not (
            self.low <= self.high
            and self.low <= self.open <= self.high
            and self.low <= self.close <= self.high
        ):
            err_msg = (
                f"Inconsistent OHLC at {self.time.isoformat()}: "
                f"o={self.open} h={self.high} l={self.low} c={self.close}"
            )
            raise MalformedCandleError(err_msg, {"time": self.time.isoformat()})


@dataclass(frozen=True, slots=True)
class TimeframeConfig:
    """A chart range preset: the bucket width and how many buckets to keep.

    The same config drives both the historical request and the live
    subscription, so the two always agree on `bucket_interval`.
    """

    label: str
    bucket_interval: timedelta
    window_limit: int

    def __post_init__(self) -> None:
        if self.bucket_interval <= timedelta(0):
            err_msg = "Bucket interval must be positive."
            raise ValueError(err_msg)
        if not isinstance(self.window_limit, int) or self.window_limit <= 0:
            err_msg = "Window limit must be a positive integer."
            raise ValueError(err_msg)

    @property
    def span(self) -> timedelta:
        """Total time covered by a full window."""
        return self.bucket_interval * self.window_limit


# Chart range presets, in selector order.
TIMEFRAMES: Final[dict[str, TimeframeConfig]] = {
    tf.label: tf
    for tf in (
        TimeframeConfig("15m", timedelta(minutes=1), 15),
        TimeframeConfig("1h", timedelta(minutes=1), 60),
        TimeframeConfig("4h", timedelta(minutes=5), 48),
        TimeframeConfig("1d", timedelta(minutes=15), 96),
        TimeframeConfig("7d", timedelta(hours=1), 168),
    )
}

DEFAULT_TIMEFRAME: Final[str] = "7d"


def get_timeframe(label: str) -> TimeframeConfig:
    """Returns the preset for a label such as "4h".

    Raises:
        UnknownTimeframeError: If no preset has that label.
    """
    try:
        return TIMEFRAMES[label]
    except KeyError:
        err_msg = (
            f"Unknown timeframe '{label}'. Expected one of: {', '.join(TIMEFRAMES)}"
        )
        raise UnknownTimeframeError(err_msg, {"label": label}) from None


@dataclass(frozen=True, slots=True)
class CoinMarket:
    """One row of the market overview (price, rank and 7-day sparkline)."""

    id: str
    symbol: str
    name: str
    current_price: Decimal | None
    market_cap_rank: int | None
    price_change_percentage_24h: Decimal | None
    sparkline_7d: tuple[Decimal, ...] = field(default_factory=tuple)

    @property
    def pair_symbol(self) -> str:
        """The USDT trading pair for this coin in kline-endpoint form."""
        return f"{self.symbol.upper()}USDT"
