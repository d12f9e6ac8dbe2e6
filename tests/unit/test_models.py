from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from candlestream.errors import MalformedCandleError, UnknownTimeframeError
from candlestream.models import (
    DEFAULT_TIMEFRAME,
    TIMEFRAMES,
    Candle,
    CoinMarket,
    TimeframeConfig,
    get_timeframe,
    to_decimal,
)

T0 = datetime(2024, 12, 26, 10, 0, tzinfo=timezone.utc)


def test_candle_parses_numeric_strings() -> None:
    """Binance sends prices as strings; they become Decimals."""
    candle = Candle(time=T0, open="100.5", high="101", low="99.25", close="100")
    assert candle.open == Decimal("100.5")
    assert candle.high == Decimal("101")
    assert candle.low == Decimal("99.25")
    assert candle.close == Decimal("100")


def test_candle_naive_time_is_treated_as_utc() -> None:
    candle = Candle(time=datetime(2024, 1, 1), open=1, high=1, low=1, close=1)
    assert candle.time.tzinfo == timezone.utc
    assert candle.time == datetime(2024, 1, 1, tzinfo=timezone.utc)


def test_candle_is_immutable() -> None:
    candle = Candle(time=T0, open=1, high=2, low=1, close=2)
    with pytest.raises(AttributeError):
        candle.close = Decimal("3")  # type: ignore[misc]


@pytest.mark.parametrize(
    ("open_", "high", "low", "close"),
    [
        ("100", "99", "98", "99"),  # open above high
        ("100", "101", "100.5", "101"),  # open below low
        ("100", "101", "99", "102"),  # close above high
        ("100", "99", "101", "100"),  # low above high
        ("-1", "1", "-2", "0"),  # negative prices
    ],
)
def test_candle_rejects_inconsistent_ohlc(
    open_: str, high: str, low: str, close: str
) -> None:
    with pytest.raises(MalformedCandleError):
        Candle(time=T0, open=open_, high=high, low=low, close=close)


@pytest.mark.parametrize("bad", ["abc", "", None, "NaN", float("inf"), True])
def test_candle_rejects_non_numeric_prices(bad: object) -> None:
    with pytest.raises(MalformedCandleError):
        Candle(time=T0, open=bad, high="1", low="0", close="1")  # type: ignore[arg-type]


def test_candle_rejects_non_datetime_time() -> None:
    with pytest.raises(MalformedCandleError):
        Candle(time=1735207200, open=1, high=1, low=1, close=1)  # type: ignore[arg-type]


def test_malformed_candle_error_is_a_value_error() -> None:
    with pytest.raises(ValueError, match="not numeric"):
        to_decimal("x", "open")


def test_timeframe_presets_match_chart_ranges() -> None:
    """Each chart range couples a bucket width with a window length."""
    expected = {
        "15m": (timedelta(minutes=1), 15),
        "1h": (timedelta(minutes=1), 60),
        "4h": (timedelta(minutes=5), 48),
        "1d": (timedelta(minutes=15), 96),
        "7d": (timedelta(hours=1), 168),
    }
    assert list(TIMEFRAMES) == list(expected)
    for label, (interval, limit) in expected.items():
        config = get_timeframe(label)
        assert config.label == label
        assert config.bucket_interval == interval
        assert config.window_limit == limit
    assert DEFAULT_TIMEFRAME == "7d"


def test_timeframe_span() -> None:
    assert get_timeframe("4h").span == timedelta(hours=4)
    assert get_timeframe("7d").span == timedelta(days=7)


def test_unknown_timeframe_raises() -> None:
    with pytest.raises(UnknownTimeframeError, match="Unknown timeframe '2h'"):
        get_timeframe("2h")


@pytest.mark.parametrize(
    ("interval", "limit"),
    [(timedelta(0), 10), (timedelta(minutes=-1), 10), (timedelta(minutes=1), 0)],
)
def test_timeframe_config_validation(interval: timedelta, limit: int) -> None:
    with pytest.raises(ValueError):
        TimeframeConfig("bad", interval, limit)


def test_coin_market_pair_symbol() -> None:
    market = CoinMarket(
        id="bitcoin",
        symbol="btc",
        name="Bitcoin",
        current_price=Decimal("96092"),
        market_cap_rank=1,
        price_change_percentage_24h=Decimal("-1.0"),
    )
    assert market.pair_symbol == "BTCUSDT"
    assert market.sparkline_7d == ()
