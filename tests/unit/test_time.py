from datetime import datetime, timedelta, timezone

import pytest

from candlestream.utils.time import (
    datetime_to_ms,
    ensure_utc,
    format_rfc3339,
    interval_to_code,
    ms_to_datetime,
)


def test_ms_round_trip() -> None:
    dt = ms_to_datetime(1735207200000)
    assert dt == datetime(2024, 12, 26, 10, 0, tzinfo=timezone.utc)
    assert datetime_to_ms(dt) == 1735207200000


def test_ms_to_datetime_out_of_range() -> None:
    with pytest.raises(ValueError, match="out of range"):
        ms_to_datetime(10**20)


def test_ensure_utc_converts_offsets() -> None:
    plus_two = timezone(timedelta(hours=2))
    dt = ensure_utc(datetime(2024, 1, 1, 12, 0, tzinfo=plus_two))
    assert dt == datetime(2024, 1, 1, 10, 0, tzinfo=timezone.utc)
    assert dt.tzinfo == timezone.utc


def test_naive_datetimes_are_utc() -> None:
    assert datetime_to_ms(datetime(1970, 1, 1, 0, 0, 1)) == 1000


def test_format_rfc3339() -> None:
    dt = datetime(2024, 12, 26, 10, 0, 0, 123456, tzinfo=timezone.utc)
    assert format_rfc3339(dt) == "2024-12-26T10:00:00.123Z"


@pytest.mark.parametrize(
    ("interval", "code"),
    [
        (timedelta(minutes=1), "1m"),
        (timedelta(minutes=5), "5m"),
        (timedelta(minutes=15), "15m"),
        (timedelta(hours=1), "1h"),
        (timedelta(days=1), "1d"),
        (timedelta(weeks=1), "1w"),
    ],
)
def test_interval_to_code(interval: timedelta, code: str) -> None:
    assert interval_to_code(interval) == code


def test_interval_to_code_rejects_unknown() -> None:
    with pytest.raises(ValueError, match="Unsupported bucket interval"):
        interval_to_code(timedelta(minutes=7))
