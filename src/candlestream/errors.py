"""Exception hierarchy for candle stream processing.

Every error raised by this package derives from `CandleStreamError`, so
callers that only care about "something in the data path failed" can catch a
single type. None of these are fatal to the process: parsers drop the
offending entry, fetchers raise to their caller, and live transports log and
reconnect.
"""

from typing import Any


class CandleStreamError(Exception):
    """Base class for all candlestream errors.

    Attributes:
        message: Human-readable description of the failure.
        context: Extra key/value details, handy as loguru `extra` data.
    """

    def __init__(self, message: str, context: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, context={self.context!r})"
        )


class MalformedCandleError(CandleStreamError, ValueError):
    """A candle payload is missing a field, is not numeric, or breaks OHLC rules."""


class SnapshotFetchError(CandleStreamError):
    """The historical snapshot could not be fetched or its payload was unusable."""


class SubscriptionError(CandleStreamError):
    """The live feed connection failed or was dropped."""


class UnknownTimeframeError(CandleStreamError, ValueError):
    """A timeframe label does not match any configured preset."""


class MarketDataError(CandleStreamError):
    """The market overview (coin list) request failed."""
