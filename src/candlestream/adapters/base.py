import abc
import asyncio
import random
from collections.abc import AsyncGenerator, Callable
from datetime import datetime, timedelta
from typing import Any

from loguru import logger
from websockets.exceptions import WebSocketException

from candlestream.errors import MalformedCandleError, SubscriptionError
from candlestream.models import Candle

# --- Constants for Reconnection Logic ---
INITIAL_RECONNECT_DELAY_S = 1.0
MAX_RECONNECT_DELAY_S = 60.0
RECONNECT_BACKOFF_FACTOR = 2.0
JITTER_FACTOR = 0.2  # 20% jitter

ErrorHandler = Callable[[SubscriptionError], None]


class HistoricalDataSource(abc.ABC):
    """Fetches a historical candle snapshot from a REST endpoint."""

    @property
    @abc.abstractmethod
    def venue_name(self) -> str:
        """A unique, lowercase identifier for the provider (e.g., 'binance')."""
        raise NotImplementedError

    @abc.abstractmethod
    async def fetch_candles(
        self,
        symbol: str,
        bucket_interval: timedelta,
        window_limit: int,
        end_time: datetime,
    ) -> list[Candle]:
        """Fetches up to `window_limit` candles ending at or before `end_time`.

        Args:
            symbol: The trading pair symbol (e.g., 'BTCUSDT').
            bucket_interval: The width of each candle.
            window_limit: The maximum number of candles to return.
            end_time: The most recent instant the snapshot may cover (UTC).

        Returns:
            Candles in ascending time order. Individually malformed entries
            are dropped.

        Raises:
            SnapshotFetchError: If the request fails or the payload is unusable.
        """
        raise NotImplementedError


class LiveFeedSource(abc.ABC):
    """A push subscription delivering live candles, with automatic reconnection.

    `subscribe()` runs until the consuming task is cancelled. Transport
    failures never escape it: each one is wrapped in a `SubscriptionError`,
    logged, handed to the optional `on_error` callback, and followed by a
    reconnect using exponential backoff with jitter.

    Subclasses implement `_stream_messages` (one connection's raw messages)
    and `_parse_message` (raw message to Candle).
    """

    def __init__(
        self,
        on_error: ErrorHandler | None = None,
        initial_reconnect_delay: float = INITIAL_RECONNECT_DELAY_S,
        max_reconnect_delay: float = MAX_RECONNECT_DELAY_S,
    ) -> None:
        """Initializes the feed.

        Args:
            on_error: Called with every `SubscriptionError` before reconnecting.
            initial_reconnect_delay: Delay before the first reconnect attempt.
            max_reconnect_delay: Upper bound for the backoff delay.
        """
        self.on_error = on_error
        self.initial_reconnect_delay = initial_reconnect_delay
        self.max_reconnect_delay = max_reconnect_delay

    @property
    @abc.abstractmethod
    def venue_name(self) -> str:
        """A unique, lowercase identifier for the provider (e.g., 'binance')."""
        raise NotImplementedError

    async def subscribe(
        self, symbol: str, bucket_interval: timedelta
    ) -> AsyncGenerator[Candle, None]:
        """Yields live candles for `symbol` until cancelled.

        Raises:
            SubscriptionError: If the subscription cannot be set up at all
                (e.g. the venue has no stream for `bucket_interval`). This is
                not retried.
        """
        delay = self.initial_reconnect_delay
        while True:
            try:
                logger.info(f"[{self.venue_name}] Connecting live feed for {symbol}...")
                async for message in self._stream_messages(symbol, bucket_interval):
                    try:
                        candle = self._parse_message(message)
                    except MalformedCandleError as e:
                        logger.warning(
                            f"[{self.venue_name}] Discarding malformed live "
                            f"message: {e.message}"
                        )
                        continue
                    if candle is not None:
                        delay = self.initial_reconnect_delay
                        yield candle

                logger.info(f"[{self.venue_name}] Stream ended. Reconnecting...")
                self._report(SubscriptionError(f"Live feed for {symbol} ended."))

            except (
                WebSocketException,
                asyncio.TimeoutError,
                OSError,
            ) as e:
                logger.warning(
                    f"[{self.venue_name}] Connection lost: {type(e).__name__}. "
                    "Reconnecting..."
                )
                error = SubscriptionError(
                    f"Live feed for {symbol} failed: {e}",
                    {"venue": self.venue_name, "symbol": symbol},
                )
                error.__cause__ = e
                self._report(error)

            jitter = delay * JITTER_FACTOR * (random.random() * 2 - 1)  # noqa: S311
            sleep_duration = min(self.max_reconnect_delay, abs(delay + jitter))
            logger.info(
                f"[{self.venue_name}] Reconnecting in {sleep_duration:.2f} seconds."
            )
            await asyncio.sleep(sleep_duration)
            delay = min(self.max_reconnect_delay, delay * RECONNECT_BACKOFF_FACTOR)

    def _report(self, error: SubscriptionError) -> None:
        if self.on_error is None:
            return
        try:
            self.on_error(error)
        except Exception:
            logger.exception(f"[{self.venue_name}] Live feed error handler failed.")

    @abc.abstractmethod
    def _stream_messages(
        self, symbol: str, bucket_interval: timedelta
    ) -> AsyncGenerator[dict[str, Any], None]:
        """Opens one connection and yields its decoded messages.

        If the connection is lost, the generator should exit (by raising or
        returning); `subscribe` handles the reconnection.
        """
        raise NotImplementedError

    @abc.abstractmethod
    def _parse_message(self, message: dict[str, Any]) -> Candle | None:
        """Turns a raw message into a Candle.

        Returns:
            The candle, or None for messages that carry no candle (heartbeats,
            subscription confirmations).

        Raises:
            MalformedCandleError: If the message is a candle but cannot be parsed.
        """
        raise NotImplementedError
