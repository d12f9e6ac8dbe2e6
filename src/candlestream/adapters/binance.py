import json
from collections.abc import AsyncGenerator
from datetime import datetime, timedelta
from typing import Any

import httpx
import websockets
from loguru import logger

from candlestream.adapters.base import (
    ErrorHandler,
    HistoricalDataSource,
    LiveFeedSource,
)
from candlestream.errors import (
    MalformedCandleError,
    SnapshotFetchError,
    SubscriptionError,
)
from candlestream.models import Candle
from candlestream.utils.time import datetime_to_ms, interval_to_code, ms_to_datetime

DEFAULT_REST_URL = "https://api.binance.com/api/v3"
DEFAULT_WSS_URL = "wss://stream.binance.com:9443/ws"

# Binance caps a single klines request at this many rows.
MAX_KLINES_PER_REQUEST = 1000


def normalize_symbol(symbol: str) -> str:
    """Converts 'BTC/USDT', 'btc-usdt' or 'btcusdt' to Binance's 'BTCUSDT'."""
    return symbol.replace("/", "").replace("-", "").upper()


def parse_rest_kline(row: Any) -> Candle:
    """Parses one REST klines row.

    Row format: [Open time, Open, High, Low, Close, Volume, Close time, ...]

    Raises:
        MalformedCandleError: If the row is too short or a field is not numeric.
    """
    if not isinstance(row, list | tuple) or len(row) < 5:
        err_msg = f"Unexpected kline row: {row!r}"
        raise MalformedCandleError(err_msg)
    try:
        open_time = ms_to_datetime(int(row[0]))
    except (TypeError, ValueError, OverflowError) as e:
        err_msg = f"Invalid kline open time: {row[0]!r}"
        raise MalformedCandleError(err_msg) from e
    return Candle(time=open_time, open=row[1], high=row[2], low=row[3], close=row[4])


def parse_ws_kline(message: dict[str, Any]) -> Candle | None:
    """Parses a kline stream event.

    Returns:
        The candle for the event's bucket, or None if this is not a kline event.

    Raises:
        MalformedCandleError: If a kline event lacks a field or has bad values.
    """
    if message.get("e") != "kline":
        return None
    try:
        kline = message["k"]
        open_time = ms_to_datetime(int(kline["t"]))
        return Candle(
            time=open_time,
            open=kline["o"],
            high=kline["h"],
            low=kline["l"],
            close=kline["c"],
        )
    except (KeyError, TypeError, ValueError, OverflowError) as e:
        if isinstance(e, MalformedCandleError):
            raise
        err_msg = f"Could not parse kline message: {message!r}"
        raise MalformedCandleError(err_msg) from e


class BinanceHistoricalSource(HistoricalDataSource):
    """Fetches historical klines from the Binance REST API."""

    def __init__(
        self, http_client: httpx.AsyncClient, base_url: str = DEFAULT_REST_URL
    ) -> None:
        self.http_client = http_client
        self.base_url = base_url.rstrip("/")

    @property
    def venue_name(self) -> str:
        return "binance"

    async def fetch_candles(
        self,
        symbol: str,
        bucket_interval: timedelta,
        window_limit: int,
        end_time: datetime,
    ) -> list[Candle]:
        """Fetches the most recent `window_limit` klines ending at `end_time`."""
        venue_symbol = normalize_symbol(symbol)
        try:
            interval = interval_to_code(bucket_interval)
        except ValueError as e:
            raise SnapshotFetchError(str(e), {"symbol": venue_symbol}) from e

        end_ms = datetime_to_ms(end_time)
        start_ms = end_ms - int(bucket_interval.total_seconds() * 1000) * window_limit
        params = {
            "symbol": venue_symbol,
            "interval": interval,
            "limit": min(window_limit, MAX_KLINES_PER_REQUEST),
            "startTime": start_ms,
            "endTime": end_ms,
        }
        logger.info(
            f"[{self.venue_name}] Fetching {window_limit} x {interval} klines "
            f"for {venue_symbol}."
        )

        try:
            response = await self.http_client.get(
                f"{self.base_url}/klines", params=params
            )
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, json.JSONDecodeError) as e:
            err_msg = f"Failed to fetch klines for {venue_symbol}: {e}"
            raise SnapshotFetchError(err_msg, {"symbol": venue_symbol}) from e

        if not isinstance(data, list):
            err_msg = f"Unexpected klines payload for {venue_symbol}: {data!r}"
            raise SnapshotFetchError(err_msg, {"symbol": venue_symbol})

        candles: list[Candle] = []
        for row in data:
            try:
                candles.append(parse_rest_kline(row))
            except MalformedCandleError as e:  # noqa: PERF203
                logger.warning(
                    f"[{self.venue_name}] Dropping malformed kline: {e.message}"
                )

        # The endpoint returns ascending rows; sort anyway so callers can rely on it.
        candles.sort(key=lambda c: c.time)
        logger.success(
            f"[{self.venue_name}] Fetched {len(candles)} candles for {venue_symbol}."
        )
        return candles[-window_limit:]


class BinanceLiveFeed(LiveFeedSource):
    """Streams live klines from the Binance WebSocket API."""

    def __init__(
        self,
        base_url: str = DEFAULT_WSS_URL,
        on_error: ErrorHandler | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(on_error=on_error, **kwargs)
        self.base_url = base_url.rstrip("/")

    @property
    def venue_name(self) -> str:
        return "binance"

    def stream_url(self, symbol: str, bucket_interval: timedelta) -> str:
        """Builds the single-stream URL, e.g. '.../ws/btcusdt@kline_1h'.

        Raises:
            SubscriptionError: If Binance has no kline stream for the interval.
        """
        venue_symbol = normalize_symbol(symbol).lower()
        try:
            interval = interval_to_code(bucket_interval)
        except ValueError as e:
            err_msg = f"No kline stream for {symbol}: {e}"
            raise SubscriptionError(
                err_msg, {"venue": self.venue_name, "symbol": symbol}
            ) from e
        return f"{self.base_url}/{venue_symbol}@kline_{interval}"

    async def _stream_messages(
        self, symbol: str, bucket_interval: timedelta
    ) -> AsyncGenerator[dict[str, Any], None]:
        url = self.stream_url(symbol, bucket_interval)
        async with websockets.connect(url) as websocket:
            logger.info(f"[{self.venue_name}] Subscribed to {url}")
            async for message_raw in websocket:
                try:
                    message = json.loads(message_raw)
                except json.JSONDecodeError:
                    logger.warning(
                        f"[{self.venue_name}] Ignoring non-JSON message: "
                        f"{message_raw!r}"
                    )
                    continue
                if isinstance(message, dict):
                    yield message
                else:
                    logger.debug(
                        f"[{self.venue_name}] Received other message: {message}"
                    )

    def _parse_message(self, message: dict[str, Any]) -> Candle | None:
        return parse_ws_kline(message)
