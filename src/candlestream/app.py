"""Command-line entry point.

Usage:
    candlestream watch [--symbol BTCUSDT] [--timeframe 7d]
    candlestream markets [--limit 20]

`watch` keeps a live candle series and logs the newest candle whenever the
series changes. `markets` prints the top coins by market capitalisation.
"""

import argparse
import asyncio
import contextlib
from collections.abc import Sequence
from pathlib import Path

import httpx
from loguru import logger

from candlestream import __version__
from candlestream.adapters.binance import BinanceHistoricalSource, BinanceLiveFeed
from candlestream.adapters.coingecko import CoinGeckoClient
from candlestream.aggregator import SeriesSnapshot
from candlestream.config import CONFIG_FILE, Settings, get_api_key, load_config
from candlestream.errors import CandleStreamError, MarketDataError
from candlestream.logging_config import setup_logging
from candlestream.models import TIMEFRAMES, get_timeframe
from candlestream.publisher import SeriesPublisher
from candlestream.session import ChartSession
from candlestream.utils.time import format_rfc3339


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="candlestream", description="Live crypto candle series."
    )
    parser.add_argument("--version", action="version", version=__version__)
    parser.add_argument(
        "--config", type=Path, default=CONFIG_FILE, help="Path to config.toml."
    )
    parser.add_argument("--log-level", default=None, help="Console log level.")
    commands = parser.add_subparsers(dest="command", required=True)

    watch = commands.add_parser("watch", help="Stream a live candle series.")
    watch.add_argument("--symbol", default=None, help="Trading pair, e.g. BTCUSDT.")
    watch.add_argument(
        "--timeframe", default=None, choices=list(TIMEFRAMES), help="Chart range."
    )

    markets = commands.add_parser("markets", help="List top coins by market cap.")
    markets.add_argument("--limit", type=int, default=20, help="Number of coins.")
    return parser


def describe(snapshot: SeriesSnapshot) -> str:
    """One-line summary of a snapshot for the log."""
    last = snapshot.last
    if last is None:
        return f"{snapshot.symbol} {snapshot.timeframe}: no candles yet"
    return (
        f"{snapshot.symbol} {snapshot.timeframe} [{len(snapshot.candles)}] "
        f"{format_rfc3339(last.time)} O={last.open} H={last.high} "
        f"L={last.low} C={last.close}"
    )


def _log_error(error: CandleStreamError) -> None:
    logger.bind(**error.context).warning(f"{type(error).__name__}: {error.message}")


async def watch(settings: Settings, symbol: str, timeframe: str) -> None:
    """Runs a chart session until cancelled, logging every series change."""
    publisher = SeriesPublisher()
    updates: asyncio.Queue[SeriesSnapshot] = asyncio.Queue(maxsize=1)
    publisher.subscribe(symbol, updates)

    async with httpx.AsyncClient(
        timeout=settings.feed.request_timeout_seconds, follow_redirects=True
    ) as http_client:
        session = ChartSession(
            symbol=symbol,
            history=BinanceHistoricalSource(http_client, settings.feed.rest_base_url),
            feed=BinanceLiveFeed(
                settings.feed.ws_base_url,
                on_error=_log_error,
                initial_reconnect_delay=settings.feed.initial_reconnect_delay_seconds,
                max_reconnect_delay=settings.feed.max_reconnect_delay_seconds,
            ),
            timeframe=get_timeframe(timeframe),
            publisher=publisher,
            snapshot_refresh_seconds=settings.feed.snapshot_refresh_seconds,
            on_error=_log_error,
        )
        session.start()
        try:
            while True:
                snapshot = await updates.get()
                logger.info(describe(snapshot))
        finally:
            await session.stop()


async def list_markets(settings: Settings, limit: int) -> None:
    async with httpx.AsyncClient(
        timeout=settings.feed.request_timeout_seconds, follow_redirects=True
    ) as http_client:
        client = CoinGeckoClient(
            http_client, settings.market.base_url, api_key=get_api_key("coingecko")
        )
        markets = await client.fetch_markets(
            vs_currency=settings.market.vs_currency,
            per_page=min(limit, settings.market.per_page),
        )

    for market in markets[:limit]:
        change = market.price_change_percentage_24h
        change_str = f"{change:+.2f}%" if change is not None else "n/a"
        print(
            f"{market.market_cap_rank or '-':>4}  {market.symbol.upper():<8} "
            f"{market.name:<24} {market.current_price}  {change_str}"
        )


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    settings = load_config(args.config)
    general = settings.general
    setup_logging(
        console_level=args.log_level or general.log_level_console,
        file_level=general.log_level_file,
        log_dir=Path(general.log_directory) if general.file_logging else None,
    )

    try:
        if args.command == "watch":
            symbol = args.symbol or settings.chart.default_symbol
            timeframe = args.timeframe or settings.chart.default_timeframe
            with contextlib.suppress(KeyboardInterrupt):
                asyncio.run(watch(settings, symbol, timeframe))
        else:
            asyncio.run(list_markets(settings, args.limit))
    except (MarketDataError, ValueError) as e:
        logger.error(str(e))
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
