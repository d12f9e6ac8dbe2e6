# src/candlestream/__init__.py
"""CandleStream: live, bounded OHLC candle series for crypto trading symbols.

A series is seeded from a historical REST snapshot and kept current by a live
WebSocket kline feed. Consumers only ever see immutable snapshots of it.

Key modules and sub-packages:
- `aggregator`: the `CandleStreamAggregator` that owns one candle series.
- `session`: the asyncio wiring between the aggregator and its data sources.
- `adapters`: connectors for market-data providers (Binance, CoinGecko).
- `utils`: shared helpers for time and interval handling.
"""

import importlib.metadata

try:
    __version__: str = importlib.metadata.version("candlestream")
except importlib.metadata.PackageNotFoundError:
    # Running from a source checkout that has not been installed.
    __version__ = "0.0.0-dev"
