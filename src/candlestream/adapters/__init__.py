# src/candlestream/adapters/__init__.py
"""Connectors for external market-data providers.

Candle providers implement the two contracts in `candlestream.adapters.base`:
`HistoricalDataSource` for the REST snapshot and `LiveFeedSource` for the
WebSocket stream. Payloads are parsed into `Candle` values at this boundary,
so nothing beyond the adapters ever sees a provider's wire format.
"""
