import json
from decimal import Decimal
from typing import Any

import httpx
from loguru import logger

from candlestream.errors import MarketDataError
from candlestream.models import CoinMarket, to_decimal

DEFAULT_API_URL = "https://api.coingecko.com/api/v3"
API_KEY_HEADER = "x-cg-demo-api-key"


def _optional_decimal(value: Any, field_name: str) -> Decimal | None:
    if value is None:
        return None
    return to_decimal(value, field_name)


def parse_market_row(row: dict[str, Any]) -> CoinMarket:
    """Parses one `/coins/markets` entry.

    Raises:
        MarketDataError: If an identifying field is missing or a numeric
            field cannot be parsed.
    """
    try:
        sparkline = row.get("sparkline_in_7d") or {}
        rank = row.get("market_cap_rank")
        return CoinMarket(
            id=str(row["id"]),
            symbol=str(row["symbol"]),
            name=str(row["name"]),
            current_price=_optional_decimal(row.get("current_price"), "current_price"),
            market_cap_rank=int(rank) if rank is not None else None,
            price_change_percentage_24h=_optional_decimal(
                row.get("price_change_percentage_24h"), "price_change_percentage_24h"
            ),
            sparkline_7d=tuple(
                to_decimal(p, "sparkline_in_7d") for p in sparkline.get("price", [])
            ),
        )
    except (KeyError, TypeError, ValueError, OverflowError, AttributeError) as e:
        err_msg = f"Could not parse market row: {e}"
        raise MarketDataError(err_msg) from e


class CoinGeckoClient:
    """Client for the CoinGecko market overview used by the coin list."""

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        base_url: str = DEFAULT_API_URL,
        api_key: str | None = None,
    ) -> None:
        """Initializes the client.

        Args:
            http_client: A shared httpx.AsyncClient for making REST API calls.
            base_url: The API root.
            api_key: Optional demo API key, sent as a request header.
        """
        self.http_client = http_client
        self.base_url = base_url.rstrip("/")
        self._api_key = api_key

    @property
    def venue_name(self) -> str:
        return "coingecko"

    async def fetch_markets(
        self, vs_currency: str = "usd", per_page: int = 250, page: int = 1
    ) -> list[CoinMarket]:
        """Fetches coins ordered by market cap, with 7-day sparklines.

        Raises:
            MarketDataError: If the request fails or the payload is not a list.
        """
        params = {
            "vs_currency": vs_currency,
            "order": "market_cap_desc",
            "per_page": per_page,
            "page": page,
            "sparkline": "true",
            "price_change_percentage": "24h",
        }
        headers = {API_KEY_HEADER: self._api_key} if self._api_key else {}

        try:
            response = await self.http_client.get(
                f"{self.base_url}/coins/markets", params=params, headers=headers
            )
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, json.JSONDecodeError) as e:
            err_msg = f"Failed to fetch market list: {e}"
            raise MarketDataError(err_msg) from e

        if not isinstance(data, list):
            err_msg = f"Unexpected market list payload: {data!r}"
            raise MarketDataError(err_msg)

        markets: list[CoinMarket] = []
        for row in data:
            try:
                markets.append(parse_market_row(row))
            except MarketDataError as e:  # noqa: PERF203
                logger.warning(f"[{self.venue_name}] Dropping market row: {e.message}")

        logger.info(f"[{self.venue_name}] Fetched {len(markets)} markets.")
        return markets
