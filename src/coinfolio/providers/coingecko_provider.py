"""CoinGecko market data provider (primary)."""

import logging
import math
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

from coinfolio.core.exceptions import MalformedResponseError, ProviderNotFoundError
from coinfolio.core.timezone import now_utc, parse_datetime_utc
from coinfolio.domain.models import PriceSource
from coinfolio.domain.views import PricePoint, PriceSeries, Quote, SearchHit
from coinfolio.providers.http_client import JsonHttpClient

logger = logging.getLogger(__name__)

PROVIDER_ID = "coingecko"

# Max page size accepted by /coins/markets
MAX_PAGE_SIZE = 250
_LIST_WRAPPER_KEYS = ("data", "coins", "items")


def normalize_list_response(raw: Any, provider_id: str = PROVIDER_ID) -> list:
    """
    Return the list of records inside a list-endpoint response.

    Accepts a bare array or an object wrapping the array under one of the
    usual keys. Anything else is a MalformedResponseError.
    """
    if isinstance(raw, list):
        return raw
    if isinstance(raw, dict):
        for key in _LIST_WRAPPER_KEYS:
            value = raw.get(key)
            if isinstance(value, list):
                return value
    raise MalformedResponseError(
        provider_id, f"expected a list response, got {type(raw).__name__}"
    )


def _to_decimal(value: Any) -> Optional[Decimal]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, float) and (math.isnan(value) or math.isinf(value)):
        return None
    try:
        result = Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None
    return result if result.is_finite() else None


def _to_int(value: Any) -> Optional[int]:
    try:
        return int(value) if value is not None else None
    except (TypeError, ValueError):
        return None


def _image_url(value: Any) -> Optional[str]:
    if isinstance(value, str):
        return value or None
    if isinstance(value, dict):
        for key in ("large", "small", "thumb"):
            if value.get(key):
                return value[key]
    return None


def _platforms(value: Any) -> dict[str, str]:
    if not isinstance(value, dict):
        return {}
    return {str(k): str(v).lower() for k, v in value.items() if v}


def _parse_as_of(value: Any):
    if isinstance(value, str) and value:
        try:
            return parse_datetime_utc(value)
        except (ValueError, OverflowError):
            pass
    return now_utc()


class CoinGeckoProvider:
    """
    MarketDataProvider backed by the CoinGecko v3 REST API.

    Every method is a single HTTP call; errors come from JsonHttpClient
    already typed, and payload shape problems raise MalformedResponseError.
    """

    provider_id = PROVIDER_ID

    def __init__(self, client: JsonHttpClient, vs_currency: str = "usd"):
        self._client = client
        self._vs_currency = vs_currency

    def fetch_top_quotes(self, limit: int) -> list[Quote]:
        raw = self._client.get_json(
            "coins/markets",
            params={
                "vs_currency": self._vs_currency,
                "order": "market_cap_desc",
                "per_page": max(1, min(MAX_PAGE_SIZE, limit)),
                "page": 1,
                "price_change_percentage": "24h",
            },
        )
        return [self._quote_from_market(item) for item in normalize_list_response(raw)][:limit]

    def fetch_quote(self, coin_id: str) -> Quote:
        quotes = self.fetch_quotes_bulk([coin_id])
        if coin_id not in quotes:
            raise ProviderNotFoundError(self.provider_id, f"coin {coin_id}")
        return quotes[coin_id]

    def fetch_quotes_bulk(self, coin_ids: list[str]) -> dict[str, Quote]:
        if not coin_ids:
            return {}
        raw = self._client.get_json(
            "coins/markets",
            params={
                "vs_currency": self._vs_currency,
                "ids": ",".join(coin_ids),
                "per_page": max(1, min(MAX_PAGE_SIZE, len(coin_ids))),
                "price_change_percentage": "24h",
            },
        )
        quotes = [self._quote_from_market(item) for item in normalize_list_response(raw)]
        wanted = set(coin_ids)
        return {q.coin_id: q for q in quotes if q.coin_id in wanted}

    def fetch_series(self, coin_id: str, range_days: int) -> PriceSeries:
        raw = self._client.get_json(
            f"coins/{coin_id}/market_chart",
            params={"vs_currency": self._vs_currency, "days": range_days},
        )
        if not isinstance(raw, dict) or not isinstance(raw.get("prices"), list):
            raise MalformedResponseError(self.provider_id, f"market_chart for {coin_id} has no prices")

        points = []
        for sample in raw["prices"]:
            if not isinstance(sample, (list, tuple)) or len(sample) < 2:
                continue
            price = _to_decimal(sample[1])
            ts = _to_int(sample[0])
            if price is None or ts is None:
                continue
            points.append(PricePoint(timestamp_ms=ts, price=price))

        if not points:
            raise MalformedResponseError(self.provider_id, f"market_chart for {coin_id} is empty")
        return PriceSeries(
            coin_id=coin_id,
            range_days=range_days,
            source=PriceSource.COINGECKO.value,
            points=points,
        )

    def search(self, query: str) -> list[SearchHit]:
        raw = self._client.get_json("search", params={"query": query})
        items = normalize_list_response(raw)
        hits = []
        for item in items:
            if not isinstance(item, dict) or not item.get("id"):
                continue
            hits.append(SearchHit(
                coin_id=str(item["id"]),
                symbol=str(item.get("symbol") or "").upper(),
                name=str(item.get("name") or ""),
                thumb=item.get("large") or item.get("thumb"),
                market_cap_rank=_to_int(item.get("market_cap_rank")),
                platforms=_platforms(item.get("platforms")),
            ))
        return hits

    def lookup_contract(self, address: str, platform: str = "ethereum") -> Quote:
        raw = self._client.get_json(f"coins/{platform}/contract/{address.lower()}")
        if not isinstance(raw, dict) or not raw.get("id"):
            raise MalformedResponseError(self.provider_id, f"contract lookup for {address} has no id")

        market = raw.get("market_data") or {}
        vs = self._vs_currency
        return Quote(
            coin_id=str(raw["id"]),
            symbol=str(raw.get("symbol") or "").upper(),
            name=str(raw.get("name") or ""),
            current_price=_to_decimal((market.get("current_price") or {}).get(vs)),
            as_of=_parse_as_of(raw.get("last_updated")),
            source=self.provider_id,
            change_24h_pct=_to_decimal(market.get("price_change_percentage_24h")),
            image=_image_url(raw.get("image")),
            market_cap=_to_decimal((market.get("market_cap") or {}).get(vs)),
            market_cap_rank=_to_int(raw.get("market_cap_rank")),
        )

    def _quote_from_market(self, item: Any) -> Quote:
        if not isinstance(item, dict) or not item.get("id"):
            raise MalformedResponseError(self.provider_id, "market record without id")
        change = item.get("price_change_percentage_24h")
        if change is None:
            change = item.get("price_change_percentage_24h_in_currency")
        return Quote(
            coin_id=str(item["id"]),
            symbol=str(item.get("symbol") or "").upper(),
            name=str(item.get("name") or ""),
            current_price=_to_decimal(item.get("current_price")),
            as_of=_parse_as_of(item.get("last_updated")),
            source=self.provider_id,
            change_24h_pct=_to_decimal(change),
            image=_image_url(item.get("image")),
            market_cap=_to_decimal(item.get("market_cap")),
            market_cap_rank=_to_int(item.get("market_cap_rank")),
        )
