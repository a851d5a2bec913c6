"""Binance price feed provider (secondary)."""

import logging
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

from coinfolio.core.exceptions import (
    MalformedResponseError,
    ProviderNotFoundError,
    ProviderRequestError,
)
from coinfolio.core.timezone import from_epoch_ms, now_utc
from coinfolio.domain.models import PriceSource
from coinfolio.domain.views import PricePoint, PriceSeries, PriceTick
from coinfolio.providers.http_client import JsonHttpClient

logger = logging.getLogger(__name__)

PROVIDER_ID = "binance"
QUOTE_ASSET = "USDT"

# Symbols that are themselves the quote asset or pegged to it
STABLE_SYMBOLS = frozenset({"USDT", "USDC", "BUSD", "FDUSD", "TUSD", "DAI"})

# Request weights billed by Binance against its per-minute budget
SINGLE_TICKER_WEIGHT = 2
FULL_SNAPSHOT_WEIGHT = 80

# Binance error code for an unknown trading pair
_INVALID_SYMBOL_CODE = "-1121"


def normalize_list_response(raw: Any, provider_id: str = PROVIDER_ID) -> list:
    """A ticker endpoint returns an object for one symbol and an array for many."""
    if isinstance(raw, list):
        return raw
    if isinstance(raw, dict):
        return [raw]
    raise MalformedResponseError(provider_id, f"expected ticker object or list, got {type(raw).__name__}")


def pair_for(symbol: str) -> str:
    return f"{symbol.upper()}{QUOTE_ASSET}"


def kline_params(range_days: int) -> tuple[str, int]:
    """Pick (interval, limit) so the candles cover `range_days`."""
    if range_days <= 1:
        return "5m", 288
    if range_days <= 30:
        return "1h", range_days * 24
    return "1d", min(range_days, 1000)


def _to_decimal(value: Any) -> Optional[Decimal]:
    if value is None:
        return None
    try:
        result = Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None
    return result if result.is_finite() else None


def _to_int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


class BinanceProvider:
    """PriceFeedProvider backed by Binance spot market data (USDT pairs)."""

    provider_id = PROVIDER_ID

    def __init__(self, client: JsonHttpClient):
        self._client = client

    def prices_weight(self, symbols: list[str]) -> int:
        """Budget weight of the `fetch_prices` request for these symbols."""
        pairs = {s.upper() for s in symbols if s and s.upper() not in STABLE_SYMBOLS}
        if len(pairs) > 1:
            return FULL_SNAPSHOT_WEIGHT
        return SINGLE_TICKER_WEIGHT if pairs else 1

    def fetch_prices(self, symbols: list[str]) -> dict[str, PriceTick]:
        wanted = {
            pair_for(s): s.upper()
            for s in symbols
            if s and s.upper() not in STABLE_SYMBOLS
        }
        if not wanted:
            return {}

        if len(wanted) == 1:
            (pair,) = wanted
            try:
                raw = self._client.get_json("ticker/24hr", params={"symbol": pair})
            except ProviderRequestError as exc:
                if _INVALID_SYMBOL_CODE in exc.message or "Invalid symbol" in exc.message:
                    return {}
                raise
        else:
            # One full snapshot instead of N calls; an unknown pair would fail a filtered request
            raw = self._client.get_json("ticker/24hr")

        ticks: dict[str, PriceTick] = {}
        for item in normalize_list_response(raw):
            if not isinstance(item, dict):
                continue
            symbol = wanted.get(str(item.get("symbol", "")))
            if symbol is None:
                continue
            price = _to_decimal(item.get("lastPrice"))
            if price is None or price <= 0:
                logger.debug("Binance ticker for %s has no usable lastPrice", symbol)
                continue
            close_time = item.get("closeTime")
            ticks[symbol] = PriceTick(
                symbol=symbol,
                price=price,
                change_24h_pct=_to_decimal(item.get("priceChangePercent")),
                as_of=from_epoch_ms(close_time) if close_time else now_utc(),
                source=self.provider_id,
            )
        return ticks

    def fetch_candles(self, symbol: str, range_days: int) -> PriceSeries:
        if symbol.upper() in STABLE_SYMBOLS:
            raise ProviderNotFoundError(self.provider_id, f"pair for {symbol}")
        interval, limit = kline_params(range_days)
        try:
            raw = self._client.get_json(
                "klines",
                params={"symbol": pair_for(symbol), "interval": interval, "limit": limit},
            )
        except ProviderRequestError as exc:
            if _INVALID_SYMBOL_CODE in exc.message or "Invalid symbol" in exc.message:
                raise ProviderNotFoundError(self.provider_id, f"pair for {symbol}") from exc
            raise

        if not isinstance(raw, list):
            raise MalformedResponseError(self.provider_id, f"klines for {symbol} is not a list")

        points = []
        for candle in raw:
            # [open_time, open, high, low, close, volume, close_time, ...]
            if not isinstance(candle, list) or len(candle) < 5:
                continue
            open_time = _to_int(candle[0])
            close = _to_decimal(candle[4])
            if open_time is None or close is None:
                continue
            points.append(PricePoint(timestamp_ms=open_time, price=close))

        if not points:
            raise MalformedResponseError(self.provider_id, f"klines for {symbol} is empty")
        return PriceSeries(
            coin_id=symbol.upper(),
            range_days=range_days,
            source=PriceSource.BINANCE.value,
            points=points,
        )
