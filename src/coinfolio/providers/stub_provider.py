"""Stub market data provider for offline/testing use."""

import random
from datetime import timedelta
from decimal import Decimal

from coinfolio.core.exceptions import ProviderNotFoundError
from coinfolio.core.timezone import now_utc, to_epoch_ms
from coinfolio.domain.models import PriceSource
from coinfolio.domain.views import PricePoint, PriceSeries, Quote, SearchHit


# Deterministic fake market data: coin_id -> (symbol, name, price, 24h change %)
_STUB_COINS: dict[str, tuple[str, str, Decimal, Decimal]] = {
    "bitcoin": ("BTC", "Bitcoin", Decimal("64250.00"), Decimal("1.85")),
    "ethereum": ("ETH", "Ethereum", Decimal("3120.50"), Decimal("-0.72")),
    "tether": ("USDT", "Tether", Decimal("1.00"), Decimal("0.01")),
    "binancecoin": ("BNB", "BNB", Decimal("585.20"), Decimal("0.44")),
    "solana": ("SOL", "Solana", Decimal("148.75"), Decimal("3.10")),
    "ripple": ("XRP", "XRP", Decimal("0.52"), Decimal("-1.25")),
    "cardano": ("ADA", "Cardano", Decimal("0.45"), Decimal("0.30")),
    "dogecoin": ("DOGE", "Dogecoin", Decimal("0.13"), Decimal("2.40")),
}


class StubMarketDataProvider:
    """
    Stub provider with deterministic fake data for offline operation.

    Known coins use predefined prices; any other id gets a price generated
    from a generator seeded by the id, so repeated calls agree.
    """

    provider_id = PriceSource.STUB.value

    def __init__(self, seed: int = 42):
        self._seed = seed

    def _rng_for(self, key: str) -> random.Random:
        return random.Random(f"{self._seed}:{key}")

    def _quote(self, coin_id: str, rank: int) -> Quote:
        if coin_id in _STUB_COINS:
            symbol, name, price, change = _STUB_COINS[coin_id]
        else:
            rng = self._rng_for(coin_id)
            symbol = coin_id[:4].upper()
            name = coin_id.replace("-", " ").title()
            price = Decimal(str(0.5 + rng.random() * 200)).quantize(Decimal("0.0001"))
            change = Decimal(str((rng.random() - 0.5) * 8)).quantize(Decimal("0.01"))
        return Quote(
            coin_id=coin_id,
            symbol=symbol,
            name=name,
            current_price=price,
            as_of=now_utc(),
            source=self.provider_id,
            change_24h_pct=change,
            market_cap_rank=rank,
        )

    def fetch_top_quotes(self, limit: int) -> list[Quote]:
        ids = list(_STUB_COINS)[:limit]
        return [self._quote(coin_id, rank) for rank, coin_id in enumerate(ids, start=1)]

    def fetch_quote(self, coin_id: str) -> Quote:
        return self._quote(coin_id, rank=None)

    def fetch_quotes_bulk(self, coin_ids: list[str]) -> dict[str, Quote]:
        return {coin_id: self._quote(coin_id, rank=None) for coin_id in coin_ids}

    def fetch_series(self, coin_id: str, range_days: int) -> PriceSeries:
        """Random walk ending at the stub price, one point per hour."""
        rng = self._rng_for(f"series:{coin_id}:{range_days}")
        last_price = self._quote(coin_id, rank=None).current_price
        hours = max(1, range_days * 24)
        end = now_utc()

        prices = [last_price]
        for _ in range(hours - 1):
            step = Decimal(str(1 + (rng.random() - 0.5) * 0.02))
            prices.append((prices[-1] / step).quantize(Decimal("0.0001")))
        prices.reverse()

        points = [
            PricePoint(timestamp_ms=to_epoch_ms(end - timedelta(hours=hours - 1 - i)), price=p)
            for i, p in enumerate(prices)
        ]
        return PriceSeries(coin_id=coin_id, range_days=range_days, source=self.provider_id, points=points)

    def search(self, query: str) -> list[SearchHit]:
        q = query.strip().lower()
        return [
            SearchHit(coin_id=coin_id, symbol=symbol, name=name)
            for coin_id, (symbol, name, _, _) in _STUB_COINS.items()
            if q in coin_id or q in symbol.lower() or q in name.lower()
        ]

    def lookup_contract(self, address: str, platform: str = "ethereum") -> Quote:
        raise ProviderNotFoundError(self.provider_id, f"contract {address} on {platform}")
