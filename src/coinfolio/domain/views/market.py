"""Canonical market-data shapes produced by provider adapters."""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from coinfolio.core.timezone import from_epoch_ms, to_epoch_ms


def _dec(value: Any) -> Optional[Decimal]:
    return Decimal(str(value)) if value is not None else None


def _str(value: Optional[Decimal]) -> Optional[str]:
    return str(value) if value is not None else None


@dataclass
class Quote:
    """Market quote for one coin.

    `stale` marks data served from the stale shadow after a failed live fetch.
    `estimated` marks synthetic figures that are not authoritative.
    """

    coin_id: str
    symbol: str
    name: str
    current_price: Optional[Decimal]
    as_of: datetime
    source: str
    change_24h_pct: Optional[Decimal] = None
    image: Optional[str] = None
    market_cap: Optional[Decimal] = None
    market_cap_rank: Optional[int] = None
    stale: bool = False
    estimated: bool = False

    def to_payload(self) -> dict:
        """JSON-compatible representation used by the cache tiers."""
        return {
            "coin_id": self.coin_id,
            "symbol": self.symbol,
            "name": self.name,
            "current_price": _str(self.current_price),
            "as_of": to_epoch_ms(self.as_of),
            "source": self.source,
            "change_24h_pct": _str(self.change_24h_pct),
            "image": self.image,
            "market_cap": _str(self.market_cap),
            "market_cap_rank": self.market_cap_rank,
        }

    @classmethod
    def from_payload(cls, payload: dict, stale: bool = False) -> "Quote":
        return cls(
            coin_id=payload["coin_id"],
            symbol=payload["symbol"],
            name=payload["name"],
            current_price=_dec(payload.get("current_price")),
            as_of=from_epoch_ms(payload["as_of"]),
            source=payload["source"],
            change_24h_pct=_dec(payload.get("change_24h_pct")),
            image=payload.get("image"),
            market_cap=_dec(payload.get("market_cap")),
            market_cap_rank=payload.get("market_cap_rank"),
            stale=stale,
        )


@dataclass
class PriceTick:
    """Price-only record from a secondary source (symbol -> price)."""

    symbol: str
    price: Decimal
    change_24h_pct: Optional[Decimal]
    as_of: datetime
    source: str


@dataclass
class PricePoint:
    """A single (timestamp, price) sample of a series."""

    timestamp_ms: int
    price: Decimal


@dataclass
class PriceSeries:
    """Historical price series for one coin over `range_days`."""

    coin_id: str
    range_days: int
    source: str
    points: list[PricePoint] = field(default_factory=list)
    stale: bool = False
    estimated: bool = False

    def to_payload(self) -> dict:
        return {
            "coin_id": self.coin_id,
            "range_days": self.range_days,
            "source": self.source,
            "points": [[p.timestamp_ms, str(p.price)] for p in self.points],
        }

    @classmethod
    def from_payload(cls, payload: dict, stale: bool = False) -> "PriceSeries":
        return cls(
            coin_id=payload["coin_id"],
            range_days=payload["range_days"],
            source=payload["source"],
            points=[PricePoint(int(ts), Decimal(price)) for ts, price in payload["points"]],
            stale=stale,
        )


@dataclass
class SearchHit:
    """Lightweight search result before it is hydrated into a Quote."""

    coin_id: str
    symbol: str
    name: str
    thumb: Optional[str] = None
    market_cap_rank: Optional[int] = None
    platforms: dict[str, str] = field(default_factory=dict)
