"""Portfolio value history and allocation views."""

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Optional


@dataclass
class ValueHistoryPoint:
    """Portfolio value at the close of one UTC day.

    `invested_capital` is the moving-average cost of the holdings on that day.
    """

    day: date
    value: Decimal
    invested_capital: Decimal

    @property
    def profit_loss(self) -> Decimal:
        return self.value - self.invested_capital

    def to_payload(self) -> list:
        return [self.day.isoformat(), str(self.value), str(self.invested_capital)]

    @classmethod
    def from_payload(cls, payload: list) -> "ValueHistoryPoint":
        day, value, invested = payload
        return cls(day=date.fromisoformat(day), value=Decimal(value), invested_capital=Decimal(invested))


@dataclass
class ValueHistory:
    """
    Daily portfolio value over the last `range_days`, starting no earlier
    than the first transaction.

    `growth_pct` compares the last point with the first and is None when the
    first value is zero. `stale`/`estimated` are set when any coin's history
    came from the stale shadow or an estimate; `unpriced_coin_ids` lists
    coins with no price at all (left out of the values).
    """

    range_days: int
    points: list[ValueHistoryPoint] = field(default_factory=list)
    growth_pct: Optional[Decimal] = None
    stale: bool = False
    estimated: bool = False
    unpriced_coin_ids: list[str] = field(default_factory=list)

    def to_payload(self) -> dict:
        return {
            "range_days": self.range_days,
            "points": [p.to_payload() for p in self.points],
            "growth_pct": str(self.growth_pct) if self.growth_pct is not None else None,
            "stale": self.stale,
            "unpriced_coin_ids": list(self.unpriced_coin_ids),
        }

    @classmethod
    def from_payload(cls, payload: dict) -> "ValueHistory":
        growth = payload.get("growth_pct")
        return cls(
            range_days=payload["range_days"],
            points=[ValueHistoryPoint.from_payload(p) for p in payload["points"]],
            growth_pct=Decimal(growth) if growth is not None else None,
            stale=payload.get("stale", False),
            unpriced_coin_ids=list(payload.get("unpriced_coin_ids", [])),
        )


@dataclass
class AllocationSlice:
    """One position's share of the portfolio's current value."""

    coin_id: str
    symbol: str
    name: str
    current_value: Decimal
    share_pct: Decimal
