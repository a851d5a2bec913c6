"""Derived valuation outputs. Never edited directly; always recomputed from the ledger."""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Optional


@dataclass
class PositionValuation:
    """Valuation of one coin position.

    current_value / profit_loss / profit_loss_pct are None when no price is
    known (rendered as a placeholder).
    """

    holdings: Decimal = field(default_factory=lambda: Decimal("0"))
    average_cost: Decimal = field(default_factory=lambda: Decimal("0"))
    invested_capital: Decimal = field(default_factory=lambda: Decimal("0"))
    current_price: Optional[Decimal] = None
    current_value: Optional[Decimal] = None
    profit_loss: Optional[Decimal] = None
    profit_loss_pct: Optional[Decimal] = None
    first_buy_at: Optional[datetime] = None
    last_activity_at: Optional[datetime] = None
    inconsistent: bool = False

    @property
    def is_priced(self) -> bool:
        return self.current_price is not None


@dataclass
class PortfolioTotals:
    """Portfolio-wide aggregates; the percentage is computed from the sums."""

    invested_capital: Decimal = field(default_factory=lambda: Decimal("0"))
    current_value: Decimal = field(default_factory=lambda: Decimal("0"))
    profit_loss: Decimal = field(default_factory=lambda: Decimal("0"))
    profit_loss_pct: Decimal = field(default_factory=lambda: Decimal("0"))
    unpriced_coin_ids: list[str] = field(default_factory=list)
    inconsistent_coin_ids: list[str] = field(default_factory=list)
