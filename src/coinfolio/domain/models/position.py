"""CoinPosition and Portfolio domain models."""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Optional

from coinfolio.domain.models.transaction import Transaction
from coinfolio.domain.views.portfolio import PositionValuation, PortfolioTotals


@dataclass
class CoinPosition:
    """
    All transactions for one coin plus its latest known market price.

    `transactions` is the authoritative state. `valuation` is a derived cache
    written only by the valuation engine.
    """

    coin_id: str
    symbol: str = ""
    name: str = ""
    image: Optional[str] = None
    transactions: list[Transaction] = field(default_factory=list)

    # Latest known market data for the coin
    current_price: Optional[Decimal] = None
    change_24h_pct: Optional[Decimal] = None
    price_as_of: Optional[datetime] = None
    price_source: Optional[str] = None
    price_stale: bool = False

    valuation: PositionValuation = field(default_factory=PositionValuation)

    def find_transaction(self, tx_id: str) -> Optional[Transaction]:
        for tx in self.transactions:
            if tx.tx_id == tx_id:
                return tx
        return None

    def sorted_transactions(self) -> list[Transaction]:
        """Transactions in timestamp order (insertion order is irrelevant)."""
        return sorted(self.transactions, key=lambda t: t.timestamp)


@dataclass
class Portfolio:
    """Positions keyed by coin id plus derived totals."""

    positions: dict[str, CoinPosition] = field(default_factory=dict)
    totals: PortfolioTotals = field(default_factory=PortfolioTotals)
    updated_at: Optional[datetime] = None

    @property
    def coin_ids(self) -> list[str]:
        return list(self.positions.keys())
