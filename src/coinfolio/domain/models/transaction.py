"""Transaction domain model."""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional

from coinfolio.domain.models.enums import TransactionType


@dataclass
class Transaction:
    """
    Ledger transaction entry (source of truth).

    Supports: BUY, SELL.
    - amount > 0, price >= 0 (quote currency per unit)
    - timestamp is timezone-aware UTC
    - replaced as a whole on update; tx_id never changes
    """

    tx_id: str
    tx_type: TransactionType
    amount: Decimal
    price: Decimal
    timestamp: datetime
    note: Optional[str] = None

    def __post_init__(self) -> None:
        if isinstance(self.tx_type, str):
            self.tx_type = TransactionType.parse(self.tx_type)

    @property
    def is_buy(self) -> bool:
        return self.tx_type == TransactionType.BUY
