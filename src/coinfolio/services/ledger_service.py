"""Ledger service for transaction management."""

import logging
import uuid
from dataclasses import dataclass, replace
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

from coinfolio.core.exceptions import InvalidLedgerDataError, NotFoundError
from coinfolio.core.timezone import now_utc, to_utc
from coinfolio.domain.models import CoinPosition, Portfolio, Transaction, TransactionType
from coinfolio.repositories.protocols import LedgerRepository
from coinfolio.services.valuation_engine import revalue

logger = logging.getLogger(__name__)


@dataclass
class TransactionCreate:
    """Input data for creating a transaction."""

    tx_type: TransactionType
    amount: Decimal
    price: Decimal
    timestamp: Optional[datetime] = None
    note: Optional[str] = None


@dataclass
class TransactionUpdate:
    """Partial update data for editing a transaction. None keeps the current value."""

    tx_type: Optional[TransactionType] = None
    amount: Optional[Decimal] = None
    price: Optional[Decimal] = None
    timestamp: Optional[datetime] = None
    note: Optional[str] = None


def _decimal(value: Any, field_name: str) -> Decimal:
    if isinstance(value, Decimal):
        result = value
    else:
        try:
            result = Decimal(str(value))
        except (InvalidOperation, ValueError) as exc:
            raise InvalidLedgerDataError(f"{field_name} must be a number, got {value!r}") from exc
    if not result.is_finite():
        raise InvalidLedgerDataError(f"{field_name} must be finite")
    return result


def _tx_type(value: Any) -> TransactionType:
    try:
        return value if isinstance(value, TransactionType) else TransactionType.parse(value)
    except ValueError as exc:
        raise InvalidLedgerDataError(f"Unknown transaction type: {value!r}") from exc


def _validated(tx_type: Any, amount: Any, price: Any) -> tuple[TransactionType, Decimal, Decimal]:
    parsed_type = _tx_type(tx_type)
    parsed_amount = _decimal(amount, "amount")
    parsed_price = _decimal(price, "price")
    if parsed_amount <= 0:
        raise InvalidLedgerDataError("amount must be greater than 0")
    if parsed_price < 0:
        raise InvalidLedgerDataError("price must not be negative")
    return parsed_type, parsed_amount, parsed_price


class LedgerService:
    """
    Service for managing the transaction ledger.

    Every mutation validates first, then loads, changes and saves the whole
    portfolio, so an invalid request never touches stored state. Market
    prices are not fetched here; derived valuations are recomputed from
    whatever price each position already carries.
    """

    def __init__(self, ledger_repo: LedgerRepository):
        self._repo = ledger_repo

    def load(self) -> Portfolio:
        """Return the stored portfolio, or an empty one."""
        portfolio = self._repo.load()
        return revalue(portfolio) if portfolio is not None else Portfolio()

    def save(self, portfolio: Portfolio) -> Portfolio:
        """Revalue and persist `portfolio`; returns what was written."""
        valued = revalue(portfolio)
        self._repo.save(valued)
        return valued

    def replace(self, portfolio: Portfolio) -> Portfolio:
        """Swap the whole ledger for `portfolio`."""
        logger.info("Replacing ledger with %d positions", len(portfolio.positions))
        return self.save(portfolio)

    def add_transaction(
        self,
        coin_id: str,
        data: TransactionCreate,
        symbol: Optional[str] = None,
        name: Optional[str] = None,
        image: Optional[str] = None,
    ) -> Transaction:
        """
        Append a transaction, creating the position if it does not exist.

        `symbol`, `name` and `image` fill in metadata for a new position and
        replace blanks on an existing one.
        """
        if not coin_id or not coin_id.strip():
            raise InvalidLedgerDataError("coin_id is required")
        tx_type, amount, price = _validated(data.tx_type, data.amount, data.price)

        transaction = Transaction(
            tx_id=str(uuid.uuid4()),
            tx_type=tx_type,
            amount=amount,
            price=price,
            timestamp=to_utc(data.timestamp) if data.timestamp else now_utc(),
            note=data.note,
        )

        portfolio = self.load()
        position = portfolio.positions.get(coin_id)
        if position is None:
            position = CoinPosition(coin_id=coin_id)
            portfolio.positions[coin_id] = position
        position.transactions.append(transaction)
        _fill_metadata(position, symbol, name, image)

        self.save(portfolio)
        logger.info("Added %s of %s %s", tx_type.value, amount, coin_id)
        return transaction

    def update_transaction(self, coin_id: str, tx_id: str, patch: TransactionUpdate) -> Transaction:
        """Apply `patch` to one transaction; the transaction id never changes."""
        portfolio = self.load()
        position = self._get_position(portfolio, coin_id)
        current = position.find_transaction(tx_id)
        if current is None:
            raise NotFoundError("Transaction", tx_id)

        tx_type, amount, price = _validated(
            patch.tx_type if patch.tx_type is not None else current.tx_type,
            patch.amount if patch.amount is not None else current.amount,
            patch.price if patch.price is not None else current.price,
        )
        updated = replace(
            current,
            tx_type=tx_type,
            amount=amount,
            price=price,
            timestamp=to_utc(patch.timestamp) if patch.timestamp else current.timestamp,
            note=patch.note if patch.note is not None else current.note,
        )
        position.transactions = [updated if t.tx_id == tx_id else t for t in position.transactions]

        self.save(portfolio)
        logger.info("Updated transaction %s of %s", tx_id, coin_id)
        return updated

    def remove_transaction(self, coin_id: str, tx_id: str) -> None:
        """Delete one transaction; the position goes with its last transaction."""
        portfolio = self.load()
        position = self._get_position(portfolio, coin_id)
        if position.find_transaction(tx_id) is None:
            raise NotFoundError("Transaction", tx_id)

        position.transactions = [t for t in position.transactions if t.tx_id != tx_id]
        if not position.transactions:
            del portfolio.positions[coin_id]
            logger.info("Removed last transaction of %s; position closed", coin_id)

        self.save(portfolio)

    @staticmethod
    def _get_position(portfolio: Portfolio, coin_id: str) -> CoinPosition:
        position = portfolio.positions.get(coin_id)
        if position is None:
            raise NotFoundError("Position", coin_id)
        return position


def _fill_metadata(
    position: CoinPosition,
    symbol: Optional[str],
    name: Optional[str],
    image: Optional[str],
) -> None:
    if symbol and not position.symbol:
        position.symbol = symbol.upper()
    if name and not position.name:
        position.name = name
    if image and not position.image:
        position.image = image
