"""
JSON document shape of the persisted ledger.

The same document is written to the key-value store and produced by export,
and the same validation runs on load and on import. Keys follow the web client's
local-storage layout (`coins`, `transactions`, ...) so
exported files stay interchangeable; the legacy `date` key is accepted in
place of `timestamp`. Decimals are written as strings to keep them exact.
"""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    ValidationError as PydanticValidationError,
    field_validator,
    model_validator,
)

from coinfolio.core.exceptions import InvalidLedgerDataError
from coinfolio.core.timezone import from_epoch_ms, now_utc, parse_datetime_utc, to_utc
from coinfolio.domain.models import CoinPosition, Portfolio, Transaction, TransactionType
from coinfolio.domain.views import PortfolioTotals

PORTFOLIO_KEY = "crypto-portfolio"
DOCUMENT_VERSION = 1


def _parse_timestamp(value: Any) -> Any:
    if isinstance(value, datetime):
        return to_utc(value)
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        # Web client exports use epoch milliseconds
        return from_epoch_ms(value if value > 1e11 else value * 1000)
    if isinstance(value, str) and value.strip():
        try:
            return parse_datetime_utc(value.strip())
        except (ValueError, OverflowError) as exc:
            raise ValueError(f"unparseable timestamp {value!r}") from exc
    return value


class TransactionDocument(BaseModel):
    """One transaction as stored/imported."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), min_length=1)
    type: TransactionType
    amount: Decimal = Field(gt=0)
    price: Decimal = Field(ge=0)
    timestamp: datetime = Field(validation_alias=AliasChoices("timestamp", "date"))
    note: Optional[str] = None

    @field_validator("type", mode="before")
    @classmethod
    def normalize_type(cls, v: Any) -> Any:
        return v.strip().lower() if isinstance(v, str) else v

    @field_validator("amount", "price", mode="before")
    @classmethod
    def reject_blank_numbers(cls, v: Any) -> Any:
        if isinstance(v, bool) or (isinstance(v, str) and not v.strip()):
            raise ValueError("must be a number")
        return v

    @field_validator("timestamp", mode="before")
    @classmethod
    def parse_timestamp(cls, v: Any) -> Any:
        return _parse_timestamp(v)

    def to_domain(self) -> Transaction:
        return Transaction(
            tx_id=self.id,
            tx_type=self.type,
            amount=self.amount,
            price=self.price,
            timestamp=to_utc(self.timestamp),
            note=self.note,
        )


class CoinDocument(BaseModel):
    """One coin position as stored/imported. Derived fields are ignored on read."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    id: str = Field(validation_alias=AliasChoices("id", "coinId"), min_length=1)
    symbol: str = ""
    name: str = ""
    image: Optional[str] = None
    transactions: list[TransactionDocument]
    current_price: Optional[Decimal] = Field(
        default=None, validation_alias=AliasChoices("currentPrice", "current_price")
    )
    change_24h_pct: Optional[Decimal] = Field(
        default=None, validation_alias=AliasChoices("priceChange24h", "change_24h_pct")
    )
    price_as_of: Optional[datetime] = Field(
        default=None, validation_alias=AliasChoices("priceAsOf", "price_as_of")
    )
    price_source: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("priceSource", "price_source")
    )
    price_stale: bool = Field(
        default=False, validation_alias=AliasChoices("priceStale", "price_stale")
    )

    @field_validator("symbol", "name", mode="before")
    @classmethod
    def none_to_empty(cls, v: Any) -> Any:
        return "" if v is None else v

    @field_validator("price_as_of", mode="before")
    @classmethod
    def parse_price_as_of(cls, v: Any) -> Any:
        return None if v in (None, "") else _parse_timestamp(v)

    @field_validator("current_price", mode="before")
    @classmethod
    def zero_price_means_unknown(cls, v: Any) -> Any:
        # Older documents store 0 for "never priced"
        if v in (None, "", 0, "0"):
            return None
        return v

    @model_validator(mode="after")
    def unique_transaction_ids(self) -> "CoinDocument":
        seen: set[str] = set()
        for tx in self.transactions:
            if tx.id in seen:
                raise ValueError(f"duplicate transaction id {tx.id!r}")
            seen.add(tx.id)
        return self

    def to_domain(self) -> CoinPosition:
        return CoinPosition(
            coin_id=self.id,
            symbol=self.symbol.upper(),
            name=self.name,
            image=self.image or None,
            transactions=[tx.to_domain() for tx in self.transactions],
            current_price=self.current_price,
            change_24h_pct=self.change_24h_pct,
            price_as_of=self.price_as_of,
            price_source=self.price_source,
            price_stale=self.price_stale,
        )


class PortfolioDocument(BaseModel):
    """Top-level ledger document."""

    model_config = ConfigDict(extra="ignore")

    coins: list[CoinDocument]

    @model_validator(mode="after")
    def unique_coin_ids(self) -> "PortfolioDocument":
        seen: set[str] = set()
        for coin in self.coins:
            if coin.id in seen:
                raise ValueError(f"duplicate coin id {coin.id!r}")
            seen.add(coin.id)
        return self

    def to_domain(self) -> Portfolio:
        positions = {}
        for coin in self.coins:
            # A position only exists while it has transactions
            if coin.transactions:
                positions[coin.id] = coin.to_domain()
        return Portfolio(positions=positions)


def _format_error(exc: PydanticValidationError) -> str:
    first = exc.errors()[0]
    location = ".".join(str(part) for part in first.get("loc", ())) or "document"
    extra = f" (+{exc.error_count() - 1} more)" if exc.error_count() > 1 else ""
    return f"{location}: {first.get('msg', 'invalid value')}{extra}"


def parse_portfolio_document(data: Any) -> Portfolio:
    """
    Validate a decoded ledger document and build a Portfolio.

    Raises InvalidLedgerDataError describing the first problem; nothing is
    built unless the whole document is valid.
    """
    if not isinstance(data, dict):
        raise InvalidLedgerDataError("Portfolio document must be a JSON object")
    if not isinstance(data.get("coins"), list):
        raise InvalidLedgerDataError("Portfolio document must contain a 'coins' array")
    try:
        document = PortfolioDocument.model_validate(data)
    except PydanticValidationError as exc:
        raise InvalidLedgerDataError(f"Invalid portfolio data: {_format_error(exc)}") from exc
    return document.to_domain()


def _dec(value: Optional[Decimal]) -> Optional[str]:
    return str(value) if value is not None else None


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def portfolio_to_document(portfolio: Portfolio) -> dict:
    """Serialize a Portfolio (ledger plus derived fields) to a JSON-compatible dict."""
    coins = []
    for position in portfolio.positions.values():
        valuation = position.valuation
        coins.append({
            "id": position.coin_id,
            "symbol": position.symbol,
            "name": position.name,
            "image": position.image,
            "transactions": [
                {
                    "id": tx.tx_id,
                    "type": tx.tx_type.value,
                    "amount": str(tx.amount),
                    "price": str(tx.price),
                    "timestamp": tx.timestamp.isoformat(),
                    "note": tx.note,
                }
                for tx in position.sorted_transactions()
            ],
            "currentPrice": _dec(position.current_price),
            "priceChange24h": _dec(position.change_24h_pct),
            "priceAsOf": _iso(position.price_as_of),
            "priceSource": position.price_source,
            "priceStale": position.price_stale,
            # Derived; recomputed on every load
            "holdings": str(valuation.holdings),
            "averageBuyPrice": str(valuation.average_cost),
            "totalInvestment": str(valuation.invested_capital),
            "currentValue": _dec(valuation.current_value),
            "profitLoss": _dec(valuation.profit_loss),
            "profitLossPercentage": _dec(valuation.profit_loss_pct),
            "firstBuyDate": _iso(valuation.first_buy_at),
            "lastTransactionDate": _iso(valuation.last_activity_at),
            "inconsistent": valuation.inconsistent,
        })

    totals = portfolio.totals or PortfolioTotals()
    return {
        "version": DOCUMENT_VERSION,
        "updatedAt": _iso(portfolio.updated_at or now_utc()),
        "coins": coins,
        "totalInvestment": str(totals.invested_capital),
        "totalValue": str(totals.current_value),
        "totalProfitLoss": str(totals.profit_loss),
        "totalProfitLossPercentage": str(totals.profit_loss_pct),
    }
