"""Portfolio JSON import."""

import json
import logging
from pathlib import Path
from typing import TYPE_CHECKING, Any, Union

from coinfolio.core.exceptions import InvalidLedgerDataError, ValidationError
from coinfolio.domain.models import Portfolio
from coinfolio.domain.views import ImportSummary
from coinfolio.repositories.ledger_document import parse_portfolio_document

if TYPE_CHECKING:
    from coinfolio.services.ledger_service import LedgerService

logger = logging.getLogger(__name__)


class PortfolioImporter:
    """
    Importer for portfolio documents produced by export (or the web client).

    The whole document is validated before the ledger is replaced; a bad
    document raises InvalidLedgerDataError and leaves the ledger untouched.
    Derived fields in the document (holdings, totals, ...) are ignored and
    recomputed.
    """

    def __init__(self, ledger_service: "LedgerService"):
        self._ledger = ledger_service

    @staticmethod
    def parse(data: Union[str, bytes, dict]) -> Portfolio:
        """Decode and validate a document without touching the ledger."""
        document: Any = data
        if isinstance(data, (str, bytes)):
            try:
                document = json.loads(data)
            except json.JSONDecodeError as exc:
                raise InvalidLedgerDataError(f"Portfolio data is not valid JSON: {exc.msg}") from exc
        return parse_portfolio_document(document)

    def import_document(self, data: Union[str, bytes, dict]) -> ImportSummary:
        """Replace the ledger with the contents of `data`."""
        portfolio = self.parse(data)
        saved = self._ledger.replace(portfolio)

        summary = ImportSummary(
            position_count=len(saved.positions),
            transaction_count=sum(len(p.transactions) for p in saved.positions.values()),
            inconsistent_coin_ids=list(saved.totals.inconsistent_coin_ids),
        )
        logger.info(
            "Imported %d positions with %d transactions",
            summary.position_count,
            summary.transaction_count,
        )
        return summary

    def import_file(self, path: str) -> ImportSummary:
        file_path = Path(path)
        if not file_path.exists():
            raise ValidationError(f"File not found: {path}")
        return self.import_document(file_path.read_text(encoding="utf-8"))
