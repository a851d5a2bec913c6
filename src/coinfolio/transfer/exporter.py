"""Portfolio JSON export."""

import json
from pathlib import Path
from typing import TYPE_CHECKING

from coinfolio.repositories.ledger_document import portfolio_to_document

if TYPE_CHECKING:
    from coinfolio.services.ledger_service import LedgerService


class PortfolioExporter:
    """
    Exporter for the full portfolio document.

    The output is the same document the ledger is stored as, so it can be
    fed back to PortfolioImporter unchanged.
    """

    def __init__(self, ledger_service: "LedgerService"):
        self._ledger = ledger_service

    def export_document(self) -> dict:
        return portfolio_to_document(self._ledger.load())

    def export_json(self, indent: int = 2) -> str:
        return json.dumps(self.export_document(), indent=indent)

    def export_file(self, path: str) -> None:
        """Write the export to `path`, creating parent directories."""
        file_path = Path(path)
        file_path.parent.mkdir(parents=True, exist_ok=True)
        file_path.write_text(self.export_json(), encoding="utf-8")
