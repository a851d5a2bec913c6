"""Portfolio import/export utilities."""

from coinfolio.transfer.importer import PortfolioImporter
from coinfolio.transfer.exporter import PortfolioExporter

__all__ = [
    "PortfolioImporter",
    "PortfolioExporter",
]
