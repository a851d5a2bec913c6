"""Ledger repository protocol."""

from typing import Protocol, Optional

from coinfolio.domain.models import Portfolio


class LedgerRepository(Protocol):
    """Interface for loading and persisting the whole transaction ledger."""

    def load(self) -> Optional[Portfolio]:
        """Return the stored portfolio, or None on first run."""
        ...

    def save(self, portfolio: Portfolio) -> None:
        """Replace the stored portfolio in a single write."""
        ...

    def clear(self) -> None:
        """Remove the stored portfolio."""
        ...
