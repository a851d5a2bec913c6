"""Ledger repository persisting the whole portfolio document under one key."""

import json
import logging
from typing import Optional

from coinfolio.core.exceptions import InvalidLedgerDataError
from coinfolio.domain.models import Portfolio
from coinfolio.repositories.ledger_document import (
    PORTFOLIO_KEY,
    parse_portfolio_document,
    portfolio_to_document,
)
from coinfolio.repositories.protocols import KeyValueStore

logger = logging.getLogger(__name__)


class KeyValueLedgerRepository:
    """
    LedgerRepository over any KeyValueStore.

    The document is written with a single `set`, so a crash mid-save leaves
    the previous document in place.
    """

    def __init__(self, store: KeyValueStore, key: str = PORTFOLIO_KEY):
        self._store = store
        self._key = key

    def load(self) -> Optional[Portfolio]:
        raw = self._store.get(self._key)
        if raw is None:
            return None
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as exc:
            logger.error("Stored portfolio under %r is not valid JSON: %s", self._key, exc)
            raise InvalidLedgerDataError(f"Stored portfolio is corrupt: {exc}") from exc
        return parse_portfolio_document(data)

    def save(self, portfolio: Portfolio) -> None:
        document = portfolio_to_document(portfolio)
        self._store.set(self._key, json.dumps(document))
        logger.debug("Saved portfolio with %d positions", len(portfolio.positions))

    def clear(self) -> None:
        self._store.delete(self._key)
