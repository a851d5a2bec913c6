"""Import/export result views."""

from dataclasses import dataclass, field


@dataclass
class ImportSummary:
    """Summary of a portfolio import."""

    position_count: int = 0
    transaction_count: int = 0
    inconsistent_coin_ids: list[str] = field(default_factory=list)
