"""Low-stock detection for inventory changes."""

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class StockLevel:
    """Stock on hand and the low-stock threshold of an inventory item."""

    stock: float
    threshold: float

    @property
    def is_low(self) -> bool:
        return self.stock <= self.threshold


def crossed_below_threshold(previous: Optional[StockLevel], current: StockLevel) -> bool:
    """True iff the item went from above its threshold to at or below it.

    A new item (no previous level) counts as crossing when it starts low.
    Repeated changes while already low never fire again.
    """
    if previous is None:
        return current.is_low
    return previous.stock > previous.threshold and current.is_low
