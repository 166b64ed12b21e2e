"""
Shopping list items.

Applies AI task results to items and moves item lists between installs as
a portable JSON document. The usage ledger, settings and credentials are
per-install and never part of the export.
"""

import json
import uuid
from dataclasses import asdict, dataclass, field, replace
from datetime import datetime
from typing import Any, Dict, List, Optional

from .core.results import (
    AdditiveAnalysisResult,
    AdditiveInfo,
    PriceGuessResult,
    PriceTagInfo,
    TaxRateResult,
)

EXPORT_VERSION = 1


@dataclass(frozen=True)
class ShoppingItem:
    """One entry on a shopping list."""
    name: str
    cost: float
    tax_rate: float = 0.0
    quantity: int = 1
    has_unknown_tax: bool = False
    risky_additives: int = 0
    non_risky_additives: int = 0
    additive_details: List[AdditiveInfo] = field(default_factory=list)
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    date_added: datetime = field(default_factory=datetime.now)

    def __post_init__(self):
        """Validate amounts."""
        if self.cost < 0:
            raise ValueError("cost cannot be negative")
        if self.tax_rate < 0:
            raise ValueError("tax_rate cannot be negative")
        if self.quantity < 1:
            raise ValueError("quantity must be >= 1")

    @property
    def total_with_tax(self) -> float:
        return self.cost * self.quantity * (1 + self.tax_rate / 100)


def apply_tax_result(item: ShoppingItem, result: Optional[TaxRateResult]) -> ShoppingItem:
    """Set the item's tax rate; no answer or an indeterminate one marks the tax unknown."""
    if result is None or result.tax_rate is None:
        return replace(item, tax_rate=0.0, has_unknown_tax=True)
    return replace(item, tax_rate=result.tax_rate, has_unknown_tax=False)


def apply_price_tag(item: ShoppingItem, info: PriceTagInfo) -> ShoppingItem:
    updated = replace(item, cost=max(0.0, info.price))
    if info.has_usable_name:
        updated = replace(updated, name=info.name)
    return apply_tax_result(updated, TaxRateResult(tax_rate=info.tax_rate))


def apply_price_guess(item: ShoppingItem, result: Optional[PriceGuessResult]) -> ShoppingItem:
    """Use the guessed price when there is one; otherwise keep the item as is."""
    if result is None or result.estimated_price is None or result.estimated_price < 0:
        return item
    return replace(item, cost=result.estimated_price)


def apply_additive_result(item: ShoppingItem, result: Optional[AdditiveAnalysisResult]) -> ShoppingItem:
    if result is None:
        return item
    return replace(
        item,
        risky_additives=result.risky_count,
        non_risky_additives=result.safe_count,
        additive_details=result.all_additives,
    )


def _item_to_dict(item: ShoppingItem) -> Dict[str, Any]:
    data = asdict(item)
    data["date_added"] = item.date_added.isoformat()
    return data


def _item_from_dict(data: Dict[str, Any]) -> ShoppingItem:
    values = dict(data)
    values["date_added"] = datetime.fromisoformat(values["date_added"])
    values["additive_details"] = [AdditiveInfo(**entry) for entry in values.get("additive_details", [])]
    return ShoppingItem(**values)


def export_items(items: List[ShoppingItem], exported_at: Optional[datetime] = None) -> str:
    """Serialize items to a portable JSON document.

    Args:
        items: Items to export
        exported_at: Export timestamp, now when None

    Returns:
        JSON text
    """
    document = {
        "version": EXPORT_VERSION,
        "exported_at": (exported_at or datetime.now()).isoformat(),
        "items": [_item_to_dict(item) for item in items],
    }
    return json.dumps(document, indent=2)


def import_items(text: str) -> List[ShoppingItem]:
    """Read items from a portable JSON document.

    Raises:
        ValueError: If the document is malformed or from an unsupported version
    """
    try:
        document = json.loads(text)
    except ValueError as e:
        raise ValueError(f"Invalid export document: {e}") from e

    if not isinstance(document, dict) or not isinstance(document.get("items"), list):
        raise ValueError("Export document must contain an 'items' list")
    if document.get("version") != EXPORT_VERSION:
        raise ValueError(f"Unsupported export version: {document.get('version')}")

    try:
        return [_item_from_dict(entry) for entry in document["items"]]
    except (KeyError, TypeError) as e:
        raise ValueError(f"Malformed item in export document: {e}") from e
