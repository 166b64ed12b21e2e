"""
Unit tests for shopping list items and their export format.
"""

import json
from datetime import datetime

import pytest

from shopping_ai.core.results import (
    AdditiveAnalysisResult,
    AdditiveInfo,
    PriceGuessResult,
    PriceTagInfo,
    TaxRateResult,
)
from shopping_ai.items import (
    ShoppingItem,
    apply_additive_result,
    apply_price_guess,
    apply_price_tag,
    apply_tax_result,
    export_items,
    import_items,
)


class TestShoppingItem:
    def test_total_with_tax(self):
        item = ShoppingItem(name="Milk", cost=2.0, tax_rate=10.0, quantity=3)
        assert item.total_with_tax == pytest.approx(6.6)

    @pytest.mark.parametrize("kwargs", [
        {"cost": -1.0},
        {"cost": 1.0, "tax_rate": -5.0},
        {"cost": 1.0, "quantity": 0},
    ])
    def test_invalid_values(self, kwargs):
        with pytest.raises(ValueError):
            ShoppingItem(name="Milk", **kwargs)


class TestApplyResults:
    """Test folding AI answers into items."""

    def test_tax_rate_applied(self):
        item = apply_tax_result(ShoppingItem(name="Milk", cost=2.0), TaxRateResult(6.25))
        assert item.tax_rate == 6.25
        assert not item.has_unknown_tax

    @pytest.mark.parametrize("result", [None, TaxRateResult(None)])
    def test_unknown_tax(self, result):
        item = ShoppingItem(name="Milk", cost=2.0, tax_rate=5.0)
        updated = apply_tax_result(item, result)
        assert updated.tax_rate == 0.0
        assert updated.has_unknown_tax

    def test_price_tag(self):
        item = ShoppingItem(name="Photo item", cost=0.0)
        updated = apply_price_tag(item, PriceTagInfo(name="Oat Milk", price=3.49, tax_rate=8.25))

        assert updated.name == "Oat Milk"
        assert updated.cost == 3.49
        assert updated.tax_rate == 8.25

    def test_price_tag_unreadable_name_kept(self):
        item = ShoppingItem(name="Photo item", cost=0.0)
        updated = apply_price_tag(item, PriceTagInfo(name="Unknown Item", price=0))

        assert updated.name == "Photo item"
        assert updated.has_unknown_tax

    def test_price_guess(self):
        item = ShoppingItem(name="Eggs", cost=0.0)
        assert apply_price_guess(item, PriceGuessResult(4.99)).cost == 4.99

    @pytest.mark.parametrize("result", [None, PriceGuessResult(None), PriceGuessResult(-1.0)])
    def test_price_guess_without_answer(self, result):
        item = ShoppingItem(name="Eggs", cost=1.0)
        assert apply_price_guess(item, result) is item

    def test_additives(self):
        risky = AdditiveInfo("E102", "dye", True, "High")
        safe = AdditiveInfo("E300", "vitamin C", False)
        item = apply_additive_result(
            ShoppingItem(name="Soda", cost=1.0),
            AdditiveAnalysisResult([risky], [safe]),
        )

        assert item.risky_additives == 1
        assert item.non_risky_additives == 1
        assert item.additive_details == [risky, safe]

    def test_additives_without_answer(self):
        item = ShoppingItem(name="Soda", cost=1.0)
        assert apply_additive_result(item, None) is item


class TestExportImport:
    """Test the portable item document."""

    def test_export_document_shape(self):
        item = ShoppingItem(name="Milk", cost=2.0, date_added=datetime(2024, 5, 1, 8, 0))
        document = json.loads(export_items([item], exported_at=datetime(2024, 5, 2, 9, 0)))

        assert document["version"] == 1
        assert document["exported_at"] == "2024-05-02T09:00:00"
        assert document["items"][0]["name"] == "Milk"
        assert document["items"][0]["date_added"] == "2024-05-01T08:00:00"

    def test_import_restores_items(self):
        items = [
            ShoppingItem(name="Milk", cost=2.0, tax_rate=6.0, quantity=2),
            ShoppingItem(
                name="Soda", cost=1.0, risky_additives=1,
                additive_details=[AdditiveInfo("E102", "dye", True, "High")],
            ),
        ]
        assert import_items(export_items(items)) == items

    @pytest.mark.parametrize("text,message", [
        ("not json", "Invalid export document"),
        ('{"version": 1}', "must contain an 'items' list"),
        ('{"version": 2, "items": []}', "Unsupported export version"),
        ('{"version": 1, "items": [{"name": "Milk"}]}', "Malformed item"),
    ])
    def test_import_rejects_bad_documents(self, text, message):
        with pytest.raises(ValueError, match=message):
            import_items(text)
