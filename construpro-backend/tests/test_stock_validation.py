# tests/test_stock_validation.py
from decimal import Decimal

import pytest

from app.services.stock_validation import (
    ProductStock,
    ReservationItem,
    ReservationOutcome,
    StockCheckItem,
    validate_and_reserve_stock,
    validate_cart_stock,
)


class FakeInventory:
    def __init__(self, stock: dict, failing: set[str] | None = None) -> None:
        self.stock = stock
        self.failing = failing or set()
        self.calls: list[str] = []

    async def get_product(self, product_id: str):
        self.calls.append(product_id)
        if product_id in self.failing:
            raise RuntimeError("inventory down")
        if product_id not in self.stock:
            return None
        return ProductStock(id=product_id, name=f"Produto {product_id}", available_stock=Decimal(self.stock[product_id]))


def _item(item_id: str, product_id: str | None, qty: str) -> StockCheckItem:
    return StockCheckItem(item_id=item_id, product_id=product_id, quantity=Decimal(qty))


@pytest.mark.anyio
async def test_classifies_invalid_adjusted_and_passing_items():
    inventory = FakeInventory({"p1": "0", "p2": "3", "p3": "10"})
    result = await validate_cart_stock(
        [_item("i1", "p1", "2"), _item("i2", "p2", "5"), _item("i3", "p3", "10")],
        inventory,
        cart_version=4,
    )
    assert [i.item_id for i in result.invalid_items] == ["i1"]
    assert result.invalid_items[0].available_stock == 0
    adjusted = result.adjusted_items[0]
    assert (adjusted.item_id, adjusted.old_quantity, adjusted.new_quantity) == ("i2", Decimal("5"), Decimal("3"))
    assert not result.is_valid
    assert result.cart_version == 4


@pytest.mark.anyio
async def test_adjusted_items_alone_do_not_block_checkout():
    result = await validate_cart_stock([_item("i1", "p1", "5")], FakeInventory({"p1": "2"}))
    assert result.is_valid
    assert len(result.adjusted_items) == 1


@pytest.mark.anyio
async def test_missing_product_or_fetch_error_fails_closed_and_batch_continues():
    inventory = FakeInventory({"ok": "5"}, failing={"boom"})
    result = await validate_cart_stock(
        [_item("i1", None, "1"), _item("i2", "gone", "1"), _item("i3", "boom", "1"), _item("i4", "ok", "1")],
        inventory,
    )
    assert [i.item_id for i in result.invalid_items] == ["i1", "i2", "i3"]
    assert all(i.available_stock == 0 for i in result.invalid_items)
    assert result.invalid_items[2].product_name == "Erro ao verificar produto"
    assert "ok" in inventory.calls


@pytest.mark.anyio
async def test_non_positive_quantity_counts_as_one():
    result = await validate_cart_stock([_item("i1", "p1", "0")], FakeInventory({"p1": "1"}))
    assert result.is_valid
    assert not result.adjusted_items


def test_stale_result_detected_by_version():
    from app.services.stock_validation import StockValidationResult

    result = StockValidationResult(cart_version=3)
    assert result.is_stale(4)
    assert not result.is_stale(3)


class FakeReserver:
    def __init__(self, outcome=None, raises=False) -> None:
        self.outcome = outcome
        self.raises = raises
        self.items: list[ReservationItem] = []

    async def reserve(self, items):
        self.items = items
        if self.raises:
            raise RuntimeError("db gone")
        return self.outcome


@pytest.mark.anyio
async def test_reservation_exception_becomes_internal_error():
    outcome = await validate_and_reserve_stock([_item("i1", "p1", "1")], FakeReserver(raises=True))
    assert outcome.success is False
    assert outcome.error == "Erro interno ao validar estoque"


@pytest.mark.anyio
async def test_reservation_refusal_without_message_gets_default():
    reserver = FakeReserver(ReservationOutcome(success=False, failed_items=["p1"]))
    outcome = await validate_and_reserve_stock([_item("i1", "p1", "2"), _item("i2", None, "1")], reserver)
    assert outcome.error == "Alguns produtos não têm estoque suficiente"
    assert outcome.failed_items == ["p1"]
    assert [item.product_id for item in reserver.items] == ["p1"]
