from __future__ import annotations

import logging
from decimal import Decimal

from sqlalchemy.orm import Session

from app import models
from app.domain.catalog.quantity import to_decimal
from app.services.functions_client import FunctionsClient
from app.services.stock_validation import ProductStock, ReservationItem, ReservationOutcome

logger = logging.getLogger(__name__)


class SqlInventoryGateway:
    def __init__(self, db: Session) -> None:
        self.db = db

    async def get_product(self, product_id: str) -> ProductStock | None:
        product = (
            self.db.query(models.Product)
            .filter(models.Product.id == product_id, models.Product.is_active.is_(True))
            .first()
        )
        if not product:
            return None
        return ProductStock(id=product.id, name=product.name, available_stock=to_decimal(product.stock))


class SqlStockReserver:
    """Locks every product row, then decrements all of them or none.

    Only flushes; the caller owns the transaction so the order rows land in
    the same commit as the decrement.
    """

    def __init__(self, db: Session) -> None:
        self.db = db

    async def reserve(self, items: list[ReservationItem]) -> ReservationOutcome:
        requested: dict[str, Decimal] = {}
        for item in items:
            requested[item.product_id] = requested.get(item.product_id, Decimal("0")) + to_decimal(item.quantity)

        failed: list[str] = []
        locked: list[tuple[models.Product, Decimal]] = []
        for product_id in sorted(requested):
            product = (
                self.db.query(models.Product)
                .filter(models.Product.id == product_id)
                .with_for_update()
                .first()
            )
            quantity = requested[product_id]
            if product is None or not product.is_active or to_decimal(product.stock) - quantity < 0:
                failed.append(product_id)
                continue
            locked.append((product, quantity))

        if failed:
            return ReservationOutcome(
                success=False,
                error="Alguns produtos não têm estoque suficiente",
                failed_items=failed,
            )

        for product, quantity in locked:
            product.stock = to_decimal(product.stock) - quantity
        self.db.flush()
        logger.info("Reserved stock for %s products", len(locked))
        return ReservationOutcome(success=True)


class RemoteStockReserver:
    """Delegates the reservation to the ``order-processing`` function."""

    function_name = "order-processing"

    def __init__(self, client: FunctionsClient) -> None:
        self.client = client

    async def reserve(self, items: list[ReservationItem]) -> ReservationOutcome:
        body = {
            "action": "validate_stock",
            "items": [
                {"produto_id": item.product_id, "quantidade": float(item.quantity)}
                for item in items
            ],
        }
        data = await self.client.invoke(self.function_name, body)
        if not data.get("success"):
            return ReservationOutcome(
                success=False,
                error=data.get("error"),
                failed_items=[str(value) for value in data.get("failedItems") or data.get("failed_items") or []],
            )
        return ReservationOutcome(success=True)
