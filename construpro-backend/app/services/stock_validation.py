"""Two-phase stock checks for cart and checkout.

``validate_cart_stock`` is advisory: it only reads inventory and classifies
each line item so the client can offer remediation. ``validate_and_reserve_stock``
is the correctness boundary, run only at order placement, and is the single
path that decrements inventory.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Iterable, Protocol

logger = logging.getLogger(__name__)

PRODUCT_NOT_FOUND = "Produto não encontrado"
PRODUCT_CHECK_FAILED = "Erro ao verificar produto"
RESERVATION_INTERNAL_ERROR = "Erro interno ao validar estoque"
RESERVATION_DEFAULT_ERROR = "Alguns produtos não têm estoque suficiente"


@dataclass(frozen=True, slots=True)
class ProductStock:
    id: str
    name: str
    available_stock: Decimal


@dataclass(frozen=True, slots=True)
class StockCheckItem:
    item_id: str
    product_id: str | None
    quantity: Decimal
    product_name: str | None = None


@dataclass(frozen=True, slots=True)
class InvalidItem:
    item_id: str
    product_id: str | None
    requested_quantity: Decimal
    available_stock: Decimal
    product_name: str


@dataclass(frozen=True, slots=True)
class AdjustedItem:
    item_id: str
    product_id: str
    old_quantity: Decimal
    new_quantity: Decimal
    product_name: str


@dataclass(slots=True)
class StockValidationResult:
    invalid_items: list[InvalidItem] = field(default_factory=list)
    adjusted_items: list[AdjustedItem] = field(default_factory=list)
    cart_version: int | None = None

    @property
    def is_valid(self) -> bool:
        return not self.invalid_items

    def is_stale(self, current_version: int) -> bool:
        return self.cart_version is not None and self.cart_version != current_version


@dataclass(frozen=True, slots=True)
class ReservationItem:
    product_id: str
    quantity: Decimal


@dataclass(slots=True)
class ReservationOutcome:
    success: bool
    error: str | None = None
    failed_items: list[str] = field(default_factory=list)


class InventoryGateway(Protocol):
    async def get_product(self, product_id: str) -> ProductStock | None: ...


class StockReserver(Protocol):
    async def reserve(self, items: list[ReservationItem]) -> ReservationOutcome: ...


async def validate_cart_stock(
    items: Iterable[StockCheckItem],
    inventory: InventoryGateway,
    cart_version: int | None = None,
) -> StockValidationResult:
    result = StockValidationResult(cart_version=cart_version)
    zero = Decimal("0")

    for item in items:
        requested = item.quantity if item.quantity and item.quantity > 0 else Decimal("1")

        if not item.product_id:
            logger.warning("Cart item %s has no product reference", item.item_id)
            result.invalid_items.append(
                InvalidItem(item.item_id, None, requested, zero, item.product_name or PRODUCT_NOT_FOUND)
            )
            continue

        try:
            product = await inventory.get_product(item.product_id)
        except Exception:
            # uma falha isolada bloqueia so este item; o lote continua
            logger.exception("Stock lookup failed for product %s", item.product_id)
            result.invalid_items.append(
                InvalidItem(item.item_id, item.product_id, requested, zero, item.product_name or PRODUCT_CHECK_FAILED)
            )
            continue

        if product is None:
            result.invalid_items.append(
                InvalidItem(item.item_id, item.product_id, requested, zero, item.product_name or PRODUCT_NOT_FOUND)
            )
            continue

        available = product.available_stock if product.available_stock > 0 else zero
        if available == 0:
            result.invalid_items.append(
                InvalidItem(item.item_id, item.product_id, requested, zero, product.name)
            )
        elif available < requested:
            result.adjusted_items.append(
                AdjustedItem(item.item_id, item.product_id, requested, available, product.name)
            )

    logger.info(
        "Stock validation finished valid=%s invalid=%s adjusted=%s",
        result.is_valid,
        len(result.invalid_items),
        len(result.adjusted_items),
    )
    return result


async def validate_and_reserve_stock(
    items: Iterable[StockCheckItem | ReservationItem],
    reserver: StockReserver,
) -> ReservationOutcome:
    payload = [
        ReservationItem(product_id=item.product_id, quantity=item.quantity)
        for item in items
        if item.product_id
    ]
    try:
        outcome = await reserver.reserve(payload)
    except Exception:
        logger.exception("Stock reservation raised")
        return ReservationOutcome(success=False, error=RESERVATION_INTERNAL_ERROR)

    if not outcome.success:
        logger.warning("Stock reservation refused failed_items=%s", outcome.failed_items)
        return ReservationOutcome(
            success=False,
            error=outcome.error or RESERVATION_DEFAULT_ERROR,
            failed_items=list(outcome.failed_items),
        )
    return ReservationOutcome(success=True)
