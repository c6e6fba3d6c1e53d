from __future__ import annotations

import json
import logging
import uuid
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable

from fastapi import HTTPException
from sqlalchemy import update
from sqlalchemy.orm import Session

from app import models
from app.domain.catalog.quantity import floor_quantity, max_quantity, quantity_error, quantity_step, to_decimal
from app.domain.core.enums import CartStage
from app.errors import CouponRejected, ValidationError
from app.services.coupons import CouponValidator, normalize_coupon_items
from app.services.stock_validation import (
    InventoryGateway,
    StockCheckItem,
    StockValidationResult,
    validate_cart_stock,
)
from app.services.submission_guard import GuardRegistry

logger = logging.getLogger(__name__)


def _gen_id() -> str:
    return str(uuid.uuid4())


@dataclass(frozen=True, slots=True)
class Adjustment:
    item_id: str
    new_quantity: Decimal


@dataclass(slots=True)
class CouponApplyOutcome:
    skipped: bool
    discount_cents: int = 0
    message: str = ""


def unit_price_cents(item: models.CartItem) -> int:
    product = item.product
    if product is not None:
        if product.promo_price_cents:
            return int(product.promo_price_cents)
        if product.price_cents:
            return int(product.price_cents)
    return int(item.price_at_add_cents or 0)


def line_total_cents(item: models.CartItem) -> int:
    quantity = to_decimal(item.quantity) or Decimal("1")
    return int((quantity * unit_price_cents(item)).to_integral_value(rounding=ROUND_HALF_UP))


def subtotal_cents(cart: models.Cart) -> int:
    return sum(line_total_cents(item) for item in cart.items)


def coupon_rows(cart: models.Cart) -> list[dict]:
    return [
        {
            "product_id": item.product_id,
            "quantity": item.quantity,
            "promo_price_cents": item.product.promo_price_cents if item.product else None,
            "price_cents": item.product.price_cents if item.product else None,
            "price_at_add_cents": item.price_at_add_cents,
        }
        for item in cart.items
    ]


class CartService:
    def __init__(
        self,
        db: Session,
        inventory: InventoryGateway,
        coupon_validator: CouponValidator,
        guards: GuardRegistry,
    ) -> None:
        self.db = db
        self.inventory = inventory
        self.coupon_validator = coupon_validator
        self.guards = guards

    # --- leitura ---

    def get_cart(self, user_id: str) -> models.Cart:
        cart = self.db.query(models.Cart).filter(models.Cart.user_id == user_id).first()
        if cart:
            return cart
        cart = models.Cart(id=_gen_id(), user_id=user_id, stage=CartStage.cart.value, version=0)
        self.db.add(cart)
        self.db.commit()
        self.db.refresh(cart)
        return cart

    def summary(self, cart: models.Cart) -> dict:
        items = []
        for item in cart.items:
            product = item.product
            items.append({
                "id": item.id,
                "product_id": item.product_id,
                "product_name": product.name if product else None,
                "quantity": to_decimal(item.quantity),
                "unit_price_cents": unit_price_cents(item),
                "line_total_cents": line_total_cents(item),
                "unit_of_measure": product.unit_of_measure if product else None,
                "conversion_value": product.conversion_value if product else None,
                "quantity_control": product.quantity_control if product else None,
                "step": quantity_step(product),
                "max_quantity": max_quantity(product),
            })
        subtotal = subtotal_cents(cart)
        discount = min(int(cart.applied_coupon_discount_cents or 0), subtotal)
        coupon = None
        if cart.applied_coupon_code:
            coupon = {
                "code": cart.applied_coupon_code,
                "discount_cents": int(cart.applied_coupon_discount_cents or 0),
                "eligible_products": json.loads(cart.applied_coupon_products or "[]"),
            }
        return {
            "id": cart.id,
            "stage": cart.stage,
            "version": cart.version,
            "items": items,
            "applied_coupon": coupon,
            "subtotal_cents": subtotal,
            "discount_cents": discount,
            "total_cents": max(0, subtotal - discount),
        }

    def stock_items(self, cart: models.Cart) -> list[StockCheckItem]:
        return [
            StockCheckItem(
                item_id=item.id,
                product_id=item.product_id,
                quantity=to_decimal(item.quantity),
                product_name=item.product.name if item.product else None,
            )
            for item in cart.items
        ]

    async def validate_stock(self, user_id: str) -> StockValidationResult:
        cart = self.get_cart(user_id)
        return await validate_cart_stock(self.stock_items(cart), self.inventory, cart_version=cart.version)

    # --- mutacoes ---

    def _touch(self, cart: models.Cart) -> None:
        cart.version = (cart.version or 0) + 1

    def _clear_coupon(self, cart: models.Cart) -> bool:
        if not cart.applied_coupon_code and cart.applied_coupon_discount_cents is None:
            return False
        cart.applied_coupon_code = None
        cart.applied_coupon_discount_cents = None
        cart.applied_coupon_products = None
        return True

    def _item(self, cart: models.Cart, item_id: str) -> models.CartItem:
        for item in cart.items:
            if item.id == item_id:
                return item
        raise HTTPException(status_code=404, detail="Item não encontrado no carrinho")

    async def _ensure_stock(self, product_id: str, quantity: Decimal) -> None:
        product = await self.inventory.get_product(product_id)
        if product is None:
            raise HTTPException(status_code=404, detail="Produto não encontrado")
        if product.available_stock < quantity:
            available = format(product.available_stock.normalize(), "f")
            raise HTTPException(
                status_code=409,
                detail={
                    "code": "INSUFFICIENT_STOCK",
                    "message": f"Estoque insuficiente. Disponível: {available}",
                    "available": float(product.available_stock),
                },
            )

    def _check_quantity(self, product: models.Product | None, quantity: Decimal) -> None:
        message = quantity_error(product, quantity)
        if message:
            raise ValidationError(message, details={"quantity": str(quantity)})

    async def add_item(self, user_id: str, product_id: str, quantity) -> models.Cart:
        cart = self.get_cart(user_id)
        qty = to_decimal(quantity)
        product = (
            self.db.query(models.Product)
            .filter(models.Product.id == product_id, models.Product.is_active.is_(True))
            .first()
        )
        if not product:
            raise HTTPException(status_code=404, detail="Produto não encontrado")
        self._check_quantity(product, qty)

        existing = next((item for item in cart.items if item.product_id == product_id), None)
        total = qty + (to_decimal(existing.quantity) if existing else Decimal("0"))
        await self._ensure_stock(product_id, total)

        if existing:
            existing.quantity = total
        else:
            cart.items.append(
                models.CartItem(
                    id=_gen_id(),
                    product_id=product_id,
                    quantity=qty,
                    price_at_add_cents=product.effective_price_cents,
                )
            )
        self._clear_coupon(cart)
        self._touch(cart)
        self.db.commit()
        self.db.refresh(cart)
        return cart

    async def update_quantity(self, user_id: str, item_id: str, quantity) -> models.Cart:
        cart = self.get_cart(user_id)
        item = self._item(cart, item_id)
        qty = to_decimal(quantity)
        if qty <= 0:
            return self.remove_items(user_id, [item_id])
        self._check_quantity(item.product, qty)
        if item.product_id:
            await self._ensure_stock(item.product_id, qty)
        item.quantity = qty
        self._clear_coupon(cart)
        self._touch(cart)
        self.db.commit()
        self.db.refresh(cart)
        return cart

    def remove_items(self, user_id: str, item_ids: Iterable[str]) -> models.Cart:
        cart = self.get_cart(user_id)
        wanted = set(item_ids)
        removed = [item for item in cart.items if item.id in wanted]
        if not removed:
            return cart
        for item in removed:
            cart.items.remove(item)
        if self._clear_coupon(cart):
            logger.info("Coupon cleared after removing items cart=%s", cart.id)
        self._touch(cart)
        self.db.commit()
        self.db.refresh(cart)
        return cart

    def adjust_items(self, user_id: str, adjustments: Iterable[Adjustment]) -> models.Cart:
        """Set new quantities, capping at current stock.

        A quantity at or above the stock is rounded down to what the product
        accepts (whole packages for ``multiplo``); anything else must already
        follow the quantity rules. Items left with nothing are removed.
        """
        cart = self.get_cart(user_id)
        planned: list[tuple[models.CartItem, Decimal]] = []
        for adjustment in adjustments:
            item = next((row for row in cart.items if row.id == adjustment.item_id), None)
            if item is None:
                continue
            qty = to_decimal(adjustment.new_quantity)
            product = item.product
            if qty > 0 and product is not None:
                stock = to_decimal(product.stock)
                if qty >= stock:
                    qty = floor_quantity(product, stock)
                else:
                    self._check_quantity(product, qty)
            planned.append((item, qty))
        if not planned:
            return cart
        for item, qty in planned:
            if qty <= 0:
                cart.items.remove(item)
            else:
                item.quantity = qty
        self._clear_coupon(cart)
        self._touch(cart)
        self.db.commit()
        self.db.refresh(cart)
        return cart

    def clear(self, user_id: str) -> models.Cart:
        cart = self.get_cart(user_id)
        cart.items.clear()
        self._clear_coupon(cart)
        cart.stage = CartStage.cart.value
        self._touch(cart)
        self.db.commit()
        self.db.refresh(cart)
        return cart

    def continue_checkout(self, user_id: str) -> models.Cart:
        cart = self.get_cart(user_id)
        cart.stage = CartStage.checkout.value
        self.db.commit()
        self.db.refresh(cart)
        return cart

    def auto_fix(self, user_id: str, result: StockValidationResult) -> models.Cart:
        """Remove invalid items, shrink adjusted ones, then move on to checkout."""
        if result.invalid_items:
            self.remove_items(user_id, [item.item_id for item in result.invalid_items])
        if result.adjusted_items:
            self.adjust_items(
                user_id,
                [Adjustment(item.item_id, item.new_quantity) for item in result.adjusted_items],
            )
        return self.continue_checkout(user_id)

    # --- cupom ---

    async def apply_coupon(self, user_id: str, code: str) -> CouponApplyOutcome:
        normalized = (code or "").strip().upper()
        if not normalized:
            raise ValidationError("Informe o código do cupom")
        guard = self.guards.get(user_id, "coupon")

        async def _apply(_token: str) -> CouponApplyOutcome:
            cart = self.get_cart(user_id)
            if not cart.items:
                raise ValidationError("Carrinho vazio")
            version = cart.version or 0
            validation = await self.coupon_validator.validate_coupon(
                normalized,
                user_id,
                subtotal_cents(cart),
                normalize_coupon_items(coupon_rows(cart)),
            )
            if not validation.valid:
                raise CouponRejected(validation.message or None)
            # grava so se o carrinho nao mudou durante a validacao
            result = self.db.execute(
                update(models.Cart)
                .where(models.Cart.id == cart.id, models.Cart.version == version)
                .values(
                    applied_coupon_code=normalized,
                    applied_coupon_discount_cents=validation.discount_amount_cents,
                    applied_coupon_products=json.dumps(validation.eligible_products),
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                self.db.rollback()
                logger.info("Coupon discarded, cart changed during validation cart=%s", cart.id)
                raise HTTPException(
                    status_code=409,
                    detail={
                        "code": "CART_CHANGED",
                        "message": "O carrinho mudou enquanto o cupom era validado. Aplique o cupom novamente.",
                    },
                )
            self.db.commit()
            return CouponApplyOutcome(
                skipped=False,
                discount_cents=validation.discount_amount_cents,
                message=validation.message,
            )

        outcome = await guard.submit(_apply)
        if outcome.skipped:
            return CouponApplyOutcome(skipped=True)
        return outcome.value

    def remove_coupon(self, user_id: str) -> models.Cart:
        cart = self.get_cart(user_id)
        if self._clear_coupon(cart):
            self.db.commit()
            self.db.refresh(cart)
        return cart
