"""Order placement.

The advisory stock check only informs the cart screen; here the applied
coupon is re-validated and the atomic reservation is the last gate before
the order rows are written.
"""
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import Awaitable, Callable

from fastapi import HTTPException
from sqlalchemy.orm import Session

from app import models, schemas
from app.domain.address.cep import CepResult, sanitize_cep
from app.domain.catalog.quantity import to_decimal
from app.domain.core.enums import CartStage, PaymentMethod
from app.services.cart import CartService, coupon_rows, subtotal_cents, unit_price_cents
from app.services.coupons import normalize_coupon_items
from app.services.delivery_restrictions import check_restriction
from app.services.points import PointsService
from app.services.stock_validation import StockReserver, validate_and_reserve_stock

logger = logging.getLogger(__name__)


def _gen_id() -> str:
    return str(uuid.uuid4())


@dataclass(slots=True)
class CheckoutResult:
    order_id: str
    subtotal_cents: int
    discount_cents: int
    total_cents: int
    points_earned: int
    coupon_code: str | None


async def _revalidate_coupon(cart_service: CartService, cart: models.Cart, user_id: str) -> int:
    if not cart.applied_coupon_code:
        return 0
    validation = await cart_service.coupon_validator.validate_coupon(
        cart.applied_coupon_code,
        user_id,
        subtotal_cents(cart),
        normalize_coupon_items(coupon_rows(cart)),
    )
    if not validation.valid:
        code = cart.applied_coupon_code
        cart_service.remove_coupon(user_id)
        logger.info("Coupon %s dropped at checkout user=%s: %s", code, user_id, validation.message)
        raise HTTPException(
            409,
            detail={
                "code": "COUPON_INVALID",
                "message": validation.message or "Cupom não é mais válido",
                "coupon_code": code,
            },
        )
    return validation.discount_amount_cents


async def _check_delivery(
    db: Session,
    cart: models.Cart,
    cep: str,
    resolve: Callable[[str], Awaitable[CepResult]] | None,
) -> None:
    blocked: list[dict] = []
    for item in cart.items:
        product = item.product
        if product is None:
            continue
        check = await check_restriction(db, product.vendor_id, product.id, cep, resolve=resolve)
        if not check.delivery_available:
            blocked.append({
                "product_id": product.id,
                "product_name": product.name,
                "message": check.restriction_message,
            })
    if blocked:
        raise HTTPException(
            409,
            detail={
                "code": "DELIVERY_UNAVAILABLE",
                "message": "Alguns produtos não são entregues neste CEP",
                "items": blocked,
            },
        )


async def place_order(
    db: Session,
    user_id: str,
    payload: schemas.CheckoutIn,
    cart_service: CartService,
    reserver: StockReserver,
    points: PointsService,
    resolve_cep: Callable[[str], Awaitable[CepResult]] | None = None,
) -> CheckoutResult:
    cart = cart_service.get_cart(user_id)
    if not cart.items:
        raise HTTPException(400, "Carrinho vazio")

    cep = sanitize_cep(payload.shipping_cep) if payload.shipping_cep else None
    if cep:
        await _check_delivery(db, cart, cep, resolve_cep)

    discount = await _revalidate_coupon(cart_service, cart, user_id)
    subtotal = subtotal_cents(cart)
    discount = max(0, min(discount, subtotal))
    total = subtotal - discount

    reservation = await validate_and_reserve_stock(cart_service.stock_items(cart), reserver)
    if not reservation.success:
        db.rollback()
        raise HTTPException(
            409,
            detail={
                "code": "INSUFFICIENT_STOCK",
                "message": reservation.error,
                "failed_items": reservation.failed_items,
            },
        )

    order = models.Order(
        id=_gen_id(),
        user_id=user_id,
        subtotal_cents=subtotal,
        discount_cents=discount,
        total_cents=total,
        coupon_code=cart.applied_coupon_code,
        payment_method=PaymentMethod(payload.payment_method),
        shipping_cep=cep,
        shipping_address=payload.shipping_address,
    )
    db.add(order)
    db.flush()

    vendor_ids: set[str] = set()
    for item in cart.items:
        if not item.product_id or item.product is None:
            continue
        vendor_ids.add(item.product.vendor_id)
        db.add(
            models.OrderItem(
                id=_gen_id(),
                order_id=order.id,
                product_id=item.product_id,
                vendor_id=item.product.vendor_id,
                quantity=to_decimal(item.quantity),
                unit_price_cents=unit_price_cents(item),
            )
        )

    if cart.applied_coupon_code and discount > 0:
        coupon = db.query(models.Coupon).filter(models.Coupon.code == cart.applied_coupon_code).first()
        if coupon:
            coupon.used_count = (coupon.used_count or 0) + 1
            db.add(
                models.CouponUsage(
                    id=_gen_id(),
                    coupon_id=coupon.id,
                    user_id=user_id,
                    order_id=order.id,
                    discount_cents=discount,
                )
            )

    vendor_id = next(iter(vendor_ids)) if len(vendor_ids) == 1 else None
    order.points_earned = points.earn_for_order(user_id, order.id, total, vendor_id=vendor_id)

    coupon_code = cart.applied_coupon_code
    cart.items.clear()
    cart.applied_coupon_code = None
    cart.applied_coupon_discount_cents = None
    cart.applied_coupon_products = None
    cart.stage = CartStage.cart.value
    cart.version = (cart.version or 0) + 1

    db.commit()
    logger.info("Order placed id=%s user=%s total_cents=%s", order.id, user_id, total)
    return CheckoutResult(
        order_id=order.id,
        subtotal_cents=subtotal,
        discount_cents=discount,
        total_cents=total,
        points_earned=order.points_earned,
        coupon_code=coupon_code,
    )
