from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Iterable, Mapping, Protocol

from sqlalchemy.orm import Session

from app import models
from app.domain.catalog.quantity import to_decimal
from app.domain.core.enums import DiscountType
from app.services.functions_client import FunctionsClient

logger = logging.getLogger(__name__)

# ordem de preferencia do preco unitario: promocional, normal, preco no carrinho
PRICE_FIELDS = (
    ("promo_price_cents", "preco_promocional"),
    ("price_cents", "preco_normal"),
    ("price_at_add_cents", "preco"),
)


@dataclass(frozen=True, slots=True)
class CouponCartItem:
    product_id: str
    quantity: Decimal
    unit_price_cents: int

    @property
    def total_cents(self) -> int:
        return int((self.quantity * self.unit_price_cents).to_integral_value(rounding=ROUND_HALF_UP))


@dataclass(slots=True)
class CouponValidation:
    valid: bool
    discount_amount_cents: int = 0
    message: str = ""
    eligible_products: list[str] = field(default_factory=list)
    coupon_id: str | None = None


class CouponValidator(Protocol):
    async def validate_coupon(
        self,
        code: str,
        user_id: str,
        order_value_cents: int,
        cart_items: list[CouponCartItem],
    ) -> CouponValidation: ...


def _field(row: Any, name: str) -> Any:
    if isinstance(row, Mapping):
        return row.get(name)
    return getattr(row, name, None)


def _first(row: Any, names: Iterable[str]) -> Any:
    for name in names:
        value = _field(row, name)
        if value is not None:
            return value
    return None


def _price_cents(row: Any) -> int:
    for names in PRICE_FIELDS:
        value = to_decimal(_first(row, names))
        if value > 0:
            return int(value.to_integral_value(rounding=ROUND_HALF_UP))
    return 0


def normalize_coupon_items(rows: Iterable[Any]) -> list[CouponCartItem]:
    """Coerce cart rows into the shape the validator accepts.

    Rows without a product id or without a positive price are dropped so the
    validation call never receives malformed items.
    """
    items: list[CouponCartItem] = []
    for row in rows or []:
        product_id = _first(row, ("product_id", "produto_id"))
        if not product_id:
            continue
        price = _price_cents(row)
        if price <= 0:
            continue
        quantity = to_decimal(_first(row, ("quantity", "quantidade")))
        if quantity <= 0:
            quantity = Decimal("1")
        items.append(CouponCartItem(product_id=str(product_id), quantity=quantity, unit_price_cents=price))
    return items


def _as_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class SqlCouponValidator:
    """Coupon rules evaluated against the coupons tables."""

    def __init__(self, db: Session, now=None) -> None:
        self.db = db
        self._now = now or (lambda: datetime.now(timezone.utc))

    async def validate_coupon(
        self,
        code: str,
        user_id: str,
        order_value_cents: int,
        cart_items: list[CouponCartItem],
    ) -> CouponValidation:
        return await asyncio.to_thread(self._validate, code, user_id, order_value_cents, cart_items)

    def _validate(
        self,
        code: str,
        user_id: str,
        order_value_cents: int,
        cart_items: list[CouponCartItem],
    ) -> CouponValidation:
        normalized = (code or "").strip().upper()
        coupon = (
            self.db.query(models.Coupon)
            .filter(models.Coupon.code == normalized, models.Coupon.active.is_(True))
            .first()
        )
        if not coupon:
            return CouponValidation(valid=False, message="Cupom não encontrado ou inativo")

        now = self._now()
        starts_at = _as_utc(coupon.starts_at)
        expires_at = _as_utc(coupon.expires_at)
        if starts_at and now < starts_at:
            return CouponValidation(valid=False, message="Cupom ainda não está válido")
        if expires_at and now > expires_at:
            return CouponValidation(valid=False, message="Cupom expirado")
        if coupon.max_uses is not None and coupon.used_count >= coupon.max_uses:
            return CouponValidation(valid=False, message="Cupom esgotado")

        already_used = (
            self.db.query(models.CouponUsage.id)
            .filter(models.CouponUsage.coupon_id == coupon.id, models.CouponUsage.user_id == user_id)
            .first()
        )
        if already_used:
            return CouponValidation(valid=False, message="Você já utilizou este cupom")

        if order_value_cents < (coupon.min_order_cents or 0):
            minimum = Decimal(coupon.min_order_cents) / 100
            return CouponValidation(
                valid=False,
                message=f"Valor mínimo do pedido para este cupom: R$ {minimum:.2f}".replace(".", ","),
            )

        restricted = {
            row.product_id
            for row in self.db.query(models.CouponProduct)
            .filter(models.CouponProduct.coupon_id == coupon.id)
            .all()
        }
        if restricted:
            eligible = [item for item in cart_items if item.product_id in restricted]
            if not eligible:
                return CouponValidation(valid=False, message="Nenhum produto do carrinho é elegível para este cupom")
            eligible_total = sum(item.total_cents for item in eligible)
        else:
            eligible = list(cart_items)
            eligible_total = sum(item.total_cents for item in eligible) or order_value_cents

        if coupon.discount_type == DiscountType.percentage:
            discount = (Decimal(eligible_total) * Decimal(coupon.discount_value) / 100).to_integral_value(
                rounding=ROUND_HALF_UP
            )
            discount = int(discount)
        else:
            discount = int(coupon.discount_value)
        discount = max(0, min(discount, eligible_total))

        return CouponValidation(
            valid=True,
            discount_amount_cents=discount,
            message="Cupom aplicado com sucesso",
            eligible_products=sorted({item.product_id for item in eligible}),
            coupon_id=coupon.id,
        )


class RemoteCouponValidator:
    """Calls the ``validate-coupon`` function; amounts cross the wire in reais."""

    function_name = "validate-coupon"

    def __init__(self, client: FunctionsClient) -> None:
        self.client = client

    async def validate_coupon(
        self,
        code: str,
        user_id: str,
        order_value_cents: int,
        cart_items: list[CouponCartItem],
    ) -> CouponValidation:
        body = {
            "coupon_code": code,
            "user_id": user_id,
            "order_value": order_value_cents / 100,
            "cart_items": [
                {
                    "produto_id": item.product_id,
                    "quantidade": float(item.quantity),
                    "preco": item.unit_price_cents / 100,
                }
                for item in cart_items
            ],
        }
        data = await self.client.invoke(self.function_name, body)
        amount = to_decimal(data.get("discount_amount")) * 100
        eligible = data.get("eligible_products") or []
        return CouponValidation(
            valid=bool(data.get("valid")),
            discount_amount_cents=int(amount.to_integral_value(rounding=ROUND_HALF_UP)),
            message=str(data.get("message") or ""),
            eligible_products=[str(value) for value in eligible if value],
            coupon_id=data.get("coupon_id"),
        )
