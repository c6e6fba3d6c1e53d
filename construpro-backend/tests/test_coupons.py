# tests/test_coupons.py
import asyncio
import json
import threading
import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import httpx
import pytest

from app import models
from app.errors import FunctionNotDeployedError, UpstreamServiceError
from app.services.coupons import (
    CouponCartItem,
    RemoteCouponValidator,
    SqlCouponValidator,
    normalize_coupon_items,
)
from app.services.cart import CartService
from app.services.functions_client import FunctionsClient
from app.services.inventory import SqlInventoryGateway
from app.services.submission_guard import GuardRegistry


def _coupon(db, code="OBRA10", discount_type=models.DiscountType.percentage, value=10, **fields):
    coupon = models.Coupon(
        id=str(uuid.uuid4()),
        code=code,
        name=code,
        discount_type=discount_type,
        discount_value=value,
        **fields,
    )
    db.add(coupon)
    db.commit()
    return coupon


def test_normalize_price_fallback_order_and_drops_bad_rows():
    rows = [
        {"product_id": "p1", "quantity": "2", "promo_price_cents": 900, "price_cents": 1000},
        {"produto_id": "p2", "quantidade": 1, "preco_normal": 500},
        {"product_id": "p3", "quantity": 1, "price_at_add_cents": 300},
        {"product_id": None, "quantity": 1, "price_cents": 100},
        {"product_id": "p5", "quantity": 1, "price_cents": 0},
    ]
    items = normalize_coupon_items(rows)
    assert [(i.product_id, i.unit_price_cents) for i in items] == [("p1", 900), ("p2", 500), ("p3", 300)]
    assert items[0].quantity == Decimal("2")


@pytest.mark.anyio
async def test_percentage_discount_on_whole_cart(db):
    _coupon(db)
    items = [CouponCartItem("p1", Decimal("3"), 3333)]
    result = await SqlCouponValidator(db).validate_coupon("obra10", "u1", 9999, items)
    assert result.valid
    assert result.discount_amount_cents == 1000
    assert result.eligible_products == ["p1"]


@pytest.mark.anyio
async def test_fixed_discount_capped_at_eligible_products(db, make_product):
    cimento = make_product()
    coupon = _coupon(db, code="CIMENTO", discount_type=models.DiscountType.fixed, value=5000)
    db.add(models.CouponProduct(coupon_id=coupon.id, product_id=cimento.id))
    db.commit()
    items = [CouponCartItem(cimento.id, Decimal("1"), 4000), CouponCartItem("outro", Decimal("1"), 9000)]
    result = await SqlCouponValidator(db).validate_coupon("CIMENTO", "u1", 13000, items)
    assert result.valid
    assert result.discount_amount_cents == 4000
    assert result.eligible_products == [cimento.id]


@pytest.mark.anyio
async def test_rule_messages(db):
    now = datetime(2026, 3, 1, tzinfo=timezone.utc)
    _coupon(db, code="VENCIDO", expires_at=now - timedelta(days=1))
    _coupon(db, code="ESGOTADO", max_uses=1, used_count=1)
    _coupon(db, code="MINIMO", min_order_cents=10000)
    validator = SqlCouponValidator(db, now=lambda: now)
    items = [CouponCartItem("p1", Decimal("1"), 5000)]

    assert (await validator.validate_coupon("NADA", "u1", 5000, items)).message == "Cupom não encontrado ou inativo"
    assert (await validator.validate_coupon("VENCIDO", "u1", 5000, items)).message == "Cupom expirado"
    assert (await validator.validate_coupon("ESGOTADO", "u1", 5000, items)).message == "Cupom esgotado"
    minimo = await validator.validate_coupon("MINIMO", "u1", 5000, items)
    assert not minimo.valid
    assert minimo.message == "Valor mínimo do pedido para este cupom: R$ 100,00"


@pytest.mark.anyio
async def test_single_use_per_user(db):
    coupon = _coupon(db)
    db.add(models.CouponUsage(id=str(uuid.uuid4()), coupon_id=coupon.id, user_id="u1", discount_cents=100))
    db.commit()
    items = [CouponCartItem("p1", Decimal("1"), 5000)]
    used = await SqlCouponValidator(db).validate_coupon("OBRA10", "u1", 5000, items)
    other = await SqlCouponValidator(db).validate_coupon("OBRA10", "u2", 5000, items)
    assert used.message == "Você já utilizou este cupom"
    assert other.valid


def _remote(handler) -> RemoteCouponValidator:
    return RemoteCouponValidator(FunctionsClient(base_url="https://fn.test", transport=httpx.MockTransport(handler)))


@pytest.mark.anyio
async def test_remote_validator_converts_reais_and_cents():
    seen = {}

    def handler(request):
        seen["body"] = json.loads(request.content)
        return httpx.Response(
            200,
            json={"valid": True, "discount_amount": 12.35, "message": "ok", "eligible_products": ["p1"]},
        )

    result = await _remote(handler).validate_coupon("OBRA", "u1", 12350, [CouponCartItem("p1", Decimal("1"), 12350)])
    assert seen["body"]["order_value"] == 123.5
    assert seen["body"]["cart_items"] == [{"produto_id": "p1", "quantidade": 1.0, "preco": 123.5}]
    assert result.discount_amount_cents == 1235
    assert result.eligible_products == ["p1"]


@pytest.mark.anyio
async def test_remote_validator_distinguishes_not_deployed():
    with pytest.raises(FunctionNotDeployedError) as info:
        await _remote(lambda request: httpx.Response(404)).validate_coupon("X", "u1", 100, [])
    assert "validate-coupon" in info.value.message
    assert info.value.can_retry is False

    with pytest.raises(UpstreamServiceError) as generic:
        await _remote(lambda request: httpx.Response(500)).validate_coupon("X", "u1", 100, [])
    assert not isinstance(generic.value, FunctionNotDeployedError)


@pytest.mark.anyio
async def test_second_apply_is_skipped_while_sql_validation_runs(db, make_product, monkeypatch):
    _coupon(db)
    entered = threading.Event()
    release = threading.Event()
    original = SqlCouponValidator._validate

    def _held(self, *args):
        entered.set()
        release.wait(timeout=5)
        return original(self, *args)

    monkeypatch.setattr(SqlCouponValidator, "_validate", _held)
    service = CartService(db, SqlInventoryGateway(db), SqlCouponValidator(db), GuardRegistry())
    await service.add_item("u1", make_product().id, 1)

    first = asyncio.create_task(service.apply_coupon("u1", "OBRA10"))
    assert await asyncio.to_thread(entered.wait, 5)
    second = await service.apply_coupon("u1", "OBRA10")
    release.set()
    applied = await first

    assert second.skipped
    assert not applied.skipped
    assert applied.discount_cents == 400
    assert service.get_cart("u1").applied_coupon_code == "OBRA10"
