# tests/test_checkout.py
import uuid
from decimal import Decimal

import pytest

from app import models
from app.domain.core.enums import DiscountType


@pytest.fixture
def coupon(db):
    row = models.Coupon(
        id=str(uuid.uuid4()),
        code="BEMVINDO10",
        name="Boas-vindas",
        discount_type=DiscountType.percentage,
        discount_value=10,
    )
    db.add(row)
    db.commit()
    return row


def _fill_cart(client, headers, product_id, quantity="3"):
    resp = client.post("/cart/items", json={"product_id": product_id, "quantity": quantity}, headers=headers)
    assert resp.status_code == 201, resp.text
    return resp.json()


def test_checkout_places_order_and_clears_cart(client, auth, db, make_product, coupon):
    headers = auth("cliente-1")
    product = make_product(price_cents=4000, stock="5")
    _fill_cart(client, headers, product.id)
    applied = client.post("/cart/coupon", json={"code": "bemvindo10"}, headers=headers)
    assert applied.json()["discount_cents"] == 1200

    resp = client.post("/checkout", json={"payment_method": "pix"}, headers=headers)
    assert resp.status_code == 201, resp.text
    body = resp.json()
    assert (body["subtotal_cents"], body["discount_cents"], body["total_cents"]) == (12000, 1200, 10800)
    assert body["points_earned"] == 108
    assert body["coupon_code"] == "BEMVINDO10"

    db.expire_all()
    assert db.get(models.Product, product.id).stock == Decimal("2")
    assert db.get(models.Coupon, coupon.id).used_count == 1
    assert db.query(models.CouponUsage).filter_by(order_id=body["order_id"]).count() == 1
    assert db.get(models.PointsBalance, "cliente-1").balance == 108
    items = db.query(models.OrderItem).filter_by(order_id=body["order_id"]).all()
    assert [(i.product_id, i.quantity) for i in items] == [(product.id, Decimal("3"))]

    cart = client.get("/cart", headers=headers).json()
    assert cart["items"] == []
    assert cart["applied_coupon"] is None
    assert cart["stage"] == "cart"


def test_empty_cart_is_rejected(client, auth):
    resp = client.post("/checkout", json={"payment_method": "money"}, headers=auth("cliente-1"))
    assert resp.status_code == 400
    assert resp.json()["detail"] == "Carrinho vazio"


def test_coupon_invalidated_before_checkout_is_dropped(client, auth, db, make_product, coupon):
    headers = auth("cliente-1")
    product = make_product(stock="5")
    _fill_cart(client, headers, product.id)
    client.post("/cart/coupon", json={"code": "BEMVINDO10"}, headers=headers)

    coupon.active = False
    db.commit()

    resp = client.post("/checkout", json={"payment_method": "credit"}, headers=headers)
    assert resp.status_code == 409
    assert resp.json()["detail"]["code"] == "COUPON_INVALID"
    cart = client.get("/cart", headers=headers).json()
    assert cart["applied_coupon"] is None
    assert len(cart["items"]) == 1
    db.expire_all()
    assert db.query(models.Order).count() == 0


def test_reservation_failure_writes_nothing(client, auth, db, make_product):
    headers = auth("cliente-1")
    product = make_product(stock="5")
    _fill_cart(client, headers, product.id)

    product.stock = Decimal("1")
    db.commit()

    resp = client.post("/checkout", json={"payment_method": "debit"}, headers=headers)
    assert resp.status_code == 409
    detail = resp.json()["detail"]
    assert detail["code"] == "INSUFFICIENT_STOCK"
    assert detail["failed_items"] == [product.id]

    db.expire_all()
    assert db.get(models.Product, product.id).stock == Decimal("1")
    assert db.query(models.Order).count() == 0
    assert len(client.get("/cart", headers=headers).json()["items"]) == 1


def test_delivery_restriction_blocks_checkout(client, auth, db, make_product):
    headers = auth("cliente-1")
    product = make_product(stock="5")
    db.add(models.VendorProductRestriction(
        id=str(uuid.uuid4()), vendor_id=product.vendor_id, product_id=product.id,
        zone_type="cep_specific", zone_value="39680000", restriction_type="not_delivered",
        restriction_message="Produto não entregue nesta região",
    ))
    db.commit()
    _fill_cart(client, headers, product.id)

    resp = client.post(
        "/checkout", json={"payment_method": "pix", "shipping_cep": "39680-000"}, headers=headers
    )
    assert resp.status_code == 409
    detail = resp.json()["detail"]
    assert detail["code"] == "DELIVERY_UNAVAILABLE"
    assert detail["items"][0]["message"] == "Produto não entregue nesta região"
