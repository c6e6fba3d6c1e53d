# tests/test_api.py
import asyncio
import json
import threading
import uuid
from decimal import Decimal

import httpx
import pytest

from app import models
from app.dependencies import init_app_state
from app.services.points import PointsService

URL_A = "https://cdn.construpro.com.br/a.jpg"
URL_B = "https://cdn.construpro.com.br/b.jpg"


def test_health(client):
    assert client.get("/health").json() == {"ok": True}


@pytest.mark.anyio
async def test_startup_keeps_the_cep_warm_task_until_shutdown(monkeypatch, lookup):
    from app import main

    release = asyncio.Event()

    async def _warm():
        await release.wait()

    monkeypatch.setattr(main, "_warm_cep_cache", _warm)
    monkeypatch.setattr(main, "init_app_state", lambda app: init_app_state(app, lookup=lookup))
    monkeypatch.setattr(main.settings, "cep_warm_on_startup", True)

    await main.startup()
    task = main.app.state.cep_warm_task
    assert isinstance(task, asyncio.Task)
    assert not task.done()

    await main.shutdown()
    with pytest.raises(asyncio.CancelledError):
        await task


def test_cart_requires_bearer_token(client):
    assert client.get("/cart").status_code == 401
    resp = client.get("/cart", headers={"Authorization": "Bearer nao-e-um-jwt"})
    assert resp.status_code == 401


def test_cart_flow_with_stock_remediation(client, auth, db, make_product):
    headers = auth("cliente-1")
    product = make_product(stock="10")
    added = client.post("/cart/items", json={"product_id": product.id, "quantity": 4}, headers=headers)
    assert added.status_code == 201
    item_id = added.json()["items"][0]["id"]

    product.stock = Decimal("2")
    db.commit()

    validation = client.post("/cart/stock-validation", headers=headers).json()
    assert validation["is_valid"]
    [adjusted] = validation["adjusted_items"]
    assert adjusted["item_id"] == item_id
    assert Decimal(adjusted["new_quantity"]) == Decimal("2")

    fixed = client.post("/cart/remediation", json={"action": "auto_fix"}, headers=headers).json()
    assert fixed["stage"] == "checkout"
    assert Decimal(fixed["items"][0]["quantity"]) == Decimal("2")


def test_multiplo_violation_uses_error_envelope(client, auth, make_product):
    piso = make_product(name="Piso", stock="100", unit_of_measure="m²",
                        conversion_value=Decimal("2.16"), quantity_control="multiplo")
    resp = client.post("/cart/items", json={"product_id": piso.id, "quantity": 3}, headers=auth("cliente-1"))
    assert resp.status_code == 400
    assert resp.json()["detail"]["type"] == "validation"


def test_revalidate_removes_sold_out_items(client, auth, db, make_product):
    headers = auth("cliente-1")
    product = make_product(stock="3")
    client.post("/cart/items", json={"product_id": product.id, "quantity": 1}, headers=headers)
    product.stock = Decimal("0")
    db.commit()

    body = client.post("/cart/revalidate", headers=headers).json()
    assert not body["is_valid"]
    assert body["warnings"][0]["kind"] == "removed"
    assert body["cart"]["items"] == []


def test_unknown_coupon_is_rejected(client, auth, make_product):
    headers = auth("cliente-1")
    product = make_product()
    client.post("/cart/items", json={"product_id": product.id, "quantity": 1}, headers=headers)
    resp = client.post("/cart/coupon", json={"code": "NADA"}, headers=headers)
    assert resp.status_code == 409
    assert resp.json()["detail"]["message"] == "Cupom não encontrado ou inativo"


def test_cep_lookup_and_error_envelope(client, upstream):
    upstream.found("39680000")
    ok = client.get("/cep/39680-000").json()
    assert ok["localidade"] == "Capelinha"
    assert ok["source"] == "viacep"
    assert ok["confidence"] == "high"

    invalid = client.get("/cep/123")
    assert invalid.status_code == 400
    assert invalid.json()["detail"]["type"] == "validation"
    assert invalid.json()["detail"]["can_retry"] is False

    missing = client.get("/cep/01001000")
    assert missing.status_code == 404
    detail = missing.json()["detail"]
    assert (detail["type"], detail["can_retry"], detail["suggest_manual"]) == ("not_found", True, True)


def test_cep_suggestions_and_diagnostic(client):
    suggestions = client.get("/cep/39680-500/suggestions").json()
    assert suggestions["suggestions"][0] == "39680000"
    diagnostic = client.get("/cep/39680500/diagnostic").json()
    assert diagnostic["provider_status"] == {"viacep": "not_found", "brasilapi": "not_found"}
    assert diagnostic["suggested_ceps"]


def test_restriction_check_endpoint(client, make_product):
    product = make_product()
    resp = client.post(
        "/delivery/restrictions/check",
        json={"vendor_id": product.vendor_id, "product_id": product.id, "customer_cep": "39680-000"},
    )
    assert resp.json() == {
        "has_restriction": False,
        "restriction_type": "",
        "restriction_message": "",
        "delivery_available": True,
    }
    assert client.post(
        "/delivery/restrictions/check",
        json={"vendor_id": product.vendor_id, "product_id": product.id, "customer_cep": "396"},
    ).status_code == 400


def test_admin_warm_requires_admin_role(client, auth, upstream):
    upstream.found("39680000")
    denied = client.post("/admin/cep/warm", json={"ceps": ["39680000"]}, headers=auth("u1"))
    assert denied.status_code == 403

    resp = client.post("/admin/cep/warm", json={"ceps": ["39680000"]}, headers=auth("u1", role="admin"))
    assert resp.json() == {"warmed": ["39680000"], "skipped": [], "failed": []}


def test_points_adjustment_requires_vendor(client, auth, vendor):
    payload = {"customer_id": "cliente-1", "adjustment_type": "adicao", "value": 50, "reason": "Bônus"}
    denied = client.post("/vendor/points/adjustments", json=payload, headers=auth("cliente-1"))
    assert denied.status_code == 403

    payload["idempotency_key"] = "ajuste-1"
    first = client.post("/vendor/points/adjustments", json=payload, headers=auth(vendor.user_id)).json()
    assert first["created"] and first["balance"] == 50
    again = client.post("/vendor/points/adjustments", json=payload, headers=auth(vendor.user_id)).json()
    assert not again["created"]
    assert again["id"] == first["id"]
    assert again["balance"] == 50


def test_points_removal_is_negative(client, auth, vendor):
    payload = {"customer_id": "cliente-2", "adjustment_type": "remocao", "value": 20, "reason": "Estorno"}
    body = client.post("/vendor/points/adjustments", json=payload, headers=auth(vendor.user_id)).json()
    assert body["points"] == -20
    assert body["vendor_id"] == vendor.id


@pytest.mark.anyio
async def test_simultaneous_points_adjustments_persist_once(client, auth, vendor, session_factory, monkeypatch):
    entered = threading.Event()
    release = threading.Event()
    original = PointsService.create_adjustment

    def _held(self, **kwargs):
        entered.set()
        release.wait(timeout=5)
        return original(self, **kwargs)

    monkeypatch.setattr(PointsService, "create_adjustment", _held)
    payload = {"customer_id": "cliente-3", "adjustment_type": "adicao", "value": 10, "reason": "Bônus"}
    headers = {**auth(vendor.user_id), "X-Forwarded-For": f"test-{uuid.uuid4().hex}"}

    transport = httpx.ASGITransport(app=client.app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as http:
        first = asyncio.create_task(http.post("/vendor/points/adjustments", json=payload, headers=headers))
        assert await asyncio.to_thread(entered.wait, 5)
        second = await http.post("/vendor/points/adjustments", json=payload, headers=headers)
        release.set()
        first = await first

    assert second.json()["skipped"] is True
    assert first.json()["created"] is True
    assert first.json()["balance"] == 10
    check = session_factory()
    try:
        rows = check.query(models.PointTransaction).filter(models.PointTransaction.user_id == "cliente-3").all()
    finally:
        check.close()
    assert len(rows) == 1


def test_image_parse_endpoint(client):
    body = client.post("/catalog/images/parse", json={"images": f"[{URL_A}, {URL_B}]"}).json()
    assert body["original_format"] == "malformed_list"
    assert body["urls"] == [URL_A, URL_B]
    assert body["needs_correction"]
    assert json.loads(body["corrected"]) == [URL_A, URL_B]


def test_normalize_product_images(client, auth, vendor, make_product, db):
    product = make_product(images=f"[{URL_A}, {URL_B}]")
    resp = client.post(f"/catalog/products/{product.id}/images/normalize", headers=auth(vendor.user_id))
    body = resp.json()
    assert body["changed"]
    assert json.loads(body["images"]) == [URL_A, URL_B]

    again = client.post(f"/catalog/products/{product.id}/images/normalize", headers=auth(vendor.user_id))
    assert not again.json()["changed"]
