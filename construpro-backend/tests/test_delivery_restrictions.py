# tests/test_delivery_restrictions.py
import uuid

import pytest

from app import models
from app.domain.address.cep import CepResult
from app.services.delivery_restrictions import check_restriction, parse_cep_range


def _restrict(db, product, zone_type, zone_value, restriction_type="not_delivered", message="", active=True):
    row = models.VendorProductRestriction(
        id=str(uuid.uuid4()),
        vendor_id=product.vendor_id,
        product_id=product.id,
        zone_type=zone_type,
        zone_value=zone_value,
        restriction_type=restriction_type,
        restriction_message=message,
        active=active,
    )
    db.add(row)
    db.commit()
    return row


def _capelinha(cep="39680000"):
    return CepResult(cep=cep, localidade="Capelinha", uf="MG", ibge="3112307")


def test_parse_cep_range_orders_bounds():
    assert parse_cep_range("39689-999 a 39680-000") == ("39680000", "39689999")
    assert parse_cep_range("39680000") is None


@pytest.mark.anyio
async def test_no_rules_means_delivery_available(db, make_product):
    product = make_product()
    check = await check_restriction(db, product.vendor_id, product.id, "39680-000")
    assert not check.has_restriction
    assert check.delivery_available


@pytest.mark.anyio
async def test_specific_cep_blocks_delivery(db, make_product):
    product = make_product()
    _restrict(db, product, "cep_specific", "39680-000", message="Não entregamos neste endereço")
    check = await check_restriction(db, product.vendor_id, product.id, "39680000")
    assert check.has_restriction
    assert not check.delivery_available
    assert check.restriction_message == "Não entregamos neste endereço"

    other = await check_restriction(db, product.vendor_id, product.id, "39680001")
    assert not other.has_restriction


@pytest.mark.anyio
async def test_range_with_softer_restriction_keeps_delivery(db, make_product):
    product = make_product()
    _restrict(db, product, "cep_range", "39680000-39689999", restriction_type="higher_fee")
    check = await check_restriction(db, product.vendor_id, product.id, "39685-001")
    assert check.has_restriction
    assert check.restriction_type == "higher_fee"
    assert check.delivery_available


@pytest.mark.anyio
async def test_inactive_rules_are_ignored(db, make_product):
    product = make_product()
    _restrict(db, product, "cep_specific", "39680000", active=False)
    check = await check_restriction(db, product.vendor_id, product.id, "39680000")
    assert not check.has_restriction


@pytest.mark.anyio
async def test_ibge_and_city_rules_need_a_resolved_address(db, make_product):
    product = make_product()
    _restrict(db, product, "ibge", "3112307", restriction_type="freight_on_demand")
    unresolved = await check_restriction(db, product.vendor_id, product.id, "39680000")
    assert not unresolved.has_restriction

    resolved = await check_restriction(db, product.vendor_id, product.id, "39680000", resolved=_capelinha())
    assert resolved.restriction_type == "freight_on_demand"
    assert resolved.delivery_available


@pytest.mark.anyio
async def test_city_rule_compares_accents_and_uf(db, make_product):
    product = make_product()
    _restrict(db, product, "cidade", "CAPELINHA/MG")
    check = await check_restriction(db, product.vendor_id, product.id, "39680000", resolved=_capelinha())
    assert not check.delivery_available

    elsewhere = CepResult(cep="39680000", localidade="Capelinha", uf="BA")
    other_state = await check_restriction(db, product.vendor_id, product.id, "39680000", resolved=elsewhere)
    assert not other_state.has_restriction


@pytest.mark.anyio
async def test_most_severe_matching_rule_wins(db, make_product):
    product = make_product()
    _restrict(db, product, "cep_range", "39680000-39689999", restriction_type="higher_fee")
    _restrict(db, product, "cep_specific", "39680000", restriction_type="not_delivered")
    check = await check_restriction(db, product.vendor_id, product.id, "39680000")
    assert check.restriction_type == "not_delivered"
    assert not check.delivery_available


@pytest.mark.anyio
async def test_resolver_is_called_only_for_address_rules(db, make_product):
    product = make_product()
    calls = []

    async def resolve(cep):
        calls.append(cep)
        return _capelinha(cep)

    _restrict(db, product, "cep_specific", "11111111")
    await check_restriction(db, product.vendor_id, product.id, "39680000", resolve=resolve)
    assert calls == []

    _restrict(db, product, "cidade", "Capelinha")
    check = await check_restriction(db, product.vendor_id, product.id, "39680000", resolve=resolve)
    assert calls == ["39680000"]
    assert not check.delivery_available


@pytest.mark.anyio
async def test_unresolvable_cep_does_not_block(db, make_product, lookup):
    product = make_product()
    _restrict(db, product, "cidade", "Capelinha")
    check = await check_restriction(db, product.vendor_id, product.id, "01001000", resolve=lookup.lookup)
    assert check.delivery_available
