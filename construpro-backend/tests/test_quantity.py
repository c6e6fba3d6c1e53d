# tests/test_quantity.py
from decimal import Decimal
from types import SimpleNamespace

from app.domain.catalog.quantity import floor_quantity, max_quantity, quantity_error, quantity_step


def _product(**fields):
    base = {"unit_of_measure": "unidade", "conversion_value": None, "quantity_control": "livre", "stock": Decimal("10")}
    base.update(fields)
    return SimpleNamespace(**base)


def test_multiplo_accepts_only_multiples_of_the_package():
    piso = _product(unit_of_measure="m²", conversion_value=Decimal("2.16"), quantity_control="multiplo")
    assert quantity_error(piso, Decimal("4.32")) is None
    assert quantity_error(piso, Decimal("3")) == "Quantidade deve ser múltiplo de 2.16"


def test_multiplo_message_never_uses_exponent_notation():
    caixa = _product(conversion_value=Decimal("10"), quantity_control="multiplo")
    assert quantity_error(caixa, Decimal("15")) == "Quantidade deve ser múltiplo de 10"


def test_multiplo_step_and_max_are_in_base_units():
    piso = _product(conversion_value=Decimal("2.5"), quantity_control="multiplo", stock=Decimal("11"))
    assert quantity_step(piso) == Decimal("2.5")
    assert max_quantity(piso) == Decimal("10")
    # um passo a partir de um valor valido continua valido
    assert quantity_error(piso, Decimal("5") + quantity_step(piso)) is None
    assert quantity_error(piso, max_quantity(piso)) is None


def test_floor_quantity_rounds_down_to_what_the_product_accepts():
    piso = _product(conversion_value=Decimal("2.5"), quantity_control="multiplo")
    assert floor_quantity(piso, Decimal("7")) == Decimal("5")
    assert floor_quantity(piso, Decimal("2")) == Decimal("0")
    assert floor_quantity(_product(), Decimal("3.7")) == Decimal("3")
    assert floor_quantity(_product(unit_of_measure="m²"), Decimal("3.7")) == Decimal("3.7")


def test_zero_or_negative_quantity_is_rejected():
    assert quantity_error(_product(), Decimal("0")) == "Quantidade deve ser maior que zero"
    assert quantity_error(_product(), Decimal("-2")) == "Quantidade deve ser maior que zero"


def test_unit_products_need_whole_quantities():
    assert quantity_error(_product(), Decimal("1.5")) == "Quantidade deve ser um número inteiro"
    assert quantity_error(_product(), Decimal("2")) is None


def test_fractional_units_allow_decimals_and_pick_a_step():
    barra = _product(unit_of_measure="barra")
    rolo = _product(unit_of_measure="Rolo")
    assert quantity_error(barra, Decimal("1.5")) is None
    assert quantity_step(barra) == Decimal("0.5")
    assert quantity_step(rolo) == Decimal("0.1")
    assert quantity_step(_product(conversion_value=Decimal("0.25"))) == Decimal("0.25")
