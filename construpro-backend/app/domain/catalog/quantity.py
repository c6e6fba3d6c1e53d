from __future__ import annotations

from decimal import ROUND_FLOOR, Decimal, InvalidOperation

from app.domain.core.enums import QuantityControl

_FRACTIONAL_MARKERS = ("m²", "m2", "barra", "rolo", "litro", "kg")


def to_decimal(value) -> Decimal:
    if value is None:
        return Decimal("0")
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        return Decimal("0")


def _unit(product) -> str:
    return (getattr(product, "unit_of_measure", None) or "").strip().lower()


def _conversion(product) -> Decimal:
    return to_decimal(getattr(product, "conversion_value", None))


def is_multiple_packaging(product) -> bool:
    return getattr(product, "quantity_control", None) == QuantityControl.multiplo.value


def is_fractional_unit(product) -> bool:
    unit = _unit(product)
    return any(marker in unit for marker in _FRACTIONAL_MARKERS)


def quantity_step(product) -> Decimal:
    if product is None:
        return Decimal("1")
    conversion = _conversion(product)
    if conversion > 0:
        return conversion
    unit = _unit(product)
    if "barra" in unit:
        return Decimal("0.5")
    if "rolo" in unit or "litro" in unit or "kg" in unit:
        return Decimal("0.1")
    return Decimal("1")


def max_quantity(product) -> Decimal:
    if product is None:
        return Decimal("1")
    stock = to_decimal(product.stock)
    conversion = _conversion(product)
    if is_multiple_packaging(product) and conversion > 0:
        return (stock / conversion).to_integral_value(rounding=ROUND_FLOOR) * conversion
    return stock if stock > 0 else Decimal("1")


def floor_quantity(product, quantity) -> Decimal:
    """Round ``quantity`` down to the closest value the product accepts (0 when none fits)."""
    qty = to_decimal(quantity)
    if qty <= 0:
        return Decimal("0")
    conversion = _conversion(product)
    if is_multiple_packaging(product) and conversion > 0:
        return (qty / conversion).to_integral_value(rounding=ROUND_FLOOR) * conversion
    if conversion <= 0 and not is_fractional_unit(product):
        return qty.to_integral_value(rounding=ROUND_FLOOR)
    return qty


def quantity_error(product, quantity) -> str | None:
    """Return a user-facing message when ``quantity`` breaks the product's quantity rules."""
    qty = to_decimal(quantity)
    if qty <= 0:
        return "Quantidade deve ser maior que zero"
    conversion = _conversion(product)
    if is_multiple_packaging(product) and conversion > 0:
        if qty % conversion != 0:
            return f"Quantidade deve ser múltiplo de {format(conversion.normalize(), 'f')}"
        return None
    if conversion <= 0 and not is_fractional_unit(product) and qty != qty.to_integral_value():
        return "Quantidade deve ser um número inteiro"
    return None
