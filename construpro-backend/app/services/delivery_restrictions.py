from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Awaitable, Callable

from sqlalchemy.orm import Session

from app import models
from app.domain.address.cep import CepResult, sanitize_cep
from app.domain.core.enums import RestrictionType, ZoneType
from app.errors import CepLookupError
from app.services.cep_lookup import normalize_city

logger = logging.getLogger(__name__)

# quando varias regras casam, vale a mais restritiva
_SEVERITY = {
    RestrictionType.not_delivered.value: 3,
    RestrictionType.freight_on_demand.value: 2,
    RestrictionType.higher_fee.value: 1,
}
_NEEDS_ADDRESS = {ZoneType.ibge.value, ZoneType.cidade.value}


@dataclass(frozen=True, slots=True)
class RestrictionCheck:
    has_restriction: bool = False
    restriction_type: str = ""
    restriction_message: str = ""
    delivery_available: bool = True


def parse_cep_range(value: str) -> tuple[str, str] | None:
    digits = sanitize_cep(value)
    if len(digits) != 16:
        return None
    start, end = digits[:8], digits[8:]
    if start > end:
        start, end = end, start
    return start, end


def matches(restriction: models.VendorProductRestriction, cep: str, resolved: CepResult | None) -> bool:
    zone_type = restriction.zone_type
    value = (restriction.zone_value or "").strip()
    if zone_type == ZoneType.cep_specific.value:
        return sanitize_cep(value) == cep
    if zone_type == ZoneType.cep_range.value:
        bounds = parse_cep_range(value)
        if bounds is None:
            logger.warning("Invalid cep_range restriction id=%s value=%s", restriction.id, value)
            return False
        return bounds[0] <= cep <= bounds[1]
    if resolved is None:
        return False
    if zone_type == ZoneType.ibge.value:
        return bool(resolved.ibge) and value == resolved.ibge
    if zone_type == ZoneType.cidade.value:
        city, _, uf = value.partition("/")
        if uf.strip() and uf.strip().upper() != (resolved.uf or "").upper():
            return False
        return normalize_city(city) == normalize_city(resolved.localidade)
    return False


async def check_restriction(
    db: Session,
    vendor_id: str,
    product_id: str,
    customer_cep: str,
    resolved: CepResult | None = None,
    resolve: Callable[[str], Awaitable[CepResult]] | None = None,
) -> RestrictionCheck:
    cep = sanitize_cep(customer_cep)
    rules = (
        db.query(models.VendorProductRestriction)
        .filter(
            models.VendorProductRestriction.vendor_id == vendor_id,
            models.VendorProductRestriction.product_id == product_id,
            models.VendorProductRestriction.active.is_(True),
        )
        .all()
    )
    if not rules:
        return RestrictionCheck()

    if resolved is None and resolve is not None and any(r.zone_type in _NEEDS_ADDRESS for r in rules):
        try:
            resolved = await resolve(cep)
        except CepLookupError as exc:
            logger.info("Restriction check without address cep=%s kind=%s", cep, exc.kind)

    hits = [rule for rule in rules if matches(rule, cep, resolved)]
    if not hits:
        return RestrictionCheck()

    rule = max(hits, key=lambda r: _SEVERITY.get(r.restriction_type, 0))
    return RestrictionCheck(
        has_restriction=True,
        restriction_type=rule.restriction_type,
        restriction_message=rule.restriction_message or "",
        delivery_available=rule.restriction_type != RestrictionType.not_delivered.value,
    )
