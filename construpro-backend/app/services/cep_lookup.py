"""CEP resolution: cache, upstream providers, regional fallback, overrides.

Every place that has to merge provider answers (lookup, cross-check,
verification, diagnostics) goes through ``reconcile_sources`` so the
discrepancy rules live in one function.
"""
from __future__ import annotations

import asyncio
import logging
import unicodedata
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Iterable, Mapping

import httpx
from sqlalchemy.orm import Session

from app import models
from app.db import settings
from app.domain.address.cep import (
    CEP_LENGTH,
    DEFAULT_DELIVERY_TIME,
    FALLBACK_TABLE,
    CepResult,
    FallbackEntry,
    fallback_result,
    find_fallback,
    sanitize_cep,
    zone_for_city,
)
from app.domain.core.enums import CepErrorKind, CepSource, Confidence
from app.errors import CepLookupError, cep_error
from app.services.cep_cache import CepCacheService
from app.services.cep_providers import ERROR, CepProvider, ProviderOutcome, default_providers

logger = logging.getLogger(__name__)

PROVIDER_PREFERENCE = ("viacep", "brasilapi")
PROVIDER_LABELS = {"viacep": "ViaCEP", "brasilapi": "BrasilAPI"}
OVERRIDE_FIELDS = ("logradouro", "bairro", "localidade", "uf", "ibge", "zona_entrega", "prazo_entrega")


@dataclass(slots=True)
class Reconciliation:
    value: CepResult | None
    source: CepSource | None = None
    confidence: Confidence | None = None
    discrepancy: bool = False
    sources: dict[str, Any] = field(default_factory=dict)
    warnings: list[str] = field(default_factory=list)


def normalize_city(value: str | None) -> str:
    text = unicodedata.normalize("NFKD", value or "")
    text = "".join(ch for ch in text if not unicodedata.combining(ch))
    return " ".join(text.lower().split())


def _preference(outcome: ProviderOutcome) -> int:
    try:
        return PROVIDER_PREFERENCE.index(outcome.provider)
    except ValueError:
        return len(PROVIDER_PREFERENCE)


def reconcile_sources(
    cep: str,
    outcomes: Iterable[ProviderOutcome],
    expect_all: bool = False,
) -> Reconciliation:
    """Merge provider outcomes into one tagged result.

    ``expect_all`` means every provider was asked on purpose (cross-check,
    verification); a lone success then only earns medium confidence. In the
    sequential path the first success is authoritative.
    """
    outcomes = list(outcomes)
    sources = {o.provider: o.payload for o in outcomes if o.payload is not None}
    successes = sorted((o for o in outcomes if o.ok), key=_preference)
    if not successes:
        return Reconciliation(value=None, sources=sources)

    primary = successes[0]
    value = replace(primary.result, sources=dict(sources), warnings=list(primary.warnings))
    warnings: list[str] = []

    if len(successes) == 1:
        confidence = Confidence.medium if expect_all and len(outcomes) > 1 else Confidence.high
        if confidence is Confidence.medium:
            warnings.append(f"Apenas {PROVIDER_LABELS.get(primary.provider, primary.provider)} confirmou o CEP.")
        discrepancy = False
    else:
        cities = {o.provider: o.result.localidade for o in successes}
        discrepancy = len({normalize_city(city) for city in cities.values()}) > 1
        if discrepancy:
            confidence = Confidence.medium
            detail = ", ".join(f"{PROVIDER_LABELS.get(k, k)}={v}" for k, v in cities.items())
            warnings.append(f"Fontes divergem sobre a cidade: {detail}.")
            logger.warning("CEP %s discrepancy between providers: %s", cep, detail)
        else:
            confidence = Confidence.high
            for other in successes[1:]:
                for name in ("logradouro", "bairro", "ibge"):
                    if not getattr(value, name) and getattr(other.result, name):
                        setattr(value, name, getattr(other.result, name))

    value.confidence = confidence
    value.discrepancy = discrepancy
    value.warnings.extend(warnings)
    return Reconciliation(
        value=value,
        source=value.source,
        confidence=confidence,
        discrepancy=discrepancy,
        sources=sources,
        warnings=list(value.warnings),
    )


def failure_kind(outcomes: Iterable[ProviderOutcome]) -> CepErrorKind:
    outcomes = list(outcomes)
    kinds = [o.error_kind or CepErrorKind.api_error for o in outcomes if o.status == ERROR]
    if not kinds:
        return CepErrorKind.not_found
    if CepErrorKind.network in kinds:
        return CepErrorKind.network
    if CepErrorKind.timeout in kinds:
        return CepErrorKind.timeout
    return CepErrorKind.api_error


class DeliveryZoneResolver:
    def __init__(self, session_factory: Callable[[], Session]) -> None:
        self._session_factory = session_factory

    def resolve(self, result: CepResult) -> tuple[str, str]:
        db = self._session_factory()
        try:
            if result.ibge:
                zone = (
                    db.query(models.DeliveryZone)
                    .filter(models.DeliveryZone.ibge_code == result.ibge)
                    .first()
                )
                if zone:
                    return zone.zone_type, zone.delivery_time
            zona = result.zona_entrega or zone_for_city(result.localidade, result.uf)
            default = (
                db.query(models.DeliveryZone)
                .filter(models.DeliveryZone.zone_type == zona, models.DeliveryZone.ibge_code.is_(None))
                .first()
            )
            return zona, default.delivery_time if default else DEFAULT_DELIVERY_TIME
        finally:
            db.close()

    def apply(self, result: CepResult) -> CepResult:
        zona, prazo = self.resolve(result)
        result.zona_entrega = zona
        result.prazo_entrega = result.prazo_entrega or prazo
        return result


@dataclass(slots=True)
class CepVerification:
    cep: str
    viacep: dict[str, Any] | None
    brasilapi: dict[str, Any] | None
    discrepancy: bool
    needs_correction: bool
    correct_city: str | None
    recommended: CepResult | None
    cached: CepResult | None
    warnings: list[str] = field(default_factory=list)


class CepLookupService:
    def __init__(
        self,
        cache: CepCacheService,
        zones: DeliveryZoneResolver,
        providers: list[CepProvider] | None = None,
        overrides: Mapping[str, Mapping[str, Any]] | None = None,
        fallback_table: dict[str, FallbackEntry] | None = None,
        cross_check: bool | None = None,
        timeout_seconds: float | None = None,
    ) -> None:
        self.cache = cache
        self.zones = zones
        self.providers = providers if providers is not None else default_providers()
        self.overrides = {sanitize_cep(k): dict(v) for k, v in (overrides or {}).items()}
        self.fallback_table = FALLBACK_TABLE if fallback_table is None else fallback_table
        self.cross_check = settings.cep_cross_check if cross_check is None else cross_check
        self.timeout = settings.cep_lookup_timeout_seconds if timeout_seconds is None else timeout_seconds

    @staticmethod
    def validate(raw: str | None) -> str:
        cep = sanitize_cep(raw)
        if len(cep) != CEP_LENGTH:
            raise cep_error(CepErrorKind.validation, details={"cep": raw})
        return cep

    async def query_providers(self, cep: str, all_providers: bool = False, timeout: float | None = None) -> list[ProviderOutcome]:
        seconds = self.timeout if timeout is None else timeout
        if all_providers:
            return list(await asyncio.gather(*(p.fetch(cep, seconds) for p in self.providers)))
        outcomes: list[ProviderOutcome] = []
        for provider in self.providers:
            outcome = await provider.fetch(cep, seconds)
            outcomes.append(outcome)
            if outcome.ok:
                break
        return outcomes

    def apply_override(self, result: CepResult) -> CepResult:
        patch = self.overrides.get(result.cep)
        if not patch:
            return result
        for name in OVERRIDE_FIELDS:
            if name in patch:
                setattr(result, name, patch[name])
        result.warnings.append("Dados do CEP corrigidos por ajuste manual.")
        logger.info("Applied CEP override cep=%s fields=%s", result.cep, sorted(patch))
        return result

    async def fetch_upstream(self, cep: str) -> CepResult | None:
        """Provider-only resolution used by cache warming; no cache read, no fallback."""
        outcomes = await self.query_providers(cep, all_providers=self.cross_check)
        reconciled = reconcile_sources(cep, outcomes, expect_all=self.cross_check)
        if reconciled.value is None:
            return None
        return self.zones.apply(reconciled.value)

    async def lookup(self, raw: str | None) -> CepResult:
        cep = self.validate(raw)
        try:
            result = self.cache.get(cep)
            if result is None:
                result = await self._resolve_uncached(cep)
            elif not result.prazo_entrega:
                self.zones.apply(result)
        except CepLookupError:
            raise
        except (httpx.TimeoutException, asyncio.TimeoutError) as exc:
            logger.warning("CEP lookup timed out cep=%s", cep)
            raise cep_error(CepErrorKind.timeout, details=str(exc)) from exc
        except httpx.HTTPError as exc:
            logger.warning("CEP lookup network error cep=%s: %s", cep, exc)
            raise cep_error(CepErrorKind.network, details=str(exc)) from exc
        except Exception as exc:
            logger.exception("Unexpected CEP lookup failure cep=%s", cep)
            raise cep_error(CepErrorKind.api_error, details=str(exc)) from exc
        return self.apply_override(result)

    async def _resolve_uncached(self, cep: str) -> CepResult:
        outcomes = await self.query_providers(cep, all_providers=self.cross_check)
        reconciled = reconcile_sources(cep, outcomes, expect_all=self.cross_check)
        if reconciled.value is not None:
            result = self.zones.apply(reconciled.value)
            self.cache.store(result)
            return result

        match = find_fallback(cep, self.fallback_table)
        if match is not None:
            entry, exact = match
            logger.info("CEP %s resolved by regional fallback exact=%s", cep, exact)
            result = fallback_result(cep, entry, exact)
            result.sources = reconciled.sources
            return self.zones.apply(result)

        kind = failure_kind(outcomes)
        details = {o.provider: o.detail or o.status for o in outcomes}
        logger.warning("CEP %s unresolved kind=%s details=%s", cep, kind.value, details)
        raise cep_error(kind, details=details)

    async def verify_cep_externally(self, raw: str | None) -> CepVerification:
        cep = self.validate(raw)
        outcomes = await self.query_providers(cep, all_providers=True)
        reconciled = reconcile_sources(cep, outcomes, expect_all=True)
        by_name = {o.provider: o for o in outcomes}
        viacep = by_name.get("viacep")
        brasilapi = by_name.get("brasilapi")
        cached = self.cache.get(cep)

        warnings = list(reconciled.warnings)
        needs_correction = reconciled.discrepancy
        recommended = reconciled.value
        if recommended is not None:
            self.zones.apply(recommended)
            if cached is not None and normalize_city(cached.localidade) != normalize_city(recommended.localidade):
                needs_correction = True
                warnings.append(
                    f"Cache guarda {cached.localidade}, fontes externas indicam {recommended.localidade}."
                )
        return CepVerification(
            cep=cep,
            viacep=viacep.payload if viacep and viacep.ok else None,
            brasilapi=brasilapi.payload if brasilapi and brasilapi.ok else None,
            discrepancy=reconciled.discrepancy,
            needs_correction=needs_correction,
            correct_city=recommended.localidade if recommended and needs_correction else None,
            recommended=recommended,
            cached=cached,
            warnings=warnings,
        )

    async def correct_cache_entry(self, raw: str | None) -> CepVerification:
        """Verify a code upstream and upsert the recommended data into the cache."""
        verification = await self.verify_cep_externally(raw)
        if verification.recommended is None:
            raise cep_error(CepErrorKind.not_found, details={"cep": verification.cep})
        self.cache.upsert(verification.recommended)
        logger.info("CEP cache corrected cep=%s city=%s", verification.cep, verification.recommended.localidade)
        return verification
