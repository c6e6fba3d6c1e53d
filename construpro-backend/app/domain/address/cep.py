from __future__ import annotations

import re
from dataclasses import dataclass, field, replace
from typing import Any

from app.domain.core.enums import CepSource, Confidence

CEP_LENGTH = 8
DEFAULT_DELIVERY_TIME = "frete a combinar (informado após o fechamento do pedido)"
UNSPECIFIED_STREET = "Endereço não especificado"

LOCAL_CITIES = frozenset({"capelinha", "turmalina", "veredinha"})
REGIONAL_CITIES = frozenset({"minas novas", "chapada do norte", "berilo"})

_CONFIDENCE_RANK = {Confidence.high: 3, Confidence.medium: 2, Confidence.low: 1}
_NON_DIGIT = re.compile(r"\D")


@dataclass(slots=True)
class CepResult:
    cep: str
    logradouro: str = ""
    bairro: str = ""
    localidade: str = ""
    uf: str = ""
    ibge: str | None = None
    zona_entrega: str | None = None
    prazo_entrega: str | None = None
    source: CepSource = CepSource.viacep
    confidence: Confidence = Confidence.high
    discrepancy: bool = False
    sources: dict[str, Any] = field(default_factory=dict)
    warnings: list[str] = field(default_factory=list)

    def with_source(self, source: CepSource, confidence: Confidence) -> "CepResult":
        return replace(
            self,
            source=source,
            confidence=confidence,
            sources=dict(self.sources),
            warnings=list(self.warnings),
        )


@dataclass(frozen=True, slots=True)
class FallbackEntry:
    cidade: str
    uf: str
    zona: str
    bairro: str
    ibge: str | None = None


# Faixas conhecidas da regiao de Capelinha e principais cidades de MG.
FALLBACK_TABLE: dict[str, FallbackEntry] = {
    "39680000": FallbackEntry("Capelinha", "MG", "local", "Centro"),
    "39680001": FallbackEntry("Capelinha", "MG", "local", "Centro"),
    "39685000": FallbackEntry("Capelinha", "MG", "local", "São Sebastião"),
    "39685001": FallbackEntry("Capelinha", "MG", "local", "Maria Lúcia"),
    "39690000": FallbackEntry("Turmalina", "MG", "regional", "Centro"),
    "39695000": FallbackEntry("Veredinha", "MG", "regional", "Centro"),
    "39700000": FallbackEntry("Minas Novas", "MG", "regional", "Centro"),
    "30000000": FallbackEntry("Belo Horizonte", "MG", "outras", "Centro"),
    "31000000": FallbackEntry("Belo Horizonte", "MG", "outras", "Zona Norte"),
    "35000000": FallbackEntry("Governador Valadares", "MG", "outras", "Centro"),
    "36000000": FallbackEntry("Juiz de Fora", "MG", "outras", "Centro"),
    "37000000": FallbackEntry("Varginha", "MG", "outras", "Centro"),
    "38000000": FallbackEntry("Uberaba", "MG", "outras", "Centro"),
    "39000000": FallbackEntry("Teófilo Otoni", "MG", "outras", "Centro"),
}

WARM_CEPS = ("30112000", "31000000", "35000000", "36000000", "39685000")
CAPELINHA_PREFIX = "3968"
CAPELINHA_KNOWN_CEPS = ("39680000", "39680001", "39685000", "39685001")


def sanitize_cep(raw: str | None) -> str:
    return _NON_DIGIT.sub("", raw or "")


def is_valid_cep(raw: str | None) -> bool:
    return len(sanitize_cep(raw)) == CEP_LENGTH


def format_cep(raw: str | None) -> str:
    digits = sanitize_cep(raw)
    if len(digits) != CEP_LENGTH:
        return digits
    return f"{digits[:5]}-{digits[5:]}"


def confidence_rank(value: Confidence) -> int:
    return _CONFIDENCE_RANK[value]


def zone_for_city(localidade: str | None, uf: str | None) -> str:
    if (uf or "").strip().upper() != "MG":
        return "outras"
    city = (localidade or "").strip().lower()
    if city in LOCAL_CITIES:
        return "local"
    if city in REGIONAL_CITIES:
        return "regional"
    return "outras"


def find_fallback(
    cep: str, table: dict[str, FallbackEntry] | None = None
) -> tuple[FallbackEntry, bool] | None:
    """Return ``(entry, exact)``; exact code entries win over the 5-digit prefix entry."""
    entries = FALLBACK_TABLE if table is None else table
    exact = entries.get(cep)
    if exact is not None:
        return exact, True
    prefix = entries.get(cep[:5] + "000")
    if prefix is not None:
        return prefix, False
    return None


def fallback_result(cep: str, entry: FallbackEntry, exact: bool) -> CepResult:
    confidence = Confidence.medium if exact else Confidence.low
    warnings = [
        "Endereço aproximado pela tabela regional; confirme o logradouro."
        if exact
        else f"CEP {format_cep(cep)} aproximado pela faixa {cep[:5]}-000."
    ]
    return CepResult(
        cep=cep,
        logradouro=UNSPECIFIED_STREET,
        bairro=entry.bairro,
        localidade=entry.cidade,
        uf=entry.uf,
        ibge=entry.ibge,
        zona_entrega=entry.zona,
        source=CepSource.fallback,
        confidence=confidence,
        warnings=warnings,
    )


def _nearby(cep: str, variations: tuple[int, ...]) -> list[str]:
    base = int(cep)
    out: list[str] = []
    for variation in variations:
        candidate = base + variation
        if 0 < candidate <= 99999999:
            out.append(str(candidate).zfill(CEP_LENGTH))
    return out


def _dedupe(values: list[str]) -> list[str]:
    seen: set[str] = set()
    out: list[str] = []
    for value in values:
        if value in seen:
            continue
        seen.add(value)
        out.append(value)
    return out


def generate_cep_suggestions(raw: str | None, limit: int = 5) -> list[str]:
    cep = sanitize_cep(raw)
    if len(cep) != CEP_LENGTH:
        return []
    suggestions = _nearby(cep, (-100, -50, -10, 10, 50, 100))
    if cep.startswith(CAPELINHA_PREFIX):
        suggestions = list(CAPELINHA_KNOWN_CEPS) + suggestions
    return _dedupe(suggestions)[:limit]


def generate_similar_ceps(cep: str, limit: int = 5) -> list[str]:
    suggestions = _nearby(cep, (-100, -50, 50, 100))
    if cep.startswith(CAPELINHA_PREFIX):
        suggestions = list(CAPELINHA_KNOWN_CEPS) + suggestions
    return [value for value in _dedupe(suggestions) if value != cep][:limit]
