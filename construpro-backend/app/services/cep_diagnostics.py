from __future__ import annotations

import logging
from dataclasses import dataclass, field

from app.db import settings
from app.domain.address.cep import CEP_LENGTH, CepResult, generate_similar_ceps, sanitize_cep
from app.services.cep_lookup import CepLookupService, reconcile_sources
from app.services.cep_providers import ERROR, NOT_FOUND, SUCCESS

logger = logging.getLogger(__name__)

MSG_INVALID_FORMAT = "CEP deve ter exatamente 8 dígitos numéricos."
MSG_ALL_DOWN = (
    "Todas as APIs de CEP estão temporariamente indisponíveis. "
    "Tente novamente em alguns minutos ou preencha manualmente."
)
MSG_FOUND = "CEP encontrado com sucesso!"
MSG_UNEXPECTED = "Erro inesperado na validação do CEP."


def _not_found_message(cep: str) -> str:
    return (
        f"CEP {cep} não foi encontrado em nenhuma base de dados oficial. "
        "Verifique se digitou corretamente ou tente um CEP próximo."
    )


@dataclass(slots=True)
class CepDiagnostic:
    cep: str
    is_valid_format: bool
    provider_status: dict[str, str] = field(default_factory=dict)
    provider_details: dict[str, str | None] = field(default_factory=dict)
    suggested_ceps: list[str] = field(default_factory=list)
    diagnostic_message: str = ""
    discrepancy: bool = False
    best_result: CepResult | None = None


def diagnostic_message(diagnostic: CepDiagnostic) -> str:
    if not diagnostic.is_valid_format:
        return MSG_INVALID_FORMAT
    statuses = list(diagnostic.provider_status.values())
    if statuses and all(status == NOT_FOUND for status in statuses):
        return _not_found_message(diagnostic.cep)
    if statuses and all(status == ERROR for status in statuses):
        return MSG_ALL_DOWN
    if SUCCESS in statuses:
        return MSG_FOUND
    return MSG_UNEXPECTED


async def run_diagnostic(lookup: CepLookupService, raw: str | None) -> CepDiagnostic:
    """Ask every provider concurrently and report what each one said.

    Unlike ``lookup`` this never stops at the first answer and never reads
    the cache.
    """
    cep = sanitize_cep(raw)
    diagnostic = CepDiagnostic(cep=cep, is_valid_format=len(cep) == CEP_LENGTH)
    if not diagnostic.is_valid_format:
        diagnostic.diagnostic_message = diagnostic_message(diagnostic)
        return diagnostic

    outcomes = await lookup.query_providers(
        cep,
        all_providers=True,
        timeout=settings.cep_diagnostic_timeout_seconds,
    )
    for outcome in outcomes:
        diagnostic.provider_status[outcome.provider] = outcome.status
        diagnostic.provider_details[outcome.provider] = outcome.detail

    reconciled = reconcile_sources(cep, outcomes, expect_all=True)
    diagnostic.discrepancy = reconciled.discrepancy
    diagnostic.best_result = reconciled.value

    if outcomes and all(o.status == NOT_FOUND for o in outcomes):
        diagnostic.suggested_ceps = generate_similar_ceps(cep)

    diagnostic.diagnostic_message = diagnostic_message(diagnostic)
    logger.info("CEP diagnostic cep=%s statuses=%s", cep, diagnostic.provider_status)
    return diagnostic
