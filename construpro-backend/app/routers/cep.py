"""
Router de CEP: consulta com cache e fallback regional, diagnóstico por
provedor, verificação externa e sugestões para correção manual.
"""
import logging

from fastapi import APIRouter, Depends

from app import schemas
from app.dependencies import get_cep_lookup
from app.domain.address.cep import generate_cep_suggestions, sanitize_cep
from app.services.cep_diagnostics import run_diagnostic
from app.services.cep_lookup import CepLookupService

router = APIRouter(prefix="/cep", tags=["cep"])
logger = logging.getLogger(__name__)


@router.get("/{cep}", response_model=schemas.CepOut)
async def lookup_cep(cep: str, lookup: CepLookupService = Depends(get_cep_lookup)):
    result = await lookup.lookup(cep)
    return schemas.CepOut.model_validate(result)


@router.get("/{cep}/diagnostic", response_model=schemas.CepDiagnosticOut)
async def diagnose_cep(cep: str, lookup: CepLookupService = Depends(get_cep_lookup)):
    diagnostic = await run_diagnostic(lookup, cep)
    return schemas.CepDiagnosticOut.model_validate(diagnostic)


@router.get("/{cep}/verification", response_model=schemas.CepVerificationOut)
async def verify_cep(cep: str, lookup: CepLookupService = Depends(get_cep_lookup)):
    verification = await lookup.verify_cep_externally(cep)
    return schemas.CepVerificationOut.model_validate(verification)


@router.get("/{cep}/suggestions", response_model=schemas.CepSuggestionsOut)
def suggest_ceps(cep: str):
    return schemas.CepSuggestionsOut(cep=sanitize_cep(cep), suggestions=generate_cep_suggestions(cep))
