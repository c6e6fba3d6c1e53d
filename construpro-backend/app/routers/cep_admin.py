import logging

from fastapi import APIRouter, Depends

from app import schemas
from app.auth.dependencies import require_admin
from app.dependencies import get_cep_lookup
from app.domain.address.cep import WARM_CEPS
from app.services.cep_lookup import CepLookupService

router = APIRouter(prefix="/admin/cep", tags=["admin-cep"])
logger = logging.getLogger(__name__)


@router.post("/warm", response_model=schemas.CepWarmOut)
async def warm_cache(
    payload: schemas.CepWarmIn | None = None,
    admin_id: str = Depends(require_admin),
    lookup: CepLookupService = Depends(get_cep_lookup),
):
    ceps = (payload.ceps if payload and payload.ceps else None) or WARM_CEPS
    report = await lookup.cache.warm(lookup.fetch_upstream, ceps)
    logger.info("CEP warm requested by=%s warmed=%s", admin_id, len(report.warmed))
    return schemas.CepWarmOut.model_validate(report)


@router.post("/{cep}/correction", response_model=schemas.CepVerificationOut)
async def correct_cache_entry(
    cep: str,
    admin_id: str = Depends(require_admin),
    lookup: CepLookupService = Depends(get_cep_lookup),
):
    verification = await lookup.correct_cache_entry(cep)
    logger.info("CEP cache corrected by=%s cep=%s", admin_id, verification.cep)
    return schemas.CepVerificationOut.model_validate(verification)
