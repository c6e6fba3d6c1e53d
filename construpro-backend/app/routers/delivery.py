from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app import schemas
from app.db import get_db
from app.dependencies import get_cep_lookup
from app.services.cep_lookup import CepLookupService
from app.services.delivery_restrictions import check_restriction

router = APIRouter(prefix="/delivery", tags=["delivery"])


@router.post("/restrictions/check", response_model=schemas.RestrictionCheckOut)
async def check_delivery_restriction(
    payload: schemas.RestrictionCheckIn,
    db: Session = Depends(get_db),
    lookup: CepLookupService = Depends(get_cep_lookup),
):
    lookup.validate(payload.customer_cep)
    check = await check_restriction(
        db,
        payload.vendor_id,
        payload.product_id,
        payload.customer_cep,
        resolve=lookup.lookup,
    )
    return schemas.RestrictionCheckOut.model_validate(check)
