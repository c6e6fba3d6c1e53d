"""
Ajustes manuais de pontos feitos pelo vendedor.
Cada envio passa pelo guard de submissão; a chave de idempotência garante
que um reenvio não duplica o lançamento.
"""
import asyncio
import logging

from fastapi import APIRouter, Depends

from app import models, schemas
from app.auth.dependencies import get_current_vendor
from app.dependencies import get_guards, get_points_service
from app.services.points import PointsService
from app.services.submission_guard import GuardRegistry

router = APIRouter(prefix="/vendor/points", tags=["points"])
logger = logging.getLogger(__name__)


@router.post("/adjustments", response_model=schemas.PointsAdjustmentOut)
async def create_adjustment(
    payload: schemas.PointsAdjustmentIn,
    vendor: models.Vendor = Depends(get_current_vendor),
    points: PointsService = Depends(get_points_service),
    guards: GuardRegistry = Depends(get_guards),
):
    guard = guards.get(vendor.user_id, f"points:{payload.customer_id}")

    async def _submit(token: str):
        # fora do event loop: o guard fica em voo durante a escrita
        return await asyncio.to_thread(
            points.create_adjustment,
            vendor_id=vendor.id,
            customer_id=payload.customer_id,
            adjustment_type=payload.adjustment_type,
            value=payload.value,
            reason=payload.reason,
            idempotency_key=token,
        )

    outcome = await guard.submit(_submit, token=payload.idempotency_key)
    if outcome.skipped:
        logger.info("Points adjustment skipped (in flight) vendor=%s", vendor.id)
        return schemas.PointsAdjustmentOut(skipped=True)

    row, created = outcome.value
    return schemas.PointsAdjustmentOut(
        created=created,
        id=row.id,
        user_id=row.user_id,
        vendor_id=row.vendor_id,
        points=row.points,
        reason=row.reason,
        idempotency_key=row.idempotency_key,
        created_at=row.created_at,
        balance=points.balance(row.user_id),
    )
