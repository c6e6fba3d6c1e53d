"""
Normalização e checagem das imagens de produto.
"""
import asyncio
import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from app import models, schemas
from app.auth.dependencies import get_current_vendor
from app.db import get_db
from app.domain.catalog.images import corrected_image_json, needs_correction, parse_image_data
from app.services.image_health import check_image_url

router = APIRouter(prefix="/catalog", tags=["catalog"])
logger = logging.getLogger(__name__)


@router.post("/images/parse", response_model=schemas.ImageParseOut)
def parse_images(payload: schemas.ImageParseIn):
    parsed = parse_image_data(payload.images)
    return schemas.ImageParseOut(
        urls=parsed.urls,
        errors=parsed.errors,
        original_format=parsed.original_format.value,
        is_valid=parsed.is_valid,
        needs_correction=needs_correction(payload.images),
        corrected=corrected_image_json(payload.images),
    )


@router.post("/images/check", response_model=list[schemas.ImageCheckOut])
async def check_images(payload: schemas.ImageCheckIn):
    checks = await asyncio.gather(*(check_image_url(url) for url in payload.urls))
    return [
        schemas.ImageCheckOut(
            url=check.url,
            state=check.state.value,
            attempts=check.attempts,
            status_code=check.status_code,
            error=check.error,
            ok=check.ok,
        )
        for check in checks
    ]


@router.post("/products/{product_id}/images/normalize", response_model=schemas.ProductImagesOut)
def normalize_product_images(
    product_id: str,
    vendor: models.Vendor = Depends(get_current_vendor),
    db: Session = Depends(get_db),
):
    product = (
        db.query(models.Product)
        .filter(models.Product.id == product_id, models.Product.vendor_id == vendor.id)
        .first()
    )
    if not product:
        raise HTTPException(status_code=404, detail="Produto não encontrado")

    parsed = parse_image_data(product.images)
    corrected = corrected_image_json(product.images) if needs_correction(product.images) else None
    if corrected is None:
        return schemas.ProductImagesOut(
            product_id=product.id, changed=False, images=product.images, errors=parsed.errors
        )
    product.images = corrected
    db.commit()
    logger.info("Product images normalized product=%s urls=%s", product.id, len(parsed.urls))
    return schemas.ProductImagesOut(
        product_id=product.id, changed=True, images=product.images, errors=parsed.errors
    )
