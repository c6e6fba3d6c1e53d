"""
Router de checkout: orquestra request/response.
Toda a lógica de negócio e persistência está em app.services.checkout.
"""
import logging

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app import schemas
from app.auth.dependencies import get_current_user_id
from app.db import get_db
from app.dependencies import (
    get_cart_service,
    get_cep_lookup,
    get_points_service,
    get_stock_monitors,
    get_stock_reserver,
)
from app.services.cart import CartService
from app.services.cep_lookup import CepLookupService
from app.services.checkout import place_order
from app.services.points import PointsService
from app.services.stock_monitor import StockMonitorRegistry
from app.services.stock_validation import StockReserver

router = APIRouter(prefix="/checkout", tags=["checkout"])
logger = logging.getLogger(__name__)


@router.post("", response_model=schemas.CheckoutOut, status_code=201)
async def checkout(
    payload: schemas.CheckoutIn,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    cart_service: CartService = Depends(get_cart_service),
    reserver: StockReserver = Depends(get_stock_reserver),
    points: PointsService = Depends(get_points_service),
    lookup: CepLookupService = Depends(get_cep_lookup),
    monitors: StockMonitorRegistry = Depends(get_stock_monitors),
):
    result = await place_order(
        db,
        user_id,
        payload,
        cart_service=cart_service,
        reserver=reserver,
        points=points,
        resolve_cep=lookup.lookup,
    )
    # carrinho esvaziado pelo pedido
    monitors.discard(user_id)
    return schemas.CheckoutOut.model_validate(result)
