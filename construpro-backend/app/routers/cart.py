"""
Router do carrinho: itens, validação de estoque, remediação e cupom.
As regras ficam em app.services.cart; aqui só há tradução de request/response.
"""
import logging

from fastapi import APIRouter, Depends

from app import schemas
from app.auth.dependencies import get_current_user_id
from app.dependencies import get_cart_service, get_stock_monitors
from app.services.cart import Adjustment, CartService
from app.services.stock_monitor import StockMonitorRegistry

router = APIRouter(prefix="/cart", tags=["cart"])
logger = logging.getLogger(__name__)


def _cart_out(service: CartService, cart) -> schemas.CartOut:
    return schemas.CartOut.model_validate(service.summary(cart))


@router.get("", response_model=schemas.CartOut)
def get_cart(
    user_id: str = Depends(get_current_user_id),
    service: CartService = Depends(get_cart_service),
):
    return _cart_out(service, service.get_cart(user_id))


@router.delete("", response_model=schemas.CartOut)
def clear_cart(
    user_id: str = Depends(get_current_user_id),
    service: CartService = Depends(get_cart_service),
    monitors: StockMonitorRegistry = Depends(get_stock_monitors),
):
    cart = service.clear(user_id)
    monitors.discard(user_id)
    return _cart_out(service, cart)


@router.post("/items", response_model=schemas.CartOut, status_code=201)
async def add_item(
    payload: schemas.CartItemIn,
    user_id: str = Depends(get_current_user_id),
    service: CartService = Depends(get_cart_service),
):
    cart = await service.add_item(user_id, payload.product_id, payload.quantity)
    return _cart_out(service, cart)


@router.patch("/items/{item_id}", response_model=schemas.CartOut)
async def update_item(
    item_id: str,
    payload: schemas.CartItemUpdateIn,
    user_id: str = Depends(get_current_user_id),
    service: CartService = Depends(get_cart_service),
):
    cart = await service.update_quantity(user_id, item_id, payload.quantity)
    return _cart_out(service, cart)


@router.delete("/items/{item_id}", response_model=schemas.CartOut)
def remove_item(
    item_id: str,
    user_id: str = Depends(get_current_user_id),
    service: CartService = Depends(get_cart_service),
):
    return _cart_out(service, service.remove_items(user_id, [item_id]))


@router.post("/stock-validation", response_model=schemas.StockValidationOut)
async def validate_stock(
    user_id: str = Depends(get_current_user_id),
    service: CartService = Depends(get_cart_service),
):
    result = await service.validate_stock(user_id)
    return schemas.StockValidationOut.model_validate(result)


@router.post("/remediation", response_model=schemas.CartOut)
async def remediate(
    payload: schemas.RemediationIn,
    user_id: str = Depends(get_current_user_id),
    service: CartService = Depends(get_cart_service),
):
    if payload.action == "remove":
        cart = service.remove_items(user_id, payload.item_ids)
    elif payload.action == "adjust":
        cart = service.adjust_items(
            user_id,
            [Adjustment(adj.item_id, adj.new_quantity) for adj in payload.adjustments],
        )
    elif payload.action == "continue":
        cart = service.continue_checkout(user_id)
    else:
        result = await service.validate_stock(user_id)
        cart = service.auto_fix(user_id, result)
    logger.info("Cart remediation action=%s user=%s", payload.action, user_id)
    return _cart_out(service, cart)


@router.post("/revalidate", response_model=schemas.RevalidateOut)
async def revalidate(
    user_id: str = Depends(get_current_user_id),
    service: CartService = Depends(get_cart_service),
    monitors: StockMonitorRegistry = Depends(get_stock_monitors),
):
    tick = await monitors.get(user_id).tick(service)
    return schemas.RevalidateOut(
        is_valid=tick.result.is_valid,
        removed_item_ids=tick.removed_item_ids,
        warnings=[schemas.StockWarningOut.model_validate(w) for w in tick.warnings],
        cart=_cart_out(service, service.get_cart(user_id)),
    )


@router.post("/coupon", response_model=schemas.CouponApplyOut)
async def apply_coupon(
    payload: schemas.CouponApplyIn,
    user_id: str = Depends(get_current_user_id),
    service: CartService = Depends(get_cart_service),
):
    outcome = await service.apply_coupon(user_id, payload.code)
    if outcome.skipped:
        return schemas.CouponApplyOut(skipped=True)
    return schemas.CouponApplyOut(
        discount_cents=outcome.discount_cents,
        message=outcome.message,
        cart=_cart_out(service, service.get_cart(user_id)),
    )


@router.delete("/coupon", response_model=schemas.CartOut)
def remove_coupon(
    user_id: str = Depends(get_current_user_id),
    service: CartService = Depends(get_cart_service),
):
    return _cart_out(service, service.remove_coupon(user_id))
