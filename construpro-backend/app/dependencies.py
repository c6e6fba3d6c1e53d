"""Service providers for the routers.

Process-wide objects (CEP cache and lookup, submission guards, stock
monitors) live on ``app.state`` and are created by ``init_app_state``;
per-request services are built on top of the request's ``Session``.
"""
from __future__ import annotations

import httpx
from fastapi import Depends, FastAPI, Request
from sqlalchemy.orm import Session

from app.db import SessionLocal, get_db
from app.services.cart import CartService
from app.services.cep_cache import CepCacheService
from app.services.cep_lookup import CepLookupService, DeliveryZoneResolver
from app.services.cep_providers import default_providers
from app.services.coupons import CouponValidator, RemoteCouponValidator, SqlCouponValidator
from app.services.functions_client import FunctionsClient
from app.services.inventory import RemoteStockReserver, SqlInventoryGateway, SqlStockReserver
from app.services.points import PointsService
from app.services.stock_monitor import StockMonitorRegistry
from app.services.stock_validation import StockReserver
from app.services.submission_guard import GuardRegistry


def build_cep_lookup(
    session_factory=SessionLocal,
    transport: httpx.AsyncBaseTransport | None = None,
    **options,
) -> CepLookupService:
    cache = CepCacheService(session_factory)
    return CepLookupService(
        cache=cache,
        zones=DeliveryZoneResolver(session_factory),
        providers=default_providers(transport),
        **options,
    )


def init_app_state(app: FastAPI, lookup: CepLookupService | None = None) -> None:
    if getattr(app.state, "cep_lookup", None) is None or lookup is not None:
        app.state.cep_lookup = lookup or build_cep_lookup()
    if getattr(app.state, "guards", None) is None:
        app.state.guards = GuardRegistry()
    if getattr(app.state, "stock_monitors", None) is None:
        app.state.stock_monitors = StockMonitorRegistry()
    if getattr(app.state, "functions_client", None) is None:
        app.state.functions_client = FunctionsClient()


def get_functions_client(request: Request) -> FunctionsClient:
    return request.app.state.functions_client


def get_cep_lookup(request: Request) -> CepLookupService:
    return request.app.state.cep_lookup


def get_guards(request: Request) -> GuardRegistry:
    return request.app.state.guards


def get_stock_monitors(request: Request) -> StockMonitorRegistry:
    return request.app.state.stock_monitors


def get_coupon_validator(
    db: Session = Depends(get_db),
    client: FunctionsClient = Depends(get_functions_client),
) -> CouponValidator:
    if client.configured:
        return RemoteCouponValidator(client)
    return SqlCouponValidator(db)


def get_stock_reserver(
    db: Session = Depends(get_db),
    client: FunctionsClient = Depends(get_functions_client),
) -> StockReserver:
    if client.configured:
        return RemoteStockReserver(client)
    return SqlStockReserver(db)


def get_cart_service(
    db: Session = Depends(get_db),
    coupon_validator: CouponValidator = Depends(get_coupon_validator),
    guards: GuardRegistry = Depends(get_guards),
) -> CartService:
    return CartService(db, SqlInventoryGateway(db), coupon_validator, guards)


def get_points_service(db: Session = Depends(get_db)) -> PointsService:
    return PointsService(db)
