import asyncio
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.trustedhost import TrustedHostMiddleware

from app.db import settings
from app.dependencies import init_app_state
from app.errors import ConstruProError, construpro_error_handler
from app.observability import RequestLoggingMiddleware, configure_logging
from app.rate_limit import DEFAULT_RULES, RateLimitMiddleware
from app.routers import cart, catalog, cep, cep_admin, checkout, delivery, points

configure_logging(settings.log_level)
logger = logging.getLogger(__name__)

app = FastAPI(title="ConstruPRO API")

ALLOWED_ORIGINS = [
    # Dev - Vite
    "http://localhost:5173",
    "http://127.0.0.1:5173",
    "http://localhost:8080",
]


def _parse_list(raw: str | None) -> list[str]:
    raw = (raw or "").strip()
    if not raw:
        return []
    return [item.strip() for item in raw.split(",") if item.strip()]


cors_origins = _parse_list(settings.cors_allowed_origins) or ALLOWED_ORIGINS
trusted_hosts = _parse_list(settings.trusted_hosts)

if trusted_hosts:
    app.add_middleware(TrustedHostMiddleware, allowed_hosts=trusted_hosts)

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_methods=["*"], allow_headers=["*"], allow_credentials=True,
)
app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(RateLimitMiddleware, rules=DEFAULT_RULES, redis_url=settings.rate_limit_redis_url)

app.add_exception_handler(ConstruProError, construpro_error_handler)


async def _warm_cep_cache() -> None:
    lookup = app.state.cep_lookup
    try:
        await lookup.cache.warm(lookup.fetch_upstream)
    except Exception:
        logger.exception("CEP cache warm on startup failed")


@app.on_event("startup")
async def startup():
    init_app_state(app)
    app.state.cep_lookup.cache.init()
    app.state.cep_warm_task = None
    if settings.cep_warm_on_startup:
        app.state.cep_warm_task = asyncio.create_task(_warm_cep_cache())


@app.on_event("shutdown")
async def shutdown():
    task = getattr(app.state, "cep_warm_task", None)
    if task is not None and not task.done():
        task.cancel()


@app.get("/health")
def health(): return {"ok": True}


app.include_router(cart.router)
app.include_router(checkout.router)
app.include_router(cep.router)
app.include_router(cep_admin.router)
app.include_router(delivery.router)
app.include_router(points.router)
app.include_router(catalog.router)
