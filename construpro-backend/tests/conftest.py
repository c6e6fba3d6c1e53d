# tests/conftest.py
from __future__ import annotations

import os
import uuid
from collections.abc import Generator
from decimal import Decimal
from typing import Any

os.environ["AUTH_SECRET"] = "test-secret-construpro-0123456789abcdef"
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["FUNCTIONS_BASE_URL"] = ""
os.environ["CEP_CROSS_CHECK"] = "false"
os.environ["CEP_WARM_ON_STARTUP"] = "false"
os.environ["POINTS_RECONCILE_FUNCTION"] = ""

import httpx
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app import models
from app.db import Base, get_db
from app.dependencies import build_cep_lookup, init_app_state
from app.security import create_access_token
from app.services.cep_lookup import CepLookupService
from app.services.functions_client import FunctionsClient
from app.services.stock_monitor import StockMonitorRegistry
from app.services.submission_guard import GuardRegistry


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def session_factory() -> Generator[sessionmaker, None, None]:
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(bind=engine, autoflush=False, autocommit=False)
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def db(session_factory: sessionmaker) -> Generator[Session, None, None]:
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


# ---------- upstream de CEP falso ----------


def viacep_payload(cep: str, city: str = "Capelinha", uf: str = "MG", **extra: Any) -> dict:
    payload = {
        "cep": f"{cep[:5]}-{cep[5:]}",
        "logradouro": "Rua Direita",
        "bairro": "Centro",
        "localidade": city,
        "uf": uf,
        "ibge": "3112307",
    }
    payload.update(extra)
    return payload


def brasilapi_payload(cep: str, city: str = "Capelinha", uf: str = "MG", **extra: Any) -> dict:
    payload = {
        "cep": cep,
        "street": "Rua Direita",
        "neighborhood": "Centro",
        "city": city,
        "state": uf,
        "city_ibge": "3112307",
    }
    payload.update(extra)
    return payload


class FakeCepUpstream:
    """Respostas por CEP para ViaCEP e BrasilAPI.

    Valor ausente significa "não encontrado"; as strings ``"timeout"``,
    ``"network"`` e ``"error"`` simulam as falhas correspondentes.
    """

    def __init__(self) -> None:
        self.viacep: dict[str, Any] = {}
        self.brasilapi: dict[str, Any] = {}
        self.calls: list[tuple[str, str]] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        parts = request.url.path.strip("/").split("/")
        if request.url.host == "viacep.com.br":
            provider, cep, table = "viacep", parts[-2], self.viacep
        else:
            provider, cep, table = "brasilapi", parts[-1], self.brasilapi
        self.calls.append((provider, cep))

        answer = table.get(cep)
        if answer == "timeout":
            raise httpx.ReadTimeout("timeout", request=request)
        if answer == "network":
            raise httpx.ConnectError("connection refused", request=request)
        if answer == "error":
            return httpx.Response(500, text="internal error")
        if answer is None:
            if provider == "viacep":
                return httpx.Response(200, json={"erro": True})
            return httpx.Response(404, json={"message": "CEP não encontrado"})
        return httpx.Response(200, json=answer)

    def found(self, cep: str, city: str = "Capelinha", uf: str = "MG", providers=("viacep", "brasilapi"), **extra: Any) -> None:
        if "viacep" in providers:
            self.viacep[cep] = viacep_payload(cep, city, uf, **extra)
        if "brasilapi" in providers:
            self.brasilapi[cep] = brasilapi_payload(cep, city, uf)

    def fail(self, cep: str, how: str) -> None:
        self.viacep[cep] = how
        self.brasilapi[cep] = how

    def calls_for(self, provider: str) -> int:
        return sum(1 for name, _ in self.calls if name == provider)


@pytest.fixture
def upstream() -> FakeCepUpstream:
    return FakeCepUpstream()


@pytest.fixture
def lookup(session_factory: sessionmaker, upstream: FakeCepUpstream) -> CepLookupService:
    service = build_cep_lookup(session_factory, transport=httpx.MockTransport(upstream.handler))
    service.cache.init()
    return service


# ---------- dados ----------


@pytest.fixture
def vendor(db: Session) -> models.Vendor:
    row = models.Vendor(id=str(uuid.uuid4()), user_id="vendor-user", store_name="Depósito Teste")
    db.add(row)
    db.commit()
    return row


@pytest.fixture
def make_product(db: Session, vendor: models.Vendor):
    def _make(
        name: str = "Cimento CP-II 50kg",
        price_cents: int = 4000,
        stock: str | Decimal = "10",
        **fields: Any,
    ) -> models.Product:
        product = models.Product(
            id=str(uuid.uuid4()),
            vendor_id=fields.pop("vendor_id", vendor.id),
            name=name,
            price_cents=price_cents,
            stock=Decimal(str(stock)),
            **fields,
        )
        db.add(product)
        db.commit()
        return product

    return _make


@pytest.fixture
def auth():
    def _headers(user_id: str, **claims: Any) -> dict[str, str]:
        token = create_access_token({"sub": user_id, **claims})
        return {"Authorization": f"Bearer {token}"}

    return _headers


@pytest.fixture
def client(session_factory: sessionmaker, lookup: CepLookupService) -> Generator[TestClient, None, None]:
    from app.main import app

    def _get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = _get_db
    init_app_state(app, lookup=lookup)
    app.state.guards = GuardRegistry()
    app.state.stock_monitors = StockMonitorRegistry()
    app.state.functions_client = FunctionsClient(base_url="")
    # cada teste com um IP proprio para nao dividir o rate limit
    headers = {"X-Forwarded-For": f"test-{uuid.uuid4().hex}"}
    yield TestClient(app, headers=headers)
    app.dependency_overrides.clear()
