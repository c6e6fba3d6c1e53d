from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

import httpx

from app.domain.address.cep import CepResult
from app.domain.core.enums import CepErrorKind, CepSource, Confidence

logger = logging.getLogger(__name__)

SUCCESS = "success"
NOT_FOUND = "not_found"
ERROR = "error"

_HEADERS = {"Accept": "application/json", "User-Agent": "construpro-backend/1.0 (cep-lookup)"}


@dataclass(slots=True)
class ProviderOutcome:
    provider: str
    status: str
    result: CepResult | None = None
    payload: dict[str, Any] | None = None
    error_kind: CepErrorKind | None = None
    detail: str | None = None
    warnings: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.status == SUCCESS and self.result is not None


class CepProvider(ABC):
    name: str = ""
    source: CepSource = CepSource.viacep

    def __init__(self, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self._transport = transport

    @abstractmethod
    def url(self, cep: str) -> str:
        raise NotImplementedError

    @abstractmethod
    def parse(self, cep: str, response: httpx.Response) -> ProviderOutcome:
        raise NotImplementedError

    async def fetch(self, cep: str, timeout: float) -> ProviderOutcome:
        try:
            async with httpx.AsyncClient(
                timeout=httpx.Timeout(timeout),
                transport=self._transport,
                follow_redirects=True,
            ) as client:
                response = await client.get(self.url(cep), headers=_HEADERS)
        except httpx.TimeoutException as exc:
            logger.warning("%s timed out for cep=%s", self.name, cep)
            return ProviderOutcome(self.name, ERROR, error_kind=CepErrorKind.timeout, detail=str(exc) or "timeout")
        except httpx.HTTPError as exc:
            logger.warning("%s unreachable for cep=%s: %s", self.name, cep, exc)
            return ProviderOutcome(self.name, ERROR, error_kind=CepErrorKind.network, detail=str(exc))

        try:
            return self.parse(cep, response)
        except ValueError as exc:
            logger.warning("%s returned an unreadable body for cep=%s", self.name, cep)
            return ProviderOutcome(self.name, ERROR, error_kind=CepErrorKind.api_error, detail=str(exc))

    def _result(self, cep: str, payload: dict[str, Any], **fields: Any) -> CepResult:
        return CepResult(
            cep=cep,
            source=self.source,
            confidence=Confidence.high,
            sources={self.name: payload},
            **fields,
        )


class ViaCepProvider(CepProvider):
    name = "viacep"
    source = CepSource.viacep
    base_url = "https://viacep.com.br/ws"

    def url(self, cep: str) -> str:
        return f"{self.base_url}/{cep}/json/"

    def parse(self, cep: str, response: httpx.Response) -> ProviderOutcome:
        if response.status_code >= 400:
            return ProviderOutcome(
                self.name, ERROR, error_kind=CepErrorKind.api_error, detail=f"HTTP {response.status_code}"
            )
        payload = response.json()
        if not isinstance(payload, dict):
            raise ValueError("unexpected payload")
        if payload.get("erro"):
            return ProviderOutcome(self.name, NOT_FOUND, payload=payload)
        result = self._result(
            cep,
            payload,
            logradouro=payload.get("logradouro") or "",
            bairro=payload.get("bairro") or "",
            localidade=payload.get("localidade") or "",
            uf=payload.get("uf") or "",
            ibge=payload.get("ibge") or None,
        )
        return ProviderOutcome(self.name, SUCCESS, result=result, payload=payload)


class BrasilApiProvider(CepProvider):
    name = "brasilapi"
    source = CepSource.brasilapi
    base_url = "https://brasilapi.com.br/api/cep/v1"

    def url(self, cep: str) -> str:
        return f"{self.base_url}/{cep}"

    def parse(self, cep: str, response: httpx.Response) -> ProviderOutcome:
        if response.status_code == 404:
            return ProviderOutcome(self.name, NOT_FOUND)
        if response.status_code >= 400:
            return ProviderOutcome(
                self.name, ERROR, error_kind=CepErrorKind.api_error, detail=f"HTTP {response.status_code}"
            )
        payload = response.json()
        if not isinstance(payload, dict):
            raise ValueError("unexpected payload")
        ibge = payload.get("city_ibge")
        result = self._result(
            cep,
            payload,
            logradouro=payload.get("street") or "",
            bairro=payload.get("neighborhood") or "",
            localidade=payload.get("city") or "",
            uf=payload.get("state") or "",
            ibge=str(ibge) if ibge else None,
        )
        return ProviderOutcome(self.name, SUCCESS, result=result, payload=payload)


def default_providers(transport: httpx.AsyncBaseTransport | None = None) -> list[CepProvider]:
    return [ViaCepProvider(transport), BrasilApiProvider(transport)]
