from __future__ import annotations

import logging
from typing import Any

import httpx

from app.db import settings
from app.errors import FunctionNotDeployedError, NetworkError, UpstreamServiceError, UpstreamTimeoutError

logger = logging.getLogger(__name__)


class FunctionsClient:
    """Thin client for the platform's serverless functions (``POST {base}/{name}``)."""

    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = (base_url or settings.functions_base_url or "").rstrip("/")
        self.api_key = api_key if api_key is not None else settings.functions_api_key
        seconds = timeout if timeout is not None else settings.functions_timeout_seconds
        self._timeout = httpx.Timeout(seconds, connect=5.0)
        self._transport = transport

    @property
    def configured(self) -> bool:
        return bool(self.base_url)

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
            headers["apikey"] = self.api_key
        return headers

    async def invoke(self, name: str, body: dict[str, Any]) -> dict[str, Any]:
        if not self.configured:
            raise UpstreamServiceError("FUNCTIONS_BASE_URL não configurada")
        url = f"{self.base_url}/{name}"
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.post(url, json=body, headers=self._headers())
        except httpx.TimeoutException as exc:
            logger.warning("Function %s timed out", name)
            raise UpstreamTimeoutError(details=str(exc)) from exc
        except httpx.HTTPError as exc:
            logger.warning("Function %s unreachable: %s", name, exc)
            raise NetworkError(details=str(exc)) from exc

        if response.status_code == 404:
            logger.error("Function %s is not deployed", name)
            raise FunctionNotDeployedError(name)
        if response.status_code >= 400:
            logger.error("Function %s failed status=%s body=%s", name, response.status_code, response.text[:300])
            raise UpstreamServiceError(details={"status": response.status_code})
        try:
            payload = response.json()
        except ValueError as exc:
            raise UpstreamServiceError("Resposta inválida do servidor", details=response.text[:300]) from exc
        if not isinstance(payload, dict):
            raise UpstreamServiceError("Resposta inválida do servidor")
        return payload
