from __future__ import annotations

import json
import logging
import time
import uuid

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger("app.request")


def configure_logging(level: str = "INFO") -> None:
    """Plain-text module logs on the root logger; request logs stay one JSON object per line."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("%(message)s"))
        logger.addHandler(handler)
    logger.setLevel(logging.INFO)
    logger.propagate = False


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
        request.state.request_id = request_id
        start = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            payload = _payload(request, request_id, start, status=500)
            logger.exception(json.dumps(payload, ensure_ascii=True))
            raise

        payload = _payload(request, request_id, start, status=response.status_code)
        line = json.dumps(payload, ensure_ascii=True)
        if response.status_code >= 500:
            logger.error(line)
        elif response.status_code >= 400:
            logger.warning(line)
        else:
            logger.info(line)

        response.headers["X-Request-Id"] = request_id
        return response


def _payload(request: Request, request_id: str, start: float, status: int) -> dict:
    forwarded = request.headers.get("x-forwarded-for")
    client_ip = forwarded.split(",")[0].strip() if forwarded else (request.client.host if request.client else None)
    return {
        "event": "http_request",
        "request_id": request_id,
        "method": request.method,
        "path": request.url.path,
        "status": status,
        "duration_ms": int((time.perf_counter() - start) * 1000),
        # preenchidos pelas dependencias de auth e pelo handler de erros
        "user_id": getattr(request.state, "user_id", None),
        "error_kind": getattr(request.state, "error_kind", None),
        "client_ip": client_ip,
    }
