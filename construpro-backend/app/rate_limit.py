from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from dataclasses import dataclass
from typing import Deque, Iterable

import redis.asyncio as redis
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.types import ASGIApp

logger = logging.getLogger("app.rate_limit")

# INCR + EXPIRE atomico por janela fixa
_REDIS_SCRIPT = (
    "local current = redis.call('INCR', KEYS[1]) "
    "if current == 1 then redis.call('EXPIRE', KEYS[1], ARGV[1]) end "
    "local ttl = redis.call('TTL', KEYS[1]) "
    "return {current, ttl}"
)


@dataclass(frozen=True)
class RateLimitRule:
    name: str
    path: str
    max_requests: int
    window_seconds: int
    methods: frozenset[str] | None = None

    def matches(self, path: str, method: str) -> bool:
        if not path.startswith(self.path):
            return False
        return not self.methods or method in self.methods


def _too_many(retry_after: int) -> JSONResponse:
    return JSONResponse(
        {
            "detail": {
                "type": "rate_limited",
                "message": "Muitas requisições. Aguarde alguns segundos e tente novamente.",
                "details": {"retry_after": retry_after},
                "can_retry": True,
                "suggest_manual": False,
            }
        },
        status_code=429,
        headers={"Retry-After": str(retry_after)},
    )


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Per-client limits on the endpoints that hit upstream services.

    Counts live in Redis when ``redis_url`` is set and in process memory
    otherwise; a Redis failure degrades to memory for that request.
    """

    def __init__(self, app: ASGIApp, rules: Iterable[RateLimitRule], redis_url: str | None = None) -> None:
        super().__init__(app)
        self._rules = list(rules)
        self._hits: dict[str, Deque[float]] = {}
        self._lock = asyncio.Lock()
        self._redis = redis.from_url(redis_url, encoding="utf-8", decode_responses=True) if redis_url else None
        self._redis_error_logged = False

    async def dispatch(self, request: Request, call_next) -> Response:
        method = request.method.upper()
        rule = next((r for r in self._rules if r.matches(request.url.path, method)), None)
        if rule is None:
            return await call_next(request)

        key = f"{rule.name}:{_client_id(request)}"
        allowed, retry_after = await self._check(key, rule)
        if not allowed:
            logger.warning("Rate limit hit rule=%s key=%s", rule.name, key)
            return _too_many(retry_after)
        return await call_next(request)

    async def _check(self, key: str, rule: RateLimitRule) -> tuple[bool, int]:
        if self._redis is None:
            return await self._check_memory(key, rule)
        try:
            now = int(time.time())
            window_start = now - (now % rule.window_seconds)
            current, ttl = await self._redis.eval(_REDIS_SCRIPT, 1, f"rl:{key}:{window_start}", rule.window_seconds)
            if int(current) > rule.max_requests:
                return False, max(1, int(ttl if ttl is not None else rule.window_seconds))
            return True, 0
        except redis.RedisError as exc:
            if not self._redis_error_logged:
                logger.warning("Redis rate limiting failed; using memory: %s", exc)
                self._redis_error_logged = True
            return await self._check_memory(key, rule)

    async def _check_memory(self, key: str, rule: RateLimitRule) -> tuple[bool, int]:
        now = time.monotonic()
        async with self._lock:
            bucket = self._hits.setdefault(key, deque())
            while bucket and bucket[0] <= now - rule.window_seconds:
                bucket.popleft()
            if len(bucket) >= rule.max_requests:
                return False, max(1, int(rule.window_seconds - (now - bucket[0])))
            bucket.append(now)
        return True, 0


def _client_id(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


DEFAULT_RULES = [
    RateLimitRule("checkout", "/checkout", max_requests=30, window_seconds=60, methods=frozenset({"POST"})),
    RateLimitRule("coupon", "/cart/coupon", max_requests=20, window_seconds=60, methods=frozenset({"POST"})),
    RateLimitRule("cep", "/cep", max_requests=60, window_seconds=60, methods=frozenset({"GET"})),
]
