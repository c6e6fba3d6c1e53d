# tests/test_rate_limit.py
from fastapi import FastAPI
from fastapi.testclient import TestClient

from app.rate_limit import RateLimitMiddleware, RateLimitRule


def _client(max_requests=2):
    app = FastAPI()

    @app.post("/checkout")
    def checkout():
        return {"ok": True}

    @app.get("/checkout")
    def status():
        return {"ok": True}

    rule = RateLimitRule("checkout", "/checkout", max_requests=max_requests, window_seconds=60,
                         methods=frozenset({"POST"}))
    app.add_middleware(RateLimitMiddleware, rules=[rule])
    return TestClient(app)


def test_limit_applies_per_client_and_method():
    client = _client()
    ip = {"X-Forwarded-For": "10.0.0.1"}
    assert client.post("/checkout", headers=ip).status_code == 200
    assert client.post("/checkout", headers=ip).status_code == 200

    blocked = client.post("/checkout", headers=ip)
    assert blocked.status_code == 429
    assert blocked.json()["detail"]["type"] == "rate_limited"
    assert int(blocked.headers["Retry-After"]) >= 1

    assert client.get("/checkout", headers=ip).status_code == 200
    assert client.post("/checkout", headers={"X-Forwarded-For": "10.0.0.2"}).status_code == 200
