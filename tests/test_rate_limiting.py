import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from backend.middlewares import rate_limit_middleware
from backend.middlewares.rate_limit_middleware import RateLimitMiddleware
from backend.rate_limiting import rate_limit_fixed_window, utils as rl_utils
from backend.rate_limiting.constants import _script_sha
from backend.rate_limiting.rate_limit_fixed_window import redis_allow
from backend.rate_limiting.utils import _in_memory_allow


class _DownRedis:
    """Every call fails the way an unreachable redis does."""

    async def script_load(self, *args, **kwargs):
        raise ConnectionError("redis down")

    async def evalsha(self, *args, **kwargs):
        raise ConnectionError("redis down")

    async def eval(self, *args, **kwargs):
        raise ConnectionError("redis down")


@pytest.fixture
def redis_down(monkeypatch):
    monkeypatch.setattr(rl_utils, "redis_client", _DownRedis())
    monkeypatch.setattr(rate_limit_fixed_window, "redis_client", _DownRedis())
    _script_sha.clear()


def _limited_app(limit=2):
    test_app = FastAPI()

    @test_app.post("/api/v1/payments/verify")
    async def verify():
        return {"ok": True}

    @test_app.get("/api/v1/health")
    async def health():
        return {"status": "healthy"}

    test_app.add_middleware(RateLimitMiddleware, paths=["/api/v1/payments"], limit=limit, window=60)
    return test_app


async def test_falls_back_to_in_memory_counter_when_redis_is_down(redis_down):
    results = [await redis_allow("rl:ip:10.0.0.1:payments", 2, 60) for _ in range(3)]

    assert [allowed for allowed, _, _ in results] == [True, True, False]
    assert results[0][1] == 1


async def test_ip_limit_applies_to_payment_paths_only(monkeypatch):
    monkeypatch.setattr(rate_limit_middleware, "redis_allow", _in_memory_allow)
    test_app = _limited_app(limit=2)

    async with AsyncClient(transport=ASGITransport(app=test_app), base_url="http://test") as ac:
        headers = {"X-Forwarded-For": "203.0.113.9"}
        ok = [await ac.post("/api/v1/payments/verify", headers=headers) for _ in range(2)]
        blocked = await ac.post("/api/v1/payments/verify", headers=headers)
        other_ip = await ac.post("/api/v1/payments/verify", headers={"X-Forwarded-For": "203.0.113.10"})
        health = [await ac.get("/api/v1/health", headers=headers) for _ in range(5)]

    assert [r.status_code for r in ok] == [200, 200]
    assert ok[0].headers["X-RateLimit-Remaining"] == "1"
    assert blocked.status_code == 429
    assert blocked.json()["error"]["code"] == "RATE_LIMITED"
    assert int(blocked.headers["Retry-After"]) >= 1
    assert other_ip.status_code == 200
    assert all(r.status_code == 200 for r in health)


async def test_disabled_middleware_passes_everything(monkeypatch):
    calls = []

    async def _spy(*args):
        calls.append(args)
        return True, 0, 0

    monkeypatch.setattr(rate_limit_middleware, "redis_allow", _spy)
    test_app = FastAPI()

    @test_app.post("/api/v1/payments/verify")
    async def verify():
        return {"ok": True}

    test_app.add_middleware(RateLimitMiddleware, paths=["/api/v1/payments"], limit=1, window=60, enabled=False)

    async with AsyncClient(transport=ASGITransport(app=test_app), base_url="http://test") as ac:
        responses = [await ac.post("/api/v1/payments/verify") for _ in range(3)]

    assert all(r.status_code == 200 for r in responses)
    assert calls == []
