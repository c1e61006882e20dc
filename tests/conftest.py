import os
import tempfile

_TMP_DIR = tempfile.mkdtemp(prefix="marketplace-payments-tests-")

# settings are read at import time, so the environment has to be in place before backend is imported
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{os.path.join(_TMP_DIR, 'payments.db')}"
os.environ["DB_CREATE_ALL"] = "false"
os.environ["JWT_SECRET"] = "test-jwt-secret"
os.environ["JWT_ALGO"] = "HS256"
os.environ["PAYSTACK_SECRET_KEY"] = "sk_test_secret"
os.environ["IP_RATE_LIMIT_ENABLED"] = "false"
os.environ["ENABLE_ADMIN"] = "true"
os.environ["ENV"] = "dev"

import pytest
from asgi_lifespan import LifespanManager
from httpx import ASGITransport, AsyncClient
from sqlmodel import SQLModel
from backend.common.circuit_breaker import gateway_circuit
from backend.db.connection import async_engine, async_session
from backend.main import app
from backend.payments import gateway
from backend.rate_limiting.constants import _in_memory_counters
from backend.schema import full_schema  # noqa: F401
from tests.factories import FakeGateway

url_prefix = "/api/v1"


@pytest.fixture(autouse=True)
async def fresh_db():
    async with async_engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.drop_all)
        await conn.run_sync(SQLModel.metadata.create_all)
    gateway_circuit.reset()
    _in_memory_counters.clear()
    try:
        yield
    finally:
        # pooled aiosqlite connections are bound to this test's event loop
        await async_engine.dispose()


@pytest.fixture
async def db_session():

    async with async_session() as session:
        yield session


@pytest.fixture
async def ac_client():
    async with LifespanManager(app):
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
            yield ac


@pytest.fixture
def fake_gateway(monkeypatch):
    fake = FakeGateway()
    monkeypatch.setattr(gateway, "verify_transaction", fake.verify_transaction)
    return fake
