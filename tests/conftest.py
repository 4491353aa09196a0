"""
Shared fixtures: a throwaway SQLite database, an in-process HTTP client
and token helpers. Settings are read once at import, so the environment is
prepared before anything from ``fulfillment`` is imported.
"""
import os
import tempfile
from decimal import Decimal
from unittest.mock import AsyncMock

_tmpdir = tempfile.mkdtemp(prefix="fulfillment-tests-")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{os.path.join(_tmpdir, 'test.db')}"
os.environ["IDEMPOTENCY_ENABLED"] = "false"
os.environ["METRICS_ENABLED"] = "false"
os.environ["JWT_SECRET_KEY"] = "test-secret"
os.environ["OPT_LOCK_BASE_DELAY_MS"] = "1"
os.environ["OPT_LOCK_MAX_DELAY_MS"] = "5"
os.environ["OPT_LOCK_JITTER_MS"] = "1"

import httpx  # noqa: E402
import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402

from fulfillment import models  # noqa: E402,F401
from fulfillment.core.security import Role, create_access_token  # noqa: E402
from fulfillment.db.database import Base, SessionLocal, engine  # noqa: E402
from fulfillment.main import app  # noqa: E402
from fulfillment.services.products import create_product  # noqa: E402


# ─── Database ──────────────────────────────────────────────────────────────────
@pytest_asyncio.fixture(autouse=True)
async def database():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    # Pooled aiosqlite connections are bound to this test's event loop
    await engine.dispose()


@pytest.fixture
def session_factory():
    return SessionLocal


# ─── HTTP ──────────────────────────────────────────────────────────────────────
@pytest_asyncio.fixture
async def client():
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


def auth_headers(user_id: str, role: Role = Role.USER) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(user_id, role)}"}


@pytest.fixture
def user_headers():
    return auth_headers("user-001", Role.USER)


@pytest.fixture
def other_user_headers():
    return auth_headers("user-002", Role.USER)


@pytest.fixture
def kitchen_headers():
    return auth_headers("kitchen-001", Role.KITCHEN)


@pytest.fixture
def admin_headers():
    return auth_headers("admin-001", Role.ADMIN)


# ─── Catalog ───────────────────────────────────────────────────────────────────
@pytest.fixture
def make_product():
    """Insert a product in its own session and return it."""

    async def _make(name: str = "P1", price: str = "50000", stock: int = 10, is_active: bool = True):
        async with SessionLocal() as db:
            return await create_product(db, name=name, price=Decimal(price), stock=stock, is_active=is_active)

    return _make


# ─── Redis ─────────────────────────────────────────────────────────────────────
class FakeRedis:
    """Dict-backed stand-in exposing the calls the service makes."""

    def __init__(self):
        self.store: dict[str, str] = {}
        self.get = AsyncMock(side_effect=self._get)
        self.set = AsyncMock(side_effect=self._set)
        self.setex = AsyncMock(side_effect=self._setex)
        self.delete = AsyncMock(side_effect=self._delete)
        self.ping = AsyncMock(return_value=True)

    def _get(self, key):
        return self.store.get(key)

    def _set(self, key, value, nx=False, ex=None):
        if nx and key in self.store:
            return None
        self.store[key] = value
        return True

    def _setex(self, key, ttl, value):
        self.store[key] = value
        return True

    def _delete(self, *keys):
        return sum(1 for k in keys if self.store.pop(k, None) is not None)


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def headers_for():
    """Build Authorization headers for any user id and role."""
    return auth_headers
