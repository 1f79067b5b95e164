"""
Shared test fixtures for the food ordering backend.

The environment is pinned before any application module is imported:
development mode (mock payment providers), a throwaway SQLite file and a
known JWT secret.
"""

import os
import shutil
import tempfile
import time

_TEST_DIR = tempfile.mkdtemp(prefix="food_ordering_tests_")

os.environ["ENV_MODE"] = "development"
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_TEST_DIR}/test.db"
os.environ["DATA_DIRECTORY"] = os.path.join(_TEST_DIR, "data")
os.environ["JWT_SECRET"] = "test-secret"
os.environ["MOCK_WEBHOOK_SECRET"] = "whsec_test"
os.environ["SSLCOMMERZ_VERIFY_CALLBACKS"] = "true"
os.environ["FRONTEND_URL"] = "http://frontend.test"

import httpx
import jwt
import pytest
import pytest_asyncio

from food_ordering.core.config import get_settings
from food_ordering.database import Base, async_session_maker, engine
from food_ordering.main import app, get_reconciliation_engine
from food_ordering.services.payment import reset_payment_providers
from food_ordering.services.reconciliation import ReconciliationEngine

JWT_SECRET = "test-secret"
OWNER_ID = "user-owner"
OTHER_ID = "user-other"
ADMIN_ID = "user-admin"


def make_token(user_id: str, is_admin: bool = False, expires_in: int = 3600) -> str:
    payload = {"userId": user_id, "isAdmin": is_admin, "exp": int(time.time()) + expires_in}
    return jwt.encode(payload, JWT_SECRET, algorithm="HS256")


def pytest_sessionfinish(session, exitstatus):
    shutil.rmtree(_TEST_DIR, ignore_errors=True)


# ============================================================================
# Database
# ============================================================================


@pytest_asyncio.fixture(autouse=True)
async def database():
    """Fresh tables for every test."""
    get_settings.cache_clear()
    reset_payment_providers()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture
async def db():
    async with async_session_maker() as session:
        yield session


# ============================================================================
# Identity
# ============================================================================


@pytest.fixture
def auth_headers():
    """Factory: ``auth_headers(user_id, is_admin=False)``."""
    def _headers(user_id: str = OWNER_ID, is_admin: bool = False) -> dict:
        return {"Authorization": f"Bearer {make_token(user_id, is_admin)}"}
    return _headers


# ============================================================================
# Application
# ============================================================================


class CompletionRecorder:
    """Stands in for the ledger hook and remembers each call."""

    def __init__(self):
        self.calls = []

    def __call__(self, order, event):
        self.calls.append((order.id, event.provider))


@pytest.fixture
def completions():
    return CompletionRecorder()


@pytest_asyncio.fixture
async def client(completions):
    engine_under_test = ReconciliationEngine(on_completed=completions)
    app.dependency_overrides[get_reconciliation_engine] = lambda: engine_under_test

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def order_payload():
    """Two lines of 7.99 (2 + 1 units), no delivery fee, total 23.97."""
    return {
        "items": [
            {"menuItem": "m-biryani", "name": "Chicken Biryani", "quantity": 2, "price": 7.99},
            {"menuItem": "m-lassi", "name": "Mango Lassi", "quantity": 1, "price": 7.99},
        ],
        "total": 23.97,
        "deliveryFee": 0,
        "deliveryAddress": {
            "street": "12 Lake Road",
            "city": "Dhaka",
            "state": "Dhaka",
            "zipCode": "1207",
        },
        "paymentMethod": "stripe",
    }
