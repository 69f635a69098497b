import os
import pytest
from httpx import AsyncClient, ASGITransport
from typing import AsyncGenerator

# Set test environment vars before importing app
os.environ["ENVIRONMENT"] = "testing"
os.environ["SUPABASE_URL"] = ""
os.environ["SUPABASE_KEY"] = ""
os.environ["JWT_SECRET"] = "super-secret-test-key-32-chars-long"
os.environ["ENABLE_SCHEDULER"] = "false"
os.environ["SMTP_HOST"] = ""
os.environ["APPOINTMENT_TIMEZONE"] = "Asia/Kolkata"

from main import app
from core.limiter import get_real_ip
from dependencies.services import get_payment_orchestrator, get_reminder_scheduler
from fastapi_limiter import FastAPILimiter
from services.payment_service import PaymentOrchestrator
from services.reminder_service import ReminderScheduler
import fakeredis.aioredis

from fakes import FakeGateway, InMemoryStore, RecordingNotifier, make_settings


@pytest.fixture
def test_settings():
    return make_settings(REMINDER_SWEEP_CONCURRENCY=3)


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def payment_service(store, gateway, notifier, test_settings):
    return PaymentOrchestrator(store, gateway, notifier, test_settings)


@pytest.fixture
def reminder_service(store, notifier, test_settings):
    return ReminderScheduler(store, notifier, test_settings)


@pytest.fixture(autouse=True)
async def setup_redis_limiter():
    """Setup Fake Redis for rate limiter in tests"""
    redis_conn = fakeredis.aioredis.FakeRedis()
    await FastAPILimiter.init(redis_conn, identifier=get_real_ip)
    yield
    await redis_conn.flushall()
    await redis_conn.close()
    FastAPILimiter.redis = None


@pytest.fixture
async def async_client(payment_service, reminder_service) -> AsyncGenerator[AsyncClient, None]:
    app.dependency_overrides[get_payment_orchestrator] = lambda: payment_service
    app.dependency_overrides[get_reminder_scheduler] = lambda: reminder_service
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()
