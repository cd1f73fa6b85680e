"""
Pytest configuration and fixtures for the concierge tests.
"""
from datetime import datetime

import pytest
import pytest_asyncio
import pytz
from httpx import ASGITransport, AsyncClient

from tests.utils.fakes import FakeLLM, FakeRedis, FakeSender

TEST_TZ = "Asia/Jerusalem"
WEBHOOK_SECRET = "test-secret"


class MutableClock:
    """Controllable clock returning aware datetimes in the test timezone."""

    def __init__(self, value: datetime):
        self.value = value

    def __call__(self) -> datetime:
        return self.value

    def set(self, year, month, day, hour, minute, second=0):
        self.value = pytz.timezone(TEST_TZ).localize(datetime(year, month, day, hour, minute, second))


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def redis_provider(fake_redis):
    return lambda: fake_redis


@pytest.fixture
def sender():
    return FakeSender()


@pytest.fixture
def llm():
    return FakeLLM(default="Hi! How can I help?")


@pytest.fixture
def clock():
    return MutableClock(pytz.timezone(TEST_TZ).localize(datetime(2025, 12, 3, 8, 0)))


@pytest.fixture
def test_settings(tmp_path):
    from wa_concierge.core.config import Settings

    prompt_file = tmp_path / "system_prompt.txt"
    prompt_file.write_text("You are a test assistant.", encoding="utf-8")
    return Settings(
        _env_file=None,
        WA_SENDER_API_KEY="wa-key",
        WA_SENDER_WEBHOOK_SECRET=WEBHOOK_SECRET,
        OPENAI_API_KEY="sk-test",
        BATCH_WINDOW_MS=50,
        MIN_RESPONSE_DELAY_MS=0,
        MAX_RESPONSE_DELAY_MS=0,
        SEND_RETRY_DELAY_MS=0,
        SYSTEM_PROMPT_PATH=str(prompt_file),
        TIMEZONE=TEST_TZ,
    )


@pytest.fixture
def services(test_settings, redis_provider, llm, sender):
    from wa_concierge.core.dependencies import build_services

    return build_services(config=test_settings, redis_provider=redis_provider, llm=llm, sender=sender)


@pytest.fixture
def app(services):
    """FastAPI application with the test service graph."""
    from main import app
    from wa_concierge.core.dependencies import get_services

    app.dependency_overrides[get_services] = lambda: services
    yield app
    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def async_client(app):
    """Create async HTTP client for testing."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
