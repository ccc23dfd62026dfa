"""
Pytest configuration for Teamboard backend tests.

Tests run the ASGI app in-process against a throwaway SQLite database and
an in-memory Redis. Environment must be set before `app` is imported.
"""

import os
import tempfile
from pathlib import Path

_TMP_DIR = Path(tempfile.mkdtemp(prefix="teamboard-tests-"))

os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key-that-is-at-least-32-characters")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_TMP_DIR / 'teamboard-test.db'}"
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/15")
os.environ.setdefault("SLACK_SIGNING_SECRET", "test-slack-signing-secret")

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from fakeredis import FakeAsyncRedis  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402

from app.core import dependencies  # noqa: E402
from app.core.database import AsyncSessionLocal, async_engine  # noqa: E402
from app.main import app  # noqa: E402
from app.models import Base  # noqa: E402
from app.workers import email_tasks, slack_tasks  # noqa: E402


def pytest_configure(config):
    """Configure pytest-asyncio mode."""
    config.addinivalue_line(
        "markers", "asyncio: mark test as async"
    )


@pytest_asyncio.fixture
async def redis():
    fake = FakeAsyncRedis(decode_responses=True)
    dependencies._redis_pool = fake
    yield fake
    dependencies._redis_pool = None
    await fake.flushall()
    await fake.aclose()


@pytest_asyncio.fixture(autouse=True)
async def database(redis):
    async with async_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with async_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await async_engine.dispose()


@pytest_asyncio.fixture
async def db_session():
    async with AsyncSessionLocal() as session:
        yield session


@pytest_asyncio.fixture
async def client():
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


class EnqueuedTasks:
    """Records Celery `.delay()` calls instead of talking to a broker."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, tuple, dict]] = []

    def recorder(self, name: str):
        def delay(*args, **kwargs):
            self.calls.append((name, args, kwargs))

        return delay

    def named(self, name: str) -> list[tuple[tuple, dict]]:
        return [(args, kwargs) for n, args, kwargs in self.calls if n == name]


@pytest.fixture(autouse=True)
def enqueued(monkeypatch):
    tasks = EnqueuedTasks()
    monkeypatch.setattr(
        email_tasks.send_project_invitation_email,
        "delay",
        tasks.recorder("send_project_invitation_email"),
    )
    monkeypatch.setattr(
        email_tasks.send_password_reset_pin_email,
        "delay",
        tasks.recorder("send_password_reset_pin_email"),
    )
    monkeypatch.setattr(
        slack_tasks.post_slack_message,
        "delay",
        tasks.recorder("post_slack_message"),
    )
    return tasks
