import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path

import pytest
from httpx import ASGITransport, AsyncClient

_DATA_DIR = Path(tempfile.mkdtemp(prefix="portal-tests-"))

TEST_ENV = {
    "ENVIRONMENT": "test",
    "DATA_DIR": str(_DATA_DIR),
    "DATABASE_URL": f"sqlite+aiosqlite:///{_DATA_DIR / 'session.db'}",
    "LOG_LEVEL": "WARNING",
    "LOG_FILE": str(_DATA_DIR / "logs" / "portal.log"),
    "AUTO_CREATE_SCHEMA": "1",
    "MAINTENANCE_CRON": "",
    "MAINTENANCE_PROFILE_WINDOW_SECONDS": "0",
}

for key, value in TEST_ENV.items():
    os.environ[key] = value

from portal.core.cache import TaggedCache  # noqa: E402
from portal.core.db import Database  # noqa: E402
from portal.core.settings import get_settings  # noqa: E402
from portal.domain.models import News  # noqa: E402


class FakeClock:
    """Manually advanced epoch clock for cache tests."""

    def __init__(self, start: float = 1_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture(scope="session", autouse=True)
def _set_test_env():
    """Force deterministic env for tests and reset cached settings."""
    for key, value in TEST_ENV.items():
        os.environ[key] = value
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def settings():
    return get_settings()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
async def database(tmp_path, settings):
    db = Database(url=f"sqlite+aiosqlite:///{tmp_path / 'portal.db'}", settings=settings)
    await db.create_all()
    yield db
    await db.dispose()


@pytest.fixture
def cache():
    return TaggedCache()


@pytest.fixture
async def app(settings, database, cache):
    from portal.apps.admin_api.app import create_app

    application = create_app(settings=settings, database=database, cache=cache)
    yield application
    await application.state.analytics.wait_for_pending()


@pytest.fixture
async def client(app):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://testserver") as ac:
        yield ac


@pytest.fixture
def make_news(database):
    async def _make(**overrides) -> News:
        values = {
            "title": "Rentrée universitaire",
            "status": "published",
            "published_at": datetime(2026, 9, 1, tzinfo=timezone.utc),
        }
        values.update(overrides)
        async with database.session() as session:
            news = News(**values)
            session.add(news)
            await session.commit()
            return news

    return _make
