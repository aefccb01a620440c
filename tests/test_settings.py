import pytest

from portal.core.cache import CacheConfig
from portal.core.settings import get_settings
from portal.maintenance.optimizer import OptimizerOptions


@pytest.fixture
def fresh_settings():
    get_settings.cache_clear()
    yield get_settings
    get_settings.cache_clear()


def test_sync_database_urls_are_upgraded_to_async_drivers(monkeypatch, fresh_settings):
    monkeypatch.setenv("DATABASE_URL", "postgresql://portal:secret@db:5432/portal")

    assert fresh_settings().database_url == "postgresql+asyncpg://portal:secret@db:5432/portal"


def test_sqlite_url_uses_aiosqlite(monkeypatch, fresh_settings, tmp_path):
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path / 'portal.db'}")

    assert fresh_settings().database_url.startswith("sqlite+aiosqlite:///")


def test_production_requires_database_url(monkeypatch, fresh_settings):
    monkeypatch.setenv("ENVIRONMENT", "production")
    monkeypatch.delenv("DATABASE_URL", raising=False)

    with pytest.raises(RuntimeError, match="DATABASE_URL"):
        fresh_settings()


def test_production_disables_docs_and_schema_creation(monkeypatch, fresh_settings):
    monkeypatch.setenv("ENVIRONMENT", "production")
    monkeypatch.delenv("AUTO_CREATE_SCHEMA", raising=False)

    settings = fresh_settings()

    assert settings.admin_docs_enabled is False
    assert settings.auto_create_schema is False


def test_invalid_numbers_fall_back_to_defaults(monkeypatch, fresh_settings):
    monkeypatch.setenv("CACHE_MAX_SIZE", "lots")
    monkeypatch.setenv("CACHE_DEFAULT_TTL_SECONDS", "-5")
    monkeypatch.setenv("ANALYTICS_BOT_RETENTION_MONTHS", "0")

    settings = fresh_settings()

    assert settings.cache_max_size == 1000
    assert settings.cache_default_ttl_seconds == 300.0
    assert settings.analytics_bot_retention_months == 6


def test_cache_size_is_capped_by_ceiling(monkeypatch, fresh_settings):
    monkeypatch.setenv("CACHE_MAX_SIZE", "5000")
    monkeypatch.setenv("CACHE_MAX_SIZE_CEILING", "1500")

    settings = fresh_settings()

    assert settings.cache_max_size == 1500
    assert CacheConfig.from_settings(settings).max_size == 1500


def test_unknown_environment_falls_back_to_development(monkeypatch, fresh_settings):
    monkeypatch.setenv("ENVIRONMENT", "qa")

    assert fresh_settings().environment == "development"


def test_optimizer_options_follow_settings(monkeypatch, fresh_settings):
    monkeypatch.setenv("ANALYTICS_BOT_RETENTION_MONTHS", "3")
    monkeypatch.setenv("CACHE_MIN_TTL_SECONDS", "30")

    options = OptimizerOptions.from_settings(fresh_settings())

    assert options.bot_retention_months == 3
    assert options.min_ttl.total_seconds() == 30
    assert options.profile_window_seconds == 0
