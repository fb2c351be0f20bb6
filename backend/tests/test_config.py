"""
Tests for application configuration and settings validation.
"""

import os
import pytest
from unittest.mock import patch


def test_settings_loads_defaults():
    """Settings should load with sensible defaults in development."""
    from marketplace.config import get_settings
    get_settings.cache_clear()

    with patch.dict(os.environ, {
        "ENVIRONMENT": "development",
        "DATABASE_URL": "postgresql+asyncpg://localhost/test",
        "SECRET_KEY": "change-me-in-production",
    }, clear=False):
        get_settings.cache_clear()
        settings = get_settings()
        assert settings.environment == "development"
        assert settings.is_production is False
        assert settings.is_postgres is True
        assert settings.access_token_expire_minutes == 60 * 24
        assert (settings.page_size_default, settings.page_size_max) == (20, 100)
        get_settings.cache_clear()


def test_plain_postgres_url_gets_asyncpg_driver():
    from marketplace.config import Settings
    settings = Settings(database_url="postgresql://user:pw@db-host:5432/marketplace")
    assert settings.database_url == "postgresql+asyncpg://user:pw@db-host:5432/marketplace"


def test_sqlite_url_is_not_postgres():
    from marketplace.config import Settings
    settings = Settings(database_url="sqlite+aiosqlite:///./marketplace.db")
    assert settings.is_postgres is False


def test_settings_cors_origin_list():
    """CORS origins string should be split into a list."""
    from marketplace.config import get_settings
    get_settings.cache_clear()

    with patch.dict(os.environ, {
        "ENVIRONMENT": "development",
        "DATABASE_URL": "postgresql+asyncpg://localhost/test",
        "CORS_ORIGINS": "http://localhost:3000, http://example.com",
    }, clear=False):
        get_settings.cache_clear()
        settings = get_settings()
        origins = settings.cors_origin_list
        assert len(origins) == 2
        assert "http://localhost:3000" in origins
        assert "http://example.com" in origins
        get_settings.cache_clear()


def test_production_rejects_default_secret():
    """Production mode should reject the default secret key."""
    from marketplace.config import get_settings, Settings
    get_settings.cache_clear()

    with pytest.raises(ValueError, match="SECRET_KEY must be set"):
        Settings(
            environment="production",
            secret_key="change-me-in-production",
            database_url="postgresql+asyncpg://prod-host/db",
        )
    get_settings.cache_clear()


def test_production_accepts_real_secret():
    """Production mode should accept a real secret key."""
    from marketplace.config import Settings
    settings = Settings(
        environment="production",
        secret_key="a-real-secret-key-that-is-not-the-default",
        database_url="postgresql+asyncpg://prod-host/db",
    )
    assert settings.is_production is True
    assert settings.secret_key == "a-real-secret-key-that-is-not-the-default"
