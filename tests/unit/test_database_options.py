"""Tests for per-driver engine options."""

import pytest

from ridecomp.config import get_settings
from ridecomp.database import engine_options, get_session_factory


class TestEngineOptions:
    def test_sqlite_keeps_default_pool(self):
        options = engine_options("sqlite+aiosqlite:///ridecomp.db")
        assert options == {"echo": False}

    def test_asyncpg_pool_from_settings(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setenv("RIDECOMP_DB_POOL_SIZE", "5")
        monkeypatch.setenv("RIDECOMP_DB_MAX_OVERFLOW", "2")
        get_settings.cache_clear()

        options = engine_options("postgresql+asyncpg://u:p@localhost:5432/ridecomp")

        assert options["pool_size"] == 5
        assert options["max_overflow"] == 2
        assert options["pool_pre_ping"] is True
        assert options["connect_args"] == {"statement_cache_size": 0}

    def test_other_postgres_driver_has_no_asyncpg_args(self):
        options = engine_options("postgresql+psycopg://u:p@localhost:5432/ridecomp")
        assert "connect_args" not in options
        assert options["pool_size"] == 20

    def test_echo_only_in_debug_with_debug_logging(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setenv("RIDECOMP_DEBUG", "true")
        monkeypatch.setenv("RIDECOMP_LOG_LEVEL", "DEBUG")
        get_settings.cache_clear()

        assert engine_options("sqlite+aiosqlite:///ridecomp.db")["echo"] is True


def test_session_factory_requires_init():
    with pytest.raises(RuntimeError, match="not initialized"):
        get_session_factory()
