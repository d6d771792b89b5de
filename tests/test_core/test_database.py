"""Unit tests for lazy engine and session management.

Test Strategy:
1. Test the engine is built once from settings
2. Test init_db() creates the ingest tables
3. Test get_db() closes its session
"""
import pytest
from sqlalchemy import inspect

from statline.core import database
from statline.core.config import settings


@pytest.fixture
def in_memory_database(monkeypatch):
    monkeypatch.setattr(settings, "DATABASE_URL", "sqlite://")
    monkeypatch.setattr(database, "_engine", None)
    monkeypatch.setattr(database, "_SessionLocal", None)
    yield
    if database._engine is not None:
        database._engine.dispose()


class TestDatabaseSetup:
    """Test suite for get_engine(), init_db() and get_db()."""

    def test_engine_is_cached(self, in_memory_database):
        """Should build the engine once and reuse it."""
        engine = database.get_engine()

        assert database.get_engine() is engine
        assert str(engine.url) == "sqlite://"

    def test_init_db_creates_tables(self, in_memory_database):
        """Should create the player, mapping and cache tables."""
        database.init_db()

        tables = set(inspect(database.get_engine()).get_table_names())
        assert {"players", "player_identity_mappings", "api_response_cache"} <= tables

    def test_get_db_closes_session(self, in_memory_database, monkeypatch):
        """Should close the session when the generator is exhausted."""
        closed = []
        generator = database.get_db()
        session = next(generator)
        monkeypatch.setattr(session, "close", lambda: closed.append(True))

        with pytest.raises(StopIteration):
            next(generator)

        assert closed == [True]
