"""
Tests for settings and database URL handling.
"""

from idea_board.config import Settings
from idea_board.db.base import get_database_url


class TestSettings:
    def test_defaults(self):
        settings = Settings(_env_file=None)

        assert settings.threshold_to_discussion == 5
        assert settings.threshold_to_production == 10
        assert settings.threshold_to_backlog == 5
        assert settings.admin_identity_list() == []

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("THRESHOLD_TO_DISCUSSION", "3")
        monkeypatch.setenv("ADMIN_IDENTITIES", "alice@example.com, ,bob@example.com")

        settings = Settings(_env_file=None)

        assert settings.threshold_to_discussion == 3
        assert settings.admin_identity_list() == ["alice@example.com", "bob@example.com"]


class TestDatabaseUrl:
    def test_async_sqlite_driver_is_normalized(self):
        assert get_database_url("sqlite+aiosqlite:///./board.db") == "sqlite:///./board.db"

    def test_async_postgres_driver_is_normalized(self):
        url = get_database_url("postgresql+asyncpg://user:secret@db:5432/board")

        assert url == "postgresql+psycopg://user:secret@db:5432/board"

    def test_sync_url_is_kept(self):
        assert get_database_url("sqlite:///./board.db") == "sqlite:///./board.db"
