"""Shared test fixtures and configuration.

Sets up fake environment variables so purple.config doesn't sys.exit(),
and provides common fixtures like a temp DB and a store on top of it.
"""

import os

# Patch env vars BEFORE any purple imports
os.environ.setdefault("TELEGRAM_BOT_TOKEN", "fake-token-for-tests")
os.environ.setdefault("LLM_API_KEY", "fake-llm-key-for-tests")
os.environ.setdefault("LLM_PROVIDER", "gemini")
os.environ.setdefault("ALLOWED_USER_IDS", "12345")
os.environ.setdefault("DATABASE_PATH", ":memory:")
os.environ.setdefault("OWNER_NAME", "ILYASUU")
os.environ.setdefault("TIMEZONE", "Asia/Jerusalem")
os.environ.setdefault("CONTEXT_HISTORY_MODE", "full")

import pytest


@pytest.fixture
def tmp_db_path(tmp_path):
    """Return a temporary SQLite DB path."""
    return str(tmp_path / "test_purple.db")


@pytest.fixture
def life_db(tmp_db_path):
    """Return a LifeDB instance backed by a temp file."""
    from purple.data.db import LifeDB
    return LifeDB(db_path=tmp_db_path)


@pytest.fixture
def store(life_db):
    """Return a SQLiteStore over the temp LifeDB."""
    from purple.adapters.sqlite_store import SQLiteStore
    return SQLiteStore(life_db)
