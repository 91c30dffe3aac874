"""
Shared pytest fixtures for backend tests.
Each test gets its own SQLite file; the LLM is replaced by a scripted fake.
"""
import json
import pytest
import sqlite3
import sys
import os
from datetime import datetime

# Add backend to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import database
import llm_parser
from config import Settings
from time_utils import JST

# Monday
FIXED_NOW = datetime(2026, 10, 19, 10, 0, tzinfo=JST)


class FakeLLM:
    """Stands in for llm_parser.request_completion; replies are consumed in order."""

    def __init__(self):
        self.replies = []
        self.prompts = []

    def reply(self, payload):
        self.replies.append(payload if isinstance(payload, str) else json.dumps(payload, ensure_ascii=False))

    def fail(self, exc: Exception):
        self.replies.append(exc)

    @property
    def calls(self) -> int:
        return len(self.prompts)

    async def __call__(self, prompt, config, timeout):
        self.prompts.append(prompt)
        if not self.replies:
            raise RuntimeError("FakeLLM: no scripted reply left")
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply


@pytest.fixture
def settings():
    return Settings(openai_api_key="test-key")


@pytest.fixture
def fake_llm(monkeypatch):
    fake = FakeLLM()
    monkeypatch.setattr(llm_parser, "request_completion", fake)
    return fake


@pytest.fixture
def test_db(monkeypatch, tmp_path):
    """
    Create an isolated test database for each test.
    Uses a temp file (not :memory:) because database.py opens new connections per operation.
    """
    db_path = str(tmp_path / "test.db")
    monkeypatch.setattr(database, "DATABASE_PATH", db_path)
    monkeypatch.setattr(database, "init_db", lambda: None)

    # Create tables directly (skip alembic for tests)
    conn = sqlite3.connect(db_path)
    conn.executescript("""
        CREATE TABLE tasks (
            id TEXT PRIMARY KEY,
            user_id TEXT NOT NULL,
            title TEXT NOT NULL,
            category TEXT NOT NULL DEFAULT 'other',
            deadline TEXT,
            scheduled_at TEXT,
            duration_minutes INTEGER,
            status TEXT NOT NULL DEFAULT 'inbox',
            raw_input TEXT,
            completed_at TEXT,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        );
    """)
    conn.commit()
    conn.close()

    yield db_path


@pytest.fixture
def app_client(test_db, settings, fake_llm, monkeypatch):
    """
    Create a test client for the FastAPI app.
    Mocks init_db to skip alembic migrations and starts with no sessions.
    """
    from fastapi.testclient import TestClient
    import main
    from conversation import SessionStore

    # Skip alembic in tests - tables already created by test_db fixture
    monkeypatch.setattr(main, "init_db", lambda: None)
    monkeypatch.setattr(main, "settings", settings)
    monkeypatch.setattr(main, "sessions", SessionStore())

    with TestClient(main.app) as client:
        yield client
