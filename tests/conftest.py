"""Shared test fixtures and configuration.

Sets up fake environment variables so vibes.config doesn't sys.exit(),
and provides temp-file databases plus a ConversationService wired to mocks.
"""

import os

# Patch env vars BEFORE any vibes imports
os.environ.setdefault("TELEGRAM_BOT_TOKEN", "fake-token-for-tests")
os.environ.setdefault("LLM_API_KEY", "fake-llm-key-for-tests")
os.environ.setdefault("LLM_PROVIDER", "gemini")
os.environ.setdefault("OPENAI_API_KEY", "fake-openai-key-for-tests")
os.environ.setdefault("TELEGRAM_SECRET_TOKEN", "test-secret")
os.environ.setdefault("TELEGRAM_WEBHOOK_URL", "")
os.environ.setdefault("DATABASE_PATH", ":memory:")

import pytest
from unittest.mock import AsyncMock, MagicMock


@pytest.fixture
def tmp_db_path(tmp_path):
    """Return a temporary SQLite DB path shared by all tables."""
    return str(tmp_path / "test_vibes.db")


@pytest.fixture
def user_db(tmp_db_path):
    from vibes.data.db import UserDB
    return UserDB(db_path=tmp_db_path)


@pytest.fixture
def plan_db(tmp_db_path, user_db):
    from vibes.data.db import PlanDB
    return PlanDB(db_path=tmp_db_path)


@pytest.fixture
def rating_db(tmp_db_path, user_db):
    from vibes.data.db import RatingDB
    return RatingDB(db_path=tmp_db_path)


@pytest.fixture
def chat():
    """ChatPort double; send_message returns a fake message id."""
    mock = MagicMock()
    mock.send_message = AsyncMock(return_value=1000)
    mock.edit_message = AsyncMock()
    mock.clear_buttons = AsyncMock()
    mock.answer_callback = AsyncMock()
    mock.download_file = AsyncMock(return_value=b"file-bytes")
    return mock


@pytest.fixture
def calendar():
    """CalendarPort double with an empty calendar."""
    mock = MagicMock()
    mock.generate_auth_url = MagicMock(return_value="https://accounts.google.com/auth?state=12345")
    mock.exchange_code = AsyncMock(return_value="refresh-token")
    mock.list_upcoming_events = AsyncMock(return_value=[])
    mock.list_events_for_date = AsyncMock(return_value=[])
    mock.get_event = AsyncMock(return_value=None)
    mock.create_event = AsyncMock(return_value={})
    return mock


@pytest.fixture
def service(chat, calendar, user_db, plan_db, rating_db):
    from vibes.core.conversation import ConversationService
    return ConversationService(chat, calendar, user_db, plan_db, rating_db)
