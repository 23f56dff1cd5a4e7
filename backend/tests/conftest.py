"""Shared test fixtures for backend tests."""

from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

from messaging.core.config import settings
from messaging.core.database import get_session
from messaging.services.directory import ConversationDirectory

# In-memory SQLite with StaticPool so all connections (including threads) share one DB
test_engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)


def get_test_session():
    with Session(test_engine) as session:
        yield session


@pytest.fixture(autouse=True)
def setup_test_db():
    """Create all tables before each test, drop after."""
    import messaging.models.conversation  # noqa: F401 - register models
    SQLModel.metadata.create_all(test_engine)
    yield
    SQLModel.metadata.drop_all(test_engine)


@pytest.fixture
def db_session():
    with Session(test_engine) as session:
        yield session


@pytest.fixture
def make_conversation():
    """Create a conversation directly through the directory, returning its id."""
    def _make(creator: str, *others: str, topic: str | None = None) -> int:
        with Session(test_engine) as session:
            conv = ConversationDirectory(session).create_conversation(creator, others, topic)
            return conv.id
    return _make


@pytest.fixture
def client(tmp_path):
    """FastAPI TestClient bound to the in-memory DB and a temporary data dir."""
    with (
        patch("messaging.core.database.engine", test_engine),
        patch("messaging.api.chat.engine", test_engine),
        patch.object(settings, "data_dir", tmp_path),
    ):
        from messaging.main import app

        # Use FastAPI's dependency override for get_session
        app.dependency_overrides[get_session] = get_test_session

        with TestClient(app) as c:
            yield c

        app.dependency_overrides.clear()
