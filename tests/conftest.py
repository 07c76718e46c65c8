"""Shared fixtures: a throwaway SQLite database configured before any import."""

from __future__ import annotations

import os
import sys
import tempfile
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.append(str(ROOT))

TEST_DB_PATH = Path(tempfile.gettempdir()) / f"server_hub_test_{os.getpid()}.db"
os.environ["DATABASE_URL"] = f"sqlite:///{TEST_DB_PATH}"
os.environ["SECRET_KEY"] = "test-secret"
os.environ["ACCESS_TOKEN_EXPIRE_MINUTES"] = "30"
os.environ["APP_TIMEZONE"] = "UTC"


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def reset_database():
    """Recreate every table so each test starts from an empty database."""

    from server_hub.infrastructure.database import Base, engine, initialize_database

    Base.metadata.drop_all(bind=engine)
    initialize_database()
    yield
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def db_session(reset_database):
    from server_hub.infrastructure.database import SessionLocal

    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def make_user(reset_database):
    """Return a factory inserting active users with a known password."""

    from server_hub.application.use_cases.users import create_user
    from server_hub.infrastructure.database import SessionLocal

    def _make_user(email: str, password: str = "StrongPass123", name: str = "Test User"):
        with SessionLocal() as session:
            return create_user(session, name=name, email=email, password=password)

    return _make_user


def pytest_sessionfinish(session, exitstatus) -> None:
    if TEST_DB_PATH.exists():
        TEST_DB_PATH.unlink()
