"""
Pytest configuration and shared fixtures.

Test environment variables are set here before any status_relay import,
and the settings cache is cleared so they take effect.
"""

import os
import tempfile

os.environ.setdefault(
    "DATABASE_URL",
    f"sqlite:///{os.path.join(tempfile.gettempdir(), f'status_relay_test_{os.getpid()}.db')}",
)
os.environ.setdefault("LOG_LEVEL", "WARNING")
os.environ.setdefault("WEBHOOK_SECRET", "test-webhook-secret")

import pytest

# Clear settings cache before any app imports to ensure test env vars are used
from status_relay.config import get_settings
get_settings.cache_clear()

from status_relay.storage import Base, SessionLocal, engine, init_db


@pytest.fixture(scope="function")
def db():
    """Fresh schema and a session for each test."""
    init_db()
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)

