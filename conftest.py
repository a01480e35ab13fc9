"""Shared pytest setup: in-memory database, quiet scheduler, temp log dir."""

import os
import tempfile

# Must be set before config/database are imported
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["SCHEDULER_ENABLED"] = "false"
os.environ.setdefault("LOG_DIR", tempfile.mkdtemp(prefix="reminder-logs-"))

import pytest  # noqa: E402

import database  # noqa: E402


@pytest.fixture(autouse=True)
def fresh_tables():
    """Recreate all tables for every test."""
    database.Base.metadata.drop_all(bind=database.engine)
    database.Base.metadata.create_all(bind=database.engine)
    yield


@pytest.fixture
def db():
    session = database.SessionLocal()
    try:
        yield session
    finally:
        session.close()
