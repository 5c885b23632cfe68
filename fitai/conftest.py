# fitai/conftest.py
import os
import tempfile
from pathlib import Path

import pytest

# Must run before fitai.core.config is imported: Settings reads the environment once
_TEST_DB_DIR = Path(tempfile.mkdtemp(prefix="fitai-tests-"))
os.environ["ENV"] = "test"
os.environ["TEST_DATABASE_URL"] = f"sqlite:///{_TEST_DB_DIR / 'fitai_test.db'}"

from fitai.models.identity import Identity  # noqa: E402


@pytest.fixture(scope="session", autouse=True)
def create_tables():
    """
    Create all database tables once per test session on a throwaway SQLite file.
    """
    from fitai.core.database import init_engine, create_all_tables, drop_all_tables

    init_engine(os.environ["TEST_DATABASE_URL"])
    create_all_tables()
    yield
    drop_all_tables()


@pytest.fixture(scope="function", autouse=True)
def reset_db():
    """
    Empty every table before each test so state never leaks across tests.
    """
    from fitai.core.database import get_db_session, metadata

    with get_db_session() as session:
        for table in reversed(metadata.sorted_tables):
            session.execute(table.delete())
    yield


@pytest.fixture
def identity():
    return Identity(user_id="user_alice", email="alice@example.com")


@pytest.fixture
def client():
    from fastapi.testclient import TestClient
    from fitai.main import app

    # Handlers own the 500 responses; don't re-raise inside tests
    return TestClient(app, raise_server_exceptions=False)


@pytest.fixture
def authenticate():
    """
    Bypass Clerk: make get_current_identity resolve to the given Identity.

    Usage:
        authenticate(Identity(user_id="u1", email="u1@example.com"))
    """
    from fitai.core.clerk_auth import get_current_identity
    from fitai.main import app

    def _authenticate(identity: Identity):
        app.dependency_overrides[get_current_identity] = lambda: identity
        return identity

    yield _authenticate
    app.dependency_overrides.pop(get_current_identity, None)


@pytest.fixture
def stripe_settings(monkeypatch):
    """Configure Stripe secrets and price ids on the live settings object."""
    from fitai.core.config import settings

    monkeypatch.setattr(settings, "STRIPE_SECRET_KEY", "sk_test_123")
    monkeypatch.setattr(settings, "STRIPE_WEBHOOK_SECRET", "whsec_test_secret")
    monkeypatch.setattr(settings, "STRIPE_PRICE_WEEKLY", "price_week_123")
    monkeypatch.setattr(settings, "STRIPE_PRICE_MONTHLY", "price_month_123")
    monkeypatch.setattr(settings, "STRIPE_PRICE_YEARLY", "price_year_123")
    return settings
