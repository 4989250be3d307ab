"""Shared test fixtures for API integration tests."""
from datetime import datetime, timezone

import pytest
from unittest.mock import MagicMock
from fastapi.testclient import TestClient

from aislive.config import settings
from aislive.main import app
from aislive.database import get_db


@pytest.fixture
def mock_db():
    """MagicMock database session — returns no rows, and a fixed clock for SELECT now()."""
    session = MagicMock()
    session.query.return_value.filter.return_value.all.return_value = []
    session.execute.return_value.scalar.return_value = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)
    return session


@pytest.fixture
def api_client(mock_db, monkeypatch):
    """TestClient with DB dependency overridden and background services off."""
    monkeypatch.setattr(settings, "INGESTION_ENABLED", False)
    monkeypatch.setattr(settings, "MAINTENANCE_ENABLED", False)
    monkeypatch.setattr(settings, "INIT_DB_ON_STARTUP", False)

    def override_get_db():
        yield mock_db

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as client:
        yield client
    app.dependency_overrides.clear()


@pytest.fixture(autouse=True)
def _reset_rate_limiter():
    """Keep the per-client rate limit from leaking between tests."""
    from aislive.api.rate_limit import limiter

    limiter.reset()
    yield
