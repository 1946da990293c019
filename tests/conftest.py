"""Shared pytest fixtures for the portal API tests."""

from unittest.mock import create_autospec

import pytest
from fastapi.testclient import TestClient
from postgrest.exceptions import APIError

from hospital_portal.main import app
from hospital_portal.models.schemas import AuthenticatedUser
from hospital_portal.routers.auth import get_current_user, get_db
from hospital_portal.services.supabase_client import SupabaseClient

USER_ID = "11111111-1111-4111-8111-111111111111"
OTHER_USER_ID = "99999999-9999-4999-8999-999999999999"
DEPARTMENT_ID = "22222222-2222-4222-8222-222222222222"
OTHER_DEPARTMENT_ID = "33333333-3333-4333-8333-333333333333"
RECORD_ID = "44444444-4444-4444-8444-444444444444"


def api_error(code: str, message: str = "database error") -> APIError:
    """Build a PostgREST error like the ones supabase-py raises."""
    return APIError({"code": code, "message": message, "details": None, "hint": None})


@pytest.fixture
def user() -> AuthenticatedUser:
    return AuthenticatedUser(id=USER_ID, email="head@hospital.test", access_token="test-token")


@pytest.fixture
def db() -> SupabaseClient:
    """Autospec double of the Supabase gateway; every method is an AsyncMock."""
    return create_autospec(SupabaseClient, instance=True)


@pytest.fixture
def client(db, user):
    """Test client authenticated as ``user`` and wired to the ``db`` double."""
    app.dependency_overrides[get_current_user] = lambda: user
    app.dependency_overrides[get_db] = lambda: db
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def anonymous_client():
    """Test client with no dependency overrides."""
    app.dependency_overrides.clear()
    return TestClient(app)
