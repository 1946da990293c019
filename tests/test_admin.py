"""Tests for admin user provisioning."""

import pytest
from fastapi.testclient import TestClient

from hospital_portal.config import get_settings
from hospital_portal.constants import UserRole
from hospital_portal.main import app
from hospital_portal.routers import admin
from hospital_portal.routers.admin import build_temp_password

from conftest import DEPARTMENT_ID, USER_ID, api_error

ADMIN_CODE = "open-sesame"
HEADERS = {"X-Admin-Code": ADMIN_CODE}


@pytest.fixture
def admin_client(monkeypatch, db):
    monkeypatch.setattr(get_settings(), "admin_setup_code", ADMIN_CODE)
    monkeypatch.setattr(admin, "PROFILE_POLL_INTERVAL_SECONDS", 0)
    app.dependency_overrides[admin.get_admin_db] = lambda: db
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


class FakeAuthUser:
    id = USER_ID


class TestBuildTempPassword:
    def test_by_role(self) -> None:
        assert build_temp_password(UserRole.AVP) == "acupavp"
        assert build_temp_password(UserRole.DIVISION_HEAD) == "acupdirector"
        assert build_temp_password(UserRole.DEPARTMENT_HEAD, "PHAR") == "acupphar"
        assert build_temp_password(UserRole.DEPARTMENT_HEAD) == "acupdept"


class TestAdminCode:
    def test_missing_code(self, admin_client, db) -> None:
        response = admin_client.post("/api/admin/users", json={})

        assert response.status_code == 401
        db.create_auth_user.assert_not_called()

    def test_wrong_code(self, admin_client) -> None:
        response = admin_client.post(
            "/api/admin/users", json={}, headers={"X-Admin-Code": "guess"}
        )

        assert response.status_code == 401

    def test_unconfigured_code_rejects_everything(self, admin_client, monkeypatch) -> None:
        monkeypatch.setattr(get_settings(), "admin_setup_code", None)

        response = admin_client.post("/api/admin/users", json={}, headers=HEADERS)

        assert response.status_code == 401


class TestCreateUser:
    def test_department_head(self, admin_client, db) -> None:
        db.create_auth_user.return_value = FakeAuthUser()
        db.get_profile.return_value = {"id": USER_ID}
        db.update_profile.return_value = [{"id": USER_ID}]

        response = admin_client.post("/api/admin/users", headers=HEADERS, json={
            "email": "pharmacy@acuphospital.org",
            "full_name": "Pharmacy Head",
            "role": "department_head",
            "department_id": DEPARTMENT_ID,
            "department_code": "PHAR",
        })

        assert response.status_code == 201
        assert response.json() == {"ok": True, "user_id": USER_ID, "temp_password": "acupphar"}
        email, password, metadata = db.create_auth_user.call_args.args
        assert (email, password) == ("pharmacy@acuphospital.org", "acupphar")
        assert metadata == {"full_name": "Pharmacy Head", "role": "department_head"}
        db.update_profile.assert_awaited_once_with(USER_ID, {
            "role": "department_head",
            "full_name": "Pharmacy Head",
            "must_change_password": True,
        })
        db.add_department_membership.assert_awaited_once_with(USER_ID, DEPARTMENT_ID)

    def test_department_head_needs_department(self, admin_client, db) -> None:
        response = admin_client.post("/api/admin/users", headers=HEADERS, json={
            "email": "x@acuphospital.org",
            "full_name": "X",
            "role": "department_head",
        })

        assert response.status_code == 400
        db.create_auth_user.assert_not_called()

    def test_avp_has_no_membership(self, admin_client, db) -> None:
        db.create_auth_user.return_value = FakeAuthUser()
        db.get_profile.return_value = {"id": USER_ID}
        db.update_profile.return_value = [{"id": USER_ID}]

        response = admin_client.post("/api/admin/users", headers=HEADERS, json={
            "email": "avp@acuphospital.org",
            "full_name": "The AVP",
            "role": "avp",
        })

        assert response.status_code == 201
        assert response.json()["temp_password"] == "acupavp"
        db.add_department_membership.assert_not_called()

    def test_missing_profile_rolls_back(self, admin_client, db) -> None:
        db.create_auth_user.return_value = FakeAuthUser()
        db.get_profile.return_value = None

        response = admin_client.post("/api/admin/users", headers=HEADERS, json={
            "email": "avp@acuphospital.org",
            "full_name": "The AVP",
            "role": "avp",
        })

        assert response.status_code == 500
        assert response.json()["error"] == "Profile row was not created in time. Please try again."
        assert db.get_profile.await_count == admin.PROFILE_POLL_ATTEMPTS
        db.delete_auth_user.assert_awaited_once_with(USER_ID)

    def test_membership_failure_rolls_back(self, admin_client, db) -> None:
        db.create_auth_user.return_value = FakeAuthUser()
        db.get_profile.return_value = {"id": USER_ID}
        db.update_profile.return_value = [{"id": USER_ID}]
        db.add_department_membership.side_effect = api_error("23503", "foreign key violation")

        response = admin_client.post("/api/admin/users", headers=HEADERS, json={
            "email": "pharmacy@acuphospital.org",
            "full_name": "Pharmacy Head",
            "role": "department_head",
            "department_id": DEPARTMENT_ID,
        })

        assert response.status_code == 500
        assert response.json()["error"] == "Failed to provision user"
        db.delete_auth_user.assert_awaited_once_with(USER_ID)

    def test_auth_failure(self, admin_client, db) -> None:
        db.create_auth_user.side_effect = Exception("User already registered")

        response = admin_client.post("/api/admin/users", headers=HEADERS, json={
            "email": "avp@acuphospital.org",
            "full_name": "The AVP",
            "role": "avp",
        })

        assert response.status_code == 500
        assert response.json()["error"] == "User already registered"
        db.delete_auth_user.assert_not_called()


class TestResetPassword:
    def test_resets_and_flags(self, admin_client, db) -> None:
        db.get_profile.return_value = {"id": USER_ID}

        response = admin_client.post("/api/admin/reset-password", headers=HEADERS, json={
            "user_id": USER_ID,
            "new_password": "acupnew1",
        })

        assert response.json() == {"ok": True}
        db.set_auth_password.assert_awaited_once_with(USER_ID, "acupnew1")
        db.update_profile.assert_awaited_once_with(USER_ID, {"must_change_password": True})

    def test_unknown_user(self, admin_client, db) -> None:
        db.get_profile.return_value = None

        response = admin_client.post("/api/admin/reset-password", headers=HEADERS, json={
            "user_id": USER_ID,
            "new_password": "acupnew1",
        })

        assert response.status_code == 404
        assert response.json()["error"] == "User not found"

    def test_short_password(self, admin_client, db) -> None:
        response = admin_client.post("/api/admin/reset-password", headers=HEADERS, json={
            "user_id": USER_ID,
            "new_password": "abc",
        })

        assert response.status_code == 400
        assert "new_password" in response.json()["details"]
