"""
Admin router.

User provisioning for portal setup. Guarded by the X-Admin-Code header rather
than a user session, and runs with the service-role client.
"""

import asyncio
import hmac
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, status

from hospital_portal.config import get_settings
from hospital_portal.constants import UserRole
from hospital_portal.errors import PortalError, internal_error, not_found, validation_failed
from hospital_portal.models.schemas import AdminPasswordReset, AdminUserCreate
from hospital_portal.services.supabase_client import SupabaseClient, get_admin_client

logger = logging.getLogger(__name__)

router = APIRouter()

PROFILE_POLL_ATTEMPTS = 10
PROFILE_POLL_INTERVAL_SECONDS = 0.2


def require_admin_code(x_admin_code: Optional[str] = Header(None)) -> None:
    expected = get_settings().admin_setup_code
    if not x_admin_code or not expected or not hmac.compare_digest(x_admin_code, expected):
        raise PortalError(status.HTTP_401_UNAUTHORIZED, "Unauthorized", "UNAUTHORIZED")


def get_admin_db() -> SupabaseClient:
    return get_admin_client()


def build_temp_password(role: UserRole, department_code: Optional[str] = None) -> str:
    """Temporary password like "acupavp" or "acupphar", changed on first login."""
    if role == UserRole.AVP:
        suffix = "avp"
    elif role == UserRole.DIVISION_HEAD:
        suffix = "director"
    else:
        suffix = (department_code or "dept").lower()
    return f"acup{suffix}"


async def wait_for_profile(db: SupabaseClient, user_id: str) -> bool:
    """Poll until the signup trigger has created the user's profile row."""
    for _ in range(PROFILE_POLL_ATTEMPTS):
        if await db.get_profile(user_id):
            return True
        await asyncio.sleep(PROFILE_POLL_INTERVAL_SECONDS)
    return False


@router.post("/users", status_code=status.HTTP_201_CREATED, dependencies=[Depends(require_admin_code)])
async def create_user(payload: AdminUserCreate, db: SupabaseClient = Depends(get_admin_db)):
    """
    Provision a portal user.

    Workflow:
    1. Create the Supabase Auth user with a temporary password
    2. Wait for the profile row created by the signup trigger
    3. Set role, full name and must_change_password on the profile
    4. Add the department membership (department heads only)

    If any step after (1) fails, the auth user is deleted again.
    """
    if payload.role == UserRole.DEPARTMENT_HEAD and not payload.department_id:
        raise validation_failed(message="department_id is required for department_head role")

    temp_password = build_temp_password(payload.role, payload.department_code)

    try:
        auth_user = await db.create_auth_user(
            payload.email,
            temp_password,
            {"full_name": payload.full_name, "role": payload.role.value},
        )
    except Exception as e:
        logger.error("Auth user creation failed for %s: %s", payload.email, e)
        raise internal_error(str(e) or "Failed to create user")

    if not auth_user:
        raise internal_error("Failed to create user")

    user_id = auth_user.id

    try:
        if not await wait_for_profile(db, user_id):
            raise internal_error("Profile row was not created in time. Please try again.")

        updated = await db.update_profile(user_id, {
            "role": payload.role.value,
            "full_name": payload.full_name,
            "must_change_password": True,
        })
        if not updated:
            raise internal_error("Failed to set user role")

        if payload.role == UserRole.DEPARTMENT_HEAD:
            await db.add_department_membership(user_id, str(payload.department_id))
    except Exception as e:
        logger.warning("Rolling back auth user %s: %s", user_id, e)
        await db.delete_auth_user(user_id)
        if isinstance(e, PortalError):
            raise
        raise internal_error("Failed to provision user")

    logger.info("Provisioned %s user %s", payload.role.value, user_id)
    return {"ok": True, "user_id": user_id, "temp_password": temp_password}


@router.post("/reset-password", dependencies=[Depends(require_admin_code)])
async def reset_password(payload: AdminPasswordReset, db: SupabaseClient = Depends(get_admin_db)):
    """Reset a user's password and force a change on next login."""
    user_id = str(payload.user_id)

    if not await db.get_profile(user_id):
        raise not_found("User not found")

    try:
        await db.set_auth_password(user_id, payload.new_password)
    except Exception as e:
        logger.error("Password reset failed for %s: %s", user_id, e)
        raise internal_error(str(e) or "Failed to reset password")

    await db.update_profile(user_id, {"must_change_password": True})
    return {"ok": True}
