"""
Authentication router.

Handles portal login and the caller's profile.
Uses Supabase Auth for authentication and JWT token management, and provides
the request dependencies every protected router builds on.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends
from fastapi.security import OAuth2PasswordBearer, OAuth2PasswordRequestForm
from postgrest.exceptions import APIError
from supabase import AuthError

from hospital_portal.errors import PortalError, database_error, forbidden, unauthorized
from hospital_portal.models.schemas import AuthenticatedUser, ProfileResponse, TokenResponse
from hospital_portal.services.supabase_client import (
    SupabaseClient,
    get_supabase_client,
    get_user_client,
)

logger = logging.getLogger(__name__)

router = APIRouter()

# OAuth2 scheme for token authentication; missing tokens are rendered as our own 401
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login", auto_error=False)


async def get_current_user(token: Optional[str] = Depends(oauth2_scheme)) -> AuthenticatedUser:
    """
    Validate a Supabase Auth JWT and return the caller.

    Raises:
        PortalError: 401 when the token is missing, invalid or expired
    """
    if not token:
        raise unauthorized()

    try:
        supabase_user = await get_supabase_client().get_auth_user(token)
    except AuthError as e:
        logger.info("Rejected access token: %s", e)
        raise unauthorized()

    if not supabase_user:
        raise unauthorized()

    return AuthenticatedUser(id=supabase_user.id, email=supabase_user.email, access_token=token)


def get_db(current_user: AuthenticatedUser = Depends(get_current_user)) -> SupabaseClient:
    """Database client scoped to the caller, so row-level security applies."""
    return get_user_client(current_user.access_token)


async def get_caller_role(db: SupabaseClient, user: AuthenticatedUser) -> str:
    """Return the caller's profile role, or raise 403 when there is none."""
    try:
        role = await db.get_user_role(user.id)
    except APIError as e:
        logger.warning("Role lookup failed for %s: %s", user.id, e.message)
        raise forbidden()
    if not role:
        raise forbidden()
    return role


@router.post("/login", response_model=TokenResponse)
async def login(form_data: OAuth2PasswordRequestForm = Depends()):
    """
    Authenticate a user with Supabase Auth and return the session tokens.

    Uses OAuth2 password flow (username/password in form data).
    Username field should contain the email address.
    """
    invalid_credentials = PortalError(401, "Incorrect email or password", "UNAUTHORIZED")

    try:
        auth_response = await get_supabase_client().sign_in(form_data.username, form_data.password)
    except AuthError as e:
        logger.info("Login failed for %s: %s", form_data.username, e)
        raise invalid_credentials

    if not auth_response or not auth_response.session:
        raise invalid_credentials

    session = auth_response.session
    supabase_user = auth_response.user
    db = get_user_client(session.access_token)

    profile = None
    try:
        profile = await db.get_profile(supabase_user.id)
        if profile:
            await db.update_profile(
                supabase_user.id,
                {"last_login_at": datetime.now(timezone.utc).isoformat()},
            )
    except APIError as e:
        logger.warning("Profile lookup after login failed for %s: %s", supabase_user.id, e.message)

    if profile and not profile.get("is_active", True):
        raise PortalError(403, "User account is inactive", "FORBIDDEN")

    profile = profile or {}
    return {
        "access_token": session.access_token,
        "token_type": "bearer",
        "expires_in": session.expires_in,
        "refresh_token": session.refresh_token,
        "user": {
            "id": supabase_user.id,
            "email": supabase_user.email,
            "role": profile.get("role"),
            "full_name": profile.get("full_name"),
            "must_change_password": profile.get("must_change_password", False),
        },
    }


@router.get("/me")
async def get_me(
    current_user: AuthenticatedUser = Depends(get_current_user),
    db: SupabaseClient = Depends(get_db),
):
    """Get the current user and their profile."""
    try:
        profile = await db.get_profile(current_user.id)
    except APIError as e:
        raise database_error(e, "Failed to fetch profile", "Profile not found")

    if not profile:
        profile = {"id": current_user.id, "email": current_user.email}

    return {"data": ProfileResponse(**profile).model_dump(mode="json")}


@router.post("/clear-password-flag")
async def clear_password_flag(
    current_user: AuthenticatedUser = Depends(get_current_user),
    db: SupabaseClient = Depends(get_db),
):
    """Clear must_change_password once the user has set their own password."""
    try:
        await db.clear_password_flag(current_user.id)
    except APIError as e:
        raise database_error(e, "Failed to clear flag")
    return {"ok": True}


@router.post("/logout")
async def logout(current_user: AuthenticatedUser = Depends(get_current_user)):
    """
    Logout user.

    With JWT tokens, logout is handled client-side by removing the token.
    """
    return {"message": "Logged out successfully"}
