"""
Announcements router.

Portal-wide and department announcements, with an optional memo attachment
stored in the announcement-memos bucket.
"""

from typing import Optional
from urllib.parse import quote

from fastapi import APIRouter, Depends, Query, Response, status
from postgrest.exceptions import APIError

from hospital_portal.constants import ANNOUNCEMENT_MEMOS_BUCKET
from hospital_portal.errors import RecordNotFound, database_error, not_found, validation_failed
from hospital_portal.models.schemas import AnnouncementCreate, AnnouncementUpdate, AuthenticatedUser
from hospital_portal.routers.auth import get_current_user, get_db
from hospital_portal.services.files import fetch_signed_bytes
from hospital_portal.services.pagination import (
    create_pagination,
    get_pagination,
    parse_bool_filter,
    require_uuid,
)
from hospital_portal.services.supabase_client import SupabaseClient

router = APIRouter()


@router.get("/")
async def list_announcements(
    page: Optional[str] = Query(None),
    limit: Optional[str] = Query(None),
    search: Optional[str] = Query(None, description="Match on title or content"),
    priority: Optional[str] = Query(None),
    department_id: Optional[str] = Query(None),
    is_system_wide: Optional[str] = Query(None, description="'true' or 'false'"),
    db: SupabaseClient = Depends(get_db),
):
    """List announcements, newest first."""
    page_number, page_size, start, end = get_pagination(page, limit)

    try:
        rows, total = await db.list_announcements(
            start,
            end,
            search=search,
            priority=priority,
            department_id=department_id,
            is_system_wide=parse_bool_filter(is_system_wide),
        )
    except APIError as e:
        raise database_error(e, "Failed to fetch announcements")

    return {"data": rows, "pagination": create_pagination(page_number, page_size, total)}


@router.post("/", status_code=status.HTTP_201_CREATED)
async def create_announcement(
    payload: AnnouncementCreate,
    current_user: AuthenticatedUser = Depends(get_current_user),
    db: SupabaseClient = Depends(get_db),
):
    try:
        announcement = await db.create_announcement(payload.to_row(current_user.id))
    except (APIError, RecordNotFound) as e:
        raise database_error(e, "Failed to create announcement")
    return {"data": announcement}


@router.get("/{announcement_id}")
async def get_announcement(announcement_id: str, db: SupabaseClient = Depends(get_db)):
    announcement_id = require_uuid(announcement_id, "announcement")
    try:
        announcement = await db.get_announcement(announcement_id)
    except APIError as e:
        raise database_error(e, "Failed to fetch announcement", "Announcement not found")
    return {"data": announcement}


@router.put("/{announcement_id}")
async def update_announcement(
    announcement_id: str,
    payload: AnnouncementUpdate,
    db: SupabaseClient = Depends(get_db),
):
    """Partially update an announcement; at least one field is required."""
    announcement_id = require_uuid(announcement_id, "announcement")
    updates = payload.provided_fields()
    if not updates:
        raise validation_failed(message="At least one field must be provided")

    try:
        announcement = await db.update_announcement(announcement_id, updates)
    except (APIError, RecordNotFound) as e:
        raise database_error(e, "Failed to update announcement", "Announcement not found")
    return {"data": announcement}


@router.delete("/{announcement_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_announcement(announcement_id: str, db: SupabaseClient = Depends(get_db)):
    announcement_id = require_uuid(announcement_id, "announcement")
    try:
        await db.delete_announcement(announcement_id)
    except (APIError, RecordNotFound) as e:
        raise database_error(e, "Failed to delete announcement", "Announcement not found")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{announcement_id}/memo")
async def download_memo(announcement_id: str, db: SupabaseClient = Depends(get_db)):
    """
    Download an announcement's memo attachment.

    The file is fetched through a short-lived signed URL so storage policies
    apply to the caller.
    """
    announcement_id = require_uuid(announcement_id, "announcement")
    try:
        announcement = await db.get_announcement(announcement_id)
    except APIError as e:
        raise database_error(e, "Failed to fetch announcement", "Announcement not found")

    storage_path = announcement.get("memo_storage_path")
    file_name = announcement.get("memo_file_name")
    mime_type = announcement.get("memo_mime_type")
    if not (storage_path and file_name and mime_type):
        raise not_found("Memo attachment not found")

    content = await fetch_signed_bytes(
        db, ANNOUNCEMENT_MEMOS_BUCKET, storage_path, "Failed to fetch memo attachment"
    )

    return Response(
        content=content,
        media_type=mime_type,
        headers={
            "Content-Disposition": f'attachment; filename="{quote(file_name, safe="")}"',
            "Cache-Control": "private, no-store",
        },
    )
