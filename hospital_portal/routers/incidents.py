"""
Incidents router.

SBAR incident reports with an optional attachment in the incident-files
bucket. Reporting an incident also raises a system-wide urgent announcement.
"""

import logging
import uuid
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, Query, Request, Response, UploadFile
from postgrest.exceptions import APIError
from pydantic import ValidationError
from storage3.utils import StorageException

from hospital_portal.constants import INCIDENT_FILES_BUCKET, INCIDENT_MIME_TYPES
from hospital_portal.errors import (
    PortalError,
    RecordNotFound,
    database_error,
    flatten_validation_errors,
    not_found,
    validation_failed,
)
from hospital_portal.models.schemas import (
    AnnouncementCreate,
    AnnouncementPriority,
    AuditAction,
    AuthenticatedUser,
    IncidentCreate,
    IncidentUpdate,
)
from hospital_portal.routers.auth import get_current_user, get_db
from hospital_portal.services.audit import write_audit_log
from hospital_portal.services.files import read_upload, sanitize_file_name
from hospital_portal.services.metrics_summary import month_range
from hospital_portal.services.pagination import (
    create_pagination,
    get_pagination,
    optional_uuid,
    parse_bool_filter,
    require_uuid,
)
from hospital_portal.services.supabase_client import SupabaseClient

logger = logging.getLogger(__name__)

router = APIRouter()


async def announce_incident(db: SupabaseClient, incident: dict, user_id: str) -> Optional[str]:
    """
    Raise a system-wide urgent announcement for a new incident and link it.

    Best-effort: failures are logged and the incident stands on its own.
    """
    department = incident.get("departments") or {}
    department_name = department.get("name") or "Unknown Department"
    announcement = AnnouncementCreate(
        title=f"Incident Report - {department_name}",
        content=(
            f"An incident has been reported on {incident['date_of_incident']}."
            f"\n\nSituation: {incident['sbar_situation']}"
        ),
        priority=AnnouncementPriority.URGENT,
        is_system_wide=True,
        department_id=None,
    )

    try:
        created = await db.create_announcement(announcement.to_row(user_id))
        await db.link_announcement_to_incident(incident["id"], created["id"])
    except (APIError, RecordNotFound) as e:
        logger.warning("Incident %s announcement not created: %s", incident["id"], e)
        return None
    return created["id"]


@router.get("/")
async def list_incidents(
    page: Optional[str] = Query(None),
    limit: Optional[str] = Query(None),
    department_id: Optional[str] = Query(None),
    is_resolved: Optional[str] = Query(None, description="'true' or 'false'"),
    start_date: Optional[str] = Query(None),
    end_date: Optional[str] = Query(None),
    search: Optional[str] = Query(None, description="Match on situation or background"),
    db: SupabaseClient = Depends(get_db),
):
    """List incidents, most recent incident date first."""
    page_number, page_size, start, end = get_pagination(page, limit)

    try:
        rows, total = await db.list_incidents(
            start,
            end,
            department_id=department_id,
            is_resolved=parse_bool_filter(is_resolved),
            start_date=start_date,
            end_date=end_date,
            search=search,
        )
    except APIError as e:
        raise database_error(e, "Failed to fetch incidents")

    return {"data": rows, "pagination": create_pagination(page_number, page_size, total)}


@router.post("/", status_code=201)
async def create_incident(
    request: Request,
    department_id: Optional[str] = Form(None),
    date_of_reporting: Optional[str] = Form(None),
    date_of_incident: Optional[str] = Form(None),
    time_of_incident: Optional[str] = Form(None),
    sbar_situation: Optional[str] = Form(None),
    sbar_background: Optional[str] = Form(None),
    sbar_assessment: Optional[str] = Form(None),
    sbar_recommendation: Optional[str] = Form(None),
    file: Optional[UploadFile] = File(None),
    current_user: AuthenticatedUser = Depends(get_current_user),
    db: SupabaseClient = Depends(get_db),
):
    """
    Report an incident.

    Workflow:
    1. Validate the SBAR form and the optional attachment
    2. Insert the incident and write an INSERT audit log
    3. Upload the attachment (the incident is deleted again if this fails)
    4. Raise a system-wide urgent announcement and link it to the incident
    """
    content = await read_upload(
        file, INCIDENT_MIME_TYPES, "Unsupported file type. Allowed: PDF, JPEG, PNG, WebP"
    )

    form_values = {
        "department_id": department_id,
        "date_of_reporting": date_of_reporting,
        "date_of_incident": date_of_incident,
        "time_of_incident": time_of_incident,
        "sbar_situation": sbar_situation,
        "sbar_background": sbar_background,
        "sbar_assessment": sbar_assessment,
        "sbar_recommendation": sbar_recommendation,
    }
    fields = {name: value.strip() for name, value in form_values.items() if value and value.strip()}

    storage_path = None
    if content is not None:
        safe_name = sanitize_file_name(file.filename or "attachment") or "attachment"
        storage_path = f"{current_user.id}/{uuid.uuid4()}-{safe_name}"
        fields.update({
            "file_name": safe_name,
            "file_storage_path": storage_path,
            "file_mime_type": file.content_type,
            "file_size_bytes": len(content),
        })

    try:
        payload = IncidentCreate(**fields)
    except ValidationError as e:
        raise validation_failed(flatten_validation_errors(e.errors()))

    try:
        incident = await db.create_incident(payload.to_row(current_user.id))
    except (APIError, RecordNotFound) as e:
        raise database_error(e, "Failed to create incident")

    await write_audit_log(
        db, request, "incidents", incident["id"], AuditAction.INSERT, current_user.id,
        new_data=incident,
    )

    if storage_path is not None:
        try:
            await db.upload_file(INCIDENT_FILES_BUCKET, storage_path, content, file.content_type)
        except StorageException as e:
            logger.error("Incident %s attachment upload failed: %s", incident["id"], e)
            try:
                await db.delete_incident(incident["id"])
            except (APIError, RecordNotFound) as cleanup_error:
                logger.warning("Incident %s not rolled back: %s", incident["id"], cleanup_error)
            raise PortalError(
                500, "Failed to upload file attachment", "STORAGE_UPLOAD_FAILED", str(e)
            )

    announcement_id = await announce_incident(db, incident, current_user.id)
    if announcement_id:
        incident["announcement_id"] = announcement_id

    return {"data": incident}


@router.get("/recent")
async def recent_incidents(
    limit: int = Query(5, ge=1, le=50),
    db: SupabaseClient = Depends(get_db),
):
    """Latest unresolved incidents, for the dashboard."""
    try:
        rows = await db.recent_unresolved_incidents(limit)
    except APIError as e:
        raise database_error(e, "Failed to fetch incidents")
    return {"data": rows}


@router.get("/count")
async def count_incidents(
    start_date: Optional[str] = Query(None),
    end_date: Optional[str] = Query(None),
    department_id: Optional[str] = Query(None),
    db: SupabaseClient = Depends(get_db),
):
    """Count incidents in a date range; defaults to the current month."""
    department_id = optional_uuid(department_id, "department")
    current_month = month_range(None)
    start_date = start_date or current_month.start
    end_date = end_date or current_month.end

    try:
        total = await db.count_incidents(start_date, end_date, department_id)
    except APIError as e:
        raise database_error(e, "Failed to count incidents")
    return {"data": {"count": total, "start_date": start_date, "end_date": end_date}}


@router.get("/{incident_id}")
async def get_incident(incident_id: str, db: SupabaseClient = Depends(get_db)):
    incident_id = require_uuid(incident_id, "incident")
    try:
        incident = await db.get_incident(incident_id)
    except APIError as e:
        raise database_error(e, "Failed to fetch incident", "Incident not found")
    return {"data": incident}


@router.put("/{incident_id}")
async def update_incident(
    incident_id: str,
    payload: IncidentUpdate,
    request: Request,
    current_user: AuthenticatedUser = Depends(get_current_user),
    db: SupabaseClient = Depends(get_db),
):
    """Update SBAR fields or resolve an incident; writes an UPDATE audit log."""
    incident_id = require_uuid(incident_id, "incident")
    updates = payload.provided_fields()
    if not updates:
        raise validation_failed(message="At least one field must be provided")

    try:
        existing = await db.find_incident(incident_id)
        incident = await db.update_incident(incident_id, updates)
    except (APIError, RecordNotFound) as e:
        raise database_error(e, "Failed to update incident", "Incident not found")

    await write_audit_log(
        db, request, "incidents", incident_id, AuditAction.UPDATE, current_user.id,
        new_data=incident, old_data=existing,
    )
    return {"data": incident}


@router.delete("/{incident_id}")
async def delete_incident(
    incident_id: str,
    request: Request,
    current_user: AuthenticatedUser = Depends(get_current_user),
    db: SupabaseClient = Depends(get_db),
):
    """Delete an incident and its attachment; writes a DELETE audit log."""
    incident_id = require_uuid(incident_id, "incident")

    try:
        existing = await db.find_incident(incident_id)
    except APIError as e:
        raise database_error(e, "Failed to delete incident", "Incident not found")

    if existing and existing.get("file_storage_path"):
        try:
            await db.remove_files(INCIDENT_FILES_BUCKET, [existing["file_storage_path"]])
        except StorageException as e:
            logger.warning("Incident %s attachment not removed: %s", incident_id, e)

    try:
        await db.delete_incident(incident_id)
    except (APIError, RecordNotFound) as e:
        raise database_error(e, "Failed to delete incident", "Incident not found")

    await write_audit_log(
        db, request, "incidents", incident_id, AuditAction.DELETE, current_user.id,
        old_data=existing,
    )
    return {"success": True}


@router.get("/{incident_id}/file")
async def download_incident_file(incident_id: str, db: SupabaseClient = Depends(get_db)):
    """Stream an incident's attachment inline."""
    incident_id = require_uuid(incident_id, "incident")
    try:
        incident = await db.get_incident(incident_id)
    except APIError as e:
        raise database_error(e, "Failed to fetch incident", "Incident not found")

    storage_path = incident.get("file_storage_path")
    if not storage_path:
        raise not_found("No file attached to this incident")

    try:
        content = await db.download_file(INCIDENT_FILES_BUCKET, storage_path)
    except StorageException as e:
        logger.error("Incident %s attachment download failed: %s", incident_id, e)
        raise PortalError(500, "Failed to download file", "STORAGE_ERROR")

    file_name = incident.get("file_name") or "attachment"
    return Response(
        content=content,
        media_type=incident.get("file_mime_type") or "application/octet-stream",
        headers={
            "Content-Disposition": f'inline; filename="{file_name}"',
            "Cache-Control": "private, max-age=3600",
        },
    )
