"""
Documents router.

Manages the department document library. Files live in the documents bucket;
PDF downloads are watermarked per user.
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Optional
from urllib.parse import quote

from fastapi import APIRouter, Depends, File, Form, Query, Response, UploadFile, status
from postgrest.exceptions import APIError
from pydantic import ValidationError
from storage3.utils import StorageException

from hospital_portal.constants import (
    DOCUMENT_MANAGER_ROLES,
    DOCUMENT_MIME_TYPES,
    DOCUMENTS_BUCKET,
    PDF_MIME_TYPE,
)
from hospital_portal.errors import (
    PortalError,
    RecordNotFound,
    database_error,
    flatten_validation_errors,
    forbidden,
    internal_error,
    validation_failed,
)
from hospital_portal.models.schemas import AuthenticatedUser, DocumentCreate
from hospital_portal.routers.auth import get_caller_role, get_current_user, get_db
from hospital_portal.services.files import (
    fetch_signed_bytes,
    read_upload,
    sanitize_file_name,
    sha256_hex,
)
from hospital_portal.services.pagination import create_pagination, get_pagination, require_uuid
from hospital_portal.services.supabase_client import SupabaseClient
from hospital_portal.services.watermark import apply_pdf_watermark

logger = logging.getLogger(__name__)

router = APIRouter()


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


@router.get("/")
async def list_documents(
    page: Optional[str] = Query(None),
    limit: Optional[str] = Query(None),
    search: Optional[str] = Query(None, description="Match on title or file name"),
    status_filter: Optional[str] = Query(None, alias="status"),
    department_id: Optional[str] = Query(None),
    db: SupabaseClient = Depends(get_db),
):
    """List documents, newest first."""
    page_number, page_size, start, end = get_pagination(page, limit)

    try:
        rows, total = await db.list_documents(
            start, end, search=search, status=status_filter, department_id=department_id
        )
    except APIError as e:
        raise database_error(e, "Failed to fetch documents")

    return {"data": rows, "pagination": create_pagination(page_number, page_size, total)}


@router.post("/", status_code=status.HTTP_201_CREATED)
async def create_document(
    payload: DocumentCreate,
    current_user: AuthenticatedUser = Depends(get_current_user),
    db: SupabaseClient = Depends(get_db),
):
    """Register a document whose file has already been uploaded to storage."""
    try:
        document = await db.create_document(payload.to_row(current_user.id))
    except (APIError, RecordNotFound) as e:
        raise database_error(e, "Failed to create document")
    return {"data": document}


@router.post("/upload", status_code=status.HTTP_201_CREATED)
async def upload_document(
    title: str = Form(...),
    department_id: str = Form(...),
    description: Optional[str] = Form(None),
    file: Optional[UploadFile] = File(None),
    current_user: AuthenticatedUser = Depends(get_current_user),
    db: SupabaseClient = Depends(get_db),
):
    """
    Upload a file and register it as a document.

    Workflow:
    1. Check type and size, compute the SHA-256 checksum
    2. Store the file under <department_id>/<uuid>-<name>
    3. Insert the documents row (the stored file is removed if this fails)
    """
    department_id = require_uuid(department_id.strip(), "department")
    content = await read_upload(
        file, DOCUMENT_MIME_TYPES, "Unsupported document type. Allowed: PDF, DOCX, XLSX"
    )
    if content is None:
        raise validation_failed({"file": ["A file is required"]})

    safe_name = sanitize_file_name(file.filename) or "document"
    storage_path = f"{department_id}/{uuid.uuid4()}-{safe_name}"

    try:
        payload = DocumentCreate(
            title=title,
            description=description or None,
            department_id=department_id,
            storage_path=storage_path,
            file_name=safe_name,
            file_size_bytes=len(content),
            mime_type=file.content_type,
            checksum=sha256_hex(content),
        )
    except ValidationError as e:
        raise validation_failed(flatten_validation_errors(e.errors()))

    try:
        await db.upload_file(DOCUMENTS_BUCKET, storage_path, content, file.content_type)
    except StorageException as e:
        logger.error("Document upload to %s failed: %s", storage_path, e)
        raise PortalError(500, "Failed to upload document", "STORAGE_UPLOAD_FAILED", str(e))

    try:
        document = await db.create_document(payload.to_row(current_user.id))
    except (APIError, RecordNotFound) as e:
        try:
            await db.remove_files(DOCUMENTS_BUCKET, [storage_path])
        except StorageException as cleanup_error:
            logger.warning("Orphaned document object %s: %s", storage_path, cleanup_error)
        raise database_error(e, "Failed to create document")

    return {"data": document}


@router.get("/{document_id}")
async def get_document(document_id: str, db: SupabaseClient = Depends(get_db)):
    document_id = require_uuid(document_id, "document")
    try:
        document = await db.get_document(document_id)
    except APIError as e:
        raise database_error(e, "Failed to fetch document", "Document not found")
    return {"data": document}


@router.delete("/{document_id}")
async def delete_document(
    document_id: str,
    current_user: AuthenticatedUser = Depends(get_current_user),
    db: SupabaseClient = Depends(get_db),
):
    """Soft-delete a document. Only AVPs and division heads may do this."""
    document_id = require_uuid(document_id, "document")

    role = await get_caller_role(db, current_user)
    if role not in DOCUMENT_MANAGER_ROLES:
        raise forbidden()

    try:
        document = await db.soft_delete_document(document_id)
    except (APIError, RecordNotFound) as e:
        raise database_error(e, "Failed to delete document", "Document not found")
    return {"data": document}


@router.get("/{document_id}/download")
async def download_document(
    document_id: str,
    current_user: AuthenticatedUser = Depends(get_current_user),
    db: SupabaseClient = Depends(get_db),
):
    """
    Download a PDF document watermarked with the caller's identity.

    Non-PDF documents are rejected with 415.
    """
    document_id = require_uuid(document_id, "document")
    try:
        document = await db.get_document(document_id)
    except APIError as e:
        raise database_error(e, "Failed to fetch document", "Document not found")

    if document.get("mime_type") != PDF_MIME_TYPE:
        raise PortalError(415, "Only PDF download is supported", "UNSUPPORTED_MEDIA_TYPE")

    source = await fetch_signed_bytes(
        db, DOCUMENTS_BUCKET, document["storage_path"], "Failed to fetch document file"
    )

    try:
        watermarked = apply_pdf_watermark(
            source,
            user_email=current_user.email or "unknown",
            document_id=document["id"],
            timestamp_iso=utc_timestamp(),
        )
    except Exception as e:
        logger.error("Watermarking document %s failed: %s", document_id, e)
        raise internal_error("Failed to prepare document download")

    file_name = quote(document["file_name"], safe="")
    return Response(
        content=watermarked,
        media_type=PDF_MIME_TYPE,
        headers={
            "Content-Disposition": f'attachment; filename="watermarked-{file_name}"',
            "Cache-Control": "private, no-store",
        },
    )
