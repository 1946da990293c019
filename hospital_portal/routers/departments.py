"""
Departments router.

Read-only department directory, memberships and subdepartments.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query
from postgrest.exceptions import APIError

from hospital_portal.errors import database_error, not_found
from hospital_portal.routers.auth import get_db
from hospital_portal.services.pagination import (
    create_pagination,
    get_pagination,
    optional_uuid,
    parse_bool_filter,
    require_uuid,
)
from hospital_portal.services.supabase_client import SupabaseClient

router = APIRouter()
subdepartments_router = APIRouter()


@router.get("/")
async def list_departments(
    page: Optional[str] = Query(None),
    limit: Optional[str] = Query(None),
    is_active: Optional[str] = Query(None, description="'true' or 'false'"),
    db: SupabaseClient = Depends(get_db),
):
    """List departments ordered by name."""
    page_number, page_size, start, end = get_pagination(page, limit)

    try:
        rows, total = await db.list_departments(start, end, parse_bool_filter(is_active))
    except APIError as e:
        raise database_error(e, "Failed to fetch departments")

    return {"data": rows, "pagination": create_pagination(page_number, page_size, total)}


@router.get("/{department_id}/members")
async def list_department_members(
    department_id: str,
    page: Optional[str] = Query(None),
    limit: Optional[str] = Query(None),
    db: SupabaseClient = Depends(get_db),
):
    """List a department's memberships, newest first."""
    department_id = require_uuid(department_id, "department")

    try:
        await db.get_department(department_id)
    except APIError:
        raise not_found("Department not found")

    page_number, page_size, start, end = get_pagination(page, limit)
    try:
        rows, total = await db.list_department_members(department_id, start, end)
    except APIError as e:
        raise database_error(e, "Failed to fetch department members")

    return {"data": rows, "pagination": create_pagination(page_number, page_size, total)}


@subdepartments_router.get("/")
async def list_subdepartments(
    page: Optional[str] = Query(None),
    limit: Optional[str] = Query(None),
    department_id: Optional[str] = Query(None),
    is_active: Optional[str] = Query(None, description="'true' or 'false'"),
    db: SupabaseClient = Depends(get_db),
):
    page_number, page_size, start, end = get_pagination(page, limit)
    department_id = optional_uuid(department_id, "department")

    try:
        rows, total = await db.list_subdepartments(
            start, end, department_id=department_id, is_active=parse_bool_filter(is_active)
        )
    except APIError as e:
        raise database_error(e, "Failed to fetch subdepartments")

    return {"data": rows, "pagination": create_pagination(page_number, page_size, total)}
