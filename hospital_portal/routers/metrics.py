"""
Metrics router.

Daily department metrics (revenue, inputs, census, equipment utilisation)
and the monthly summary used by the dashboard.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, Response, status
from postgrest.exceptions import APIError

from hospital_portal.constants import PHARMACY_DEPARTMENT_CODE, UserRole
from hospital_portal.errors import RecordNotFound, database_error, forbidden, validation_failed
from hospital_portal.models.schemas import (
    AuthenticatedUser,
    MetricCreate,
    MetricUpdate,
    census_violations,
)
from hospital_portal.routers.auth import get_caller_role, get_current_user, get_db
from hospital_portal.services.metrics_summary import month_range, summarize_metrics, summarize_previous
from hospital_portal.services.pagination import (
    create_pagination,
    get_pagination,
    optional_uuid,
    require_uuid,
)
from hospital_portal.services.supabase_client import SupabaseClient

router = APIRouter()


def check_census(total, opd, er, walk_in=None, inpatient=None) -> None:
    problems = census_violations(total, opd, er, walk_in, inpatient)
    if problems:
        raise validation_failed({"census_total": problems})


async def check_pharmacy_department(db: SupabaseClient, department_id: str) -> None:
    """Pharmacy revenue channels are only accepted for the Pharmacy department."""
    try:
        department = await db.get_department(department_id)
    except APIError:
        department = None

    if not department:
        raise validation_failed(message="Department not found")
    if department.get("code") != PHARMACY_DEPARTMENT_CODE:
        raise validation_failed(
            {"department_id": ["pharmacy revenue channels are only valid for Pharmacy"]}
        )


@router.get("/")
async def list_metrics(
    page: Optional[str] = Query(None),
    limit: Optional[str] = Query(None),
    department_id: Optional[str] = Query(None),
    subdepartment_id: Optional[str] = Query(None),
    start_date: Optional[str] = Query(None),
    end_date: Optional[str] = Query(None),
    db: SupabaseClient = Depends(get_db),
):
    """List daily metrics, newest metric date first."""
    page_number, page_size, start, end = get_pagination(page, limit)
    department_id = optional_uuid(department_id, "department")
    subdepartment_id = optional_uuid(subdepartment_id, "subdepartment")

    try:
        rows, total = await db.list_metrics(
            start,
            end,
            department_id=department_id,
            subdepartment_id=subdepartment_id,
            start_date=start_date,
            end_date=end_date,
        )
    except APIError as e:
        raise database_error(e, "Failed to fetch metrics")

    return {"data": rows, "pagination": create_pagination(page_number, page_size, total)}


@router.post("/", status_code=status.HTTP_201_CREATED)
async def create_metric(
    payload: MetricCreate,
    current_user: AuthenticatedUser = Depends(get_current_user),
    db: SupabaseClient = Depends(get_db),
):
    check_census(
        payload.census_total,
        payload.census_opd,
        payload.census_er,
        payload.census_walk_in,
        payload.census_inpatient,
    )
    if payload.has_pharmacy_fields():
        await check_pharmacy_department(db, str(payload.department_id))

    try:
        metric = await db.create_metric(payload.to_row(current_user.id))
    except (APIError, RecordNotFound) as e:
        raise database_error(e, "Failed to create metric")
    return {"data": metric}


@router.get("/summary")
async def metrics_summary(
    month: Optional[str] = Query(None, description="YYYY-MM; defaults to the current month"),
    department_id: Optional[str] = Query(None),
    current_user: AuthenticatedUser = Depends(get_current_user),
    db: SupabaseClient = Depends(get_db),
):
    """
    Monthly metrics summary.

    Department heads only see their own departments: asking for another
    department is forbidden, and with no filter the first membership is used.
    Only department-level rows (no subdepartment) are aggregated.
    """
    role = await get_caller_role(db, current_user)
    period = month_range(month)
    department_id = optional_uuid(department_id, "department")

    try:
        member_ids = await db.list_member_department_ids(current_user.id)
    except APIError as e:
        raise database_error(e, "Failed to load memberships")

    is_department_head = role == UserRole.DEPARTMENT_HEAD.value
    if is_department_head and department_id and department_id not in member_ids:
        raise forbidden()

    effective_department_id = department_id
    if is_department_head and not effective_department_id:
        effective_department_id = member_ids[0] if member_ids else None
    scope = member_ids if is_department_head else None

    try:
        departments = await db.list_active_departments(scope)
    except APIError as e:
        raise database_error(e, "Failed to fetch departments")

    try:
        rows = await db.department_level_metrics(
            period.start, period.end, effective_department_id, scope
        )
        previous_rows = await db.department_level_metrics(
            period.prev_start, period.prev_end, effective_department_id, scope
        )
    except APIError as e:
        raise database_error(e, "Failed to fetch metrics summary")

    return {
        "filters": {
            "month": period.month,
            "department_id": effective_department_id,
            "available_departments": departments,
        },
        "role_scope": {"role": role, "member_department_ids": member_ids},
        **summarize_metrics(rows, departments),
        "previous_totals": summarize_previous(previous_rows),
    }


@router.get("/{metric_id}")
async def get_metric(metric_id: str, db: SupabaseClient = Depends(get_db)):
    metric_id = require_uuid(metric_id, "metric")
    try:
        metric = await db.get_metric(metric_id)
    except APIError as e:
        raise database_error(e, "Failed to fetch metric", "Metric not found")
    return {"data": metric}


@router.put("/{metric_id}")
async def update_metric(
    metric_id: str,
    payload: MetricUpdate,
    current_user: AuthenticatedUser = Depends(get_current_user),
    db: SupabaseClient = Depends(get_db),
):
    """
    Partially update a metric row.

    Census rules are checked against the existing row merged with the update.
    """
    metric_id = require_uuid(metric_id, "metric")
    try:
        existing = await db.get_metric(metric_id)
    except APIError as e:
        raise database_error(e, "Failed to fetch metric", "Metric not found")

    updates = payload.provided_fields()
    merged = {**existing, **{k: v for k, v in updates.items() if v is not None}}
    check_census(
        merged["census_total"],
        merged["census_opd"],
        merged["census_er"],
        merged.get("census_walk_in"),
        merged.get("census_inpatient"),
    )
    if payload.has_pharmacy_fields():
        await check_pharmacy_department(db, str(merged["department_id"]))

    updates["updated_by"] = current_user.id
    try:
        metric = await db.update_metric(metric_id, updates)
    except (APIError, RecordNotFound) as e:
        raise database_error(e, "Failed to update metric", "Metric not found")
    return {"data": metric}


@router.delete("/{metric_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_metric(metric_id: str, db: SupabaseClient = Depends(get_db)):
    metric_id = require_uuid(metric_id, "metric")
    try:
        await db.delete_metric(metric_id)
    except (APIError, RecordNotFound) as e:
        raise database_error(e, "Failed to delete metric", "Metric not found")
    return Response(status_code=status.HTTP_204_NO_CONTENT)
