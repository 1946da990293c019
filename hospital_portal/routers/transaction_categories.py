"""
Transaction categories router.

Daily Medical Records transaction counts, one row per
(metric_date, department, category).
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, Response, status
from postgrest.exceptions import APIError

from hospital_portal.errors import RecordNotFound, database_error
from hospital_portal.models.schemas import (
    AuditAction,
    AuthenticatedUser,
    TransactionCategoryBatch,
    TransactionCategoryUpdate,
)
from hospital_portal.routers.auth import get_caller_role, get_current_user, get_db
from hospital_portal.services.audit import write_audit_log
from hospital_portal.services.metrics_summary import month_range, summarize_transactions
from hospital_portal.services.pagination import create_pagination, get_pagination, require_uuid
from hospital_portal.services.supabase_client import SupabaseClient

router = APIRouter()


@router.get("/")
async def list_transaction_categories(
    page: Optional[str] = Query(None),
    limit: Optional[str] = Query(None),
    department_id: Optional[str] = Query(None),
    start_date: Optional[str] = Query(None),
    end_date: Optional[str] = Query(None),
    category: Optional[str] = Query(None),
    db: SupabaseClient = Depends(get_db),
):
    page_number, page_size, start, end = get_pagination(page, limit)

    try:
        rows, total = await db.list_transaction_categories(
            start,
            end,
            department_id=department_id,
            start_date=start_date,
            end_date=end_date,
            category=category,
        )
    except APIError as e:
        raise database_error(e, "Failed to fetch transaction categories")

    return {"data": rows, "pagination": create_pagination(page_number, page_size, total)}


@router.post("/", status_code=status.HTTP_201_CREATED)
async def save_transaction_categories(
    payload: TransactionCategoryBatch,
    request: Request,
    current_user: AuthenticatedUser = Depends(get_current_user),
    db: SupabaseClient = Depends(get_db),
):
    """
    Save a day's transaction counts for a department.

    Existing counts for the same date and category are overwritten.
    """
    await get_caller_role(db, current_user)

    try:
        rows = await db.upsert_transaction_categories(payload.to_rows(current_user.id))
    except APIError as e:
        raise database_error(e, "Failed to save transaction categories")

    await write_audit_log(
        db,
        request,
        "transaction_category_entries",
        str(payload.department_id),
        AuditAction.INSERT,
        current_user.id,
        new_data=payload.model_dump(mode="json"),
    )
    return {"data": rows}


@router.get("/summary")
async def transaction_summary(
    department_id: str = Query(...),
    start_date: Optional[str] = Query(None),
    end_date: Optional[str] = Query(None),
    db: SupabaseClient = Depends(get_db),
):
    """Category and daily totals for a department; defaults to the current month."""
    department_id = require_uuid(department_id, "department")
    current_month = month_range(None)

    try:
        rows = await db.transaction_category_rows(
            department_id,
            start_date or current_month.start,
            end_date or current_month.end,
        )
    except APIError as e:
        raise database_error(e, "Failed to fetch transaction summary")
    return {"data": summarize_transactions(rows)}


@router.put("/{entry_id}")
async def update_transaction_category(
    entry_id: str,
    payload: TransactionCategoryUpdate,
    current_user: AuthenticatedUser = Depends(get_current_user),
    db: SupabaseClient = Depends(get_db),
):
    entry_id = require_uuid(entry_id, "transaction category")
    try:
        entry = await db.update_transaction_category(entry_id, payload.count, current_user.id)
    except (APIError, RecordNotFound) as e:
        raise database_error(
            e, "Failed to update transaction category", "Transaction category entry not found"
        )
    return {"data": entry}


@router.delete("/{entry_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_transaction_category(entry_id: str, db: SupabaseClient = Depends(get_db)):
    entry_id = require_uuid(entry_id, "transaction category")
    try:
        await db.delete_transaction_category(entry_id)
    except (APIError, RecordNotFound) as e:
        raise database_error(
            e, "Failed to delete transaction category", "Transaction category entry not found"
        )
    return Response(status_code=status.HTTP_204_NO_CONTENT)
