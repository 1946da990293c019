"""
Audit-log writer.

Audit rows are written after the change they describe has succeeded. A
failed audit insert is logged and never fails the request.
"""

import logging
from typing import Optional

from fastapi import Request

from hospital_portal.models.schemas import AuditAction
from hospital_portal.services.supabase_client import SupabaseClient

logger = logging.getLogger(__name__)


def client_ip(request: Request) -> Optional[str]:
    """First hop of X-Forwarded-For, or None."""
    forwarded = request.headers.get("x-forwarded-for")
    if not forwarded:
        return None
    return forwarded.split(",")[0].strip() or None


async def write_audit_log(
    db: SupabaseClient,
    request: Request,
    table_name: str,
    record_id: str,
    action: AuditAction,
    performed_by: str,
    new_data: Optional[dict] = None,
    old_data: Optional[dict] = None,
) -> None:
    entry = {
        "table_name": table_name,
        "record_id": str(record_id),
        "action": action.value,
        "new_data": new_data,
        "old_data": old_data,
        "performed_by": performed_by,
        "ip_address": client_ip(request),
        "user_agent": request.headers.get("user-agent"),
    }

    try:
        await db.insert_audit_log(entry)
    except Exception as e:
        logger.warning("Audit log for %s %s/%s not written: %s", action.value, table_name, record_id, e)
