"""
Messaging router.

Internal message threads (system-wide or per department), their messages,
and per-user read markers for unread counts.
"""

import logging
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional

from fastapi import APIRouter, Depends, Query, status
from postgrest.exceptions import APIError
from pydantic import TypeAdapter

from hospital_portal.constants import (
    LATEST_MESSAGE_SCAN_LIMIT,
    THREAD_LIST_LIMIT,
    THREAD_MESSAGE_LIMIT,
    UNREAD_MESSAGE_SCAN_LIMIT,
    UNREAD_THREAD_SCAN_LIMIT,
)
from hospital_portal.errors import RecordNotFound, database_error
from hospital_portal.models.schemas import (
    AuthenticatedUser,
    MessageCreate,
    MessageThreadCreate,
    ThreadRead,
)
from hospital_portal.routers.auth import get_current_user, get_db
from hospital_portal.services.pagination import require_uuid
from hospital_portal.services.supabase_client import SupabaseClient

logger = logging.getLogger(__name__)

router = APIRouter()

_timestamp_adapter = TypeAdapter(datetime)


def parse_timestamp(value: str) -> datetime:
    """Parse a Postgres timestamp, whatever its fractional-second precision."""
    parsed = _timestamp_adapter.validate_python(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def latest_by_thread(messages: Iterable[dict], skip_sender: Optional[str] = None) -> Dict[str, dict]:
    """
    First message seen per thread, from messages ordered newest first.

    Messages sent by ``skip_sender`` are ignored.
    """
    latest: Dict[str, dict] = {}
    for message in messages:
        if skip_sender and message.get("sender_id") == skip_sender:
            continue
        latest.setdefault(message["thread_id"], message)
    return latest


def find_unread_threads(
    thread_ids: List[str],
    messages: Iterable[dict],
    reads: Iterable[dict],
    user_id: str,
) -> List[str]:
    """
    Threads whose latest message from someone else is newer than the user's
    read marker. Threads with no read marker count as unread once anyone
    else has posted.
    """
    last_read = {row["thread_id"]: row.get("last_read_at") for row in reads}
    latest_other = latest_by_thread(messages, skip_sender=user_id)

    unread = []
    for thread_id in thread_ids:
        message = latest_other.get(thread_id)
        if not message:
            continue
        read_at = last_read.get(thread_id)
        if not read_at or parse_timestamp(message["created_at"]) > parse_timestamp(read_at):
            unread.append(thread_id)
    return unread


@router.get("/threads")
async def list_threads(db: SupabaseClient = Depends(get_db)):
    """Most recently active threads, each with its latest message."""
    try:
        threads, _ = await db.list_message_threads(limit=THREAD_LIST_LIMIT)
    except APIError as e:
        raise database_error(e, "Failed to fetch messaging threads")

    if not threads:
        return {"data": []}

    thread_ids = [thread["id"] for thread in threads]
    try:
        messages = await db.latest_messages(
            thread_ids, LATEST_MESSAGE_SCAN_LIMIT, "thread_id, body, created_at"
        )
    except APIError as e:
        logger.warning("Latest messages unavailable: %s", e.message)
        messages = []

    latest = latest_by_thread(messages)
    data = [
        {
            **thread,
            "latest_message_body": latest.get(thread["id"], {}).get("body"),
            "latest_message_at": latest.get(thread["id"], {}).get("created_at"),
        }
        for thread in threads
    ]
    return {"data": data}


@router.post("/threads", status_code=status.HTTP_201_CREATED)
async def create_thread(
    payload: MessageThreadCreate,
    current_user: AuthenticatedUser = Depends(get_current_user),
    db: SupabaseClient = Depends(get_db),
):
    """Open a thread together with its first message."""
    thread = {
        "title": payload.title,
        "department_id": str(payload.department_id) if payload.department_id else None,
        "is_system_wide": payload.is_system_wide,
        "created_by": current_user.id,
    }
    try:
        created = await db.create_message_thread(thread, payload.body)
    except (APIError, RecordNotFound) as e:
        raise database_error(e, "Failed to create thread")
    return {"data": created}


@router.get("/messages")
async def list_messages(
    thread_id: Optional[str] = Query(None),
    db: SupabaseClient = Depends(get_db),
):
    """Messages in a thread, oldest first."""
    thread_id = require_uuid(thread_id, "thread")
    try:
        messages = await db.list_thread_messages(thread_id, limit=THREAD_MESSAGE_LIMIT)
    except APIError as e:
        raise database_error(e, "Failed to fetch messages")
    return {"data": messages}


@router.post("/messages", status_code=status.HTTP_201_CREATED)
async def send_message(
    payload: MessageCreate,
    current_user: AuthenticatedUser = Depends(get_current_user),
    db: SupabaseClient = Depends(get_db),
):
    try:
        message = await db.create_message(payload.thread_id, current_user.id, payload.body)
    except (APIError, RecordNotFound) as e:
        raise database_error(e, "Failed to send message")
    return {"data": message}


@router.get("/unread")
async def unread_threads(
    current_user: AuthenticatedUser = Depends(get_current_user),
    db: SupabaseClient = Depends(get_db),
):
    """Count threads with messages from others that the caller has not read."""
    try:
        threads, _ = await db.list_message_threads(limit=UNREAD_THREAD_SCAN_LIMIT)
    except APIError as e:
        raise database_error(e, "Failed to fetch messaging threads")

    thread_ids = [thread["id"] for thread in threads]
    if not thread_ids:
        return {"data": {"total_unread_threads": 0, "unread_thread_ids": []}}

    try:
        reads = await db.thread_reads(current_user.id, thread_ids)
    except APIError as e:
        raise database_error(e, "Failed to fetch read state")

    try:
        messages = await db.latest_messages(
            thread_ids, UNREAD_MESSAGE_SCAN_LIMIT, "thread_id, sender_id, created_at"
        )
    except APIError as e:
        raise database_error(e, "Failed to fetch messages")

    unread = find_unread_threads(thread_ids, messages, reads, current_user.id)
    return {"data": {"total_unread_threads": len(unread), "unread_thread_ids": unread}}


@router.post("/read")
async def mark_read(
    payload: ThreadRead,
    current_user: AuthenticatedUser = Depends(get_current_user),
    db: SupabaseClient = Depends(get_db),
):
    """Record that the caller has read a thread up to now."""
    try:
        marker = await db.mark_thread_read(payload.thread_id, current_user.id)
    except (APIError, RecordNotFound) as e:
        raise database_error(e, "Failed to mark thread as read", "Thread not found")
    return {"data": marker}
