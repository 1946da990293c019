"""
Supabase client service.

Handles all database, storage and admin-auth operations via the Supabase
Python client. This is the only module that talks to Supabase.

Request handlers get a client built with the caller's access token, so every
query runs under the caller's row-level-security policies. The admin client
uses the service-role key and is reserved for the admin endpoints.

Reads that use ``.single()`` raise ``postgrest.exceptions.APIError`` with code
PGRST116 when no row is visible; updates and deletes that match nothing raise
``RecordNotFound``.
"""

import logging
from datetime import datetime, timezone
from typing import List, Optional, Sequence, Tuple

import httpx
from supabase import Client, ClientOptions, create_client

from hospital_portal.config import get_settings
from hospital_portal.errors import RecordNotFound

logger = logging.getLogger(__name__)

Rows = List[dict]
Page = Tuple[Rows, int]

ANNOUNCEMENT_SELECT = (
    "id, title, content, priority, department_id, created_by, is_system_wide, expires_at, "
    "memo_file_name, memo_storage_path, memo_mime_type, memo_file_size_bytes, created_at, "
    "updated_at, profiles!created_by(full_name, role, department_memberships(departments(code)))"
)
DOCUMENT_SELECT = (
    "id, title, description, department_id, uploaded_by, storage_path, file_name, "
    "file_size_bytes, mime_type, checksum, version, status, created_at, updated_at"
)
INCIDENT_SELECT = (
    "id, department_id, reported_by, date_of_reporting, date_of_incident, time_of_incident, "
    "sbar_situation, sbar_background, sbar_assessment, sbar_recommendation, announcement_id, "
    "file_name, file_storage_path, file_mime_type, file_size_bytes, is_resolved, created_at, "
    "updated_at, profiles!reported_by(full_name, role), departments!department_id(name, code)"
)
METRIC_SELECT = (
    "id, metric_date, department_id, subdepartment_id, revenue_total, "
    "pharmacy_revenue_inpatient, pharmacy_revenue_opd, monthly_input_count, census_total, "
    "census_opd, census_er, census_walk_in, census_inpatient, equipment_utilization_pct, "
    "notes, created_by, updated_by, created_at, updated_at"
)
SUMMARY_METRIC_SELECT = (
    "metric_date, department_id, subdepartment_id, revenue_total, monthly_input_count, "
    "census_total, census_opd, census_er, equipment_utilization_pct"
)
DEPARTMENT_SELECT = "id, name, code, description, is_active, created_at"
MEMBERSHIP_SELECT = "id, user_id, department_id, is_primary, joined_at"
SUBDEPARTMENT_SELECT = "id, department_id, name, code, is_active, created_at"
THREAD_SELECT = "id, title, department_id, is_system_wide, created_by, created_at, updated_at"
MESSAGE_SELECT = "id, thread_id, sender_id, body, created_at, profiles:sender_id(full_name,email)"
PROFILE_SELECT = "id, email, full_name, role, is_active, must_change_password, last_login_at"


def _page(result) -> Page:
    rows = result.data or []
    count = result.count if result.count is not None else len(rows)
    return rows, count


def _first(result, missing: str) -> dict:
    if not result.data:
        raise RecordNotFound(missing)
    return result.data[0]


def _ilike_any(columns: Sequence[str], term: str) -> str:
    # commas and parentheses delimit PostgREST or-filters
    cleaned = term.replace(",", " ").replace("(", " ").replace(")", " ").strip()
    return ",".join(f"{column}.ilike.%{cleaned}%" for column in columns)


class SupabaseClient:
    """
    Supabase client wrapper.

    Provides typed methods for all portal tables and storage buckets.
    """

    def __init__(self, access_token: Optional[str] = None, service_role: bool = False):
        """
        Initialize a Supabase client.

        Args:
            access_token: Caller's JWT; queries then run under RLS as that user
            service_role: Use the secret key (admin endpoints only)
        """
        settings = get_settings()
        url = settings.supabase_url
        key = settings.supabase_secret_key if service_role else settings.supabase_publishable_key

        if not url or not key:
            raise ValueError(
                "SUPABASE_URL and SUPABASE_PUBLISHABLE_KEY (or SUPABASE_SECRET_KEY for admin) must be set"
            )

        headers = {"Authorization": f"Bearer {access_token}"} if access_token else {}
        options = ClientOptions(
            headers=headers,
            auto_refresh_token=False,
            persist_session=False,
        )
        self.client: Client = create_client(url, key, options=options)
        self.signed_url_ttl = settings.signed_url_ttl_seconds

    # ============ AUTH & PROFILES ============

    async def get_auth_user(self, token: str):
        """Resolve an access token to a Supabase Auth user (None if invalid)."""
        response = self.client.auth.get_user(token)
        return response.user if response else None

    async def sign_in(self, email: str, password: str):
        """Password sign-in; returns the gotrue AuthResponse."""
        return self.client.auth.sign_in_with_password({"email": email, "password": password})

    async def get_profile(self, user_id: str) -> Optional[dict]:
        result = (
            self.client.table("profiles")
            .select(PROFILE_SELECT)
            .eq("id", user_id)
            .maybe_single()
            .execute()
        )
        return result.data if result else None

    async def get_user_role(self, user_id: str) -> Optional[str]:
        """Get the caller's role from profiles, or None when there is no profile."""
        profile = await self.get_profile(user_id)
        return profile.get("role") if profile else None

    async def clear_password_flag(self, user_id: str) -> None:
        (
            self.client.table("profiles")
            .update({"must_change_password": False})
            .eq("id", user_id)
            .execute()
        )

    async def update_profile(self, user_id: str, updates: dict) -> Rows:
        result = self.client.table("profiles").update(updates).eq("id", user_id).execute()
        return result.data or []

    async def list_member_department_ids(self, user_id: str) -> List[str]:
        result = (
            self.client.table("department_memberships")
            .select("department_id")
            .eq("user_id", user_id)
            .execute()
        )
        return [row["department_id"] for row in (result.data or [])]

    # ============ ADMIN AUTH (service role only) ============

    async def create_auth_user(self, email: str, password: str, metadata: dict):
        response = self.client.auth.admin.create_user({
            "email": email,
            "password": password,
            "email_confirm": True,
            "user_metadata": metadata,
        })
        return response.user

    async def delete_auth_user(self, user_id: str) -> None:
        self.client.auth.admin.delete_user(user_id)

    async def set_auth_password(self, user_id: str, password: str) -> None:
        self.client.auth.admin.update_user_by_id(user_id, {"password": password})

    async def add_department_membership(self, user_id: str, department_id: str) -> dict:
        result = (
            self.client.table("department_memberships")
            .insert({"user_id": user_id, "department_id": department_id})
            .execute()
        )
        return _first(result, "Membership was not created")

    # ============ DEPARTMENTS ============

    async def list_departments(self, start: int, end: int, is_active: Optional[bool] = None) -> Page:
        query = (
            self.client.table("departments")
            .select(DEPARTMENT_SELECT, count="exact")
            .order("name")
            .range(start, end)
        )
        if is_active is not None:
            query = query.eq("is_active", is_active)
        return _page(query.execute())

    async def get_department(self, department_id) -> dict:
        result = (
            self.client.table("departments")
            .select("id, name, code")
            .eq("id", str(department_id))
            .single()
            .execute()
        )
        return result.data

    async def list_active_departments(self, department_ids: Optional[List[str]] = None) -> Rows:
        """Active departments by name; restricted to the given ids when provided."""
        query = (
            self.client.table("departments")
            .select("id, name, code")
            .eq("is_active", True)
            .order("name")
        )
        if department_ids is not None:
            query = query.in_("id", department_ids)
        return query.execute().data or []

    async def list_department_members(self, department_id, start: int, end: int) -> Page:
        result = (
            self.client.table("department_memberships")
            .select(MEMBERSHIP_SELECT, count="exact")
            .eq("department_id", str(department_id))
            .order("joined_at", desc=True)
            .range(start, end)
            .execute()
        )
        return _page(result)

    async def list_subdepartments(
        self,
        start: int,
        end: int,
        department_id: Optional[str] = None,
        is_active: Optional[bool] = None,
    ) -> Page:
        query = (
            self.client.table("department_subdepartments")
            .select(SUBDEPARTMENT_SELECT, count="exact")
            .order("name")
            .range(start, end)
        )
        if department_id:
            query = query.eq("department_id", department_id)
        if is_active is not None:
            query = query.eq("is_active", is_active)
        return _page(query.execute())

    # ============ ANNOUNCEMENTS ============

    async def list_announcements(
        self,
        start: int,
        end: int,
        search: Optional[str] = None,
        priority: Optional[str] = None,
        department_id: Optional[str] = None,
        is_system_wide: Optional[bool] = None,
    ) -> Page:
        query = (
            self.client.table("announcements")
            .select(ANNOUNCEMENT_SELECT, count="exact")
            .order("created_at", desc=True)
            .range(start, end)
        )
        if search:
            query = query.or_(_ilike_any(("title", "content"), search))
        if priority:
            query = query.eq("priority", priority)
        if department_id:
            query = query.eq("department_id", department_id)
        if is_system_wide is not None:
            query = query.eq("is_system_wide", is_system_wide)
        return _page(query.execute())

    async def get_announcement(self, announcement_id) -> dict:
        result = (
            self.client.table("announcements")
            .select(ANNOUNCEMENT_SELECT)
            .eq("id", str(announcement_id))
            .single()
            .execute()
        )
        return result.data

    async def create_announcement(self, row: dict) -> dict:
        result = self.client.table("announcements").insert(row).execute()
        created = _first(result, "Announcement was not created")
        return await self.get_announcement(created["id"])

    async def update_announcement(self, announcement_id, updates: dict) -> dict:
        result = (
            self.client.table("announcements")
            .update(updates)
            .eq("id", str(announcement_id))
            .execute()
        )
        _first(result, "Announcement not found")
        return await self.get_announcement(announcement_id)

    async def delete_announcement(self, announcement_id) -> dict:
        result = (
            self.client.table("announcements")
            .delete()
            .eq("id", str(announcement_id))
            .execute()
        )
        return _first(result, "Announcement not found")

    # ============ DOCUMENTS ============

    async def list_documents(
        self,
        start: int,
        end: int,
        search: Optional[str] = None,
        status: Optional[str] = None,
        department_id: Optional[str] = None,
    ) -> Page:
        query = (
            self.client.table("documents")
            .select(DOCUMENT_SELECT, count="exact")
            .order("created_at", desc=True)
            .range(start, end)
        )
        if search:
            query = query.or_(_ilike_any(("title", "file_name"), search))
        if status:
            query = query.eq("status", status)
        if department_id:
            query = query.eq("department_id", department_id)
        return _page(query.execute())

    async def create_document(self, row: dict) -> dict:
        result = self.client.table("documents").insert(row).execute()
        return _first(result, "Document was not created")

    async def get_document(self, document_id) -> dict:
        result = (
            self.client.table("documents")
            .select(DOCUMENT_SELECT)
            .eq("id", str(document_id))
            .single()
            .execute()
        )
        return result.data

    async def soft_delete_document(self, document_id) -> dict:
        result = (
            self.client.table("documents")
            .update({"status": "deleted"})
            .eq("id", str(document_id))
            .execute()
        )
        return _first(result, "Document not found")

    # ============ INCIDENTS ============

    async def list_incidents(
        self,
        start: int,
        end: int,
        department_id: Optional[str] = None,
        is_resolved: Optional[bool] = None,
        start_date: Optional[str] = None,
        end_date: Optional[str] = None,
        search: Optional[str] = None,
    ) -> Page:
        query = (
            self.client.table("incidents")
            .select(INCIDENT_SELECT, count="exact")
            .order("date_of_incident", desc=True)
            .range(start, end)
        )
        if department_id:
            query = query.eq("department_id", department_id)
        if is_resolved is not None:
            query = query.eq("is_resolved", is_resolved)
        if start_date:
            query = query.gte("date_of_incident", start_date)
        if end_date:
            query = query.lte("date_of_incident", end_date)
        if search:
            query = query.or_(_ilike_any(("sbar_situation", "sbar_background"), search))
        return _page(query.execute())

    async def get_incident(self, incident_id) -> dict:
        result = (
            self.client.table("incidents")
            .select(INCIDENT_SELECT)
            .eq("id", str(incident_id))
            .single()
            .execute()
        )
        return result.data

    async def find_incident(self, incident_id) -> Optional[dict]:
        """Like get_incident, but None when the row is missing or hidden."""
        result = (
            self.client.table("incidents")
            .select(INCIDENT_SELECT)
            .eq("id", str(incident_id))
            .maybe_single()
            .execute()
        )
        return result.data if result else None

    async def create_incident(self, row: dict) -> dict:
        result = self.client.table("incidents").insert(row).execute()
        created = _first(result, "Incident was not created")
        return await self.get_incident(created["id"])

    async def update_incident(self, incident_id, updates: dict) -> dict:
        result = (
            self.client.table("incidents")
            .update(updates)
            .eq("id", str(incident_id))
            .execute()
        )
        _first(result, "Incident not found")
        return await self.get_incident(incident_id)

    async def link_announcement_to_incident(self, incident_id, announcement_id) -> None:
        (
            self.client.table("incidents")
            .update({"announcement_id": str(announcement_id)})
            .eq("id", str(incident_id))
            .execute()
        )

    async def delete_incident(self, incident_id) -> dict:
        result = (
            self.client.table("incidents")
            .delete()
            .eq("id", str(incident_id))
            .execute()
        )
        return _first(result, "Incident not found")

    async def recent_unresolved_incidents(self, limit: int = 5) -> Rows:
        result = (
            self.client.table("incidents")
            .select(INCIDENT_SELECT)
            .eq("is_resolved", False)
            .order("date_of_incident", desc=True)
            .limit(limit)
            .execute()
        )
        return result.data or []

    async def count_incidents(
        self, start_date: str, end_date: str, department_id: Optional[str] = None
    ) -> int:
        query = (
            self.client.table("incidents")
            .select("id", count="exact", head=True)
            .gte("date_of_incident", start_date)
            .lte("date_of_incident", end_date)
        )
        if department_id:
            query = query.eq("department_id", department_id)
        return query.execute().count or 0

    # ============ METRICS ============

    async def list_metrics(
        self,
        start: int,
        end: int,
        department_id: Optional[str] = None,
        subdepartment_id: Optional[str] = None,
        start_date: Optional[str] = None,
        end_date: Optional[str] = None,
    ) -> Page:
        query = (
            self.client.table("department_metrics_daily")
            .select(METRIC_SELECT, count="exact")
            .order("metric_date", desc=True)
            .range(start, end)
        )
        if department_id:
            query = query.eq("department_id", department_id)
        if subdepartment_id:
            query = query.eq("subdepartment_id", subdepartment_id)
        if start_date:
            query = query.gte("metric_date", start_date)
        if end_date:
            query = query.lte("metric_date", end_date)
        return _page(query.execute())

    async def get_metric(self, metric_id) -> dict:
        result = (
            self.client.table("department_metrics_daily")
            .select(METRIC_SELECT)
            .eq("id", str(metric_id))
            .single()
            .execute()
        )
        return result.data

    async def create_metric(self, row: dict) -> dict:
        result = self.client.table("department_metrics_daily").insert(row).execute()
        return _first(result, "Metric was not created")

    async def update_metric(self, metric_id, updates: dict) -> dict:
        result = (
            self.client.table("department_metrics_daily")
            .update(updates)
            .eq("id", str(metric_id))
            .execute()
        )
        return _first(result, "Metric not found")

    async def delete_metric(self, metric_id) -> dict:
        result = (
            self.client.table("department_metrics_daily")
            .delete()
            .eq("id", str(metric_id))
            .execute()
        )
        return _first(result, "Metric not found")

    async def department_level_metrics(
        self,
        start_date: str,
        end_date: str,
        department_id: Optional[str] = None,
        member_department_ids: Optional[List[str]] = None,
    ) -> Rows:
        """Department-level daily rows (no subdepartment) for a date range, oldest first."""
        query = (
            self.client.table("department_metrics_daily")
            .select(SUMMARY_METRIC_SELECT)
            .gte("metric_date", start_date)
            .lte("metric_date", end_date)
            .is_("subdepartment_id", "null")
            .order("metric_date")
        )
        if department_id:
            query = query.eq("department_id", department_id)
        if member_department_ids is not None:
            query = query.in_("department_id", member_department_ids)
        return query.execute().data or []

    # ============ TRANSACTION CATEGORIES ============

    async def list_transaction_categories(
        self,
        start: int,
        end: int,
        department_id: Optional[str] = None,
        start_date: Optional[str] = None,
        end_date: Optional[str] = None,
        category: Optional[str] = None,
    ) -> Page:
        query = (
            self.client.table("transaction_category_entries")
            .select("*, profiles!created_by(full_name)", count="exact")
            .order("metric_date", desc=True)
            .order("category")
            .range(start, end)
        )
        if department_id:
            query = query.eq("department_id", department_id)
        if start_date:
            query = query.gte("metric_date", start_date)
        if end_date:
            query = query.lte("metric_date", end_date)
        if category:
            query = query.eq("category", category)
        return _page(query.execute())

    async def upsert_transaction_categories(self, rows: Rows) -> Rows:
        result = (
            self.client.table("transaction_category_entries")
            .upsert(rows, on_conflict="metric_date,department_id,category")
            .execute()
        )
        return result.data or []

    async def update_transaction_category(self, entry_id, count: int, user_id: str) -> dict:
        result = (
            self.client.table("transaction_category_entries")
            .update({"count": count, "updated_by": user_id})
            .eq("id", str(entry_id))
            .execute()
        )
        return _first(result, "Transaction category entry not found")

    async def delete_transaction_category(self, entry_id) -> dict:
        result = (
            self.client.table("transaction_category_entries")
            .delete()
            .eq("id", str(entry_id))
            .execute()
        )
        return _first(result, "Transaction category entry not found")

    async def transaction_category_rows(
        self, department_id: str, start_date: str, end_date: str
    ) -> Rows:
        result = (
            self.client.table("transaction_category_entries")
            .select("category, count, metric_date")
            .eq("department_id", department_id)
            .gte("metric_date", start_date)
            .lte("metric_date", end_date)
            .order("metric_date")
            .execute()
        )
        return result.data or []

    # ============ MESSAGING ============

    async def list_message_threads(self, limit: int = 50, offset: int = 0) -> Page:
        result = (
            self.client.table("message_threads")
            .select(THREAD_SELECT, count="exact")
            .order("updated_at", desc=True)
            .range(offset, offset + limit - 1)
            .execute()
        )
        return _page(result)

    async def create_message_thread(self, thread: dict, first_body: str) -> dict:
        """
        Create a thread and its opening message.

        If the message cannot be inserted, the thread is deleted again so no
        empty thread is left behind, and the message error is re-raised.
        """
        result = self.client.table("message_threads").insert(thread).execute()
        created = _first(result, "Thread was not created")

        try:
            self.client.table("message_messages").insert({
                "thread_id": created["id"],
                "sender_id": thread["created_by"],
                "body": first_body,
            }).execute()
        except Exception:
            logger.warning("Removing thread %s after its first message failed", created["id"])
            (
                self.client.table("message_threads")
                .delete()
                .eq("id", created["id"])
                .eq("created_by", thread["created_by"])
                .execute()
            )
            raise

        return created

    async def list_thread_messages(self, thread_id, limit: int = 50) -> Rows:
        result = (
            self.client.table("message_messages")
            .select(MESSAGE_SELECT)
            .eq("thread_id", str(thread_id))
            .order("created_at")
            .limit(limit)
            .execute()
        )
        return result.data or []

    async def create_message(self, thread_id, sender_id: str, body: str) -> dict:
        result = (
            self.client.table("message_messages")
            .insert({"thread_id": str(thread_id), "sender_id": sender_id, "body": body})
            .execute()
        )
        created = _first(result, "Message was not created")
        message = (
            self.client.table("message_messages")
            .select(MESSAGE_SELECT)
            .eq("id", created["id"])
            .single()
            .execute()
        )
        return message.data

    async def latest_messages(self, thread_ids: List[str], limit: int, columns: str) -> Rows:
        """Messages across the given threads, newest first."""
        result = (
            self.client.table("message_messages")
            .select(columns)
            .in_("thread_id", thread_ids)
            .order("created_at", desc=True)
            .limit(limit)
            .execute()
        )
        return result.data or []

    async def thread_reads(self, user_id: str, thread_ids: List[str]) -> Rows:
        result = (
            self.client.table("message_thread_reads")
            .select("thread_id, last_read_at")
            .eq("user_id", user_id)
            .in_("thread_id", thread_ids)
            .execute()
        )
        return result.data or []

    async def mark_thread_read(self, thread_id, user_id: str) -> dict:
        result = (
            self.client.table("message_thread_reads")
            .upsert(
                {
                    "user_id": user_id,
                    "thread_id": str(thread_id),
                    "last_read_at": datetime.now(timezone.utc).isoformat(),
                },
                on_conflict="user_id,thread_id",
            )
            .execute()
        )
        return _first(result, "Thread not found")

    # ============ AUDIT ============

    async def insert_audit_log(self, entry: dict) -> None:
        self.client.table("audit_logs").insert(entry).execute()

    # ============ STORAGE ============

    async def upload_file(self, bucket: str, path: str, content: bytes, content_type: str) -> None:
        self.client.storage.from_(bucket).upload(
            path,
            content,
            {"content-type": content_type, "upsert": "false"},
        )

    async def remove_files(self, bucket: str, paths: List[str]) -> None:
        self.client.storage.from_(bucket).remove(paths)

    async def download_file(self, bucket: str, path: str) -> bytes:
        return self.client.storage.from_(bucket).download(path)

    async def fetch_signed_file(self, bucket: str, path: str) -> httpx.Response:
        """
        Fetch an object through a short-lived signed URL.

        Storage errors from signing propagate as storage exceptions; the
        caller inspects the returned response status for fetch failures.
        """
        signed = self.client.storage.from_(bucket).create_signed_url(path, self.signed_url_ttl)
        signed_url = signed.get("signedURL") or signed.get("signedUrl")
        async with httpx.AsyncClient(timeout=30.0) as http:
            return await http.get(signed_url, headers={"Cache-Control": "no-store"})


# Shared anonymous client, used only to verify access tokens
_supabase_client: Optional[SupabaseClient] = None
_admin_client: Optional[SupabaseClient] = None


def get_supabase_client() -> SupabaseClient:
    """Get or create the anonymous Supabase client singleton."""
    global _supabase_client
    if _supabase_client is None:
        _supabase_client = SupabaseClient()
    return _supabase_client


def get_admin_client() -> SupabaseClient:
    """Get or create the service-role Supabase client singleton."""
    global _admin_client
    if _admin_client is None:
        _admin_client = SupabaseClient(service_role=True)
    return _admin_client


def get_user_client(access_token: str) -> SupabaseClient:
    """Create a client whose queries run as the token's user."""
    return SupabaseClient(access_token=access_token)
