from hospital_portal.services.supabase_client import (
    SupabaseClient,
    get_admin_client,
    get_supabase_client,
    get_user_client,
)

__all__ = [
    "SupabaseClient",
    "get_admin_client",
    "get_supabase_client",
    "get_user_client",
]
