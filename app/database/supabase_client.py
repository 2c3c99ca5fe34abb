from postgrest.exceptions import APIError
from supabase import create_client, Client
from app.config import settings
from typing import Any, Dict, Optional

# PostgREST code for ".single()" matching zero rows
NO_ROWS_ERROR_CODE = "PGRST116"


class SupabaseClient:
    _client: Client = None
    _service_client: Client = None

    @classmethod
    def get_client(cls) -> Client:
        if cls._client is None:
            cls._client = create_client(settings.supabase_url, settings.supabase_key)
        return cls._client

    @classmethod
    def get_service_client(cls) -> Client:
        """Client with service_role key; bypasses RLS. Used by public endpoints and the scheduler."""
        if cls._service_client is None and settings.supabase_service_role_key:
            cls._service_client = create_client(
                settings.supabase_url, settings.supabase_service_role_key
            )
        return cls._service_client or cls.get_client()

    @classmethod
    def reset_client(cls):
        cls._client = None
        cls._service_client = None


def get_supabase() -> Client:
    return SupabaseClient.get_client()


def is_no_rows_error(error: Exception) -> bool:
    return isinstance(error, APIError) and error.code == NO_ROWS_ERROR_CODE


def fetch_single(query) -> Optional[Dict[str, Any]]:
    """Run query with .single(); returns None instead of raising when no row matches."""
    try:
        result = query.single().execute()
    except APIError as e:
        if is_no_rows_error(e):
            return None
        raise
    return result.data if result else None


def get_service_supabase() -> Client:
    """Service-role client for unauthenticated public endpoints."""
    return SupabaseClient.get_service_client()
