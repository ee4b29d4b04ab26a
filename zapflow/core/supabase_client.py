"""
Supabase client used by SupabaseFlowStore - created on first use
"""
from typing import Optional
from supabase import create_client, Client
from .config import settings

_supabase_client: Optional[Client] = None


def get_supabase_client() -> Client:
    """
    Shared Supabase client.

    Raises:
        RuntimeError: SUPABASE_URL or SUPABASE_KEY is not configured
    """
    global _supabase_client

    if _supabase_client is None:
        if not settings.SUPABASE_URL or not settings.SUPABASE_KEY:
            raise RuntimeError("SUPABASE_URL and SUPABASE_KEY must be set for the supabase store")
        _supabase_client = create_client(
            settings.SUPABASE_URL,
            settings.SUPABASE_KEY
        )

    return _supabase_client
