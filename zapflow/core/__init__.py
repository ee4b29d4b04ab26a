from .config import settings, get_settings
from .supabase_client import get_supabase_client

__all__ = ["settings", "get_settings", "get_supabase_client"]
