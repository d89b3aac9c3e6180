"""
Database client singletons.

The matching core talks to Supabase through exactly one service-role
client per process. Stores receive the client by injection so unit
tests never touch this module.
"""

from functools import lru_cache
from typing import Optional

from supabase import Client, create_client

from config.settings import get_settings


class SupabaseClientError(Exception):
    """Raised when Supabase client cannot be created."""
    pass


@lru_cache(maxsize=1)
def get_supabase_client() -> Client:
    """
    Get the singleton Supabase client instance.

    Raises:
        SupabaseClientError: If the client cannot be created
    """
    try:
        settings = get_settings()
        return create_client(settings.supabase_url, settings.supabase_service_key)
    except Exception as e:
        raise SupabaseClientError(f"Failed to create Supabase client: {e}") from e


def get_supabase_client_optional() -> Optional[Client]:
    """Return the Supabase client, or None when it is not configured."""
    try:
        return get_supabase_client()
    except SupabaseClientError:
        return None


# Type alias for cleaner type hints
SupabaseClient = Client
