"""Service-role Supabase client factory.

Clients are built per request and passed explicitly; nothing here caches a
module-level client.
"""

from supabase import create_client, Client

from aitools.config import Settings
from aitools.errors import ConfigurationError


def require_supabase_settings(settings: Settings) -> None:
    if not settings.supabase_url or not settings.supabase_service_role_key:
        raise ConfigurationError("SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY must be set")


def create_service_client(settings: Settings) -> Client:
    """Create a Supabase client using the service role key."""
    require_supabase_settings(settings)
    return create_client(settings.supabase_url, settings.supabase_service_role_key)


def create_anon_client(settings: Settings) -> Client:
    if not settings.supabase_url or not settings.supabase_anon_key:
        raise ConfigurationError("SUPABASE_URL and SUPABASE_ANON_KEY must be set")
    return create_client(settings.supabase_url, settings.supabase_anon_key)
