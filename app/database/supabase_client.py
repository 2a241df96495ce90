import logging
from typing import Callable, Optional
from supabase import create_client, Client
from app.config import settings

logger = logging.getLogger(__name__)


class SupabaseNotConfigured(RuntimeError):
    pass


class SupabaseClient:
    """Process-wide anon and service-role clients.

    Password sign-in and session refresh store the user's session on the
    client that performed them and switch its PostgREST auth to that user,
    so those calls go through `new_session_client()` and never touch the
    cached clients.
    """
    _client: Optional[Client] = None
    _service_client: Optional[Client] = None

    @staticmethod
    def _create(key: str) -> Client:
        if not settings.supabase_url or not key:
            raise SupabaseNotConfigured("SUPABASE_URL and a Supabase key must be set")
        return create_client(settings.supabase_url, key)

    @classmethod
    def get_client(cls) -> Client:
        if cls._client is None:
            cls._client = cls._create(settings.supabase_key)
        return cls._client

    @classmethod
    def get_service_client(cls) -> Client:
        """Client with service_role key; bypasses RLS. Used for profiles, orders and auth.admin."""
        if cls._service_client is None:
            if settings.supabase_service_role_key:
                cls._service_client = cls._create(settings.supabase_service_role_key)
            else:
                logger.warning("SUPABASE_SERVICE_ROLE_KEY not set; using the anon client for server-side queries")
                cls._service_client = cls.get_client()
        return cls._service_client

    @classmethod
    def new_session_client(cls) -> Client:
        return cls._create(settings.supabase_key)

    @classmethod
    def reset_client(cls):
        cls._client = None
        cls._service_client = None


def get_service_supabase() -> Client:
    return SupabaseClient.get_service_client()


def get_session_client_factory() -> Callable[[], Client]:
    return SupabaseClient.new_session_client
