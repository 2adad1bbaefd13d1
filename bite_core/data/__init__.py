"""Backend access: Supabase queries and realtime push sources."""

from .supabase_client import BackendClient, get_supabase_client
from .realtime import RealtimeStatusSource, LocalPushSource

__all__ = [
    "BackendClient",
    "get_supabase_client",
    "RealtimeStatusSource",
    "LocalPushSource",
]
