"""Database connections module."""

from app.db.repository import (
    SEVERITY_ORDER,
    StoredDocument,
    SupabaseRepository,
    get_repository,
    reset_repository,
)
from app.db.supabase import get_async_supabase_client_async, reset_clients

__all__ = [
    "SEVERITY_ORDER",
    "StoredDocument",
    "SupabaseRepository",
    "get_async_supabase_client_async",
    "get_repository",
    "reset_clients",
    "reset_repository",
]
