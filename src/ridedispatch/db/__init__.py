"""Database clients and utilities."""

from .redis_client import get_redis_client
from .supabase import get_supabase_client

__all__ = ["get_redis_client", "get_supabase_client"]
