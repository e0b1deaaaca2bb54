"""Supabase client for the order log."""

import logging
from functools import lru_cache
from supabase import create_client, Client
from ..config import settings


@lru_cache()
def get_supabase_client() -> Client | None:
    """Get cached Supabase client instance.

    Returns:
        Supabase Client instance if configured, None otherwise.
        Note: This does not test the connection - actual queries may fail with network errors.
    """
    if not settings.supabase_url or not settings.supabase_key:
        logging.warning("Supabase credentials not configured (missing URL or key)")
        return None

    try:
        return create_client(settings.supabase_url, settings.supabase_key)
    except Exception as e:
        logging.error(f"Failed to create Supabase client: {e}")
        return None


# Example usage patterns:
#
# from .db.supabase import get_supabase_client
#
# # Append an order log row
# get_supabase_client().table('dispatch_orders').insert({
#     'job_id': 'a1b2',
#     'client_id': 'manual-1700000000000',
#     'status': 'enqueued',
# }).execute()
#
# # Look up by provider order id
# get_supabase_client().table('dispatch_orders') \
#     .select('*') \
#     .eq('order_id', '42') \
#     .order('updated_at', desc=True) \
#     .limit(1) \
#     .execute()
