"""Health endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Request, status

from ...db.redis_client import get_redis_client
from ...db.supabase import get_supabase_client

router = APIRouter(tags=["health"])


@router.get("/health", status_code=status.HTTP_200_OK)
def health_root() -> dict:
    """Simple health check endpoint that doesn't require any dependencies."""
    return {"status": "ok"}


@router.get("/health/redis", status_code=status.HTTP_200_OK)
async def health_redis() -> dict:
    """Check that the queue/cache backend answers PING."""
    try:
        healthy = bool(await get_redis_client().ping())
        return {"service": "redis", "healthy": healthy}
    except Exception as e:
        return {"service": "redis", "healthy": False, "error": str(e)}


@router.get("/health/queue", status_code=status.HTTP_200_OK)
async def health_queue(request: Request) -> dict:
    """Report dispatch queue depth and whether workers are running."""
    queue = getattr(request.app.state, "queue", None)
    if queue is None:
        return {"service": "queue", "running": False, "message": "Dispatch queue not initialised"}
    try:
        counts = await queue.counts()
    except Exception as e:
        return {"service": "queue", "running": queue.running, "error": str(e)}
    return {"service": "queue", "running": queue.running, **counts}


@router.get("/health/database", status_code=status.HTTP_200_OK)
def check_database() -> dict:
    supabase = get_supabase_client()
    if not supabase:
        return {
            "configured": False,
            "message": "Supabase not configured. Set RIDE_SUPABASE_URL and RIDE_SUPABASE_KEY environment variables.",
        }
    return {"configured": True, "message": "Order log is written to Supabase."}
