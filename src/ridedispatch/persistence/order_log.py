"""Order log in Supabase: a row per dispatch job, inserted at enqueue and updated when the job settles."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Callable

from ..db.supabase import get_supabase_client
from ..models.domain import CanonicalOrder, DispatchJob, ProviderOrderResult

TABLE = "dispatch_orders"

logger = logging.getLogger(__name__)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def order_row(job_id: str, order: CanonicalOrder) -> dict[str, Any]:
    return {
        "job_id": job_id,
        "client_id": order.client_id,
        "source_channel": order.source_channel,
        "booking_id": order.booking_id,
        "status": "enqueued",
        "order_id": None,
        "error": None,
        "payload": {
            "pickup": order.pickup_text,
            "dropoff": order.dropoff_text,
            "vehicle_class": order.vehicle_class,
            "scheduled_time": order.scheduled_time.isoformat(),
            "options": sorted(order.options),
            "comment": order.comment,
        },
        "updated_at": _now(),
    }


class OrderLog:
    def __init__(self, client_factory: Callable[[], Any] = get_supabase_client) -> None:
        self._client_factory = client_factory

    @property
    def configured(self) -> bool:
        return self._client_factory() is not None

    async def record_enqueued(self, job_id: str, order: CanonicalOrder) -> None:
        supabase = self._client_factory()
        if not supabase:
            logger.info("Supabase not configured - order log entry skipped")
            return
        row = order_row(job_id, order)
        await asyncio.to_thread(lambda: supabase.table(TABLE).insert(row).execute())

    async def record_settled(
        self,
        job_id: str,
        result: ProviderOrderResult | None = None,
        error: str | None = None,
    ) -> None:
        supabase = self._client_factory()
        if not supabase:
            return
        update = {
            "status": "completed" if result else "failed",
            "order_id": result.order_id if result else None,
            "error": error,
            "updated_at": _now(),
        }
        await asyncio.to_thread(lambda: supabase.table(TABLE).update(update).eq("job_id", job_id).execute())

    async def record_job(self, job: DispatchJob) -> None:
        """Settlement hook for the dispatch queue."""
        if job.status == "completed":
            await self.record_settled(job.job_id, result=job.result)
        else:
            await self.record_settled(job.job_id, error=(job.last_error or {}).get("message"))

    async def find_by_order_id(self, order_id: str) -> dict | None:
        supabase = self._client_factory()
        if not supabase:
            return None
        response = await asyncio.to_thread(
            lambda: supabase.table(TABLE).select("*").eq("order_id", order_id).limit(1).execute()
        )
        rows = response.data or []
        return rows[0] if rows else None
