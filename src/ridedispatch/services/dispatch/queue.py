"""Rate-limited dispatch queue decoupling order intake from provider calls.

Each worker slot claims one job at a time, waits for a start slot from the
shared rate limiter and calls the provider client exactly once; the client's
own retry loop runs inside that single call. A failed job is marked failed with
its last error and is never re-attempted by the queue.

While a worker holds a job it renews the job's lease. A reaper returns jobs
whose lease has lapsed (their worker died) to the pending list, so recovery is
at-least-once only for jobs nobody is still working on.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Protocol

from ...errors import ProviderError, QueueError, QueueTimeoutError
from ...models.domain import DispatchJob, JobHandle, ProviderOrderResult, ProviderRequest
from .rate_limiter import RateLimiter
from .store import JobStore

logger = logging.getLogger(__name__)

SettlementHook = Callable[[DispatchJob], Awaitable[None]]


class OrderDispatcher(Protocol):
    async def create_order(self, request: ProviderRequest) -> ProviderOrderResult:
        ...


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def error_record(error: BaseException) -> dict[str, Any]:
    if isinstance(error, ProviderError):
        record = error.to_dict()
    else:
        record = {"message": str(error) or type(error).__name__}
    record["type"] = type(error).__name__
    return record


def error_from_record(job_id: str, record: dict[str, Any] | None) -> Exception:
    if not record:
        return QueueError(f"Dispatch job {job_id} failed without a recorded error")
    if record.get("type") == "ProviderError":
        return ProviderError(
            record.get("message", "Provider call failed"),
            status_code=record.get("status_code"),
            retryable=bool(record.get("retryable")),
            curl=record.get("curl"),
            response_body=record.get("response_body"),
        )
    return QueueError(f"Dispatch job {job_id} failed: {record.get('message')}")


class DispatchQueue:
    def __init__(
        self,
        store: JobStore,
        dispatcher: OrderDispatcher,
        rate_limiter: RateLimiter,
        *,
        workers: int = 1,
        poll_interval: float = 0.5,
        claim_timeout: float = 1.0,
        on_settled: SettlementHook | None = None,
    ) -> None:
        self.store = store
        self.dispatcher = dispatcher
        self.rate_limiter = rate_limiter
        self.workers = workers
        self.poll_interval = poll_interval
        self.claim_timeout = claim_timeout
        self.on_settled = on_settled
        self._events: dict[str, asyncio.Event] = {}
        self._tasks: list[asyncio.Task] = []

    @property
    def running(self) -> bool:
        return any(not task.done() for task in self._tasks)

    async def enqueue(
        self,
        request: ProviderRequest,
        source_tag: str = "order-processor",
        job_id: str | None = None,
    ) -> JobHandle:
        job = DispatchJob(
            job_id=job_id or uuid.uuid4().hex,
            provider_request=request,
            enqueued_at=_utc_now(),
            source_tag=source_tag,
        )
        self._events[job.job_id] = asyncio.Event()
        try:
            await self.store.push(job)
        except Exception as exc:
            self._events.pop(job.job_id, None)
            raise QueueError(f"Failed to enqueue dispatch job: {exc}") from exc
        logger.info(f"Enqueued dispatch job {job.job_id} (source: {source_tag})")
        return JobHandle(job_id=job.job_id)

    async def await_result(self, handle: JobHandle, timeout: float | None = None) -> ProviderOrderResult:
        """Suspend until the job settles; raise its failure or QueueTimeoutError."""
        try:
            return await asyncio.wait_for(self._wait(handle.job_id), timeout)
        except asyncio.TimeoutError as exc:
            raise QueueTimeoutError(handle.job_id, timeout or 0.0) from exc
        finally:
            self._events.pop(handle.job_id, None)

    async def _wait(self, job_id: str) -> ProviderOrderResult:
        event = self._events.setdefault(job_id, asyncio.Event())
        while True:
            try:
                job = await self.store.get(job_id)
            except Exception as exc:
                raise QueueError(f"Failed to read dispatch job {job_id}: {exc}") from exc
            if job is None:
                raise QueueError(f"Dispatch job {job_id} not found")
            if job.status == "completed" and job.result is not None:
                return job.result
            if job.status == "failed":
                raise error_from_record(job_id, job.last_error)
            # Local workers signal the event; jobs settled by other processes are seen on the next poll.
            try:
                await asyncio.wait_for(event.wait(), self.poll_interval)
            except asyncio.TimeoutError:
                pass

    async def start(self) -> list[DispatchJob]:
        recovered = await self.store.recover()
        self._report_recovered(recovered)
        self._tasks = [
            asyncio.create_task(self._worker_loop(slot), name=f"dispatch-worker-{slot}")
            for slot in range(self.workers)
        ]
        self._tasks.append(asyncio.create_task(self._reaper_loop(), name="dispatch-reaper"))
        logger.info(f"Started {self.workers} dispatch worker(s)")
        return recovered

    async def stop(self) -> None:
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        logger.info("Dispatch workers stopped")

    def _report_recovered(self, recovered: list[DispatchJob]) -> None:
        for job in recovered:
            if job.dispatch_started_at:
                logger.warning(
                    f"Re-queued job {job.job_id} was interrupted after its provider call started "
                    f"at {job.dispatch_started_at}; the provider may already hold this order"
                )
        if recovered:
            logger.info(f"Recovered {len(recovered)} dispatch job(s) with expired leases")

    async def _reaper_loop(self) -> None:
        while True:
            await asyncio.sleep(self.store.lease_seconds)
            try:
                recovered = await self.store.recover()
            except Exception as exc:
                logger.error(f"Failed to recover dispatch jobs with expired leases: {exc}")
                continue
            self._report_recovered(recovered)

    async def _worker_loop(self, slot: int) -> None:
        while True:
            try:
                job = await self.store.claim(self.claim_timeout)
            except Exception as exc:
                logger.error(f"Worker {slot} failed to claim a job: {exc}")
                await asyncio.sleep(self.poll_interval)
                continue
            if job is None:
                continue
            try:
                await self.process_job(job)
            except Exception:
                logger.exception(f"Worker {slot} failed while processing job {job.job_id}")

    async def _heartbeat(self, job: DispatchJob) -> None:
        while True:
            await asyncio.sleep(self.store.lease_seconds / 3)
            try:
                if not await self.store.renew(job):
                    logger.warning(f"Lease on dispatch job {job.job_id} lapsed before the job settled")
            except Exception as exc:
                logger.warning(f"Failed to renew lease on dispatch job {job.job_id}: {exc}")

    async def process_job(self, job: DispatchJob) -> DispatchJob:
        heartbeat = asyncio.create_task(self._heartbeat(job), name=f"dispatch-lease-{job.job_id}")
        try:
            await self._run(job)
            await self._settle(job)
        finally:
            heartbeat.cancel()
            await asyncio.gather(heartbeat, return_exceptions=True)
        return job

    async def _run(self, job: DispatchJob) -> None:
        try:
            await self.rate_limiter.acquire()
            logger.info(f"Processing dispatch job {job.job_id} (pull {job.attempt_count})")
            job.dispatch_started_at = _utc_now()
            await self.store.save(job)
        except Exception as exc:
            job.dispatch_started_at = None
            job.status = "failed"
            job.last_error = error_record(QueueError(f"could not start the provider call: {exc}"))
            logger.error(f"Dispatch job {job.job_id} failed before the provider call: {exc}")
            return

        try:
            result = await self.dispatcher.create_order(job.provider_request)
        except Exception as exc:
            job.status = "failed"
            job.last_error = error_record(exc)
            logger.error(f"Dispatch job {job.job_id} failed: {exc}")
        else:
            job.status = "completed"
            job.result = result
            job.last_error = None
            logger.info(f"Dispatch job {job.job_id} completed with provider order {result.order_id}")

    async def _settle(self, job: DispatchJob) -> None:
        try:
            await self.store.settle(job)
        except Exception as exc:
            # The lease lapses once the heartbeat stops, so the reaper hands the job out again.
            logger.error(f"Failed to store the outcome of dispatch job {job.job_id}: {exc}")
            return

        event = self._events.get(job.job_id)
        if event is not None:
            event.set()

        if self.on_settled is not None:
            try:
                await self.on_settled(job)
            except Exception as exc:
                logger.error(f"Settlement hook failed for dispatch job {job.job_id}: {exc}")

    async def counts(self) -> dict[str, int]:
        return await self.store.counts()
