"""Durable job state for the dispatch queue.

Jobs move ``pending -> processing -> settled``. Claiming a job moves it to
``processing`` and takes a lease on it in one atomic step; the worker renews the
lease while it holds the job. :meth:`recover` returns to ``pending`` only the
jobs whose lease has expired, so a job held by a live worker in any process is
never handed out twice.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
import uuid
from collections import deque
from typing import Callable, Protocol

from redis.asyncio import Redis

from ...models.domain import DispatchJob

SETTLED_JOB_TTL_SECONDS = 24 * 60 * 60
DEFAULT_LEASE_SECONDS = 30.0
CLAIM_POLL_SECONDS = 0.2

logger = logging.getLogger(__name__)

# KEYS: pending, processing. ARGV: lease key prefix, lease owner, lease ms.
CLAIM_SCRIPT = """
local job_id = redis.call('LMOVE', KEYS[1], KEYS[2], 'RIGHT', 'LEFT')
if not job_id then
  return false
end
redis.call('SET', ARGV[1] .. job_id, ARGV[2], 'PX', tonumber(ARGV[3]))
return job_id
"""

# KEYS: processing, pending, lease. ARGV: job id. Returns 1 when requeued.
RECOVER_SCRIPT = """
if redis.call('EXISTS', KEYS[3]) == 1 then
  return 0
end
if redis.call('LREM', KEYS[1], 1, ARGV[1]) == 0 then
  return 0
end
redis.call('RPUSH', KEYS[2], ARGV[1])
return 1
"""


class JobStore(Protocol):
    lease_seconds: float

    async def push(self, job: DispatchJob) -> None:
        ...

    async def claim(self, timeout: float) -> DispatchJob | None:
        ...

    async def renew(self, job: DispatchJob) -> bool:
        ...

    async def save(self, job: DispatchJob) -> None:
        ...

    async def settle(self, job: DispatchJob) -> None:
        ...

    async def get(self, job_id: str) -> DispatchJob | None:
        ...

    async def recover(self) -> list[DispatchJob]:
        ...

    async def counts(self) -> dict[str, int]:
        ...


def _dump(job: DispatchJob) -> str:
    return json.dumps(job.to_dict(), ensure_ascii=False)


def _load(raw: str | bytes | None) -> DispatchJob | None:
    if raw is None:
        return None
    return DispatchJob.from_dict(json.loads(raw))


def _text(value: str | bytes) -> str:
    return value.decode() if isinstance(value, bytes) else value


class RedisJobStore:
    """Pending/processing Redis lists, one JSON document and one lease key per job."""

    def __init__(
        self,
        redis: Redis,
        queue_name: str,
        settled_ttl_seconds: int = SETTLED_JOB_TTL_SECONDS,
        lease_seconds: float = DEFAULT_LEASE_SECONDS,
        poll_seconds: float = CLAIM_POLL_SECONDS,
    ) -> None:
        self.redis = redis
        self.queue_name = queue_name
        self.settled_ttl_seconds = settled_ttl_seconds
        self.lease_seconds = lease_seconds
        self.poll_seconds = poll_seconds
        self.owner = uuid.uuid4().hex
        self.pending_key = f"{queue_name}:pending"
        self.processing_key = f"{queue_name}:processing"
        self.lease_prefix = f"{queue_name}:lease:"
        self._claim_script = redis.register_script(CLAIM_SCRIPT)
        self._recover_script = redis.register_script(RECOVER_SCRIPT)

    def _job_key(self, job_id: str) -> str:
        return f"{self.queue_name}:job:{job_id}"

    def _lease_key(self, job_id: str) -> str:
        return f"{self.lease_prefix}{job_id}"

    @property
    def _lease_ms(self) -> int:
        return max(1, int(self.lease_seconds * 1000))

    async def push(self, job: DispatchJob) -> None:
        async with self.redis.pipeline(transaction=True) as pipe:
            pipe.set(self._job_key(job.job_id), _dump(job))
            pipe.lpush(self.pending_key, job.job_id)
            await pipe.execute()

    async def claim(self, timeout: float) -> DispatchJob | None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while True:
            job_id = await self._claim_script(
                keys=[self.pending_key, self.processing_key],
                args=[self.lease_prefix, self.owner, self._lease_ms],
            )
            if job_id is not None:
                break
            remaining = deadline - loop.time()
            if remaining <= 0:
                return None
            await asyncio.sleep(min(self.poll_seconds, remaining))

        job_id = _text(job_id)
        job = _load(await self.redis.get(self._job_key(job_id)))
        if job is None:
            logger.error(f"Claimed job {job_id} has no stored state; dropping it from processing")
            await self.redis.lrem(self.processing_key, 1, job_id)
            await self.redis.delete(self._lease_key(job_id))
            return None
        job.status = "processing"
        job.attempt_count += 1
        await self.save(job)
        return job

    async def renew(self, job: DispatchJob) -> bool:
        return bool(await self.redis.pexpire(self._lease_key(job.job_id), self._lease_ms))

    async def save(self, job: DispatchJob) -> None:
        await self.redis.set(self._job_key(job.job_id), _dump(job))

    async def settle(self, job: DispatchJob) -> None:
        async with self.redis.pipeline(transaction=True) as pipe:
            pipe.set(self._job_key(job.job_id), _dump(job), ex=self.settled_ttl_seconds)
            pipe.lrem(self.processing_key, 1, job.job_id)
            pipe.delete(self._lease_key(job.job_id))
            await pipe.execute()

    async def get(self, job_id: str) -> DispatchJob | None:
        return _load(await self.redis.get(self._job_key(job_id)))

    async def recover(self) -> list[DispatchJob]:
        recovered: list[DispatchJob] = []
        for raw_id in await self.redis.lrange(self.processing_key, 0, -1):
            job_id = _text(raw_id)
            moved = await self._recover_script(
                keys=[self.processing_key, self.pending_key, self._lease_key(job_id)],
                args=[job_id],
            )
            if not int(moved):
                continue
            job = await self.get(job_id)
            if job is not None:
                recovered.append(job)
        return recovered

    async def counts(self) -> dict[str, int]:
        pending = await self.redis.llen(self.pending_key)
        processing = await self.redis.llen(self.processing_key)
        return {"pending": int(pending), "processing": int(processing)}


class InMemoryJobStore:
    """Process-local job store with the same claim and lease semantics, for single-process runs and tests."""

    def __init__(
        self,
        lease_seconds: float = DEFAULT_LEASE_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.lease_seconds = lease_seconds
        self._clock = clock
        self._documents: dict[str, str] = {}
        self._pending: deque[str] = deque()
        self._processing: list[str] = []
        self._leases: dict[str, float] = {}
        self._condition = asyncio.Condition()

    async def push(self, job: DispatchJob) -> None:
        async with self._condition:
            self._documents[job.job_id] = _dump(job)
            self._pending.append(job.job_id)
            self._condition.notify()

    async def claim(self, timeout: float) -> DispatchJob | None:
        async with self._condition:
            try:
                await asyncio.wait_for(self._condition.wait_for(lambda: bool(self._pending)), timeout)
            except asyncio.TimeoutError:
                return None
            job_id = self._pending.popleft()
            self._processing.append(job_id)
            self._leases[job_id] = self._clock() + self.lease_seconds
            job = _load(self._documents[job_id])
            job.status = "processing"
            job.attempt_count += 1
            self._documents[job_id] = _dump(job)
            return job

    async def renew(self, job: DispatchJob) -> bool:
        expires_at = self._leases.get(job.job_id)
        now = self._clock()
        if expires_at is None or expires_at <= now:
            return False
        self._leases[job.job_id] = now + self.lease_seconds
        return True

    async def save(self, job: DispatchJob) -> None:
        self._documents[job.job_id] = _dump(job)

    async def settle(self, job: DispatchJob) -> None:
        self._documents[job.job_id] = _dump(job)
        self._leases.pop(job.job_id, None)
        if job.job_id in self._processing:
            self._processing.remove(job.job_id)

    async def get(self, job_id: str) -> DispatchJob | None:
        return _load(self._documents.get(job_id))

    async def recover(self) -> list[DispatchJob]:
        recovered: list[DispatchJob] = []
        now = self._clock()
        async with self._condition:
            for job_id in list(self._processing):
                if self._leases.get(job_id, 0.0) > now:
                    continue
                self._processing.remove(job_id)
                self._leases.pop(job_id, None)
                job = _load(self._documents[job_id])
                job.status = "pending"
                self._documents[job_id] = _dump(job)
                self._pending.appendleft(job_id)
                recovered.append(job)
            if recovered:
                self._condition.notify_all()
        return recovered

    async def counts(self) -> dict[str, int]:
        return {"pending": len(self._pending), "processing": len(self._processing)}
