"""Out-of-process snapshot drains over Redis/RQ."""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from redis import Redis
from rq import Queue
from rq.job import Job, JobStatus

from config import resolve_snapshot_worker_id, settings
from database import engine
from services.snapshot_worker import SnapshotWorker


logger = logging.getLogger(__name__)

SNAPSHOT_QUEUE_NAME = "snapshot_jobs"
SNAPSHOT_DRAIN_JOB_ID = "snapshot-drain"
PENDING_JOB_STATUSES = (JobStatus.QUEUED, JobStatus.SCHEDULED, JobStatus.DEFERRED)


def get_redis_connection() -> Redis:
    """Build Redis connection used by RQ."""
    return Redis.from_url(settings.REDIS_URL)


def get_snapshot_queue(connection: Optional[Redis] = None) -> Queue:
    """Return the configured snapshot drain queue."""
    return Queue(
        name=SNAPSHOT_QUEUE_NAME,
        connection=connection or get_redis_connection(),
        default_timeout=600,
    )


def enqueue_snapshot_drain_job(max_items: Optional[int] = None, queue: Optional[Queue] = None) -> Job:
    """Enqueue a drain unless one is already waiting; RQ workers in any process pick it up."""
    queue = queue or get_snapshot_queue()
    existing = queue.fetch_job(SNAPSHOT_DRAIN_JOB_ID)
    if existing is not None and existing.get_status() in PENDING_JOB_STATUSES:
        return existing
    return queue.enqueue(
        "services.snapshot_jobs.process_snapshot_drain_job",
        max_items,
        job_id=SNAPSHOT_DRAIN_JOB_ID,
        job_timeout=600,
        result_ttl=3600,
        failure_ttl=86400,
    )


async def process_snapshot_drain_job_async(max_items: Optional[int] = None) -> int:
    worker = SnapshotWorker(worker_id=resolve_snapshot_worker_id(prefix="rq-snapshot-v1"))
    try:
        processed = await worker.drain_queue(max_items)
    finally:
        # Pooled connections are bound to this job's event loop.
        await engine.dispose()
    logger.info("RQ snapshot drain processed %s rows", processed)
    return processed


def process_snapshot_drain_job(max_items: Optional[int] = None) -> int:
    """RQ worker entrypoint for snapshot drains."""
    return asyncio.run(process_snapshot_drain_job_async(max_items))
