"""Durable maintenance job queue helpers (Redis/RQ)."""

from __future__ import annotations

import logging

from redis import Redis
from rq import Queue, Retry
from rq.job import Job, JobStatus

from config import settings
from services.clock import business_today

logger = logging.getLogger(__name__)

MAINTENANCE_QUEUE_NAME = "maintenance_jobs"

ACTIVE_STATUSES = (JobStatus.QUEUED, JobStatus.STARTED, JobStatus.DEFERRED, JobStatus.SCHEDULED)


def get_redis_connection() -> Redis:
    """Build Redis connection used by RQ."""
    return Redis.from_url(settings.REDIS_URL)


def get_maintenance_queue() -> Queue:
    """Return the configured maintenance queue."""
    return Queue(
        name=MAINTENANCE_QUEUE_NAME,
        connection=get_redis_connection(),
        default_timeout=900,
    )


def maintenance_job_id(job_name: str) -> str:
    return f"maintenance:{job_name}:{business_today().isoformat()}"


def enqueue_maintenance_job(job_name: str) -> Job:
    """Enqueue a maintenance job unless today's run of it is still waiting or running.

    RQ does not de-duplicate on ``job_id``, so an active job with the same id
    is returned as is. Finished or failed jobs are replaced.
    """
    queue = get_maintenance_queue()
    job_id = maintenance_job_id(job_name)
    existing = queue.fetch_job(job_id)
    if existing is not None and existing.get_status() in ACTIVE_STATUSES:
        logger.info("Maintenance job %s is already %s", job_id, existing.get_status())
        return existing
    return queue.enqueue(
        "services.maintenance.run_maintenance_job",
        job_name,
        job_id=job_id,
        retry=Retry(max=3, interval=[30, 120, 600]),
        job_timeout=900,
        result_ttl=86400,
        failure_ttl=86400,
    )
