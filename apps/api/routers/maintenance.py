"""
Router for administrative maintenance: daily-limit status, sweeps and purges.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from routers.auth_scope import AuthContext, require_admin
from schemas.maintenance import DailyLimitStatus, SweepResult
from services.job_queue import enqueue_maintenance_job
from services.maintenance import (
    RETENTION_PURGE_JOB,
    get_daily_limit_status,
    run_daily_reset,
    run_retention_purge,
)

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/daily-limit-status", response_model=DailyLimitStatus)
async def daily_limit_status(
    auth: AuthContext = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return await get_daily_limit_status(db)


@router.post("/daily-reset", response_model=SweepResult)
async def daily_reset(
    force: bool = Query(default=False),
    auth: AuthContext = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Run the daily-limit sweep now; ``force`` resets every account."""
    logger.info("Daily reset triggered by %s (force=%s)", auth.subject, force)
    return await run_daily_reset(db, force=force)


@router.post("/retention-purge")
async def retention_purge(
    background: bool = Query(default=False),
    auth: AuthContext = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Purge history outside the retention window, inline or on the worker queue."""
    if background:
        try:
            job = enqueue_maintenance_job(RETENTION_PURGE_JOB)
        except Exception as exc:
            logger.warning("Could not enqueue retention purge: %s", exc)
            raise HTTPException(status_code=503, detail="Maintenance queue is unavailable.") from exc
        return {"queued": True, "job_id": job.id}

    logger.info("Retention purge triggered by %s", auth.subject)
    result = await run_retention_purge(db)
    return result.model_dump(mode="json")
