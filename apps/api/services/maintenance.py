"""Scheduled maintenance: the eager daily-limit sweep and the retention purge."""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Awaitable, Callable, Dict, Optional

from sqlalchemy import delete, exists, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from config import settings
from database import async_session_maker, atomic, engine
from models.account import Account
from models.maintenance_run import MaintenanceRun
from models.recharge import Recharge
from models.settlement import COMPLETED as SETTLEMENT_COMPLETED
from models.settlement import Settlement, SettlementLog
from models.store import StoreSettlement
from models.transaction import COMPLETED as TRANSACTION_COMPLETED
from models.transaction import Transaction
from schemas.maintenance import DailyLimitStatus, JobRecord, PurgeResult, SweepResult
from services.clock import business_today, next_run_at, utcnow
from services.daily_limits import reset_stale_daily_spend, stale_reset_clause
from services.errors import ValidationFailed

logger = logging.getLogger(__name__)

DAILY_RESET_JOB = "daily_reset"
RETENTION_PURGE_JOB = "retention_purge"


async def _record_run(
    db: AsyncSession,
    job_name: str,
    ran_at: datetime,
    business_date,
    result: Dict[str, Any],
) -> None:
    existing = await db.execute(
        select(MaintenanceRun)
        .where(MaintenanceRun.job_name == job_name)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    run = existing.scalar_one_or_none()
    if run is None:
        run = MaintenanceRun(job_name=job_name, run_count=0)
        db.add(run)
    run.last_run_at = ran_at
    run.business_date = business_date
    run.run_count = int(run.run_count or 0) + 1
    run.last_result = result
    await db.flush()


async def run_daily_reset(
    db: Optional[AsyncSession] = None,
    *,
    now: Optional[datetime] = None,
    force: bool = False,
) -> SweepResult:
    """Zero daily spend for every account not yet reset in the current business day.

    Safe to run more than once per day: the second run matches no rows.
    ``force`` resets every account regardless of its last reset date.
    """
    if db is None:
        async with async_session_maker() as session:
            return await run_daily_reset(session, now=now, force=force)

    current = now or utcnow()
    today = business_today(current)
    async with atomic(db):
        count = await reset_stale_daily_spend(db, today=today, force=force)
        result = SweepResult(business_date=today, reset_count=count, forced=force)
        await _record_run(db, DAILY_RESET_JOB, current, today, result.model_dump(mode="json"))

    logger.info("Daily limit sweep for %s reset %s account(s)%s", today, count, " (forced)" if force else "")
    return result


async def _net_before(db: AsyncSession, cutoff: datetime) -> Dict[str, Decimal]:
    net: Dict[str, Decimal] = defaultdict(lambda: Decimal("0.00"))
    recharges = await db.execute(
        select(Recharge.member_id, func.coalesce(func.sum(Recharge.amount), 0))
        .where(Recharge.created_at < cutoff)
        .group_by(Recharge.member_id)
    )
    for member_id, total in recharges.all():
        net[member_id] += Decimal(str(total))

    debits = await db.execute(
        select(Transaction.member_id, func.coalesce(func.sum(Transaction.amount), 0))
        .where(Transaction.created_at < cutoff, Transaction.status == TRANSACTION_COMPLETED)
        .group_by(Transaction.member_id)
    )
    for member_id, total in debits.all():
        net[member_id] -= Decimal(str(total))
    return {member_id: value.quantize(Decimal("0.01")) for member_id, value in net.items()}


async def _deleted(db: AsyncSession, statement) -> int:
    # "fetch" drops the deleted rows from the session identity map.
    result = await db.execute(statement.execution_options(synchronize_session="fetch"))
    return int(result.rowcount or 0)


async def run_retention_purge(
    db: Optional[AsyncSession] = None,
    *,
    now: Optional[datetime] = None,
    retention_days: Optional[int] = None,
) -> PurgeResult:
    """Delete ledger history older than the retention window in one transaction.

    Net contributions of the deleted recharges and debits are first folded
    into ``Account.carried_balance`` so the stored balance stays derivable
    from what remains.
    """
    if db is None:
        async with async_session_maker() as session:
            return await run_retention_purge(session, now=now, retention_days=retention_days)

    current = now or utcnow()
    days = int(retention_days if retention_days is not None else settings.RETENTION_DAYS)
    if days < 1:
        raise ValidationFailed("retention_days must be at least 1", field="retention_days")
    cutoff = current - timedelta(days=days)

    async with atomic(db):
        net = await _net_before(db, cutoff)
        carried = 0
        for member_id, delta in net.items():
            if delta == 0:
                continue
            await db.execute(
                update(Account)
                .where(Account.member_id == member_id)
                .values(carried_balance=Account.carried_balance + delta)
                .execution_options(synchronize_session=False)
            )
            carried += 1

        expired_settlements = select(Settlement.id).where(
            Settlement.status == SETTLEMENT_COMPLETED,
            func.coalesce(Settlement.updated_at, Settlement.created_at) < cutoff,
        )
        deleted = {
            "settlement_logs": await _deleted(
                db, delete(SettlementLog).where(SettlementLog.settlement_id.in_(expired_settlements))
            ),
        }
        deleted["settlements"] = await _deleted(
            db,
            delete(Settlement).where(
                Settlement.status == SETTLEMENT_COMPLETED,
                func.coalesce(Settlement.updated_at, Settlement.created_at) < cutoff,
            ),
        )
        deleted["store_settlements"] = await _deleted(
            db,
            delete(StoreSettlement).where(
                func.coalesce(StoreSettlement.updated_at, StoreSettlement.created_at) < cutoff,
                StoreSettlement.pending_amount == 0,
                ~exists().where(Settlement.store_id == StoreSettlement.store_id),
            ),
        )
        deleted["transactions"] = await _deleted(db, delete(Transaction).where(Transaction.created_at < cutoff))
        deleted["recharges"] = await _deleted(db, delete(Recharge).where(Recharge.created_at < cutoff))

        result = PurgeResult(cutoff=cutoff, deleted=deleted, carried_accounts=carried)
        await _record_run(db, RETENTION_PURGE_JOB, current, business_today(current), result.model_dump(mode="json"))

    logger.info("Retention purge before %s: %s (carried %s account(s))", cutoff.isoformat(), deleted, carried)
    return result


async def get_daily_limit_status(db: AsyncSession, *, now: Optional[datetime] = None) -> DailyLimitStatus:
    current = now or utcnow()
    today = business_today(current)
    total = await db.execute(select(func.count(Account.id)))
    reset_today = await db.execute(select(func.count(Account.id)).where(Account.last_spent_reset == today))
    needs_reset = await db.execute(select(func.count(Account.id)).where(stale_reset_clause(today)))
    run = await db.get(MaintenanceRun, DAILY_RESET_JOB)
    last_sweep = None
    if run is not None:
        last_sweep = JobRecord(
            job_name=run.job_name,
            last_run_at=run.last_run_at,
            business_date=run.business_date,
            run_count=run.run_count,
            last_result=run.last_result,
        )
    return DailyLimitStatus(
        business_date=today,
        total_accounts=int(total.scalar() or 0),
        reset_today=int(reset_today.scalar() or 0),
        needs_reset=int(needs_reset.scalar() or 0),
        next_scheduled_reset=next_run_at(settings.DAILY_RESET_TIME, current),
        last_sweep=last_sweep,
    )


async def run_daily_job_forever(job_name: str, clock: str, job: Callable[[], Awaitable[Any]]) -> None:
    """Run ``job`` every day at ``clock`` (business timezone) until cancelled.

    A failed run is logged and the loop waits for the next day's slot.
    """
    last_target: Optional[datetime] = None
    while True:
        reference = utcnow()
        if last_target is not None and reference < last_target:
            reference = last_target
        target = next_run_at(clock, reference)
        delay = max((target - utcnow()).total_seconds(), 0.0)
        logger.info("Next %s run at %s (in %.0fs)", job_name, target.isoformat(), delay)
        await asyncio.sleep(delay)
        last_target = target
        try:
            await job()
        except Exception:
            logger.exception("Scheduled %s run failed", job_name)


MAINTENANCE_JOBS: Dict[str, Callable[[], Awaitable[Any]]] = {
    DAILY_RESET_JOB: run_daily_reset,
    RETENTION_PURGE_JOB: run_retention_purge,
}


async def run_maintenance_job_async(job_name: str) -> Dict[str, Any]:
    job = MAINTENANCE_JOBS.get(job_name)
    if job is None:
        raise ValueError(f"Unknown maintenance job: {job_name}")
    try:
        result = await job()
    finally:
        await engine.dispose()
    return result.model_dump(mode="json")


def run_maintenance_job(job_name: str) -> Dict[str, Any]:
    """RQ worker entrypoint for maintenance jobs."""
    return asyncio.run(run_maintenance_job_async(job_name))
