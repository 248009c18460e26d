import asyncio
from datetime import datetime, timezone
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock, patch

import pydantic
import pytest
from rq.job import JobStatus
from sqlalchemy import func, select, update

from config import Settings
from models.maintenance_run import MaintenanceRun
from models.recharge import Recharge
from models.settlement import Settlement, SettlementLog
from models.store import StoreSettlement
from models.transaction import Transaction
from services.cards import issue_card
from services.clock import business_day_bounds, next_run_at, seconds_until
from services.errors import ValidationFailed
from services.job_queue import MAINTENANCE_QUEUE_NAME, enqueue_maintenance_job
from services.ledger import debit, recharge, verify_balance
from services.maintenance import (
    RETENTION_PURGE_JOB,
    run_daily_job_forever,
    run_maintenance_job,
    run_retention_purge,
)
from services.settlements import get_store_pending, record_payment, request_settlement

OLD = datetime(2025, 1, 1, 8, 0, tzinfo=timezone.utc)


async def _count(db, column) -> int:
    return int((await db.execute(select(func.count(column)))).scalar())


@pytest.mark.asyncio
async def test_retention_purge_carries_balance_forward(db, store_id):
    await issue_card(db, member_ref=1, name="Old Timer")
    await recharge(db, member_ref=1, amount=100)
    await debit(db, member_ref=1, store_id=store_id, amount=30)
    settlement = await request_settlement(db, store_id=store_id, amount=30)
    settlement_id = settlement.id
    await record_payment(db, settlement_id=settlement_id, amount=30)

    await db.execute(update(Recharge).values(created_at=OLD))
    await db.execute(update(Transaction).values(created_at=OLD))
    await db.execute(update(Settlement).values(created_at=OLD, updated_at=OLD))
    await db.execute(update(StoreSettlement).values(created_at=OLD, updated_at=OLD))
    await db.commit()
    await recharge(db, member_ref=1, amount=20)

    result = await run_retention_purge(db, retention_days=183)

    assert result.carried_accounts == 1
    assert result.deleted == {
        "settlement_logs": 2,
        "settlements": 1,
        "store_settlements": 1,
        "transactions": 1,
        "recharges": 1,
    }
    check = await verify_balance(db, member_ref=1)
    assert check.consistent is True
    assert check.carried_balance == Decimal("70.00")
    assert check.total_recharges == Decimal("20.00")
    assert check.stored_balance == Decimal("90.00")
    assert await _count(db, SettlementLog.id) == 0

    run = await db.get(MaintenanceRun, RETENTION_PURGE_JOB)
    assert run.run_count == 1
    await db.commit()

    # A purged store balance row is recreated by the next debit.
    await debit(db, member_ref=1, store_id=store_id, amount=10)
    assert await get_store_pending(db, store_id=store_id) == Decimal("10.00")


@pytest.mark.asyncio
async def test_retention_purge_keeps_open_settlements_and_recent_rows(db, store_id):
    await issue_card(db, member_ref=2, name="Recent")
    await recharge(db, member_ref=2, amount=50)
    await debit(db, member_ref=2, store_id=store_id, amount=20)
    await request_settlement(db, store_id=store_id, amount=15)

    await db.execute(update(Settlement).values(created_at=OLD, updated_at=OLD))
    await db.execute(update(StoreSettlement).values(created_at=OLD, updated_at=OLD))
    await db.commit()

    result = await run_retention_purge(db)

    assert result.carried_accounts == 0
    assert sum(result.deleted.values()) == 0
    assert await _count(db, Settlement.id) == 1
    assert await _count(db, Transaction.id) == 1
    assert await get_store_pending(db, store_id=store_id) == Decimal("5.00")


def test_next_run_at_uses_business_timezone():
    # 00:30 IST on 2026-06-01, before the 00:45 slot.
    early = datetime(2026, 5, 31, 19, 0, tzinfo=timezone.utc)
    assert next_run_at("00:45", early) == datetime(2026, 5, 31, 19, 15, tzinfo=timezone.utc)
    assert seconds_until("00:45", early) == 15 * 60

    # Exactly at the slot rolls to the next day.
    on_time = datetime(2026, 5, 31, 19, 15, tzinfo=timezone.utc)
    assert next_run_at("00:45", on_time) == datetime(2026, 6, 1, 19, 15, tzinfo=timezone.utc)


def test_business_day_bounds_are_utc_half_open():
    start, end = business_day_bounds(datetime(2026, 6, 1).date())
    assert start == datetime(2026, 5, 31, 18, 30, tzinfo=timezone.utc)
    assert end == datetime(2026, 6, 1, 18, 30, tzinfo=timezone.utc)


@pytest.mark.asyncio
async def test_daily_loop_survives_a_failed_run():
    calls = []

    async def job():
        calls.append(len(calls))
        if len(calls) == 1:
            raise RuntimeError("store unavailable")
        raise asyncio.CancelledError()

    with patch("services.maintenance.asyncio.sleep", new=AsyncMock()) as sleep:
        with pytest.raises(asyncio.CancelledError):
            await run_daily_job_forever("daily_reset", "00:45", job)

    assert calls == [0, 1]
    assert sleep.await_count == 2


def test_unknown_maintenance_job_is_rejected():
    with pytest.raises(ValueError):
        run_maintenance_job("compact_everything")


def test_enqueue_maintenance_job_uses_retrying_queue():
    queue = MagicMock()
    queue.fetch_job.return_value = None
    with patch("services.job_queue.get_maintenance_queue", return_value=queue):
        enqueue_maintenance_job(RETENTION_PURGE_JOB)

    args, kwargs = queue.enqueue.call_args
    assert args == ("services.maintenance.run_maintenance_job", RETENTION_PURGE_JOB)
    assert kwargs["job_id"].startswith(f"maintenance:{RETENTION_PURGE_JOB}:")
    assert kwargs["retry"].max == 3
    assert MAINTENANCE_QUEUE_NAME == "maintenance_jobs"


@pytest.mark.asyncio
async def test_concurrent_debits_recreate_a_purged_store_balance_once(db, session_maker, store_id):
    await db.execute(update(StoreSettlement).values(created_at=OLD, updated_at=OLD))
    await db.commit()
    result = await run_retention_purge(db)
    assert result.deleted["store_settlements"] == 1

    for gr_number in (90, 91, 92):
        await issue_card(db, member_ref=gr_number, name=f"Member {gr_number}")
        await recharge(db, member_ref=gr_number, amount=50)

    async def spend(gr_number):
        async with session_maker() as session:
            return await debit(session, member_ref=gr_number, store_id=store_id, amount=Decimal("12.25"))

    results = await asyncio.gather(*(spend(gr_number) for gr_number in (90, 91, 92)))

    assert [item.amount for item in results] == [Decimal("12.25")] * 3
    assert await _count(db, StoreSettlement.store_id) == 1
    assert await get_store_pending(db, store_id=store_id) == Decimal("36.75")


@pytest.mark.asyncio
async def test_retention_window_must_be_at_least_a_day(db):
    with pytest.raises(ValidationFailed):
        await run_retention_purge(db, retention_days=0)

    with pytest.raises(pydantic.ValidationError):
        Settings(RETENTION_DAYS=0)


def test_enqueue_returns_the_active_job_for_today():
    queue = MagicMock()
    active = MagicMock()
    active.get_status.return_value = JobStatus.STARTED
    queue.fetch_job.return_value = active
    with patch("services.job_queue.get_maintenance_queue", return_value=queue):
        job = enqueue_maintenance_job(RETENTION_PURGE_JOB)

    assert job is active
    queue.enqueue.assert_not_called()

    active.get_status.return_value = JobStatus.FINISHED
    with patch("services.job_queue.get_maintenance_queue", return_value=queue):
        enqueue_maintenance_job(RETENTION_PURGE_JOB)

    assert queue.enqueue.call_count == 1
