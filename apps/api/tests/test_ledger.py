import asyncio
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from sqlalchemy import func, select, update

from database import atomic
from models.member import Member
from models.recharge import Recharge
from models.store import StoreSettlement
from models.transaction import Transaction
from schemas.ledger import DebitResult
from services.cards import issue_card, toggle_active
from services.daily_limits import set_daily_limit
from services.errors import (
    CardNotFound,
    DailyLimitExceeded,
    InsufficientBalance,
    LedgerTimeout,
    MemberNotFound,
    StoreNotFound,
    ValidationFailed,
)
from services.ledger import (
    debit,
    get_account_snapshot,
    get_daily_stats,
    get_daily_transaction_series,
    get_member_transactions,
    get_store_daily_stats,
    get_store_sales,
    recharge,
    verify_balance,
)
from services.settlements import register_store

DAY_ONE = datetime(2026, 3, 10, 6, 0, tzinfo=timezone.utc)


async def _funded_member(db, gr_number: int, amount: str) -> int:
    card = await issue_card(db, member_ref=gr_number, name=f"Member {gr_number}")
    await recharge(db, member_ref=gr_number, amount=Decimal(amount), actor="admin")
    return card.card_number


@pytest.mark.asyncio
async def test_recharge_and_debit_move_balance_and_store_pending(db, store_id, published_events):
    card_number = await _funded_member(db, 100, "250.00")

    result = await debit(db, member_ref=100, store_id=store_id, amount="62.5", card_number=card_number)

    assert result.amount == Decimal("62.50")
    assert result.new_balance == Decimal("187.50")
    assert result.new_daily_spent == Decimal("62.50")
    assert result.remaining_daily_limit is None

    pending = (
        await db.execute(select(StoreSettlement.pending_amount).where(StoreSettlement.store_id == store_id))
    ).scalar_one()
    assert pending == Decimal("62.50")

    event = published_events.await_args.args[0]
    assert event.event_type == "transaction_completed"
    assert event.channel == f"store_{store_id}"
    assert event.data["new_balance"] == "187.50"


@pytest.mark.asyncio
async def test_daily_limit_scenario_with_lazy_reset_next_day(db, store_id):
    await _funded_member(db, 200, "500")
    await set_daily_limit(db, member_ref=200, new_limit=Decimal("300"), actor="admin")

    first = await debit(db, member_ref=200, store_id=store_id, amount=200, now=DAY_ONE)
    assert first.new_balance == Decimal("300.00")
    assert first.new_daily_spent == Decimal("200.00")
    assert first.remaining_daily_limit == Decimal("100.00")

    with pytest.raises(DailyLimitExceeded) as excinfo:
        await debit(db, member_ref=200, store_id=store_id, amount=150, now=DAY_ONE + timedelta(hours=2))
    assert excinfo.value.extra["remaining_daily_limit"] == "100.00"

    next_day = await debit(db, member_ref=200, store_id=store_id, amount=150, now=DAY_ONE + timedelta(days=1))
    assert next_day.new_balance == Decimal("150.00")
    assert next_day.new_daily_spent == Decimal("150.00")


@pytest.mark.asyncio
async def test_insufficient_balance_is_checked_before_daily_limit(db, store_id):
    await _funded_member(db, 300, "50")
    await set_daily_limit(db, member_ref=300, new_limit=Decimal("30"), actor="admin")

    with pytest.raises(InsufficientBalance) as excinfo:
        await debit(db, member_ref=300, store_id=store_id, amount=60, now=DAY_ONE)

    assert excinfo.value.extra["available_balance"] == "50.00"


@pytest.mark.asyncio
async def test_failed_debit_leaves_no_trace(db, store_id):
    card_number = await _funded_member(db, 400, "100")

    with pytest.raises(InsufficientBalance):
        await debit(db, member_ref=400, store_id=store_id, amount="100.01")
    with pytest.raises(StoreNotFound):
        await debit(db, member_ref=400, store_id="missing-store", amount=10)
    with pytest.raises(CardNotFound):
        await debit(db, member_ref=400, store_id=store_id, amount=10, card_number=card_number + 1)
    with pytest.raises(MemberNotFound):
        await debit(db, member_ref=401, store_id=store_id, amount=10)
    with pytest.raises(ValidationFailed):
        await debit(db, member_ref=400, store_id=store_id, amount=0)

    transactions = (await db.execute(select(func.count(Transaction.id)))).scalar()
    assert transactions == 0
    snapshot = await get_account_snapshot(db, member_ref=400)
    assert snapshot.balance == Decimal("100.00")
    assert snapshot.daily_spent == Decimal("0.00")


@pytest.mark.asyncio
async def test_debit_requires_an_active_card(db, store_id):
    card = await issue_card(db, member_ref=450, name="Inactive")
    await recharge(db, member_ref=450, amount=20)
    await toggle_active(db, card_id=card.id, desired_active=False)

    with pytest.raises(CardNotFound):
        await debit(db, member_ref=450, store_id=store_id, amount=5)


@pytest.mark.asyncio
async def test_balance_matches_ledger_after_mixed_activity(db, store_id):
    await _funded_member(db, 500, "120")
    await recharge(db, member_ref=500, amount="30.25", recharge_type="cash", notes="top-up")
    await debit(db, member_ref=500, store_id=store_id, amount="45.10")
    await debit(db, member_ref=500, store_id=store_id, amount="5")
    with pytest.raises(InsufficientBalance):
        await debit(db, member_ref=500, store_id=store_id, amount="500")

    check = await verify_balance(db, member_ref=500)

    assert check.consistent is True
    assert check.total_recharges == Decimal("150.25")
    assert check.total_spent == Decimal("50.10")
    assert check.stored_balance == Decimal("100.15")
    recharge_rows = (await db.execute(select(func.count(Recharge.id)))).scalar()
    assert recharge_rows == 2


@pytest.mark.asyncio
async def test_concurrent_debits_never_overspend(db, session_maker, store_id):
    await _funded_member(db, 77, "100")

    async def attempt():
        async with session_maker() as session:
            return await debit(session, member_ref=77, store_id=store_id, amount=Decimal("37.50"))

    results = await asyncio.gather(*(attempt() for _ in range(4)), return_exceptions=True)

    successes = [item for item in results if isinstance(item, DebitResult)]
    rejected = [item for item in results if isinstance(item, InsufficientBalance)]
    assert len(successes) == 2
    assert len(rejected) == 2

    async with session_maker() as session:
        check = await verify_balance(session, member_ref=77)
    assert check.stored_balance == Decimal("25.00")
    assert check.consistent is True


@pytest.mark.asyncio
async def test_atomic_rolls_back_on_timeout(db):
    await issue_card(db, member_ref=600, name="Timer")
    member = (await db.execute(select(Member).where(Member.gr_number == 600))).scalar_one()
    member_id = member.id

    with pytest.raises(LedgerTimeout):
        async with atomic(db, timeout_seconds=0.05):
            db.add(Recharge(member_id=member_id, amount=Decimal("1.00")))
            await db.flush()
            await asyncio.sleep(0.5)

    recharges = (await db.execute(select(func.count(Recharge.id)))).scalar()
    assert recharges == 0


@pytest.mark.asyncio
async def test_daily_stats_and_member_history(db, store_id):
    await _funded_member(db, 700, "80")
    await _funded_member(db, 701, "80")
    await debit(db, member_ref=700, store_id=store_id, amount=10)
    await debit(db, member_ref=700, store_id=store_id, amount=15)
    await debit(db, member_ref=701, store_id=store_id, amount=20)

    stats = await get_daily_stats(db)
    assert stats.total_members == 2
    assert stats.total_transactions == 3
    assert stats.total_amount == Decimal("45.00")

    store_stats = await get_store_daily_stats(db, store_id=store_id)
    assert store_stats.pending_amount == Decimal("45.00")
    assert store_stats.total_transactions == 3

    history = await get_member_transactions(
        db,
        member_ref=700,
        start_date=stats.business_date - timedelta(days=1),
        end_date=stats.business_date,
    )
    assert history.total_amount == Decimal("25.00")
    assert len(history.transactions) == 2


@pytest.mark.asyncio
async def test_sub_paisa_amounts_are_rejected_not_rounded(db, store_id):
    await _funded_member(db, 800, "10")

    with pytest.raises(ValidationFailed):
        await debit(db, member_ref=800, store_id=store_id, amount="0.015")
    with pytest.raises(ValidationFailed):
        await recharge(db, member_ref=800, amount="5.001")
    with pytest.raises(ValidationFailed):
        await debit(db, member_ref=800, store_id=store_id, amount="NaN")

    accepted = await debit(db, member_ref=800, store_id=store_id, amount="1.500")
    assert accepted.amount == Decimal("1.50")
    snapshot = await get_account_snapshot(db, member_ref=800)
    assert snapshot.balance == Decimal("8.50")


@pytest.mark.asyncio
async def test_balance_check_is_consistent_while_debits_commit(db, session_maker, store_id):
    await _funded_member(db, 810, "100")

    async def spend():
        async with session_maker() as session:
            return await debit(session, member_ref=810, store_id=store_id, amount=Decimal("5"))

    async def check():
        async with session_maker() as session:
            return await verify_balance(session, member_ref=810)

    results = await asyncio.gather(*(spend() if index % 2 else check() for index in range(8)))

    checks = [item for item in results if not isinstance(item, DebitResult)]
    assert len(checks) == 4
    assert all(item.consistent for item in checks)
    async with session_maker() as session:
        final = await verify_balance(session, member_ref=810)
    assert final.stored_balance == Decimal("80.00")


@pytest.mark.asyncio
async def test_daily_transaction_series_is_zero_filled(db, store_id):
    await _funded_member(db, 820, "100")
    await debit(db, member_ref=820, store_id=store_id, amount=10)
    await debit(db, member_ref=820, store_id=store_id, amount="2.50")
    await debit(db, member_ref=820, store_id=store_id, amount=4)
    ids = (await db.execute(select(Transaction.id).order_by(Transaction.amount))).scalars().all()
    # 2.50 lands on 2026-03-08 IST, 4 and 10 on 2026-03-10 IST.
    earlier = datetime(2026, 3, 8, 4, 0, tzinfo=timezone.utc)
    await db.execute(update(Transaction).where(Transaction.id == ids[0]).values(created_at=earlier))
    await db.execute(update(Transaction).where(Transaction.id.in_(ids[1:])).values(created_at=DAY_ONE))
    await db.commit()

    series = await get_daily_transaction_series(db, days=5, now=DAY_ONE + timedelta(hours=1))

    assert [point.business_date.isoformat() for point in series] == [
        "2026-03-06",
        "2026-03-07",
        "2026-03-08",
        "2026-03-09",
        "2026-03-10",
    ]
    assert [point.transaction_count for point in series] == [0, 0, 1, 0, 2]
    assert [point.total_amount for point in series] == [
        Decimal("0.00"),
        Decimal("0.00"),
        Decimal("2.50"),
        Decimal("0.00"),
        Decimal("14.00"),
    ]
    with pytest.raises(ValidationFailed):
        await get_daily_transaction_series(db, days=0)


@pytest.mark.asyncio
async def test_store_sales_are_ranked_by_total(db, store_id):
    kiosk = await register_store(db, store_name="Kiosk")
    kiosk_id = kiosk.id
    idle = await register_store(db, store_name="Idle")
    idle_id = idle.id
    await _funded_member(db, 830, "200")
    await debit(db, member_ref=830, store_id=store_id, amount=20)
    await debit(db, member_ref=830, store_id=kiosk_id, amount=30)
    await debit(db, member_ref=830, store_id=kiosk_id, amount=15)
    await debit(db, member_ref=830, store_id=store_id, amount=50)
    old = (await db.execute(select(Transaction.id).where(Transaction.amount == Decimal("50.00")))).scalar_one()
    await db.execute(update(Transaction).where(Transaction.id == old).values(created_at=DAY_ONE - timedelta(days=90)))
    await db.commit()

    sales = await get_store_sales(db)

    assert [(row.store_name, row.transaction_count, row.total_sales) for row in sales] == [
        ("Kiosk", 2, Decimal("45.00")),
        ("Canteen", 1, Decimal("20.00")),
    ]
    assert idle_id not in {row.store_id for row in sales}
