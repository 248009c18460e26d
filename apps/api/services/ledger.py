"""Balance ledger: recharges, scan-time debits and balance reads.

``Account.balance`` is a materialised view of the ledger rows. Every
mutation locks the account row, appends the ledger row and moves the
materialised balance in the same transaction.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Any, List, Optional, Tuple

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from database import atomic
from models.account import Account
from models.member import Member
from models.recharge import Recharge
from models.store import Store
from models.transaction import COMPLETED, Transaction
from schemas.ledger import (
    AccountSnapshot,
    BalanceCheck,
    DailyStats,
    DailyTransactionPoint,
    DebitResult,
    MemberTransactionHistory,
    RechargeResult,
    StoreDailyStats,
    StoreSales,
    TransactionRow,
)
from services import events
from services.cards import get_active_card, resolve_active_card
from services.clock import business_day_bounds, business_today, utcnow
from services.daily_limits import apply_lazy_reset, has_limit, remaining_limit
from services.errors import (
    DailyLimitExceeded,
    InsufficientBalance,
    MemberNotFound,
    ValidationFailed,
    require_member_ref,
    require_positive,
)
from services.settlements import get_store_pending, lock_store_settlement

logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")

ANALYTICS_WINDOW_DAYS = 30


def _money(value: Any) -> Decimal:
    return Decimal(str(value if value is not None else 0)).quantize(Decimal("0.01"))


async def _lock_account(db: AsyncSession, gr_number: int) -> Tuple[Account, Member]:
    result = await db.execute(
        select(Account, Member)
        .join(Member, Member.id == Account.member_id)
        .where(Member.gr_number == gr_number)
        .with_for_update(of=Account)
        .execution_options(populate_existing=True)
    )
    row = result.first()
    if row is None:
        raise MemberNotFound(f"Member with GR number {gr_number} not found", member_ref=gr_number)
    return row[0], row[1]


async def recharge(
    db: AsyncSession,
    *,
    member_ref: int,
    amount,
    recharge_type: str = "credit",
    notes: Optional[str] = None,
    actor: Optional[str] = None,
) -> RechargeResult:
    """Append a recharge and raise the materialised balance atomically."""
    gr_number = require_member_ref(member_ref)
    value = require_positive(amount)
    recharge_type = (recharge_type or "credit").strip() or "credit"

    async with atomic(db):
        account, member = await _lock_account(db, gr_number)
        row = Recharge(
            member_id=member.id,
            amount=value,
            recharge_type=recharge_type,
            notes=notes,
            created_by=actor,
        )
        db.add(row)
        account.balance = _money(account.balance) + value
        await db.flush()
        new_balance = account.balance

    logger.info("Recharge of %s for GR %s by %s; balance now %s", value, gr_number, actor, new_balance)
    return RechargeResult(recharge_id=row.id, member_ref=gr_number, amount=value, new_balance=new_balance)


async def debit(
    db: AsyncSession,
    *,
    member_ref: int,
    store_id: str,
    amount,
    card_number: Optional[int] = None,
    now: Optional[datetime] = None,
) -> DebitResult:
    """Debit a member against a card scan.

    Runs entirely under the account row lock: lazy daily reset, balance and
    daily-limit checks, transaction insert, account update and the store's
    pending earnings all commit together or not at all.
    """
    gr_number = require_member_ref(member_ref)
    value = require_positive(amount)
    today = business_today(now)

    async with atomic(db):
        account, member = await _lock_account(db, gr_number)
        if card_number is not None:
            card = await resolve_active_card(db, member_ref=gr_number, card_number=card_number)
        else:
            card = await get_active_card(db, member_ref=gr_number)

        await apply_lazy_reset(db, account, today)
        balance = _money(account.balance)
        daily_spent = _money(account.daily_spent)
        daily_limit = account.daily_limit

        if value > balance:
            raise InsufficientBalance(
                f"Insufficient balance: available ₹{balance}, requested ₹{value}",
                available_balance=balance,
            )
        if has_limit(daily_limit) and daily_spent + value > daily_limit:
            remaining = remaining_limit(daily_limit, daily_spent)
            raise DailyLimitExceeded(
                f"Daily limit exceeded: remaining today ₹{remaining}",
                daily_limit=daily_limit,
                daily_spent=daily_spent,
                remaining_daily_limit=remaining,
            )

        store_settlement = await lock_store_settlement(db, store_id)
        transaction = Transaction(
            member_id=member.id,
            card_id=card.id,
            store_id=store_id,
            amount=value,
            status=COMPLETED,
        )
        db.add(transaction)
        account.balance = balance - value
        account.daily_spent = daily_spent + value
        account.last_spent_reset = today
        store_settlement.pending_amount = _money(store_settlement.pending_amount) + value
        await db.flush()

        result = DebitResult(
            transaction_id=transaction.id,
            member_ref=gr_number,
            store_id=store_id,
            card_number=card.card_number,
            amount=value,
            new_balance=account.balance,
            new_daily_spent=account.daily_spent,
            daily_limit=daily_limit if has_limit(daily_limit) else None,
            remaining_daily_limit=remaining_limit(daily_limit, account.daily_spent),
        )

    logger.info(
        "Debit %s committed: GR %s paid %s at store %s (balance %s, spent today %s)",
        result.transaction_id, gr_number, value, store_id, result.new_balance, result.new_daily_spent,
    )
    await events.publish_event(
        events.transaction_completed(
            store_id=store_id,
            member_ref=gr_number,
            amount=value,
            new_balance=result.new_balance,
            new_daily_spent=result.new_daily_spent,
            transaction_id=result.transaction_id,
        )
    )
    return result


async def get_account_snapshot(db: AsyncSession, *, member_ref: int, now: Optional[datetime] = None) -> AccountSnapshot:
    """Read balance and daily-spend state, applying the lazy reset if stale."""
    gr_number = require_member_ref(member_ref)
    today = business_today(now)

    async with atomic(db):
        account, member = await _lock_account(db, gr_number)
        await apply_lazy_reset(db, account, today)

    return AccountSnapshot(
        member_ref=gr_number,
        name=member.name,
        group_name=member.group_name,
        balance=_money(account.balance),
        daily_limit=account.daily_limit if has_limit(account.daily_limit) else None,
        daily_spent=_money(account.daily_spent),
        remaining_daily_limit=remaining_limit(account.daily_limit, _money(account.daily_spent)),
        last_spent_reset=account.last_spent_reset,
    )


async def verify_balance(db: AsyncSession, *, member_ref: int) -> BalanceCheck:
    """Recompute the balance from ledger rows and compare with the stored value.

    The account row is share-locked for the duration of the check, so no
    mutation can commit between reading the balance and summing the ledger.
    """
    gr_number = require_member_ref(member_ref)
    async with atomic(db):
        result = await db.execute(
            select(Account, Member)
            .join(Member, Member.id == Account.member_id)
            .where(Member.gr_number == gr_number)
            .with_for_update(read=True, of=Account)
            .execution_options(populate_existing=True)
        )
        row = result.first()
        if row is None:
            raise MemberNotFound(f"Member with GR number {gr_number} not found", member_ref=gr_number)
        account, member = row[0], row[1]

        recharges = await db.execute(
            select(func.coalesce(func.sum(Recharge.amount), 0)).where(Recharge.member_id == member.id)
        )
        spent = await db.execute(
            select(func.coalesce(func.sum(Transaction.amount), 0)).where(
                Transaction.member_id == member.id,
                Transaction.status == COMPLETED,
            )
        )
        total_recharges = _money(recharges.scalar())
        total_spent = _money(spent.scalar())
    carried = _money(account.carried_balance)
    derived = carried + total_recharges - total_spent
    stored = _money(account.balance)
    if derived != stored:
        logger.error("Balance divergence for GR %s: stored %s, derived %s", gr_number, stored, derived)

    return BalanceCheck(
        member_ref=gr_number,
        stored_balance=stored,
        carried_balance=carried,
        total_recharges=total_recharges,
        total_spent=total_spent,
        derived_balance=derived,
        consistent=derived == stored,
    )


async def get_daily_stats(db: AsyncSession, *, day: Optional[date] = None, now: Optional[datetime] = None) -> DailyStats:
    business_date = day or business_today(now)
    start, end = business_day_bounds(business_date)
    result = await db.execute(
        select(
            func.count(func.distinct(Transaction.member_id)),
            func.count(Transaction.id),
            func.coalesce(func.sum(Transaction.amount), 0),
        ).where(Transaction.created_at >= start, Transaction.created_at < end)
    )
    members, count, total = result.one()
    return DailyStats(
        business_date=business_date,
        total_members=int(members or 0),
        total_transactions=int(count or 0),
        total_amount=_money(total),
    )


async def get_store_daily_stats(
    db: AsyncSession,
    *,
    store_id: str,
    day: Optional[date] = None,
    now: Optional[datetime] = None,
) -> StoreDailyStats:
    pending = await get_store_pending(db, store_id=store_id)
    business_date = day or business_today(now)
    start, end = business_day_bounds(business_date)
    result = await db.execute(
        select(
            func.count(func.distinct(Transaction.member_id)),
            func.count(Transaction.id),
            func.coalesce(func.sum(Transaction.amount), 0),
        ).where(
            Transaction.store_id == store_id,
            Transaction.created_at >= start,
            Transaction.created_at < end,
        )
    )
    members, count, total = result.one()
    return StoreDailyStats(
        store_id=store_id,
        business_date=business_date,
        total_members=int(members or 0),
        total_transactions=int(count or 0),
        total_amount=_money(total),
        pending_amount=_money(pending),
    )


async def get_daily_transaction_series(
    db: AsyncSession,
    *,
    days: int = ANALYTICS_WINDOW_DAYS,
    now: Optional[datetime] = None,
) -> List[DailyTransactionPoint]:
    """Debit count and total per business day over the last ``days`` days.

    The series is oldest first and ends today. Days without debits are
    present with zero count and amount.
    """
    if days < 1:
        raise ValidationFailed("days must be at least 1", field="days")
    today = business_today(now)
    first_day = today - timedelta(days=days - 1)
    start, _ = business_day_bounds(first_day)
    _, end = business_day_bounds(today)

    result = await db.execute(
        select(Transaction.created_at, Transaction.amount).where(
            Transaction.status == COMPLETED,
            Transaction.created_at >= start,
            Transaction.created_at < end,
        )
    )
    buckets = {first_day + timedelta(days=offset): [0, ZERO] for offset in range(days)}
    for created_at, amount in result.all():
        bucket = buckets.get(business_today(created_at))
        if bucket is None:
            continue
        bucket[0] += 1
        bucket[1] += _money(amount)

    return [
        DailyTransactionPoint(business_date=day, transaction_count=count, total_amount=total)
        for day, (count, total) in sorted(buckets.items())
    ]


async def get_store_sales(
    db: AsyncSession,
    *,
    days: int = ANALYTICS_WINDOW_DAYS,
    now: Optional[datetime] = None,
) -> List[StoreSales]:
    """Stores that sold within the last ``days`` days, best-selling first."""
    if days < 1:
        raise ValidationFailed("days must be at least 1", field="days")
    cutoff = (now or utcnow()) - timedelta(days=days)
    total_sales = func.coalesce(func.sum(Transaction.amount), 0)
    result = await db.execute(
        select(Store.id, Store.store_name, func.count(Transaction.id), total_sales)
        .join(Transaction, Transaction.store_id == Store.id)
        .where(Transaction.status == COMPLETED, Transaction.created_at >= cutoff)
        .group_by(Store.id, Store.store_name)
        .order_by(total_sales.desc(), Store.store_name)
    )
    return [
        StoreSales(
            store_id=store_id,
            store_name=store_name,
            transaction_count=int(count or 0),
            total_sales=_money(total),
        )
        for store_id, store_name, count, total in result.all()
    ]


async def get_member_transactions(
    db: AsyncSession,
    *,
    member_ref: int,
    start_date: date,
    end_date: date,
) -> MemberTransactionHistory:
    """Debits across every card the member has held, newest first."""
    gr_number = require_member_ref(member_ref)
    if end_date < start_date:
        raise ValidationFailed("end_date must not be before start_date", field="end_date")
    member_result = await db.execute(select(Member).where(Member.gr_number == gr_number))
    member = member_result.scalar_one_or_none()
    if member is None:
        raise MemberNotFound(f"Member with GR number {gr_number} not found", member_ref=gr_number)

    start, _ = business_day_bounds(start_date)
    _, end = business_day_bounds(end_date)
    result = await db.execute(
        select(Transaction)
        .where(
            Transaction.member_id == member.id,
            Transaction.created_at >= start,
            Transaction.created_at < end,
        )
        .order_by(Transaction.created_at.desc())
    )
    rows = [TransactionRow.model_validate(row) for row in result.scalars().all()]
    return MemberTransactionHistory(
        member_ref=gr_number,
        name=member.name,
        group_name=member.group_name,
        start_date=start_date,
        end_date=end_date,
        total_amount=sum((row.amount for row in rows), ZERO),
        transactions=rows,
    )


async def get_store_transactions(
    db: AsyncSession,
    *,
    store_id: str,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    limit: int = 200,
) -> List[TransactionRow]:
    await get_store_pending(db, store_id=store_id)
    query = select(Transaction).where(Transaction.store_id == store_id)
    if start_date:
        query = query.where(Transaction.created_at >= business_day_bounds(start_date)[0])
    if end_date:
        query = query.where(Transaction.created_at < business_day_bounds(end_date)[1])
    result = await db.execute(query.order_by(Transaction.created_at.desc()).limit(max(int(limit), 1)))
    return [TransactionRow.model_validate(row) for row in result.scalars().all()]
