"""Daily spending ceiling: reset predicate, lazy/eager reset and limit changes."""

from __future__ import annotations

import logging
from datetime import date
from decimal import Decimal
from typing import Any, List, Optional, Sequence

from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from database import atomic
from models.account import Account
from models.daily_limit_history import DailyLimitHistory
from models.member import Member
from schemas.ledger import DailyLimitChange
from services.errors import MemberNotFound, ValidationFailed, require_cents, require_member_ref

logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")


def stale_reset_clause(today: date):
    """The single authoritative "needs reset" predicate."""
    return or_(Account.last_spent_reset.is_(None), Account.last_spent_reset < today)


def is_stale(last_spent_reset: Optional[date], today: date) -> bool:
    return last_spent_reset is None or last_spent_reset < today


def has_limit(daily_limit: Optional[Decimal]) -> bool:
    return daily_limit is not None and daily_limit > 0


def remaining_limit(daily_limit: Optional[Decimal], daily_spent: Decimal) -> Optional[Decimal]:
    if not has_limit(daily_limit):
        return None
    return max(daily_limit - daily_spent, ZERO)


async def reset_stale_daily_spend(
    db: AsyncSession,
    *,
    today: date,
    account_ids: Optional[Sequence[str]] = None,
    force: bool = False,
) -> int:
    """Zero ``daily_spent`` for stale accounts in one guarded UPDATE.

    Scoped to ``account_ids`` this is the lazy reset; unscoped it is the
    eager sweep. Both use the same predicate, so an account reset by one
    path is a no-op for the other on the same day. ``force`` drops the
    predicate (administrative reset of every account).
    """
    statement = update(Account).values(daily_spent=ZERO, last_spent_reset=today)
    if not force:
        statement = statement.where(stale_reset_clause(today))
    if account_ids is not None:
        statement = statement.where(Account.id.in_(list(account_ids)))
    result = await db.execute(statement.execution_options(synchronize_session=False))
    return int(result.rowcount or 0)


async def apply_lazy_reset(db: AsyncSession, account: Account, today: date) -> Account:
    """Reset one already-loaded account if stale and reload its state."""
    if not is_stale(account.last_spent_reset, today):
        return account
    await reset_stale_daily_spend(db, today=today, account_ids=[account.id])
    await db.refresh(account)
    return account


async def set_daily_limit(
    db: AsyncSession,
    *,
    member_ref: int,
    new_limit: Optional[Any],
    actor: Optional[str] = None,
    notes: Optional[str] = None,
) -> DailyLimitChange:
    """Change a member's daily limit, recording old and new values first."""
    gr_number = require_member_ref(member_ref)
    limit_value: Optional[Decimal] = None
    if new_limit is not None:
        try:
            parsed = Decimal(str(new_limit))
        except ArithmeticError as exc:
            raise ValidationFailed("daily_limit must be a number", field="daily_limit") from exc
        if not parsed.is_finite():
            raise ValidationFailed("daily_limit must be a number", field="daily_limit")
        if parsed < 0:
            raise ValidationFailed("daily_limit cannot be negative", field="daily_limit")
        limit_value = require_cents(parsed, "daily_limit")

    async with atomic(db):
        result = await db.execute(
            select(Account)
            .join(Member, Member.id == Account.member_id)
            .where(Member.gr_number == gr_number)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        account = result.scalar_one_or_none()
        if account is None:
            raise MemberNotFound(f"Member with GR number {gr_number} not found", member_ref=gr_number)

        entry = DailyLimitHistory(
            member_id=account.member_id,
            old_limit=account.daily_limit,
            new_limit=limit_value,
            changed_by=actor,
            notes=notes or "Daily limit updated by admin",
        )
        db.add(entry)
        await db.flush()
        account.daily_limit = limit_value
        await db.flush()
        await db.refresh(entry)

    logger.info("Daily limit for GR %s changed %s -> %s by %s", gr_number, entry.old_limit, limit_value, actor)
    return DailyLimitChange.model_validate(entry)


async def get_daily_limit_history(db: AsyncSession, *, member_ref: int) -> List[DailyLimitChange]:
    gr_number = require_member_ref(member_ref)
    member_result = await db.execute(select(Member.id).where(Member.gr_number == gr_number))
    member_id = member_result.scalar_one_or_none()
    if member_id is None:
        raise MemberNotFound(f"Member with GR number {gr_number} not found", member_ref=gr_number)
    result = await db.execute(
        select(DailyLimitHistory)
        .where(DailyLimitHistory.member_id == member_id)
        .order_by(DailyLimitHistory.created_at.desc())
    )
    return [DailyLimitChange.model_validate(row) for row in result.scalars().all()]
