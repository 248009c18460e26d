"""Merchant registry and the settlement request/amend/pay workflow.

Store-level ``pending_amount`` holds unearmarked earnings: debits add to it
and a settlement request moves funds out of it into the request. Amending a
request moves the difference back and forth. Payments only touch the
settlement itself.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import List, Optional, Tuple

from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from database import atomic
from models.settlement import COMPLETED, PENDING, REQUESTED, Settlement, SettlementLog
from models.store import Store, StoreSettlement
from services import events
from services.errors import (
    AlreadyCompleted,
    ExceedsPending,
    ExceedsRemaining,
    InvalidState,
    SettlementNotFound,
    StoreAlreadyRegistered,
    StoreNotFound,
    ValidationFailed,
    require_positive,
)

logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")


async def register_store(
    db: AsyncSession,
    *,
    store_name: str,
    store_type: Optional[str] = None,
    owner_name: Optional[str] = None,
    mobile_number: Optional[str] = None,
    email: Optional[str] = None,
) -> Store:
    """Create a merchant together with its zero settlement balance."""
    store_name = (store_name or "").strip()
    if not store_name:
        raise ValidationFailed("store_name is required", field="store_name")

    try:
        async with atomic(db):
            existing = await db.execute(
                select(Store).where(
                    or_(
                        Store.store_name == store_name,
                        Store.email == email if email else False,
                        Store.mobile_number == mobile_number if mobile_number else False,
                    )
                )
            )
            duplicate = existing.scalars().first()
            if duplicate is not None:
                raise StoreAlreadyRegistered(_duplicate_message(duplicate, store_name, email, mobile_number))

            store = Store(
                store_name=store_name,
                store_type=store_type,
                owner_name=owner_name,
                mobile_number=mobile_number,
                email=email,
            )
            db.add(store)
            await db.flush()
            db.add(StoreSettlement(store_id=store.id, pending_amount=ZERO))
            await db.flush()
    except IntegrityError as exc:
        raise StoreAlreadyRegistered("Store name, email or mobile number is already registered.") from exc

    logger.info("Registered store %s (%s)", store.store_name, store.id)
    return store


def _duplicate_message(duplicate: Store, store_name: str, email: Optional[str], mobile: Optional[str]) -> str:
    if duplicate.store_name == store_name:
        return f"Store with name '{store_name}' already exists. Please use a different name."
    if email and duplicate.email == email:
        return f"Email address '{email}' is already registered. Please use a different email."
    return f"Mobile number '{mobile}' is already registered. Please use a different mobile number."


async def lock_store_settlement(db: AsyncSession, store_id: str) -> StoreSettlement:
    """Lock a store's settlement balance row, recreating it if it was purged.

    The store row is locked first so concurrent writers cannot both find the
    balance row missing and race to insert it.
    """
    store_result = await db.execute(select(Store.id).where(Store.id == store_id).with_for_update())
    if store_result.scalar_one_or_none() is None:
        raise StoreNotFound(f"Store {store_id} not found", store_id=store_id)

    result = await db.execute(
        select(StoreSettlement)
        .where(StoreSettlement.store_id == store_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    store_settlement = result.scalar_one_or_none()
    if store_settlement is None:
        store_settlement = StoreSettlement(store_id=store_id, pending_amount=ZERO)
        db.add(store_settlement)
        await db.flush()
    return store_settlement


async def _lock_settlement(db: AsyncSession, settlement_id: str) -> Settlement:
    result = await db.execute(
        select(Settlement)
        .where(Settlement.id == settlement_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    settlement = result.scalar_one_or_none()
    if settlement is None:
        raise SettlementNotFound(f"Settlement {settlement_id} not found", settlement_id=settlement_id)
    return settlement


def _log(settlement: Settlement, action_type: str, amount: Decimal, actor: Optional[str], notes: str) -> SettlementLog:
    return SettlementLog(
        settlement_id=settlement.id,
        action_type=action_type,
        amount=amount,
        notes=notes,
        created_by=actor,
    )


async def request_settlement(
    db: AsyncSession,
    *,
    store_id: str,
    amount,
    actor: Optional[str] = None,
) -> Settlement:
    """Earmark part of a store's pending earnings as a payout request."""
    value = require_positive(amount)

    async with atomic(db):
        store_settlement = await lock_store_settlement(db, store_id)
        available = store_settlement.pending_amount
        if value > available:
            raise ExceedsPending(
                f"Cannot request more than available pending amount (₹{available})",
                max_allowed=available,
            )

        settlement = Settlement(
            store_id=store_id,
            total_transaction_amount=value,
            settled_amount=ZERO,
            pending_amount=value,
            status=REQUESTED,
            created_by=actor,
        )
        db.add(settlement)
        await db.flush()
        store_settlement.pending_amount = available - value
        db.add(_log(settlement, "create", value, actor, "Settlement requested"))
        await db.flush()
        store_pending = store_settlement.pending_amount

    logger.info("Settlement %s requested by store %s for %s", settlement.id, store_id, value)
    await events.publish_event(events.settlement_event(events.SETTLEMENT_CREATED, settlement, store_pending))
    return settlement


async def amend_settlement_amount(
    db: AsyncSession,
    *,
    settlement_id: str,
    new_amount,
    actor: Optional[str] = None,
) -> Settlement:
    """Change the requested amount while the settlement is still ``requested``.

    The ceiling is the current request plus the store's remaining
    unearmarked earnings.
    """
    value = require_positive(new_amount, field="new_amount")

    async with atomic(db):
        settlement = await _lock_settlement(db, settlement_id)
        if settlement.status != REQUESTED:
            raise InvalidState(
                "Settlement can only be edited when in requested state",
                status=settlement.status,
            )

        store_settlement = await lock_store_settlement(db, settlement.store_id)
        original = settlement.total_transaction_amount
        max_allowed = original + store_settlement.pending_amount
        if value > max_allowed:
            raise ExceedsPending(
                f"Cannot request more than original amount + remaining pending (₹{max_allowed})",
                max_allowed=max_allowed,
            )

        store_settlement.pending_amount = store_settlement.pending_amount - (value - original)
        settlement.total_transaction_amount = value
        settlement.pending_amount = value - settlement.settled_amount
        db.add(_log(settlement, "amend", value, actor, f"Amount changed from {original} to {value}"))
        await db.flush()
        store_pending = store_settlement.pending_amount

    logger.info("Settlement %s amended %s -> %s", settlement.id, original, value)
    await events.publish_event(events.settlement_event(events.SETTLEMENT_UPDATED, settlement, store_pending))
    return settlement


async def record_payment(
    db: AsyncSession,
    *,
    settlement_id: str,
    amount,
    actor: Optional[str] = None,
    notes: Optional[str] = None,
) -> Settlement:
    """Pay part or all of a settlement; completes it once fully paid."""
    value = require_positive(amount)

    async with atomic(db):
        settlement = await _lock_settlement(db, settlement_id)
        if settlement.status == COMPLETED:
            raise AlreadyCompleted("Settlement is already completed", settlement_id=settlement.id)

        remaining = settlement.total_transaction_amount - settlement.settled_amount
        if value > remaining:
            raise ExceedsRemaining("Payment amount cannot exceed remaining amount", remaining=remaining)

        settled = settlement.settled_amount + value
        settlement.settled_amount = settled
        settlement.pending_amount = settlement.total_transaction_amount - settled
        settlement.status = COMPLETED if settled >= settlement.total_transaction_amount else PENDING
        db.add(_log(settlement, "payment", value, actor, notes or "Payment processed"))
        await db.flush()

    logger.info("Payment of %s recorded on settlement %s (status=%s)", value, settlement.id, settlement.status)
    event_type = events.SETTLEMENT_COMPLETED if settlement.status == COMPLETED else events.SETTLEMENT_UPDATED
    await events.publish_event(events.settlement_event(event_type, settlement))
    return settlement


async def get_store_pending(db: AsyncSession, *, store_id: str) -> Decimal:
    store_result = await db.execute(select(Store.id).where(Store.id == store_id))
    if store_result.scalar_one_or_none() is None:
        raise StoreNotFound(f"Store {store_id} not found", store_id=store_id)
    result = await db.execute(select(StoreSettlement.pending_amount).where(StoreSettlement.store_id == store_id))
    pending = result.scalar_one_or_none()
    return pending if pending is not None else ZERO


async def list_settlements(db: AsyncSession, *, store_id: Optional[str] = None) -> List[Tuple[Settlement, Store]]:
    query = select(Settlement, Store).join(Store, Store.id == Settlement.store_id)
    if store_id:
        query = query.where(Settlement.store_id == store_id)
    result = await db.execute(query.order_by(Settlement.created_at.desc()))
    return [(row[0], row[1]) for row in result.all()]


async def get_settlement(db: AsyncSession, *, settlement_id: str) -> Settlement:
    result = await db.execute(select(Settlement).where(Settlement.id == settlement_id))
    settlement = result.scalar_one_or_none()
    if settlement is None:
        raise SettlementNotFound(f"Settlement {settlement_id} not found", settlement_id=settlement_id)
    return settlement


async def get_settlement_logs(db: AsyncSession, *, settlement_id: str) -> List[SettlementLog]:
    await get_settlement(db, settlement_id=settlement_id)
    result = await db.execute(
        select(SettlementLog)
        .where(SettlementLog.settlement_id == settlement_id)
        .order_by(SettlementLog.created_at, SettlementLog.id)
    )
    return list(result.scalars().all())
