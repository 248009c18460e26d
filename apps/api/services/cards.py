"""Card lifecycle: issuance, activation toggling and scan-time resolution."""

from __future__ import annotations

import logging
import secrets
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import contains_eager, selectinload

from config import settings
from database import atomic
from models.account import Account
from models.card import Card
from models.member import Member
from services.errors import (
    CardNotFound,
    CardSpaceExhausted,
    ConflictingActiveCard,
    DuplicateActiveCard,
    MemberNotFound,
    ValidationFailed,
    require_member_ref,
)

logger = logging.getLogger(__name__)


def _draw_card_number(digits: Optional[int] = None) -> int:
    width = int(digits or settings.CARD_NUMBER_DIGITS)
    low = 10 ** (width - 1)
    return low + secrets.randbelow(9 * low)


def build_qr_data(gr_number: int, card_number: int) -> str:
    return f"{gr_number}{card_number}"


async def _find_active_card(db: AsyncSession, member_id: str, exclude_card_id: Optional[str] = None) -> Optional[Card]:
    query = select(Card).where(Card.member_id == member_id, Card.is_active.is_(True))
    if exclude_card_id:
        query = query.where(Card.id != exclude_card_id)
    result = await db.execute(query)
    return result.scalars().first()


async def _lock_or_create_member(
    db: AsyncSession,
    gr_number: int,
    name: str,
    group_name: Optional[str],
    guardian_name: Optional[str],
) -> Member:
    result = await db.execute(select(Member).where(Member.gr_number == gr_number).with_for_update())
    member = result.scalar_one_or_none()
    if member is None:
        member = Member(gr_number=gr_number, name=name, group_name=group_name, guardian_name=guardian_name)
        try:
            async with db.begin_nested():
                db.add(member)
                await db.flush()
        except IntegrityError:
            # Concurrent first issuance for the same GR number won the insert.
            result = await db.execute(select(Member).where(Member.gr_number == gr_number).with_for_update())
            member = result.scalar_one()
        else:
            return member

    member.name = name
    if group_name is not None:
        member.group_name = group_name
    if guardian_name is not None:
        member.guardian_name = guardian_name
    return member


async def _ensure_account(db: AsyncSession, member: Member) -> Account:
    result = await db.execute(select(Account).where(Account.member_id == member.id))
    account = result.scalar_one_or_none()
    if account is not None:
        return account

    default_limit = settings.DEFAULT_DAILY_LIMIT
    account = Account(
        member_id=member.id,
        balance=Decimal("0.00"),
        carried_balance=Decimal("0.00"),
        daily_limit=default_limit if default_limit and default_limit > 0 else None,
        daily_spent=Decimal("0.00"),
    )
    db.add(account)
    await db.flush()
    return account


async def issue_card(
    db: AsyncSession,
    *,
    member_ref: int,
    name: str,
    group_name: Optional[str] = None,
    guardian_name: Optional[str] = None,
    photo_url: Optional[str] = None,
    max_attempts: Optional[int] = None,
) -> Card:
    """Issue a new active card for a member, creating the member and account on first issue."""
    gr_number = require_member_ref(member_ref)
    name = (name or "").strip()
    if not name:
        raise ValidationFailed("Member name is required", field="name")
    attempts_cap = int(max_attempts or settings.CARD_NUMBER_MAX_ATTEMPTS)

    async with atomic(db):
        member = await _lock_or_create_member(db, gr_number, name, group_name, guardian_name)
        if await _find_active_card(db, member.id):
            raise DuplicateActiveCard(
                "An active card already exists for this GR number. Please deactivate it first.",
                member_ref=gr_number,
            )

        card: Optional[Card] = None
        for attempt in range(1, attempts_cap + 1):
            candidate = _draw_card_number()
            taken = await db.execute(select(Card.id).where(Card.card_number == candidate))
            if taken.scalar_one_or_none() is not None:
                logger.warning("Card number collision on attempt %s/%s", attempt, attempts_cap)
                continue

            new_card = Card(
                member_id=member.id,
                card_number=candidate,
                photo_url=photo_url,
                qr_data=build_qr_data(gr_number, candidate),
                is_active=True,
            )
            try:
                async with db.begin_nested():
                    db.add(new_card)
                    await db.flush()
            except IntegrityError:
                if await _find_active_card(db, member.id):
                    raise DuplicateActiveCard(
                        "An active card already exists for this GR number. Please deactivate it first.",
                        member_ref=gr_number,
                    )
                logger.warning("Card number %s taken concurrently (attempt %s/%s)", candidate, attempt, attempts_cap)
                continue
            card = new_card
            break

        if card is None:
            logger.error("Card number space exhausted after %s attempts for GR %s", attempts_cap, gr_number)
            raise CardSpaceExhausted(
                f"Could not allocate a unique card number after {attempts_cap} attempts",
                attempts=attempts_cap,
            )

        await _ensure_account(db, member)

    logger.info("New card issued for GR number %s (Card #%s)", gr_number, card.card_number)
    return card


async def toggle_active(db: AsyncSession, *, card_id: str, desired_active: bool) -> Card:
    """Activate or deactivate a card; activation fails while a sibling card is active."""
    async with atomic(db):
        result = await db.execute(
            select(Card)
            .options(selectinload(Card.member))
            .where(Card.id == card_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        card = result.scalar_one_or_none()
        if card is None:
            raise CardNotFound(f"Card {card_id} not found", card_id=card_id)

        if desired_active and not card.is_active:
            # Serialise activations for the member before the check.
            await db.execute(select(Member.id).where(Member.id == card.member_id).with_for_update())
            other = await _find_active_card(db, card.member_id, exclude_card_id=card.id)
            if other is not None:
                raise ConflictingActiveCard(
                    "Another card with this GR number is already active. Please deactivate it first.",
                    active_card_id=other.id,
                )
            try:
                async with db.begin_nested():
                    card.is_active = True
                    await db.flush()
            except IntegrityError as exc:
                raise ConflictingActiveCard(
                    "Another card with this GR number is already active. Please deactivate it first.",
                ) from exc
        elif not desired_active:
            card.is_active = False
            await db.flush()

    logger.info("Card %s %s", card.id, "activated" if card.is_active else "deactivated")
    return card


async def resolve_active_card(db: AsyncSession, *, member_ref: int, card_number: int) -> Card:
    """Scan-time check: the presented card must be the member's active card."""
    gr_number = require_member_ref(member_ref)
    result = await db.execute(
        select(Card)
        .join(Member, Member.id == Card.member_id)
        .options(contains_eager(Card.member))
        .where(
            Member.gr_number == gr_number,
            Card.card_number == int(card_number),
            Card.is_active.is_(True),
        )
    )
    card = result.scalar_one_or_none()
    if card is None:
        raise CardNotFound(
            "Card not found or deactivated for this GR number",
            member_ref=gr_number,
            card_number=card_number,
        )
    return card


async def get_active_card(db: AsyncSession, *, member_ref: int) -> Card:
    gr_number = require_member_ref(member_ref)
    result = await db.execute(
        select(Card)
        .join(Member, Member.id == Card.member_id)
        .options(contains_eager(Card.member))
        .where(Member.gr_number == gr_number, Card.is_active.is_(True))
    )
    card = result.scalar_one_or_none()
    if card is None:
        raise CardNotFound("No active card found for this GR number", member_ref=gr_number)
    return card


async def get_member(db: AsyncSession, *, member_ref: int) -> Member:
    gr_number = require_member_ref(member_ref)
    result = await db.execute(select(Member).where(Member.gr_number == gr_number))
    member = result.scalar_one_or_none()
    if member is None:
        raise MemberNotFound(f"Member with GR number {gr_number} not found", member_ref=gr_number)
    return member


async def list_cards(db: AsyncSession, *, member_ref: Optional[int] = None) -> List[Card]:
    query = select(Card).join(Member, Member.id == Card.member_id).options(contains_eager(Card.member))
    if member_ref is not None:
        query = query.where(Member.gr_number == require_member_ref(member_ref))
    query = query.order_by(Member.gr_number, Card.is_active.desc(), Card.created_at.desc())
    result = await db.execute(query)
    return list(result.scalars().all())
