"""
Router for members: card issuance, scan lookups, balances and daily limits.
"""

from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from models.card import Card
from models.member import Member
from routers.auth_scope import AuthContext, get_auth_context, require_admin
from schemas.ledger import AccountSnapshot, BalanceCheck, DailyLimitChange, MemberTransactionHistory
from services.cards import get_active_card, get_member, issue_card, list_cards, resolve_active_card, toggle_active
from services.clock import business_today
from services.daily_limits import get_daily_limit_history, set_daily_limit
from services.ledger import get_account_snapshot, get_member_transactions, verify_balance

router = APIRouter()


# ==================== Pydantic Models ====================

class IssueCardRequest(BaseModel):
    gr_number: int = Field(ge=1)
    name: str = Field(min_length=1, max_length=200)
    group_name: Optional[str] = None
    guardian_name: Optional[str] = None
    photo_url: Optional[str] = None


class ToggleCardRequest(BaseModel):
    is_active: bool


class DailyLimitRequest(BaseModel):
    daily_limit: Optional[Decimal] = Field(default=None, ge=0)
    notes: Optional[str] = None


class CardResponse(BaseModel):
    id: str
    gr_number: int
    card_number: int
    name: str
    group_name: Optional[str] = None
    guardian_name: Optional[str] = None
    photo_url: Optional[str] = None
    qr_data: Optional[str] = None
    is_active: bool
    created_at: Optional[datetime] = None


class ScanResponse(BaseModel):
    card: CardResponse
    account: AccountSnapshot


def _card_response(card: Card, member: Member) -> CardResponse:
    return CardResponse(
        id=card.id,
        gr_number=member.gr_number,
        card_number=card.card_number,
        name=member.name,
        group_name=member.group_name,
        guardian_name=member.guardian_name,
        photo_url=card.photo_url,
        qr_data=card.qr_data,
        is_active=bool(card.is_active),
        created_at=card.created_at,
    )


# ==================== Endpoints ====================

@router.post("/cards", response_model=CardResponse, status_code=201)
async def issue_member_card(
    request: IssueCardRequest,
    auth: AuthContext = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Issue a new card; creates the member and account on first issue."""
    card = await issue_card(
        db,
        member_ref=request.gr_number,
        name=request.name,
        group_name=request.group_name,
        guardian_name=request.guardian_name,
        photo_url=request.photo_url,
    )
    member = await get_member(db, member_ref=request.gr_number)
    return _card_response(card, member)


@router.get("/cards", response_model=List[CardResponse])
async def list_member_cards(
    gr_number: Optional[int] = Query(default=None, ge=1),
    auth: AuthContext = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    cards = await list_cards(db, member_ref=gr_number)
    return [_card_response(card, card.member) for card in cards]


@router.patch("/cards/{card_id}/active", response_model=CardResponse)
async def set_card_active(
    card_id: str,
    request: ToggleCardRequest,
    auth: AuthContext = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    card = await toggle_active(db, card_id=card_id, desired_active=request.is_active)
    return _card_response(card, card.member)


@router.get("/{gr_number}/active-card", response_model=CardResponse)
async def active_card(
    gr_number: int,
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    card = await get_active_card(db, member_ref=gr_number)
    return _card_response(card, card.member)


@router.get("/{gr_number}/scan", response_model=ScanResponse)
async def scan_card(
    gr_number: int,
    card_number: int = Query(...),
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    """Validate a scanned card and return the member's spendable state."""
    card = await resolve_active_card(db, member_ref=gr_number, card_number=card_number)
    response_card = _card_response(card, card.member)
    snapshot = await get_account_snapshot(db, member_ref=gr_number)
    return ScanResponse(card=response_card, account=snapshot)


@router.get("/{gr_number}/balance", response_model=AccountSnapshot)
async def member_balance(
    gr_number: int,
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    return await get_account_snapshot(db, member_ref=gr_number)


@router.get("/{gr_number}/balance/verify", response_model=BalanceCheck)
async def member_balance_verify(
    gr_number: int,
    auth: AuthContext = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return await verify_balance(db, member_ref=gr_number)


@router.put("/{gr_number}/daily-limit", response_model=DailyLimitChange)
async def update_daily_limit(
    gr_number: int,
    request: DailyLimitRequest,
    auth: AuthContext = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return await set_daily_limit(
        db,
        member_ref=gr_number,
        new_limit=request.daily_limit,
        actor=auth.subject,
        notes=request.notes,
    )


@router.get("/{gr_number}/daily-limit/history", response_model=List[DailyLimitChange])
async def daily_limit_history(
    gr_number: int,
    auth: AuthContext = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return await get_daily_limit_history(db, member_ref=gr_number)


@router.get("/{gr_number}/transactions", response_model=MemberTransactionHistory)
async def member_transactions(
    gr_number: int,
    start_date: Optional[date] = Query(default=None),
    end_date: Optional[date] = Query(default=None),
    auth: AuthContext = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Debits across all of the member's cards; defaults to the last 30 days."""
    end = end_date or business_today()
    start = start_date or (end - timedelta(days=30))
    return await get_member_transactions(db, member_ref=gr_number, start_date=start, end_date=end)
