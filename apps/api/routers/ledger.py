"""
Router for balance mutations, scan-time debits and ledger analytics.
"""

from datetime import date
from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from config import settings
from database import get_db
from routers.auth_scope import AuthContext, ensure_store_scope, get_auth_context, require_admin
from routers.rate_limit import rate_limit
from schemas.ledger import DailyStats, DailyTransactionPoint, DebitResult, RechargeResult, StoreSales
from services.ledger import (
    ANALYTICS_WINDOW_DAYS,
    debit,
    get_daily_stats,
    get_daily_transaction_series,
    get_store_sales,
    recharge,
)

router = APIRouter()

debit_quota = rate_limit("ledger_debit", limit=settings.DEBIT_RATE_LIMIT_PER_MINUTE, window_seconds=60)


# ==================== Pydantic Models ====================

class RechargeRequest(BaseModel):
    gr_number: int = Field(ge=1)
    amount: Decimal = Field(gt=0, max_digits=12, decimal_places=2)
    recharge_type: str = "credit"
    notes: Optional[str] = None


class DebitRequest(BaseModel):
    gr_number: int = Field(ge=1)
    amount: Decimal = Field(gt=0, max_digits=12, decimal_places=2)
    card_number: Optional[int] = None
    store_id: Optional[str] = None


# ==================== Endpoints ====================

@router.post("/recharge", response_model=RechargeResult)
async def recharge_member(
    request: RechargeRequest,
    auth: AuthContext = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return await recharge(
        db,
        member_ref=request.gr_number,
        amount=request.amount,
        recharge_type=request.recharge_type,
        notes=request.notes,
        actor=auth.subject,
    )


@router.post("/debit", response_model=DebitResult)
async def debit_member(
    request: DebitRequest,
    _rate_limit: None = Depends(debit_quota),
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    """Charge a member at a store. Store sessions always debit into their own store."""
    store_id = request.store_id or auth.store_id
    if not store_id:
        raise HTTPException(status_code=400, detail="store_id is required.")
    ensure_store_scope(auth, store_id)
    return await debit(
        db,
        member_ref=request.gr_number,
        store_id=store_id,
        amount=request.amount,
        card_number=request.card_number,
    )


@router.get("/daily-stats", response_model=DailyStats)
async def daily_stats(
    day: Optional[date] = Query(default=None),
    auth: AuthContext = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return await get_daily_stats(db, day=day)


@router.get("/analytics/daily-transactions", response_model=List[DailyTransactionPoint])
async def daily_transactions(
    days: int = Query(default=ANALYTICS_WINDOW_DAYS, ge=1, le=366),
    auth: AuthContext = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Zero-filled daily debit series for the dashboard chart."""
    return await get_daily_transaction_series(db, days=days)


@router.get("/analytics/store-sales", response_model=List[StoreSales])
async def store_sales(
    days: int = Query(default=ANALYTICS_WINDOW_DAYS, ge=1, le=366),
    auth: AuthContext = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return await get_store_sales(db, days=days)
