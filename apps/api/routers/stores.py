"""
Router for merchant registration and store-scoped ledger views.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from routers.auth_scope import AuthContext, ensure_store_scope, get_auth_context, require_admin
from schemas.ledger import StoreDailyStats, TransactionRow
from services.ledger import get_store_daily_stats, get_store_transactions
from services.settlements import get_store_pending, register_store

router = APIRouter()


# ==================== Pydantic Models ====================

class StoreCreateRequest(BaseModel):
    store_name: str = Field(min_length=1, max_length=200)
    store_type: Optional[str] = None
    owner_name: Optional[str] = None
    mobile_number: Optional[str] = None
    email: Optional[str] = None


class StoreResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    store_name: str
    store_type: Optional[str] = None
    owner_name: Optional[str] = None
    mobile_number: Optional[str] = None
    email: Optional[str] = None
    created_at: Optional[datetime] = None


class PendingSettlementResponse(BaseModel):
    store_id: str
    pending_amount: Decimal


# ==================== Endpoints ====================

@router.post("", response_model=StoreResponse, status_code=201)
async def create_store(
    request: StoreCreateRequest,
    auth: AuthContext = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    store = await register_store(
        db,
        store_name=request.store_name,
        store_type=request.store_type,
        owner_name=request.owner_name,
        mobile_number=request.mobile_number,
        email=request.email,
    )
    return StoreResponse.model_validate(store)


@router.get("/{store_id}/pending-settlement", response_model=PendingSettlementResponse)
async def pending_settlement(
    store_id: str,
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    ensure_store_scope(auth, store_id)
    pending = await get_store_pending(db, store_id=store_id)
    return PendingSettlementResponse(store_id=store_id, pending_amount=pending)


@router.get("/{store_id}/daily-stats", response_model=StoreDailyStats)
async def store_daily_stats(
    store_id: str,
    day: Optional[date] = Query(default=None),
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    ensure_store_scope(auth, store_id)
    return await get_store_daily_stats(db, store_id=store_id, day=day)


@router.get("/{store_id}/transactions", response_model=List[TransactionRow])
async def store_transactions(
    store_id: str,
    start_date: Optional[date] = Query(default=None),
    end_date: Optional[date] = Query(default=None),
    limit: int = Query(default=200, ge=1, le=1000),
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    ensure_store_scope(auth, store_id)
    return await get_store_transactions(
        db,
        store_id=store_id,
        start_date=start_date,
        end_date=end_date,
        limit=limit,
    )
