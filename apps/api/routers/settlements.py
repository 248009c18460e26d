"""
Router for the merchant settlement workflow.
"""

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.ext.asyncio import AsyncSession

from config import settings
from database import get_db
from models.settlement import Settlement
from models.store import Store
from routers.auth_scope import AuthContext, ensure_store_scope, get_auth_context, require_admin
from routers.rate_limit import rate_limit
from services.settlements import (
    amend_settlement_amount,
    get_settlement,
    get_settlement_logs,
    list_settlements,
    record_payment,
    request_settlement,
)

router = APIRouter()

settlement_request_quota = rate_limit(
    "settlement_request",
    limit=settings.SETTLEMENT_REQUEST_RATE_LIMIT_PER_HOUR,
    window_seconds=3600,
)


# ==================== Pydantic Models ====================

class SettlementRequest(BaseModel):
    amount: Decimal = Field(gt=0, max_digits=12, decimal_places=2)
    store_id: Optional[str] = None


class AmendAmountRequest(BaseModel):
    new_amount: Decimal = Field(gt=0, max_digits=12, decimal_places=2)


class PaymentRequest(BaseModel):
    amount: Decimal = Field(gt=0, max_digits=12, decimal_places=2)
    notes: Optional[str] = None


class SettlementResponse(BaseModel):
    id: str
    store_id: str
    store_name: Optional[str] = None
    total_transaction_amount: Decimal
    settled_amount: Decimal
    pending_amount: Decimal
    status: str
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class SettlementLogResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    settlement_id: str
    action_type: str
    amount: Decimal
    notes: Optional[str] = None
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None


def _settlement_response(settlement: Settlement, store: Optional[Store] = None) -> SettlementResponse:
    return SettlementResponse(
        id=settlement.id,
        store_id=settlement.store_id,
        store_name=store.store_name if store is not None else None,
        total_transaction_amount=settlement.total_transaction_amount,
        settled_amount=settlement.settled_amount,
        pending_amount=settlement.pending_amount,
        status=settlement.status,
        created_by=settlement.created_by,
        created_at=settlement.created_at,
        updated_at=settlement.updated_at,
    )


# ==================== Endpoints ====================

@router.get("", response_model=List[SettlementResponse])
async def all_settlements(
    auth: AuthContext = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    rows = await list_settlements(db)
    return [_settlement_response(settlement, store) for settlement, store in rows]


@router.get("/store/{store_id}", response_model=List[SettlementResponse])
async def store_settlements(
    store_id: str,
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    ensure_store_scope(auth, store_id)
    rows = await list_settlements(db, store_id=store_id)
    return [_settlement_response(settlement, store) for settlement, store in rows]


@router.post("/request", response_model=SettlementResponse, status_code=201)
async def create_settlement_request(
    request: SettlementRequest,
    _rate_limit: None = Depends(settlement_request_quota),
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    """Request a payout of part of the store's pending earnings."""
    store_id = request.store_id or auth.store_id
    if not store_id:
        raise HTTPException(status_code=400, detail="store_id is required.")
    ensure_store_scope(auth, store_id)
    settlement = await request_settlement(db, store_id=store_id, amount=request.amount, actor=auth.subject)
    return _settlement_response(settlement)


@router.put("/{settlement_id}/amount", response_model=SettlementResponse)
async def amend_settlement(
    settlement_id: str,
    request: AmendAmountRequest,
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    existing = await get_settlement(db, settlement_id=settlement_id)
    ensure_store_scope(auth, existing.store_id)
    settlement = await amend_settlement_amount(
        db,
        settlement_id=settlement_id,
        new_amount=request.new_amount,
        actor=auth.subject,
    )
    return _settlement_response(settlement)


@router.post("/{settlement_id}/pay", response_model=SettlementResponse)
async def pay_settlement(
    settlement_id: str,
    request: PaymentRequest,
    auth: AuthContext = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    settlement = await record_payment(
        db,
        settlement_id=settlement_id,
        amount=request.amount,
        actor=auth.subject,
        notes=request.notes,
    )
    return _settlement_response(settlement)


@router.get("/{settlement_id}/logs", response_model=List[SettlementLogResponse])
async def settlement_logs(
    settlement_id: str,
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    existing = await get_settlement(db, settlement_id=settlement_id)
    ensure_store_scope(auth, existing.store_id)
    logs = await get_settlement_logs(db, settlement_id=settlement_id)
    return [SettlementLogResponse.model_validate(log) for log in logs]
