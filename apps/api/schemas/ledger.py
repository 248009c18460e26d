"""
Ledger result schemas.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict


class RechargeResult(BaseModel):
    recharge_id: str
    member_ref: int
    amount: Decimal
    new_balance: Decimal


class DebitResult(BaseModel):
    """Outcome of a committed debit."""
    transaction_id: str
    member_ref: int
    store_id: str
    card_number: int
    amount: Decimal
    new_balance: Decimal
    new_daily_spent: Decimal
    daily_limit: Optional[Decimal] = None
    remaining_daily_limit: Optional[Decimal] = None  # None = unlimited


class AccountSnapshot(BaseModel):
    member_ref: int
    name: str
    group_name: Optional[str] = None
    balance: Decimal
    daily_limit: Optional[Decimal] = None
    daily_spent: Decimal
    remaining_daily_limit: Optional[Decimal] = None
    last_spent_reset: Optional[date] = None


class BalanceCheck(BaseModel):
    """Stored balance versus the balance derived from the ledger rows."""
    member_ref: int
    stored_balance: Decimal
    carried_balance: Decimal
    total_recharges: Decimal
    total_spent: Decimal
    derived_balance: Decimal
    consistent: bool


class DailyStats(BaseModel):
    business_date: date
    total_members: int
    total_transactions: int
    total_amount: Decimal


class StoreDailyStats(DailyStats):
    store_id: str
    pending_amount: Decimal


class TransactionRow(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    member_id: str
    card_id: Optional[str] = None
    store_id: str
    amount: Decimal
    status: str
    transaction_type: str
    created_at: Optional[datetime] = None


class MemberTransactionHistory(BaseModel):
    member_ref: int
    name: str
    group_name: Optional[str] = None
    start_date: date
    end_date: date
    total_amount: Decimal
    transactions: List[TransactionRow]


class DailyLimitChange(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    old_limit: Optional[Decimal] = None
    new_limit: Optional[Decimal] = None
    changed_by: Optional[str] = None
    notes: Optional[str] = None
    created_at: Optional[datetime] = None


class DailyTransactionPoint(BaseModel):
    """One business day of the debit series; days without debits report zero."""
    business_date: date
    transaction_count: int
    total_amount: Decimal


class StoreSales(BaseModel):
    store_id: str
    store_name: str
    transaction_count: int
    total_sales: Decimal
