"""
Maintenance job result schemas.
"""

from datetime import date, datetime
from typing import Dict, Optional

from pydantic import BaseModel


class SweepResult(BaseModel):
    business_date: date
    reset_count: int
    forced: bool = False


class PurgeResult(BaseModel):
    cutoff: datetime
    deleted: Dict[str, int]
    carried_accounts: int


class JobRecord(BaseModel):
    job_name: str
    last_run_at: datetime
    business_date: date
    run_count: int
    last_result: Optional[dict] = None


class DailyLimitStatus(BaseModel):
    business_date: date
    total_accounts: int
    reset_today: int
    needs_reset: int
    next_scheduled_reset: datetime
    last_sweep: Optional[JobRecord] = None
