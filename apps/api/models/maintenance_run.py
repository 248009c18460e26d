"""Persisted bookkeeping for scheduled maintenance jobs."""

from sqlalchemy import Column, Date, DateTime, Integer, JSON, String

from database import Base


class MaintenanceRun(Base):
    """Last execution of a named maintenance job (one row per job)."""

    __tablename__ = "maintenance_runs"

    job_name = Column(String, primary_key=True)
    last_run_at = Column(DateTime(timezone=True), nullable=False)
    business_date = Column(Date, nullable=False)
    run_count = Column(Integer, nullable=False, default=0)
    last_result = Column(JSON, nullable=True)
