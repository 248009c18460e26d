"""Business calendar helpers (the configured timezone defines "today")."""

from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from typing import Optional, Tuple
from zoneinfo import ZoneInfo

from config import settings


def business_zone() -> ZoneInfo:
    return ZoneInfo(settings.BUSINESS_TIMEZONE)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def business_today(now: Optional[datetime] = None) -> date:
    current = now or utcnow()
    if current.tzinfo is None:
        current = current.replace(tzinfo=timezone.utc)
    return current.astimezone(business_zone()).date()


def business_day_bounds(day: date) -> Tuple[datetime, datetime]:
    """UTC [start, end) instants of a calendar day in the business timezone."""
    zone = business_zone()
    start = datetime.combine(day, time.min, tzinfo=zone)
    end = datetime.combine(day + timedelta(days=1), time.min, tzinfo=zone)
    return start.astimezone(timezone.utc), end.astimezone(timezone.utc)


def parse_clock(value: str) -> time:
    hours, minutes = value.split(":", 1)
    return time(hour=int(hours), minute=int(minutes))


def next_run_at(clock: str, now: Optional[datetime] = None) -> datetime:
    """Next UTC instant at which the wall clock in the business zone reads ``clock``."""
    current = (now or utcnow()).astimezone(business_zone())
    target = datetime.combine(current.date(), parse_clock(clock), tzinfo=business_zone())
    if target <= current:
        target = datetime.combine(current.date() + timedelta(days=1), parse_clock(clock), tzinfo=business_zone())
    return target.astimezone(timezone.utc)


def seconds_until(clock: str, now: Optional[datetime] = None) -> float:
    current = now or utcnow()
    return max((next_run_at(clock, current) - current).total_seconds(), 0.0)
