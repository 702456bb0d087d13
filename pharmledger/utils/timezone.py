# FILE: pharmledger/utils/timezone.py
from __future__ import annotations

from datetime import datetime, date, timezone
from zoneinfo import ZoneInfo

IST = ZoneInfo("Asia/Kolkata")


def utcnow() -> datetime:
    """
    Returns a *naive* datetime in UTC.
    DateTime columns are naive, so everything stored goes through here.
    """
    return datetime.now(timezone.utc).replace(tzinfo=None)


def today_ist() -> date:
    return datetime.now(IST).date()


def to_ist(dt: datetime | None) -> datetime | None:
    """Naive values are taken as UTC (how they are stored)."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(IST)
