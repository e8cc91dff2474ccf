"""Серверное время. Всё время в БД — наивное UTC."""
from datetime import date, datetime, timezone
from typing import Optional
from zoneinfo import ZoneInfo

from foodcourt.config import settings


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def business_date(now: Optional[datetime] = None) -> date:
    """Календарная дата точки питания (для дневного склада)."""
    now = now or utcnow()
    aware = now.replace(tzinfo=timezone.utc)
    return aware.astimezone(ZoneInfo(settings.business_timezone)).date()
