"""
Business calendar helpers.

Every day-key is a ``YYYY-MM-DD`` date in the business timezone, no matter
what timezone the host runs in. Day-key identity is the unit of idempotency
for the daily batch, so it is always derived from an exact timezone
conversion. The cutoff hour is informational only.
"""

from datetime import datetime, timedelta, timezone
from functools import lru_cache
from typing import Optional
from zoneinfo import ZoneInfo

from batchguard.infrastructure.config import get_settings


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive timestamps read back from the store."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


@lru_cache()
def _zone(name: str) -> ZoneInfo:
    return ZoneInfo(name)


def business_zone() -> ZoneInfo:
    return _zone(get_settings().business_timezone)


def to_business_time(now: datetime) -> datetime:
    # Naive input is treated as UTC, never as host-local time
    return ensure_utc(now).astimezone(business_zone())


def today_key(now: Optional[datetime] = None) -> str:
    """Day-key of ``now`` in the business timezone."""
    local = to_business_time(now or utc_now())
    return local.strftime("%Y-%m-%d")


def is_past_cutoff(now: Optional[datetime] = None) -> bool:
    """Whether the daily cutoff hour has passed for the current business day."""
    local = to_business_time(now or utc_now())
    return local.hour >= get_settings().daily_cutoff_hour


def next_cutoff(now: Optional[datetime] = None) -> datetime:
    """Next cutoff instant strictly after ``now``, in the business timezone."""
    local = to_business_time(now or utc_now())
    hour = get_settings().daily_cutoff_hour
    candidate = datetime(local.year, local.month, local.day, hour, tzinfo=business_zone())
    if candidate <= local:
        next_day = local.date() + timedelta(days=1)
        candidate = datetime(next_day.year, next_day.month, next_day.day, hour, tzinfo=business_zone())
    return candidate


def day_start(now: Optional[datetime] = None) -> datetime:
    """UTC instant of midnight, business time, on the day containing ``now``."""
    local = to_business_time(now or utc_now())
    midnight = datetime(local.year, local.month, local.day, tzinfo=business_zone())
    return midnight.astimezone(timezone.utc)
