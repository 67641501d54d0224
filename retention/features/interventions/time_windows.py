"""
Quiet-hours math in tenant-local civil time.

Comparisons use the wall clock in the tenant's IANA zone (via zoneinfo)
rather than a fixed UTC offset, so a 21:00-08:00 window stays 21:00-08:00
on both sides of a daylight-saving change.
"""

from __future__ import annotations

from datetime import UTC, datetime, time, timedelta
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from retention.config import settings
from retention.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


def parse_hhmm(value: str) -> time:
    """Parse "H:MM" / "HH:MM" into a time."""
    hours, _, minutes = value.strip().partition(":")
    return time(hour=int(hours or 0), minute=int(minutes or 0))


def resolve_timezone(name: str | None) -> ZoneInfo:
    try:
        return ZoneInfo(name or settings.DEFAULT_TIMEZONE)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning(
            "Unknown tenant timezone, using default",
            timezone=name,
            default=settings.DEFAULT_TIMEZONE,
        )
        return ZoneInfo(settings.DEFAULT_TIMEZONE)


def _as_aware_utc(moment: datetime) -> datetime:
    return moment.replace(tzinfo=UTC) if moment.tzinfo is None else moment


def is_in_quiet_hours(moment: datetime, start: str, end: str, timezone: str | None) -> bool:
    """
    True when ``moment`` falls in [start, end) local time.

    start > end wraps past midnight; start == end means no quiet hours.
    """
    local = _as_aware_utc(moment).astimezone(resolve_timezone(timezone))
    now_t = local.time().replace(second=0, microsecond=0)
    start_t, end_t = parse_hhmm(start), parse_hhmm(end)

    if start_t == end_t:
        return False
    if start_t < end_t:
        return start_t <= now_t < end_t
    return now_t >= start_t or now_t < end_t


def next_allowed_send_time(moment: datetime, end: str, timezone: str | None) -> datetime:
    """
    Next instant (UTC) at which the local clock reads ``end``.

    Built on the local calendar date so DST shifts between now and then do
    not move the result off the local end time.
    """
    tz = resolve_timezone(timezone)
    local = _as_aware_utc(moment).astimezone(tz)
    end_t = parse_hhmm(end)

    candidate = datetime.combine(local.date(), end_t, tzinfo=tz)
    if candidate <= local:
        candidate = datetime.combine(local.date() + timedelta(days=1), end_t, tzinfo=tz)

    # Round-trip through UTC to normalise wall times skipped by a DST jump
    return candidate.astimezone(UTC)
