# src/rappel/tasks/time_utils.py

from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from functools import lru_cache
from zoneinfo import ZoneInfo

DEFAULT_TIMEZONE = "Europe/Paris"


@lru_cache(maxsize=8)
def get_zone(name: str = DEFAULT_TIMEZONE) -> ZoneInfo:
    return ZoneInfo(name)


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(dt: datetime, tz_name: str = DEFAULT_TIMEZONE) -> datetime:
    """Return an aware UTC datetime; naive values are read as wall time in tz_name."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=get_zone(tz_name))
    return dt.astimezone(timezone.utc)


def parse_instant(raw: str, tz_name: str = DEFAULT_TIMEZONE) -> datetime:
    """
    Parse an ISO-8601 string into an aware UTC datetime.

    Raises ValueError on anything fromisoformat() rejects.
    """
    if not isinstance(raw, str) or not raw.strip():
        raise ValueError("empty instant")
    return ensure_utc(datetime.fromisoformat(raw.strip()), tz_name)


def to_iso(dt: datetime) -> str:
    """UTC ISO string with millisecond precision and a Z suffix."""
    s = ensure_utc(dt).isoformat(timespec="milliseconds")
    return s.replace("+00:00", "Z")


def to_local(dt: datetime, tz_name: str = DEFAULT_TIMEZONE) -> datetime:
    return ensure_utc(dt, tz_name).astimezone(get_zone(tz_name))


def local_date(dt: datetime, tz_name: str = DEFAULT_TIMEZONE) -> date:
    return to_local(dt, tz_name).date()


def at_local_time(day: date, hour: int, minute: int = 0, tz_name: str = DEFAULT_TIMEZONE) -> datetime:
    """
    Civil-calendar anchor: `day` at hour:minute wall time in tz_name, as UTC.

    Built with datetime.combine() so that DST transitions never shift the
    wall-clock hour (unlike subtracting a fixed timedelta from an instant).
    """
    local = datetime.combine(day, time(hour, minute), tzinfo=get_zone(tz_name))
    return local.astimezone(timezone.utc)


# ---- user-facing formatting ----


def format_time_only(dt: datetime, tz_name: str = DEFAULT_TIMEZONE) -> str:
    return to_local(dt, tz_name).strftime("%H:%M")


def format_date_only(dt: datetime, tz_name: str = DEFAULT_TIMEZONE) -> str:
    return to_local(dt, tz_name).strftime("%d/%m/%Y")


def format_for_user(dt: datetime, tz_name: str = DEFAULT_TIMEZONE) -> str:
    """Weekday dd/mm/yyyy HH:MM in local time."""
    return to_local(dt, tz_name).strftime("%A %d/%m/%Y %H:%M")


def format_for_user_relative(
    dt: datetime,
    *,
    now: datetime | None = None,
    tz_name: str = DEFAULT_TIMEZONE,
) -> str:
    """
    - same local day as now -> "today at HH:MM"
    - next local day        -> "tomorrow at HH:MM"
    - otherwise             -> "on Weekday dd/mm/yyyy at HH:MM"
    """
    local = to_local(dt, tz_name)
    today = local_date(now or now_utc(), tz_name)
    time_s = local.strftime("%H:%M")

    if local.date() == today:
        return f"today at {time_s}"
    if local.date() == today + timedelta(days=1):
        return f"tomorrow at {time_s}"
    return f"on {local.strftime('%A %d/%m/%Y')} at {time_s}"
