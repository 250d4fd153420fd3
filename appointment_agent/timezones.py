"""Organization-timezone date arithmetic.

Availability queries and caller date/time phrases are both interpreted in
the organization's IANA timezone, so "February 5th at 8:30 PM" asks the
backend for February 5th in that zone rather than the UTC calendar date.
All instants exchanged with the backend and the oracle are UTC ISO strings.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from typing import Optional, Union
from zoneinfo import ZoneInfo

WEEK_KINDS = ("this_week", "next_week")


def zone(tz: str) -> ZoneInfo:
    return ZoneInfo(tz)


def parse_instant(iso: str) -> Optional[datetime]:
    """Parse an ISO-8601 instant into an aware UTC datetime, or None."""
    if not iso:
        return None
    text = iso.strip()
    if text.endswith("Z") or text.endswith("z"):
        text = text[:-1] + "+00:00"
    try:
        dt = datetime.fromisoformat(text)
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def to_utc_iso(dt: datetime) -> str:
    """Format an aware datetime as ``YYYY-MM-DDTHH:MM:SSZ``."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def local_datetime(iso: str, tz: str) -> Optional[datetime]:
    """The instant as wall-clock time in ``tz``, or None if unparsable."""
    dt = parse_instant(iso)
    if dt is None:
        return None
    return dt.astimezone(zone(tz))


def date_in_timezone(iso: str, tz: str) -> str:
    """Return the ``YYYY-MM-DD`` calendar date of a UTC instant in ``tz``.

    Unparsable input falls back to its first ten characters.
    """
    local = local_datetime(iso, tz)
    if local is None:
        return iso[:10]
    return local.date().isoformat()


def add_days(date_str: str, days: int) -> str:
    """Add days to a ``YYYY-MM-DD`` string."""
    return (date.fromisoformat(date_str[:10]) + timedelta(days=days)).isoformat()


def week_range(
    tz: str,
    which: str = "this_week",
    now: Union[datetime, str, None] = None,
) -> tuple[str, str]:
    """Monday..Sunday date range for this or next week in ``tz``.

    Args:
        tz: IANA timezone of the organization.
        which: ``"this_week"`` or ``"next_week"``.
        now: Reference instant (aware datetime or UTC ISO string).
            Defaults to the current time.

    Returns:
        ``(from_date, to_date)`` as ``YYYY-MM-DD`` strings, inclusive.
    """
    if which not in WEEK_KINDS:
        raise ValueError(f"unknown week kind: {which!r}")
    if now is None:
        ref = datetime.now(timezone.utc)
    elif isinstance(now, str):
        ref = parse_instant(now) or datetime.now(timezone.utc)
    else:
        ref = now if now.tzinfo else now.replace(tzinfo=timezone.utc)

    local = ref.astimezone(zone(tz))
    monday = local.date() - timedelta(days=local.weekday())
    if which == "next_week":
        monday += timedelta(days=7)
    return monday.isoformat(), (monday + timedelta(days=6)).isoformat()
