"""Date/time phrase parsing through the oracle.

A caller's phrase resolves to one of three shapes: a named week
(``WeekRange``), an explicit date span (``DateRange``), or a single UTC
instant (``Moment``). The oracle does the language work; this module
enforces the reply contract and turns the result into availability query
windows in the organization timezone.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional, Union

from appointment_agent.oracle import prompts
from appointment_agent.oracle.client import Oracle
from appointment_agent.timezones import (
    WEEK_KINDS,
    date_in_timezone,
    parse_instant,
    to_utc_iso,
    week_range,
)

log = logging.getLogger("appointment_agent.datetime_parser")

_FENCE_OPEN = re.compile(r"^```(?:json)?\s*", re.IGNORECASE)
_FENCE_CLOSE = re.compile(r"\s*```$")
_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


@dataclass(frozen=True)
class WeekRange:
    when: str  # this_week | next_week


@dataclass(frozen=True)
class DateRange:
    from_date: str  # YYYY-MM-DD
    to_date: str


@dataclass(frozen=True)
class Moment:
    iso_utc: str  # YYYY-MM-DDTHH:MM:SSZ


ParsedDateTime = Union[WeekRange, DateRange, Moment]


def _is_date(value) -> bool:
    if not isinstance(value, str) or not _DATE.match(value):
        return False
    try:
        date.fromisoformat(value)
    except ValueError:
        return False
    return True


def parse_date_time_reply(raw: Optional[str]) -> Optional[ParsedDateTime]:
    """Validate an oracle reply against the date/time contract."""
    if raw is None:
        return None
    text = raw.strip()
    if not text or text.upper() == "INVALID":
        return None
    text = _FENCE_CLOSE.sub("", _FENCE_OPEN.sub("", text)).strip()
    try:
        data = json.loads(text)
    except ValueError:
        log.info("Date/time reply is not JSON: %r", text[:80])
        return None
    if not isinstance(data, dict):
        return None

    kind = data.get("kind")
    if kind == "range":
        if data.get("when") in WEEK_KINDS:
            return WeekRange(data["when"])
        from_date, to_date = data.get("fromDate"), data.get("toDate")
        if _is_date(from_date) and _is_date(to_date):
            if from_date > to_date:
                from_date, to_date = to_date, from_date
            return DateRange(from_date, to_date)
    elif kind == "moment":
        iso = data.get("isoUtc")
        instant = parse_instant(iso) if isinstance(iso, str) else None
        if instant is not None:
            return Moment(to_utc_iso(instant))
    log.info("Date/time reply has no valid shape: %r", text[:80])
    return None


async def parse_date_time(
    oracle: Oracle,
    utterance: str,
    tz: str,
    now: datetime,
    context: Optional[str] = None,
) -> Optional[ParsedDateTime]:
    """Parse a caller phrase into a week, a date span or a moment.

    Args:
        oracle: The oracle capability.
        utterance: What the caller said.
        tz: Organization IANA timezone the phrase is interpreted in.
        now: Reference instant for relative phrases ("tomorrow").
        context: The assistant's last message, so a bare "10 am" can
            resolve to the day that was just offered.

    Returns:
        The parsed shape, or None when there is no date/time or the oracle
        gave no usable answer.
    """
    trimmed = (utterance or "").strip()
    if not trimmed:
        return None
    raw = await oracle.ask(
        "datetime",
        prompts.DATETIME_SYSTEM,
        prompts.build_datetime_message(to_utc_iso(now), tz, trimmed, context),
        max_tokens=120,
    )
    return parse_date_time_reply(raw)


def date_from_moment(moment: Moment, tz: str) -> str:
    """The organization-local calendar date of a moment."""
    return date_in_timezone(moment.iso_utc, tz)


def availability_window(
    parsed: Optional[ParsedDateTime], tz: str, now: datetime
) -> tuple[str, str]:
    """``(from_date, to_date)`` to query availability for a parsed phrase.

    No phrase means this week; a moment means its whole local day.
    """
    if isinstance(parsed, WeekRange):
        return week_range(tz, parsed.when, now=now)
    if isinstance(parsed, DateRange):
        return parsed.from_date, parsed.to_date
    if isinstance(parsed, Moment):
        day = date_from_moment(parsed, tz)
        return day, day
    return week_range(tz, "this_week", now=now)
