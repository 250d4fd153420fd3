"""Spoken formatting of slot times, dates and summaries.

Everything here renders in the organization timezone and is deterministic:
the text ends up in a TTS voice or a chat bubble, so "9:30" becomes
"half past 9 in the morning" and a week of slots collapses into one sentence
per day.
"""

from __future__ import annotations

from datetime import date
from typing import Iterable, Optional

from appointment_agent.timezones import local_datetime

_ORDINAL_SUFFIX = {1: "st", 2: "nd", 3: "rd"}


def ordinal(n: int) -> str:
    """1 -> "1st", 12 -> "12th", 23 -> "23rd"."""
    if 10 <= n % 100 <= 20:
        return f"{n}th"
    return f"{n}{_ORDINAL_SUFFIX.get(n % 10, 'th')}"


def _period(hour: int) -> str:
    if hour < 12:
        return "in the morning"
    if hour < 17:
        return "in the afternoon"
    return "in the evening"


def time_in_words(hour: int, minute: int) -> str:
    period = _period(hour)
    h = hour % 12 or 12
    if minute == 0:
        return f"{h} {period}"
    if minute == 30:
        return f"half past {h} {period}"
    if minute == 15:
        return f"quarter past {h} {period}"
    if minute == 45:
        return f"quarter to {(hour + 1) % 12 or 12} {period}"
    return f"{h} {minute:02d} {period}"


def slot_date_in_words(iso_start: str, tz: str) -> str:
    """e.g. ``"Thursday, February 5th at half past 9 in the morning"``."""
    local = local_datetime(iso_start, tz)
    if local is None:
        return iso_start
    return (
        f"{local.strftime('%A')}, {local.strftime('%B')} {ordinal(local.day)} "
        f"at {time_in_words(local.hour, local.minute)}"
    )


def short_time(iso_start: str, tz: str) -> str:
    """Compact clock time: ``"10am"``, ``"1:30pm"``."""
    local = local_datetime(iso_start, tz)
    if local is None:
        return iso_start
    suffix = "am" if local.hour < 12 else "pm"
    h = local.hour % 12 or 12
    if local.minute == 0:
        return f"{h}{suffix}"
    return f"{h}:{local.minute:02d}{suffix}"


def month_day(date_str: str) -> str:
    """``"2026-02-06"`` -> ``"February 6th"``."""
    day = date.fromisoformat(date_str[:10])
    return f"{day.strftime('%B')} {ordinal(day.day)}"


def condensed_availability(starts: Iterable[str], tz: str) -> str:
    """Group slot starts by local date into one sentence per day.

    ``"On February 5th we have 10am, 1:30pm. On February 6th we have 9am."``
    Days are in calendar order; duplicate times within a day are read once.
    """
    by_date: dict[str, list[str]] = {}
    for iso in starts:
        local = local_datetime(iso, tz)
        if local is None:
            continue
        times = by_date.setdefault(local.date().isoformat(), [])
        t = short_time(iso, tz)
        if t not in times:
            times.append(t)
    sentences = [
        f"On {month_day(key)} we have {', '.join(by_date[key])}."
        for key in sorted(by_date)
    ]
    return " ".join(sentences)


def spoken_dob(dob: Optional[str]) -> str:
    """``"1999-03-15"`` -> ``"March 15th, 1999"``; anything else is returned as-is."""
    if not dob:
        return ""
    try:
        day = date.fromisoformat(dob[:10])
    except ValueError:
        return dob
    return f"{day.strftime('%B')} {ordinal(day.day)}, {day.year}"


def format_phone_for_display(phone: Optional[str]) -> str:
    """Render the last ten digits as ``(XXX) XXX-XXXX``."""
    if not phone:
        return ""
    digits = "".join(ch for ch in phone if ch.isdigit())
    if len(digits) < 10:
        return phone
    d = digits[-10:]
    return f"({d[:3]}) {d[3:6]}-{d[6:]}"


def registration_summary(
    full_name: str,
    dob: Optional[str],
    gender: Optional[str],
    phone: Optional[str],
    email: Optional[str],
) -> str:
    lines = [
        "Let me confirm your information:",
        f"- Name: {full_name}",
        f"- Date of birth: {spoken_dob(dob)}",
        f"- Gender: {gender or ''}",
        f"- Phone: {format_phone_for_display(phone)}",
    ]
    if email:
        lines.append(f"- Email: {email}")
    return "\n".join(lines) + "\n\nIs everything correct?"


def appointment_line(index: int, start: str, provider_name: str, tz: str) -> str:
    when = slot_date_in_words(start, tz)
    if provider_name:
        return f"{index}. {when} with {provider_name}"
    return f"{index}. {when}"


def numbered_appointments(items: Iterable, tz: str) -> str:
    """One numbered line per appointment (``AppointmentItem``-like objects)."""
    return "\n".join(
        appointment_line(i, a.start, a.provider_name, tz)
        for i, a in enumerate(items, start=1)
    )
