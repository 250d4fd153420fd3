"""Free-text to slot resolution.

Given the candidate list the caller was just offered and what they said,
decide which slot they mean. Resolution order:

  1. An explicit option phrase ("option 2", "the second one", "2nd", "2")
     picks by index with no oracle call and no re-fetch.
  2. Otherwise the phrase goes to the date/time oracle once. A moment on a
     day the candidates cover picks the candidate closest to it.
  3. A moment on another day is reported as ``other_day`` so the flow can
     re-fetch that day; a range is reported as ``range``.
  4. Anything else is ``none`` and the flow re-prompts.

Spoken number words ("four") are not read as option numbers when the
phrase looks like a time, so "four thirty" never picks option 4.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Sequence

from appointment_agent.models.backend import Slot
from appointment_agent.oracle.client import Oracle
from appointment_agent.oracle.datetime_parser import (
    DateRange,
    Moment,
    ParsedDateTime,
    WeekRange,
    date_from_moment,
    parse_date_time,
)
from appointment_agent.timezones import date_in_timezone, parse_instant

log = logging.getLogger("appointment_agent.slot_matching")

_ORDINAL_WORDS = {
    "first": 1,
    "second": 2,
    "third": 3,
    "fourth": 4,
    "fifth": 5,
    "sixth": 6,
    "seventh": 7,
    "eighth": 8,
    "ninth": 9,
    "tenth": 10,
}
_NUMBER_WORDS = {
    "one": 1,
    "two": 2,
    "three": 3,
    "four": 4,
    "five": 5,
    "six": 6,
    "seven": 7,
    "eight": 8,
    "nine": 9,
    "ten": 10,
}

_OPTION_NUM = re.compile(r"\boption\s*(?:number\s*)?(\d+)\b")
_OPTION_WORD = re.compile(r"\boption\s*(?:number\s*)?(" + "|".join(_NUMBER_WORDS) + r")\b")
_BARE_DIGIT = re.compile(r"^(?:the\s+|number\s+)?(\d+)(?:\s+please)?$")
_ORDINAL_NUM = re.compile(r"^(?:the\s+)?(\d+)(?:st|nd|rd|th)(?:\s+one)?(?:\s+please)?$")

_TIME_LIKE = (
    re.compile(r"\b\d{1,2}\s*(?:a\.?m\.?|p\.?m\.?)(?:\s|$|[.,!?])"),
    re.compile(r"\b(?:a\.m\.|p\.m\.|am|pm)\b"),
    re.compile(r"\b(?:morning|afternoon|evening|noon|midnight|o'?clock)\b"),
    re.compile(r"\b\d{1,2}:\d{2}\b"),
    re.compile(
        r"\b(?:jan|feb|mar|apr|may|jun|jul|aug|sep|sept|oct|nov|dec)[a-z]*\.?\s+\d{1,2}"
        r"|\b\d{1,2}(?:st|nd|rd|th)?\s+(?:of\s+)?(?:jan|feb|mar|apr|may|jun|jul|aug|sep|sept|oct|nov|dec)"
    ),
    re.compile(
        r"\b(?:monday|tuesday|wednesday|thursday|friday|saturday|sunday|today|tomorrow|tonight)\b"
    ),
    re.compile(r"\b\d{1,2}\s+\d{1,2}(?:\s|$)"),
)


def looks_like_date_time(text: str) -> bool:
    t = (text or "").strip().lower()
    return any(p.search(t) for p in _TIME_LIKE)


def parse_option_index(text: str, spoken_numbers: bool = True) -> int:
    """Return the 0-based option index the caller named, or -1.

    Args:
        text: The caller's utterance.
        spoken_numbers: Also accept "one", "two", ... as options. Pass
            False when the utterance looks like a time.
    """
    t = re.sub(r"\s+", " ", (text or "").strip().lower()).strip(" .!?,")
    if not t:
        return -1

    m = _OPTION_NUM.search(t)
    if m:
        n = int(m.group(1))
        return n - 1 if n >= 1 else -1
    m = _BARE_DIGIT.match(t) or _ORDINAL_NUM.match(t)
    if m:
        n = int(m.group(1))
        return n - 1 if n >= 1 else -1

    m = _OPTION_WORD.search(t)
    if m:
        return _NUMBER_WORDS[m.group(1)] - 1

    if not spoken_numbers:
        return -1

    for word, n in _ORDINAL_WORDS.items():
        if re.search(rf"\b{word}\b", t):
            return n - 1

    m = re.fullmatch(
        r"(?:the\s+|number\s+)?(" + "|".join(_NUMBER_WORDS) + r")(?:\s+one)?(?:\s+please)?", t
    )
    if m:
        return _NUMBER_WORDS[m.group(1)] - 1
    return -1


def resolve_option(text: str, count: int) -> int:
    """Option index bounded to ``count`` candidates ("the last one" included)."""
    if count <= 0:
        return -1
    t = (text or "").lower()
    if re.search(r"\b(?:the\s+)?last\s+one\b|^last$", t.strip()):
        return count - 1
    index = parse_option_index(text, spoken_numbers=not looks_like_date_time(text))
    return index if 0 <= index < count else -1


def find_closest_to_start(slots: Sequence[Slot], target_iso: str) -> Optional[Slot]:
    """The slot whose start is nearest ``target_iso``; the first wins ties."""
    target = parse_instant(target_iso)
    if target is None:
        return None
    best: Optional[Slot] = None
    best_diff: Optional[float] = None
    for slot in slots:
        start = parse_instant(slot.start)
        if start is None:
            continue
        diff = abs((start - target).total_seconds())
        if best_diff is None or diff < best_diff:
            best, best_diff = slot, diff
    return best


@dataclass
class SlotMatch:
    kind: str  # index | closest | other_day | range | none
    slot: Optional[Slot] = None
    parsed: Optional[ParsedDateTime] = None
    requested_date: Optional[str] = None


async def match_slot(
    utterance: str,
    slots: Sequence[Slot],
    oracle: Oracle,
    tz: str,
    now: datetime,
    context: Optional[str] = None,
) -> SlotMatch:
    """Resolve ``utterance`` against the offered ``slots``."""
    index = resolve_option(utterance, len(slots))
    if index >= 0:
        log.info("Slot matched by option index %d", index + 1)
        return SlotMatch("index", slot=slots[index])

    parsed = await parse_date_time(oracle, utterance, tz, now, context)
    if isinstance(parsed, Moment):
        requested = date_from_moment(parsed, tz)
        offered_days = {date_in_timezone(s.start, tz) for s in slots}
        if requested in offered_days:
            slot = find_closest_to_start(
                [s for s in slots if date_in_timezone(s.start, tz) == requested],
                parsed.iso_utc,
            )
            if slot is not None:
                log.info("Slot matched by closest start on %s", requested)
                return SlotMatch("closest", slot=slot, parsed=parsed, requested_date=requested)
        return SlotMatch("other_day", parsed=parsed, requested_date=requested)
    if isinstance(parsed, (WeekRange, DateRange)):
        return SlotMatch("range", parsed=parsed)
    return SlotMatch("none")
