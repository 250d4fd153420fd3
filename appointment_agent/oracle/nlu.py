"""Natural-language understanding on top of the oracle.

Every function here has a declared fallback: the sync heuristics run first
where they are unambiguous (a bare "yes", a typed email address, "femail"),
the oracle handles the rest, and an oracle failure (``None``) resolves to a
conservative default or to the sync parser. Nothing here raises for a
malformed reply.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from datetime import date, datetime
from typing import Iterable, Optional, Sequence

from dateutil import parser as date_parser

from appointment_agent.models.state import ChatMessage
from appointment_agent.oracle import prompts
from appointment_agent.oracle.client import Oracle
from appointment_agent.oracle.prompts import INTENT_LABELS

log = logging.getLogger("appointment_agent.nlu")

INTENT_CONTEXT_MESSAGE_COUNT = 6
INTENT_CONTEXT_CHARS = 200

EMAIL_LIKE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
YYYY_MM_DD = re.compile(r"^\d{4}-\d{2}-\d{2}$")
CORRECTION_FIELDS = ("name", "dob", "gender", "phone", "email")


def _clean(text: str) -> str:
    t = (text or "").strip().lower()
    t = re.sub(r"\s+", " ", t)
    return t.strip(" .!?,")


# ── Sync heuristics ──────────────────────────────────────────────

_AFFIRMATIVE = re.compile(
    r"^(yes|yeah|yea|yep|yup|sure|correct|right|ok|okay|absolutely|definitely|"
    r"of course|please do|go ahead|sounds good|perfect|"
    r"that'?s?\s*(me|right|correct|fine|good|it)|i\s*am|it'?s?\s*me|it is)$"
)
_AFFIRMATIVE_LEAD = re.compile(r"^(yes|yeah|yep|yup|sure|correct)\b")
_RESERVATION = re.compile(
    r"\b(but|except|although|though|however|actually|wrong|incorrect|not right|change)\b"
)
_NEGATIVE = re.compile(
    r"^(no|nope|nah|not really|never ?mind|no thanks|no thank you|don'?t|do not|"
    r"cancel that|forget it|not that one|wrong)\b"
)
_NEVER_MIND = re.compile(r"never ?mind|forget it|changed my mind")

_EXPLICIT_NOTHING_ELSE = [
    re.compile(p)
    for p in (
        r"^no(\s|,|\.|$)",
        r"nothing\s*else",
        r"that'?s\s*all",
        r"goodbye|bye\b",
        r"that'?s\s*it",
        r"no\s*thanks",
        r"i'?m\s*done",
        r"all\s*done",
        r"nothing\s*more",
        r"not\s*really",
        r"we're\s*good|we\s*are\s*good",
        r"that\s*will\s*be\s*all",
        r"no\s*that'?s\s*(it|all)",
    )
]

_SKIP_EMAIL = re.compile(
    r"^(no|skip|nothing|that'?s fine|optional|no thanks|no thank you|nope|"
    r"i'?d rather not|rather not|skip it|i don'?t have (one|an email)|don'?t have (one|an email)|"
    r"prefer not|i prefer not|prefer not to)$"
)

_FIRST_VISIT = re.compile(
    r"first\s*visit|new\s*(user|patient)|register|first\s*time|i'?m\s*new|never\s*been"
)
_RETURNING = re.compile(
    r"current|existing|returning|yes\s*i\s*am|i'?m\s*a\s*(user|patient)|already\s*a\s*(user|patient)|"
    r"already\s*registered"
)


def looks_affirmative(text: str) -> bool:
    t = _clean(text)
    return bool(_AFFIRMATIVE.match(t) or _AFFIRMATIVE_LEAD.match(t))


def is_bare_affirmative(text: str) -> bool:
    """A yes with nothing after it, such as "yes" or "that's right"."""
    return bool(_AFFIRMATIVE.match(_clean(text)))


def has_reservation(text: str) -> bool:
    """The reply qualifies itself, as in "yes, but my email is wrong"."""
    return bool(_RESERVATION.search(_clean(text)))


def looks_negative(text: str) -> bool:
    t = _clean(text)
    return bool(_NEGATIVE.match(t) or _NEVER_MIND.search(t))


def is_explicit_nothing_else(text: str) -> bool:
    """True only when the caller clearly said they are done."""
    t = re.sub(r"\s+", " ", (text or "").strip().lower())
    if not t:
        return False
    return any(p.search(t) for p in _EXPLICIT_NOTHING_ELSE)


def is_skip_email(text: str) -> bool:
    t = _clean(text)
    return not t or bool(_SKIP_EMAIL.match(t))


def is_first_visit(text: str) -> bool:
    return bool(_FIRST_VISIT.search(_clean(text)))


def is_returning_user(text: str) -> bool:
    return bool(_RETURNING.search(_clean(text)))


def extract_phone_digits(text: str) -> str:
    """Pull a 10-digit US number out of free text, dropping a leading 1 or 01.

    Fewer than ten digits are returned as found, so the caller can tell
    an incomplete number from a usable one.
    """
    digits = re.sub(r"\D", "", text or "")
    if len(digits) <= 10:
        return digits
    if digits.startswith("01"):
        digits = digits[2:]
    elif digits.startswith("1"):
        digits = digits[1:]
    return digits[-10:]


def gender_heuristic(text: str) -> Optional[str]:
    cleaned = _clean(text)
    if cleaned in ("f", "m"):
        return "female" if cleaned == "f" else "male"
    words = set(re.findall(r"[a-z\-]+", cleaned))
    if words & {"female", "woman", "femail", "femal", "femme", "girl", "lady"}:
        return "female"
    if words & {"male", "man", "mail", "boy", "guy"}:
        return "male"
    if words & {"other", "nonbinary", "non-binary", "enby"} or "non binary" in (text or "").lower():
        return "other"
    return None


# ── Intent ───────────────────────────────────────────────────────


async def detect_intent(
    oracle: Oracle,
    messages: Sequence[ChatMessage],
    previous_intent: Optional[str] = None,
    current_step: Optional[str] = None,
    user_name: Optional[str] = None,
) -> str:
    """Classify the latest user message into one of ``INTENT_LABELS``.

    An unusable reply resolves to ``unsupported``, which routes to a human.
    """
    recent = list(messages)[-INTENT_CONTEXT_MESSAGE_COUNT:]
    snippet = "\n".join(
        f"{m.role}: {(m.content or '').strip()[:INTENT_CONTEXT_CHARS]}" for m in recent
    )
    last_user = next((m.content for m in reversed(messages) if m.role == "user"), "") or ""
    context = (
        f"Context: previous_intent={previous_intent or 'none'}, "
        f"current_step={current_step or 'none'}"
        + (f", user={user_name}" if user_name else "")
        + "."
    )
    raw = await oracle.ask(
        "intent",
        prompts.INTENT_SYSTEM,
        prompts.build_intent_message(snippet, last_user.strip(), context),
        max_tokens=20,
    )
    if raw is None:
        return "unsupported"
    label = raw.strip().lower().strip(" .\"'`")
    if label in INTENT_LABELS:
        return label
    for candidate in INTENT_LABELS:
        if candidate in label:
            return candidate
    log.info("Intent reply %r did not match a label", raw[:40])
    return "unsupported"


# ── Confirmation ─────────────────────────────────────────────────


async def is_confirming(oracle: Oracle, question: str, reply: str) -> bool:
    """Whether ``reply`` says yes to ``question``. Unknown resolves to no."""
    if not (reply or "").strip():
        return False
    if looks_affirmative(reply):
        return True
    if looks_negative(reply):
        return False
    raw = await oracle.ask(
        "confirm",
        prompts.CONFIRM_SYSTEM,
        prompts.build_confirm_message(question, reply.strip()),
        max_tokens=5,
    )
    if raw is None:
        return False
    return raw.strip().lower().startswith("yes")


# ── Registration analyzer ────────────────────────────────────────


@dataclass
class RegistrationAnalysis:
    valid: bool
    action: str  # accept | clarify | reask
    clarification: Optional[str] = None


def _json_object(raw: str) -> Optional[dict]:
    start = raw.find("{")
    end = raw.rfind("}") + 1
    text = raw[start:end] if start >= 0 and end > start else raw
    try:
        data = json.loads(text)
    except (ValueError, TypeError):
        return None
    return data if isinstance(data, dict) else None


async def analyze_registration_response(
    oracle: Oracle,
    step: str,
    question: str,
    answer: str,
    collected: dict,
) -> RegistrationAnalysis:
    """Check a registration answer before it is stored.

    Empty answers are re-asked without an oracle call; an unusable reply is
    accepted so a flaky oracle never blocks registration.
    """
    trimmed = (answer or "").strip()
    if not trimmed:
        return RegistrationAnalysis(
            valid=False,
            action="reask",
            clarification="I didn't catch that. Could you please repeat?",
        )
    raw = await oracle.ask(
        "registration_analyzer",
        prompts.REGISTRATION_ANALYZER_SYSTEM,
        prompts.build_registration_analyzer_message(step, question, trimmed, collected),
        max_tokens=150,
        temperature=0.2,
    )
    data = _json_object(raw) if raw else None
    if data is None:
        return RegistrationAnalysis(valid=True, action="accept")
    action = data.get("action")
    if action not in ("clarify", "reask"):
        action = "accept"
    message = data.get("clarificationMessage")
    clarification = message.strip() if isinstance(message, str) and message.strip() else None
    return RegistrationAnalysis(
        valid=data.get("valid") is True, action=action, clarification=clarification
    )


# ── Names ────────────────────────────────────────────────────────

_NAME_LEAD = re.compile(
    r"^(my (full |legal )?name is|the name is|name'?s|it is|it'?s|it would be|this is|i am|i'?m)\s+",
    re.IGNORECASE,
)


def extract_full_name_fallback(utterance: str) -> Optional[str]:
    text = _NAME_LEAD.sub("", (utterance or "").strip()).strip(" .!,")
    words = text.split()
    if not 1 <= len(words) <= 4 or not all(re.fullmatch(r"[A-Za-z'\-]+", w) for w in words):
        return None
    return " ".join(w[:1].upper() + w[1:] for w in words)


async def extract_full_name(oracle: Oracle, utterance: str) -> Optional[str]:
    trimmed = (utterance or "").strip()
    if not trimmed:
        return None
    raw = await oracle.ask(
        "full_name",
        prompts.FULL_NAME_SYSTEM,
        prompts.build_field_message(trimmed),
        max_tokens=60,
    )
    if raw is None:
        return extract_full_name_fallback(trimmed)
    name = raw.strip().strip(".\"'")
    if not name or name.upper() == "NONE":
        return None
    return name


def split_full_name(full_name: str) -> tuple[str, str]:
    """The last token is the last name; everything before it the first name."""
    parts = full_name.split()
    if len(parts) <= 1:
        return full_name.strip(), ""
    return " ".join(parts[:-1]), parts[-1]


# ── Dates of birth ───────────────────────────────────────────────

# Two defaults that differ in every date field: a field the caller did not
# say comes out different between the two parses.
_DOB_DEFAULTS = (datetime(2000, 1, 1), datetime(2001, 2, 2))


def _valid_dob(year: int, month: int, day: int) -> Optional[str]:
    try:
        value = date(year, month, day)
    except ValueError:
        return None
    if value.year < 1900 or value > date.today():
        return None
    return value.isoformat()


def parse_dob_fallback(text: str) -> Optional[str]:
    """Sync DOB parser for free text ("March 15 1999", "15th of March 1999",
    "03/15/1999", ISO). A date missing its day, month or year is no date."""
    t = (text or "").strip()
    if not t:
        return None
    try:
        first, second = (
            date_parser.parse(t, default=default, fuzzy=True) for default in _DOB_DEFAULTS
        )
    except (ValueError, OverflowError):
        return None
    if first.date() != second.date():
        return None
    return _valid_dob(first.year, first.month, first.day)


def normalize_dob(dob: Optional[str]) -> Optional[str]:
    """``"1999-03-15T00:00:00.000Z"`` -> ``"1999-03-15"``."""
    if not dob:
        return None
    head = dob.strip()[:10]
    return head if YYYY_MM_DD.match(head) else None


def dob_matches(parsed: Optional[str], known: Optional[str]) -> bool:
    """Strict calendar-date equality; anything unparsable never matches."""
    known_norm = normalize_dob(known)
    return parsed is not None and known_norm is not None and parsed == known_norm


async def parse_dob(oracle: Oracle, utterance: str) -> Optional[str]:
    """Parse a spoken date of birth to ``YYYY-MM-DD``.

    ``INVALID`` from the oracle means no date; an unavailable oracle or a
    malformed reply falls back to the sync parser.
    """
    trimmed = (utterance or "").strip()
    if not trimmed:
        return None
    raw = await oracle.ask(
        "dob", prompts.DOB_SYSTEM, prompts.build_field_message(trimmed), max_tokens=15
    )
    if raw is not None:
        if raw.strip().upper() == "INVALID":
            return None
        m = re.search(r"(\d{4})-(\d{2})-(\d{2})", raw)
        if m:
            parsed = _valid_dob(int(m.group(1)), int(m.group(2)), int(m.group(3)))
            if parsed:
                return parsed
    return parse_dob_fallback(trimmed)


# ── Gender / email ───────────────────────────────────────────────


async def normalize_gender(oracle: Oracle, utterance: str) -> str:
    trimmed = (utterance or "").strip()
    if not trimmed:
        return "other"
    guess = gender_heuristic(trimmed)
    if guess:
        return guess
    raw = await oracle.ask(
        "gender", prompts.GENDER_SYSTEM, prompts.build_field_message(trimmed), max_tokens=5
    )
    value = (raw or "").strip().lower().strip(".")
    if value in ("male", "female"):
        return value
    return "other"


def parse_email_fallback(utterance: str) -> Optional[str]:
    t = f" {(utterance or '').lower().strip()} "
    t = re.sub(r"\s+at\s+", "@", t)
    t = re.sub(r"\s+dot\s+", ".", t)
    t = t.replace(" ", "").rstrip(".")
    if t.endswith(".come"):
        t = t[:-1]
    return t if EMAIL_LIKE.match(t) else None


async def parse_email(oracle: Oracle, utterance: str) -> Optional[str]:
    trimmed = (utterance or "").strip()
    if not trimmed:
        return None
    if EMAIL_LIKE.match(trimmed.lower()):
        return trimmed.lower()
    raw = await oracle.ask(
        "email", prompts.EMAIL_SYSTEM, prompts.build_field_message(trimmed), max_tokens=60
    )
    if raw is None:
        return parse_email_fallback(trimmed)
    value = raw.strip().lower()
    if not value or value.upper() == "NONE":
        return None
    return value if EMAIL_LIKE.match(value) else None


# ── Corrections ──────────────────────────────────────────────────


@dataclass
class Correction:
    field: str
    new_value: str


async def parse_correction(oracle: Oracle, utterance: str, summary: str) -> Optional[Correction]:
    """Which registration field the caller is correcting, if any."""
    trimmed = (utterance or "").strip()
    if not trimmed:
        return None
    raw = await oracle.ask(
        "correction",
        prompts.CORRECTION_SYSTEM,
        prompts.build_correction_message(trimmed, summary),
        max_tokens=120,
        temperature=0.2,
    )
    data = _json_object(raw) if raw else None
    if not data or data.get("correcting") is not True:
        return None
    field = data.get("field")
    if field not in CORRECTION_FIELDS:
        return None
    new_value = data.get("newValue")
    return Correction(field=field, new_value=new_value.strip() if isinstance(new_value, str) else "")


# ── Appointment match ────────────────────────────────────────────


async def match_appointment(
    oracle: Oracle, utterance: str, items: Iterable[tuple[int, str]]
) -> Optional[int]:
    """Resolve a spoken description to an appointment id.

    ``items`` are ``(id, local time in words)`` pairs. The reply may be an id
    or a 1-based position; ``NONE`` or anything else is no match.
    """
    candidates = list(items)
    trimmed = (utterance or "").strip()
    if not candidates or not trimmed:
        return None
    raw = await oracle.ask(
        "match_appointment",
        prompts.MATCH_APPOINTMENT_SYSTEM,
        prompts.build_match_appointment_message(trimmed, candidates),
        max_tokens=20,
    )
    if raw is None or raw.strip().upper() == "NONE":
        return None
    digits = re.sub(r"\D", "", raw)
    if not digits:
        return None
    num = int(digits)
    ids = [item_id for item_id, _ in candidates]
    if num in ids:
        return num
    if 1 <= num <= len(candidates):
        return ids[num - 1]
    return None
