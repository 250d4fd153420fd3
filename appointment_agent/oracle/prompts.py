"""System prompts and user-message builders for each oracle task.

Each task has a fixed reply contract (a single label, ``YYYY-MM-DD``, a JSON
object, ...). The parsers in ``nlu`` and ``datetime_parser`` enforce the
contract; anything else is treated as no answer.
"""

from __future__ import annotations

import json
from typing import Iterable, Optional

INTENT_LABELS = (
    "no_request",
    "emergency",
    "invalid_business",
    "unsupported",
    "org_info",
    "register",
    "book",
    "reschedule",
    "cancel",
    "get_appointments",
    "frustration",
)

# ── Intent ───────────────────────────────────────────────────────

INTENT_SYSTEM = f"""You classify the caller's latest message for a medical clinic's phone scheduling assistant.
Reply with exactly one label and nothing else. Labels:
- book: wants a new appointment, or is answering a booking question (a date, a time, an option number, yes/no about a slot)
- reschedule: wants to move an existing appointment
- cancel: wants to cancel an appointment
- get_appointments: wants to hear their upcoming appointments
- register: wants to register as a new patient, or is answering a registration question
- org_info: asks about hours, location or the clinic itself
- emergency: describes a medical emergency
- frustration: is angry, upset, or asks for a human
- no_request: says they need nothing else or says goodbye
- invalid_business: asks for something a clinic scheduler cannot do (e.g. pizza, weather)
- unsupported: anything else

Short replies such as numbers, "yes", "no" or dates are usually answers to the assistant's last
question: use the conversation context to classify them as part of the ongoing request.
Valid labels: {", ".join(INTENT_LABELS)}"""


def build_intent_message(snippet: str, last_user: str, context: str) -> str:
    return (
        f"Recent conversation:\n{snippet}\n\n"
        f"Latest caller message: {last_user}\n"
        f"{context}\n"
        "Label:"
    )


# ── Date / time ──────────────────────────────────────────────────

DATETIME_SYSTEM = """You convert a caller's date/time phrase into JSON for a scheduling system.
Interpret every phrase in the given IANA timezone, relative to the given current instant.
Reply with exactly one of:
{"kind": "range", "when": "this_week"} or {"kind": "range", "when": "next_week"}
{"kind": "range", "fromDate": "YYYY-MM-DD", "toDate": "YYYY-MM-DD"}   (a day or span without a time)
{"kind": "moment", "isoUtc": "YYYY-MM-DDTHH:MM:SSZ"}                  (a specific time, converted to UTC)
or the single word INVALID if the phrase contains no date or time.
If only a time is given, use the date from the conversation context when present, else the next such time.
No prose, no code fences."""


def build_datetime_message(
    now_utc: str, tz: str, utterance: str, context: Optional[str] = None
) -> str:
    lines = [f"Current instant (UTC): {now_utc}", f"Timezone: {tz}"]
    if context:
        lines.append(f"Assistant's last message: {context}")
    lines.append(f"Caller said: {utterance}")
    return "\n".join(lines)


# ── Yes / no ─────────────────────────────────────────────────────

CONFIRM_SYSTEM = """Decide whether the caller is answering YES to the assistant's question.
Natural confirmations like "that's right", "it is correct", "sure, go ahead" are yes.
Anything that declines, hesitates, asks something else or changes the request is no.
Reply with exactly yes or no."""


def build_confirm_message(question: str, reply: str) -> str:
    return f"Assistant asked: {question}\nCaller replied: {reply}\nAnswer:"


# ── Registration analyzer ────────────────────────────────────────

REGISTRATION_ANALYZER_SYSTEM = """You check a caller's answer during patient registration.
Decide whether the answer plausibly provides what was asked.
Reply with a JSON object only:
{"valid": true|false, "action": "accept"|"clarify"|"reask", "clarificationMessage": "<short question, optional>"}
Use "accept" when the answer is usable (be lenient with transcription errors),
"clarify" when it is partly usable and one short follow-up would fix it,
"reask" when it does not answer the question."""


def build_registration_analyzer_message(
    step: str, question: str, answer: str, collected: dict
) -> str:
    return (
        f"Step: {step}\n"
        f"Question asked: {question}\n"
        f"Caller answered: {answer}\n"
        f"Collected so far: {json.dumps(collected, default=str)}"
    )


# ── Field extraction ─────────────────────────────────────────────

FULL_NAME_SYSTEM = """Extract the person's full name from what they said, e.g. "it is Jane Doe" -> Jane Doe.
Reply with the name only, properly capitalized, or NONE if no name was given."""

DOB_SYSTEM = """Convert the spoken date of birth to YYYY-MM-DD.
Examples: "March 15 1999" -> 1999-03-15, "the 4th of July 1980" -> 1980-07-04.
Reply with the date only, or INVALID if it is not a complete date."""

GENDER_SYSTEM = """Normalize the caller's answer to one of: male, female, other.
Correct transcription errors such as "mail" -> male, "femail" -> female.
Reply with the single word only."""

EMAIL_SYSTEM = """Convert a spoken or transcribed email address to standard form,
e.g. "jane at gmail dot com" -> jane@gmail.com. Fix obvious typos such as "dot come" -> ".com".
Reply with the email only, or NONE if there is no email address."""


def build_field_message(utterance: str) -> str:
    return f"Caller said: {utterance}"


# ── Correction during confirmation ───────────────────────────────

CORRECTION_SYSTEM = """The caller was read a registration summary and asked if everything is correct.
Decide whether they are correcting one field and extract the new value.
Reply with a JSON object only:
{"correcting": true|false, "field": "name"|"dob"|"gender"|"phone"|"email"|"", "newValue": "<new value as said>"}"""


def build_correction_message(utterance: str, summary: str) -> str:
    return f"Summary read to the caller:\n{summary}\n\nCaller said: {utterance}"


# ── Appointment match ────────────────────────────────────────────

MATCH_APPOINTMENT_SYSTEM = """Match the caller's description to one of the listed appointments.
Times are already in the clinic's local time.
Reply with the matching appointment id only, or NONE if none clearly matches."""


def build_match_appointment_message(utterance: str, items: Iterable[tuple[int, str]]) -> str:
    listing = "\n".join(f"id={item_id}: {when}" for item_id, when in items)
    return f"Appointments:\n{listing}\n\nCaller said: {utterance}"
