"""Caller-facing phrases.

Every reply the dialogue graph produces is assembled from these constants
and helpers; nodes never speak raw backend or oracle text.
"""

from __future__ import annotations

# ── Greeting & identity ──────────────────────────────────────────

GREET_GENERAL = "Thank you for calling. I'm the scheduling assistant."
MENTION_SERVICES = (
    "I can help you book, reschedule or cancel an appointment, register as a new "
    "patient, or tell you about our hours. How can I help you today?"
)
ASK_DOB_CONFIRM = "To verify your identity, could you please tell me your date of birth?"
CONFIRM_THEN_SERVICES = "Thank you, you're verified. How can I help you today?"
DOB_VERIFY_FAIL_TRANSFER = (
    "I'm sorry, that date of birth doesn't match our records. "
    "Let me transfer you to a staff member who can help."
)
IDENTITY_FAILED_GOODBYE = (
    "I'm sorry, I wasn't able to verify your identity. "
    "Please call back when you have your details handy. Goodbye."
)


def greet_personalized(first_name: str) -> str:
    return (
        f"Hello {first_name}, thank you for calling. Is this {first_name}? "
        "If so, please confirm your date of birth."
    )


# ── Identity verification ────────────────────────────────────────

ASK_CURRENT_OR_FIRST = (
    "Are you a current patient with us, or is this your first visit?"
)
ASK_NAME = "Could you please tell me your first and last name?"
NAME_NOT_FOUND_ASK_SPELL = (
    "I couldn't find that name. Could you please spell your last name for me?"
)
DOB_MISMATCH_TRY_PHONE = "That date of birth doesn't match the record I found."
ASK_PHONE = "What is the phone number on your account?"
NOT_FOUND_OFFER_REGISTER_OR_TRANSFER = (
    "I wasn't able to find your record. Would you like to register as a new patient? "
    "If not, I can transfer you to our staff."
)
TRANSFER_LOCATE_RECORD = (
    "No problem. I'll transfer you to a staff member who can locate your record."
)
REGISTER_HANDOFF = "I'll help you register. One moment."
ASK_SPELL_AGAIN = "Sorry about that. Could you spell your last name again, one letter at a time?"


def searching_for_spelled(spelled: str) -> str:
    return f"I searched for {spelled} but didn't find a match."


def confirm_spelling_letters(letters: str) -> str:
    return f"That's {letters}, correct?"


# ── Registration ─────────────────────────────────────────────────

REGISTER_INTRO = "I'd be happy to register you as a new patient."
REGISTER_FULL_NAME = "What is your full legal name?"
REGISTER_DOB = "What is your date of birth?"
REGISTER_GENDER = "What is your gender? You can say male, female, or other."
REGISTER_PHONE = "What is the best phone number to reach you?"
REGISTER_EMAIL = "What is your email address? This is optional, you can say skip."
REGISTER_SUCCESS = "You're all registered. Would you like to book an appointment now?"
REGISTER_ERROR_TRANSFER = (
    "I'm sorry, I wasn't able to complete your registration. "
    "Let me transfer you to a staff member."
)
REGISTER_CORRECTION_TRANSFER = (
    "No problem. Let me transfer you to a staff member who can help update your details."
)
ALREADY_REGISTERED = "You're already registered with us. How else can I help you today?"
CLINIC_NOT_ACCEPTING = (
    "I'm sorry, we're not accepting new patients right now. "
    "Would you like to be added to our waitlist?"
)
ADD_WAITLIST_YES = "You've been added to the waitlist. We'll call you when a spot opens up."
ADD_WAITLIST_NO = "No problem. Is there anything else I can help you with?"
REGISTER_REPEAT = "I didn't catch that. Could you please repeat?"
REGISTER_DOB_NOT_CAUGHT = "I couldn't catch that date. What is your date of birth?"
REGISTER_PHONE_NOT_CAUGHT = (
    "I couldn't catch that number. What's the best phone number to reach you?"
)


def confirm_phone_on_file(display_phone: str) -> str:
    return f"I have your phone number as {display_phone}. Is that the best number to reach you?"


# ── Booking ──────────────────────────────────────────────────────

BOOK_INSTRUCTIONS_CARD = "Please bring your insurance card and a photo ID."
BOOK_INSTRUCTIONS_FASTING = "Since this is a physical, please fast for 8 hours beforehand."
BOOK_INSTRUCTIONS_PHONE = "This is a phone visit, so the provider will call you at your number on file."
NO_OPENINGS_TRY_OTHER_DAY = (
    "I don't see any openings for that time. Would you like to try another day?"
)
WHICH_SLOT = "Which time works best for you? You can say the time or the option number."
SLOT_NO_LONGER_AVAILABLE = "I'm sorry, that time was just taken."
NO_EXACT_DAY = "I don't have anything open that day, but here is what's open in the next few days."


def single_slot_offer(when: str) -> str:
    return f"The next available time I have is {when}. Is that the one you'd like to book?"


def offer_slots(listing: str) -> str:
    return f"{listing} {WHICH_SLOT}"


def confirm_slot_with_user(when: str) -> str:
    return f"I have {when}. Is that the one you'd like to book?"


def booked(when: str, instructions: list[str]) -> str:
    parts = [f"You're all set for {when}."] + instructions + [ANYTHING_ELSE_SHORT]
    return " ".join(parts)


# ── Reschedule ───────────────────────────────────────────────────

WHICH_TO_RESCHEDULE = "Which appointment would you like to reschedule? You can say the option number."
NO_RESCHEDULE_TIMES = (
    "I don't see any open times to move that appointment to right now. "
    "Anything else I can help with?"
)


def reschedule_times(listing: str) -> str:
    return f"Here are the new times I have. {listing} {WHICH_SLOT}"


def confirm_reschedule(when: str) -> str:
    return f"Got it, {when}. Confirm to reschedule?"


def rescheduled(when: str) -> str:
    return f"Your appointment has been moved to {when}. {ANYTHING_ELSE_SHORT}"


# ── Cancel ───────────────────────────────────────────────────────

FIND_UPCOMING = "Let me find your upcoming appointments."
CANCEL_WHICH = (
    "Which appointment would you like to cancel? Say the option number, or say no to go back."
)
CANCEL_KEPT = "No problem, your appointment is still scheduled. " + CANCEL_WHICH
CANCEL_DONE = "Your appointment has been cancelled."


def sure_cancel(when: str) -> str:
    return f"Are you sure you want to cancel your appointment on {when}?"


# ── Appointments listing ─────────────────────────────────────────

YOUR_UPCOMING = "Here are your upcoming appointments:"
NO_UPCOMING = "You don't have any upcoming appointments."

# ── Terminal & shared ────────────────────────────────────────────

EMERGENCY_911 = (
    "If this is a medical emergency, please hang up and dial 911 right away."
)
TRANSFER_STAFF = "Let me transfer you to a staff member who can help."
POLITE_REJECTION = (
    "I'm sorry, I can only help with appointments and registration here. "
    "Is there anything else I can help you with?"
)
CLOSE = "Thank you for calling. Have a great day. Goodbye."
ANYTHING_ELSE = "Is there anything else I can help you with today?"
ANYTHING_ELSE_SHORT = "Anything else I can help with?"
TOOL_RETRY = (
    "I'm having trouble reaching our scheduling system right now. "
    "Could you say that once more so I can try again?"
)
HOURS_UNAVAILABLE = "I couldn't fetch our hours right now."
HOURS_UNKNOWN = "I don't have our current hours on hand."


def hours_sentence(lines: list[str]) -> str:
    return f"Our hours are: {'. '.join(lines)}."

SECURITY_REFUSAL = (
    "I'm sorry, I can't help with that. "
    "I can help you book, reschedule or cancel an appointment."
)
