"""Per-call conversation state.

One ``ConversationState`` exists per call id. It is created by the turn
controller on the first inbound message, replaced (never mutated in place)
by the reducer after every node, and persisted in the session store between
turns.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, Field, model_validator

from appointment_agent.models.backend import AppointmentItem, Slot


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class ChatMessage(BaseModel):
    role: Literal["user", "assistant", "system"]
    content: str = ""


class UserInfo(BaseModel):
    """Resolved caller identity."""

    id: int
    first_name: str = ""
    last_name: str = ""
    phone: Optional[str] = None
    dob: Optional[str] = None  # YYYY-MM-DD

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class IntentRecord(BaseModel):
    intent: str
    timestamp: str
    iteration: int


# ── Flow variants ────────────────────────────────────────────────

BookingStep = Literal["check", "offer_slots", "confirm"]
RegistrationStep = Literal[
    "start", "offer_waitlist", "name", "dob", "gender", "phone", "email", "confirm_all"
]
RescheduleStep = Literal["list", "choose", "offer_slots", "confirm"]
CancelStep = Literal["list", "choose", "confirm"]
VerifyStep = Literal[
    "ask_current_or_first",
    "ask_name",
    "ask_spell_last",
    "confirm_spelling",
    "ask_dob",
    "ask_phone",
    "offer_register_or_transfer",
]


class _FlowBase(BaseModel):
    started_at: str = Field(default_factory=utc_now_iso)


class BookingFlow(_FlowBase):
    kind: Literal["booking"] = "booking"
    step: BookingStep = "check"
    visit_type: str = "follow_up"


class RegistrationData(BaseModel):
    """Fields collected so far during registration."""

    first_name: Optional[str] = None
    last_name: Optional[str] = None
    dob: Optional[str] = None
    gender: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None

    @property
    def full_name(self) -> str:
        return f"{self.first_name or ''} {self.last_name or ''}".strip()


class RegistrationFlow(_FlowBase):
    kind: Literal["registration"] = "registration"
    step: RegistrationStep = "start"
    data: RegistrationData = Field(default_factory=RegistrationData)
    # Field the caller said was wrong at read-back, awaiting its new value.
    correcting: Optional[str] = None


class RescheduleFlow(_FlowBase):
    kind: Literal["reschedule"] = "reschedule"
    step: RescheduleStep = "list"


class CancelFlow(_FlowBase):
    kind: Literal["cancel"] = "cancel"
    step: CancelStep = "list"


class VerifyFlow(_FlowBase):
    """Identity verification when caller-ID lookup found nobody.

    ``candidate`` holds the record found by name search until the caller
    proves it is theirs; it is promoted to the identity fields only on a
    DOB or phone match.
    """

    kind: Literal["verify_user"] = "verify_user"
    step: VerifyStep = "ask_current_or_first"
    name_search_attempts: int = 0
    phone_attempts: int = 0
    last_spelled_name: Optional[str] = None
    pending_route: str = "book_flow"
    candidate: Optional[UserInfo] = None


Flow = Annotated[
    Union[BookingFlow, RegistrationFlow, RescheduleFlow, CancelFlow, VerifyFlow],
    Field(discriminator="kind"),
]

MID_FLOW_KINDS = ("booking", "registration", "reschedule", "cancel")


# ── Conversation state ───────────────────────────────────────────


class ConversationState(BaseModel):
    """Everything the dialogue graph knows about one call."""

    call_id: str
    raw_caller_phone: Optional[str] = None
    messages: list[ChatMessage] = []
    assistant_response: str = ""
    user: Optional[UserInfo] = None

    # Identity
    normalized_phone: Optional[str] = None
    user_id: Optional[int] = None
    user_name: Optional[str] = None
    user_dob: Optional[str] = None
    is_registered: bool = False
    identity_confirmed: bool = False
    identity_check_failed: bool = False
    dob_attempt_count: int = 0

    # Dialogue bookkeeping
    current_intent: Optional[str] = None
    previous_intent: Optional[str] = None
    intent_history: list[IntentRecord] = []
    iteration_count: int = 0
    current_step: Optional[str] = None
    next_action: Optional[str] = None

    # Flow bookkeeping
    flow: Optional[Flow] = None

    # Working sets shared by booking, reschedule and cancel
    available_slots: list[Slot] = []
    selected_slot_id: Optional[int] = None
    cancellable_appointments: list[AppointmentItem] = []
    selected_appointment_id: Optional[int] = None

    # Routing hand-offs
    verify_next: Optional[str] = None
    in_flow_next_route: Optional[str] = None

    # Control / failure
    org_id: int = 1
    failure_count: int = 0
    last_error: Optional[str] = None
    is_emergency: bool = False
    is_frustrated: bool = False
    should_transfer: bool = False
    transfer_to_agent: bool = False
    conversation_ended: bool = False
    call_ended: bool = False
    rejection_count: int = 0
    session_started_at: str = Field(default_factory=utc_now_iso)
    last_updated: str = Field(default_factory=utc_now_iso)

    @model_validator(mode="after")
    def _confirmed_identity_has_user(self) -> "ConversationState":
        if self.identity_confirmed and self.user_id is None:
            raise ValueError("identity_confirmed requires user_id")
        return self

    @property
    def current_flow(self) -> Optional[str]:
        return self.flow.kind if self.flow is not None else None

    @property
    def flow_step(self) -> Optional[str]:
        return self.flow.step if self.flow is not None else None

    @property
    def has_identity(self) -> bool:
        return self.user_id is not None or self.user is not None or self.is_registered

    def last_user_message(self) -> str:
        for msg in reversed(self.messages):
            if msg.role == "user":
                return (msg.content or "").strip()
        return ""

    def last_assistant_message(self) -> str:
        for msg in reversed(self.messages):
            if msg.role == "assistant":
                return (msg.content or "").strip()
        return ""

    def find_slot(self, slot_id: Optional[int]) -> Optional[Slot]:
        if slot_id is None:
            return None
        return next((s for s in self.available_slots if s.slot_id == slot_id), None)

    def find_appointment(self, appointment_id: Optional[int]) -> Optional[AppointmentItem]:
        if appointment_id is None:
            return None
        return next(
            (a for a in self.cancellable_appointments if a.id == appointment_id), None
        )
