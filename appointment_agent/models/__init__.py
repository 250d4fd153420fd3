"""Data models for the dialogue state and backend payloads."""

from .backend import (
    AppointmentItem,
    BookingRules,
    CreatedAppointment,
    CreatedUser,
    NewUser,
    Slot,
    UserRecord,
)
from .state import (
    BookingFlow,
    CancelFlow,
    ChatMessage,
    ConversationState,
    IntentRecord,
    RegistrationData,
    RegistrationFlow,
    RescheduleFlow,
    UserInfo,
    VerifyFlow,
)

__all__ = [
    "AppointmentItem",
    "BookingFlow",
    "BookingRules",
    "CancelFlow",
    "ChatMessage",
    "ConversationState",
    "CreatedAppointment",
    "CreatedUser",
    "IntentRecord",
    "NewUser",
    "RegistrationData",
    "RegistrationFlow",
    "RescheduleFlow",
    "Slot",
    "UserInfo",
    "UserRecord",
    "VerifyFlow",
]
