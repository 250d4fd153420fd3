"""Abstract base class for the scheduling backend.

Defines the operations the dialogue graph needs from the REST backend that
owns users, providers, availability and appointments. Any implementation
(the HTTP client, an in-memory fake in tests) implements this ABC.
"""

from __future__ import annotations

import contextlib
import contextvars
import time
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field
from typing import Iterator, Optional

from appointment_agent.models.backend import (
    AppointmentItem,
    BookingRules,
    CreatedAppointment,
    CreatedUser,
    NewUser,
    Slot,
    UserRecord,
)


class BackendError(Exception):
    """A backend call failed: transport error, non-2xx status or a reply of
    the wrong shape."""

    def __init__(self, status: int, message: str) -> None:
        super().__init__(f"{status}: {message}" if status else message)
        self.status = status
        self.message = message


class SchedulingBackend(ABC):
    """The scheduling REST backend as seen by the dialogue graph."""

    @abstractmethod
    async def normalize_phone(self, raw_number: str) -> str:
        """Return the canonical (E.164) form of a caller-ID number."""

    @abstractmethod
    async def find_users_by_phone(self, phone: str) -> list[UserRecord]:
        """Return users whose phone matches ``phone``."""

    @abstractmethod
    async def search_users(
        self, name: Optional[str] = None, fuzzy: Optional[str] = None
    ) -> list[UserRecord]:
        """Search users by full name, or by a fuzzy (spelled) last name.

        Args:
            name: Name as spoken by the caller.
            fuzzy: Spelled letters, matched loosely.

        Returns:
            Matching users, best match first. Empty when neither argument
            is given.
        """

    @abstractmethod
    async def create_user(self, user: NewUser) -> CreatedUser:
        """Register a new user."""

    @abstractmethod
    async def get_booking_rules(self, org_id: int) -> BookingRules:
        """Return the organization's booking rules and working hours."""

    @abstractmethod
    async def get_availability(
        self,
        org_id: int,
        from_date: str,
        to_date: str,
        provider_id: Optional[int] = None,
        visit_type: Optional[str] = None,
    ) -> list[Slot]:
        """Return open slots for an inclusive local date range.

        Args:
            org_id: Organization to query.
            from_date: First day, ``YYYY-MM-DD`` in the organization timezone.
            to_date: Last day, inclusive.
            provider_id: Restrict to one provider.
            visit_type: Restrict to one visit type.

        Returns:
            Open slots; order is not guaranteed.
        """

    @abstractmethod
    async def create_appointment(
        self,
        user_id: int,
        org_id: int,
        provider_id: int,
        slot_id: int,
        visit_type: str = "follow_up",
    ) -> CreatedAppointment:
        """Book ``slot_id`` for ``user_id``."""

    @abstractmethod
    async def list_appointments(
        self, user_id: int, status: str = "upcoming"
    ) -> list[AppointmentItem]:
        """Return the user's appointments with the given status."""

    @abstractmethod
    async def get_reschedule_options(
        self,
        appointment_id: int,
        from_date: Optional[str] = None,
        to_date: Optional[str] = None,
    ) -> list[Slot]:
        """Return slots an appointment can be moved to."""

    @abstractmethod
    async def reschedule_appointment(self, appointment_id: int, new_slot_id: int) -> dict:
        """Move an appointment to ``new_slot_id``."""

    @abstractmethod
    async def get_cancel_options(self, user_id: int) -> list[AppointmentItem]:
        """Return the user's cancellable appointments."""

    @abstractmethod
    async def cancel_appointment(self, appointment_id: int) -> dict:
        """Cancel an appointment."""


# ── Per-turn call log ────────────────────────────────────────────


@dataclass
class ApiCallRecord:
    """One backend request, kept for the call detail endpoint."""

    method: str
    path: str
    status: int
    duration_ms: int
    params: dict = field(default_factory=dict)
    error: Optional[str] = None
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> dict:
        return asdict(self)


_call_log: contextvars.ContextVar[Optional[list[ApiCallRecord]]] = contextvars.ContextVar(
    "appointment_agent_api_calls", default=None
)


def record_api_call(record: ApiCallRecord) -> None:
    """Append to the log of the running ``capture_api_calls`` block, if any."""
    calls = _call_log.get()
    if calls is not None:
        calls.append(record)


@contextlib.contextmanager
def capture_api_calls() -> Iterator[list[ApiCallRecord]]:
    """Collect every backend call made inside the block (one turn)."""
    calls: list[ApiCallRecord] = []
    token = _call_log.set(calls)
    try:
        yield calls
    finally:
        _call_log.reset(token)
