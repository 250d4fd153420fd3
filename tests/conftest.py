"""Shared fixtures: an in-memory scheduling backend, a scripted oracle, and a
turn controller wired to both with the clock pinned to Monday 2026-02-02."""

from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Callable, Optional, Union

import pytest

from appointment_agent.backend.base import BackendError, SchedulingBackend
from appointment_agent.graph.builder import build_dialogue_graph
from appointment_agent.graph.context import NodeContext
from appointment_agent.models.backend import (
    AppointmentItem,
    BookingRules,
    CreatedAppointment,
    CreatedUser,
    NewUser,
    PersonName,
    Slot,
    UserRecord,
)
from appointment_agent.oracle.client import Oracle
from appointment_agent.session_store import InMemorySessionStore
from appointment_agent.timezones import date_in_timezone
from appointment_agent.turn import TurnController

FIXED_NOW = datetime(2026, 2, 2, 15, 0, tzinfo=timezone.utc)  # Monday

CALLER_PHONE = "+15551234567"


def fixed_clock() -> datetime:
    return FIXED_NOW


def make_slot(slot_id: int, start: str, provider_id: int = 3) -> Slot:
    return Slot(slot_id=slot_id, provider_id=provider_id, start=start, end="")


def make_user(
    user_id: int,
    first: str,
    last: str,
    dob: Optional[str] = None,
    phone: Optional[str] = None,
) -> UserRecord:
    return UserRecord(
        id=user_id, name=PersonName(first_name=first, last_name=last), dob=dob, phone=phone
    )


# ── Fake backend ─────────────────────────────────────────────────


class FakeBackend(SchedulingBackend):
    """Scheduling backend held in memory.

    Every call is recorded in ``calls`` as ``(method_name, kwargs)``. Put a
    ``BackendError`` in ``failures[method_name]`` to make that method raise.
    """

    def __init__(self) -> None:
        self.users: list[UserRecord] = []
        self.slots: list[Slot] = []
        self.reschedule_slots: list[Slot] = []
        self.appointments: list[AppointmentItem] = []
        self.rules = BookingRules(accepting_bookings=True)
        self.failures: dict[str, BackendError] = {}
        self.calls: list[tuple[str, dict]] = []
        self.created_users: list[dict] = []
        self.created_appointments: list[dict] = []
        self.cancelled: list[int] = []
        self.rescheduled: list[tuple[int, int]] = []
        self.tz = "UTC"

    def _call(self, name: str, /, **kwargs) -> None:
        self.calls.append((name, kwargs))
        if name in self.failures:
            raise self.failures[name]

    def called(self, name: str) -> list[dict]:
        return [kwargs for method, kwargs in self.calls if method == name]

    def _in_range(self, slots: list[Slot], from_date: Optional[str], to_date: Optional[str]) -> list[Slot]:
        if not from_date or not to_date:
            return list(slots)
        return [s for s in slots if from_date <= date_in_timezone(s.start, self.tz) <= to_date]

    async def normalize_phone(self, raw_number: str) -> str:
        self._call("normalize_phone", raw_number=raw_number)
        digits = re.sub(r"\D", "", raw_number)
        if len(digits) < 10:
            raise BackendError(400, "Invalid phone number")
        return f"+1{digits[-10:]}"

    async def find_users_by_phone(self, phone: str) -> list[UserRecord]:
        self._call("find_users_by_phone", phone=phone)
        return [u for u in self.users if u.phone == phone]

    async def search_users(self, name: Optional[str] = None, fuzzy: Optional[str] = None) -> list[UserRecord]:
        self._call("search_users", name=name, fuzzy=fuzzy)
        if name:
            return [u for u in self.users if u.full_name.lower() == name.lower()]
        if fuzzy:
            return [u for u in self.users if u.name.last_name.upper() == fuzzy.upper()]
        return []

    async def create_user(self, user: NewUser) -> CreatedUser:
        self._call("create_user", user=user)
        self.created_users.append(user.to_payload())
        return CreatedUser(user_id=501, member_id="M-501")

    async def get_booking_rules(self, org_id: int) -> BookingRules:
        self._call("get_booking_rules", org_id=org_id)
        return self.rules

    async def get_availability(
        self,
        org_id: int,
        from_date: str,
        to_date: str,
        provider_id: Optional[int] = None,
        visit_type: Optional[str] = None,
    ) -> list[Slot]:
        self._call("get_availability", org_id=org_id, from_date=from_date, to_date=to_date)
        return self._in_range(self.slots, from_date, to_date)

    async def create_appointment(
        self,
        user_id: int,
        org_id: int,
        provider_id: int,
        slot_id: int,
        visit_type: str = "follow_up",
    ) -> CreatedAppointment:
        self._call(
            "create_appointment",
            user_id=user_id,
            org_id=org_id,
            provider_id=provider_id,
            slot_id=slot_id,
            visit_type=visit_type,
        )
        self.created_appointments.append({"user_id": user_id, "slot_id": slot_id, "visit_type": visit_type})
        return CreatedAppointment(appointment_id=900, status="scheduled")

    async def list_appointments(self, user_id: int, status: str = "upcoming") -> list[AppointmentItem]:
        self._call("list_appointments", user_id=user_id, status=status)
        return list(self.appointments)

    async def get_reschedule_options(
        self,
        appointment_id: int,
        from_date: Optional[str] = None,
        to_date: Optional[str] = None,
    ) -> list[Slot]:
        self._call(
            "get_reschedule_options",
            appointment_id=appointment_id,
            from_date=from_date,
            to_date=to_date,
        )
        return self._in_range(self.reschedule_slots, from_date, to_date)

    async def reschedule_appointment(self, appointment_id: int, new_slot_id: int) -> dict:
        self._call("reschedule_appointment", appointment_id=appointment_id, new_slot_id=new_slot_id)
        self.rescheduled.append((appointment_id, new_slot_id))
        return {"appointmentId": appointment_id, "status": "scheduled"}

    async def get_cancel_options(self, user_id: int) -> list[AppointmentItem]:
        self._call("get_cancel_options", user_id=user_id)
        return list(self.appointments)

    async def cancel_appointment(self, appointment_id: int) -> dict:
        self._call("cancel_appointment", appointment_id=appointment_id)
        self.cancelled.append(appointment_id)
        return {"appointmentId": appointment_id, "status": "cancelled"}


# ── Scripted oracle ──────────────────────────────────────────────

Reply = Union[str, None, Callable[[str], Optional[str]]]


class ScriptedOracle(Oracle):
    """Oracle whose answers come from per-task scripts instead of a model.

    ``scripts[task]`` is a list consumed front to back; each entry is a reply
    string, None (the oracle failed), or a callable of the user message. A
    task with no script left answers None, so the sync fallbacks run.
    """

    def __init__(self, scripts: Optional[dict[str, list[Reply]]] = None) -> None:
        super().__init__(client=None, timeout=1.0)
        self.scripts: dict[str, list[Reply]] = {k: list(v) for k, v in (scripts or {}).items()}
        self.calls: list[tuple[str, str]] = []

    def script(self, task: str, *replies: Reply) -> None:
        self.scripts.setdefault(task, []).extend(replies)

    def asked(self, task: str) -> int:
        return sum(1 for t, _ in self.calls if t == task)

    async def ask(
        self,
        task: str,
        system: str,
        user: str,
        max_tokens: int = 64,
        temperature: float = 0.0,
    ) -> Optional[str]:
        self.calls.append((task, user))
        queue = self.scripts.get(task)
        if not queue:
            return None
        reply = queue.pop(0)
        if callable(reply):
            return reply(user)
        return reply


# ── Fixtures ─────────────────────────────────────────────────────


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def oracle() -> ScriptedOracle:
    return ScriptedOracle()


@pytest.fixture
def ctx(backend, oracle) -> NodeContext:
    return NodeContext(backend=backend, oracle=oracle, tz="UTC", org_id=1, clock=fixed_clock)


@pytest.fixture
def controller(backend, oracle) -> TurnController:
    return TurnController(
        graph=build_dialogue_graph(),
        store=InMemorySessionStore(),
        backend=backend,
        oracle=oracle,
        tz="UTC",
        org_id=1,
        clock=fixed_clock,
    )


@pytest.fixture
def known_caller(backend) -> UserRecord:
    user = make_user(42, "Maria", "Lopez", dob="1985-07-20T00:00:00.000Z", phone=CALLER_PHONE)
    backend.users.append(user)
    return user


class Caller:
    """Drives one call through the controller, one utterance at a time."""

    def __init__(self, controller: TurnController, call_id: str, phone: Optional[str] = None) -> None:
        self.controller = controller
        self.call_id = call_id
        self.phone = phone
        self.last = None

    async def say(self, text: str) -> str:
        self.last = await self.controller.handle_turn(
            self.call_id, [{"role": "user", "content": text}], self.phone
        )
        return self.last.response

    @property
    def state(self):
        return self.last.state


@pytest.fixture
def make_caller(controller) -> Callable[..., Caller]:
    def _make(call_id: str = "call-test-0001", phone: Optional[str] = None) -> Caller:
        return Caller(controller, call_id, phone)

    return _make


async def verified_caller(make_caller, oracle: ScriptedOracle) -> Caller:
    """A known caller who has confirmed their date of birth."""
    caller = make_caller("call-known-0001", CALLER_PHONE)
    await caller.say("Hello")
    await caller.say("July 20th 1985")
    assert caller.state.identity_confirmed
    return caller
