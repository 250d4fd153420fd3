"""Pydantic models for scheduling backend payloads.

The backend speaks camelCase JSON; every model accepts both the wire alias
and the Python field name so tests and fakes can build them directly.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

if TYPE_CHECKING:
    from appointment_agent.models.state import UserInfo


class BackendModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Slot(BackendModel):
    """A bookable window returned by availability or reschedule options."""

    slot_id: int
    provider_id: int = 0
    start: str  # UTC ISO instant
    end: str = ""


class PersonName(BackendModel):
    first_name: str = ""
    last_name: str = ""


class UserRecord(BackendModel):
    """A user as returned by phone lookup and name search."""

    id: int
    name: PersonName = Field(default_factory=PersonName)
    dob: Optional[str] = None
    gender: Optional[str] = None
    phone: Optional[str] = None
    status: Optional[str] = None

    @property
    def full_name(self) -> str:
        return f"{self.name.first_name} {self.name.last_name}".strip()

    def to_user_info(self) -> UserInfo:
        from appointment_agent.models.state import UserInfo

        return UserInfo(
            id=self.id,
            first_name=self.name.first_name,
            last_name=self.name.last_name,
            phone=self.phone,
            dob=self.dob,
        )


class AppointmentItem(BackendModel):
    """An upcoming or cancellable appointment."""

    id: int
    provider_name: str = ""
    organization_name: str = ""
    start: str
    end: str = ""
    visit_type: Optional[str] = None
    status: Optional[str] = None


class WorkingHours(BackendModel):
    start: str
    end: str


class BookingRules(BackendModel):
    accepting_bookings: bool = True
    min_days_in_advance: Optional[int] = None
    max_days_in_advance: Optional[int] = None
    working_hours: dict[str, WorkingHours] = {}
    allowed_visit_types: list[str] = []


class NewUser(BackendModel):
    """Registration payload for ``POST /users``."""

    first_name: str
    last_name: str
    dob: str  # YYYY-MM-DD
    gender: str
    phone: str
    email: Optional[str] = None

    def to_payload(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)


class CreatedUser(BackendModel):
    user_id: int
    member_id: Optional[str] = None
    created_at: Optional[str] = None


class CreatedAppointment(BackendModel):
    appointment_id: int
    start: Optional[str] = None
    end: Optional[str] = None
    status: Optional[str] = None
