"""Scheduling backend over its REST API, using httpx."""

from __future__ import annotations

import logging
import time
from typing import Any, Optional, TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from appointment_agent.backend.base import (
    ApiCallRecord,
    BackendError,
    SchedulingBackend,
    record_api_call,
)
from appointment_agent.debug_events import emit_current
from appointment_agent.models.backend import (
    AppointmentItem,
    BookingRules,
    CreatedAppointment,
    CreatedUser,
    NewUser,
    Slot,
    UserRecord,
)

log = logging.getLogger("appointment_agent.backend")

M = TypeVar("M", bound=BaseModel)


class HttpSchedulingBackend(SchedulingBackend):
    """Talks to the scheduling REST backend.

    A fresh ``httpx.AsyncClient`` is opened per request. ``transport`` lets
    tests substitute ``httpx.MockTransport``.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        timeout: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._timeout = timeout
        self._transport = transport

    async def _request(
        self,
        method: str,
        path: str,
        params: Optional[dict] = None,
        json: Optional[dict] = None,
    ) -> Any:
        headers = {"x-api-key": self._api_key} if self._api_key else {}
        query = {k: v for k, v in (params or {}).items() if v is not None}
        started = time.monotonic()
        status = 0
        try:
            async with httpx.AsyncClient(
                base_url=self._base_url,
                timeout=self._timeout,
                transport=self._transport,
                headers=headers,
            ) as client:
                resp = await client.request(method, path, params=query or None, json=json)
        except httpx.HTTPError as exc:
            self._record(method, path, status, started, query, json, str(exc))
            log.warning("Backend %s %s failed: %s", method, path, exc)
            raise BackendError(0, f"Backend unreachable: {exc.__class__.__name__}") from exc

        status = resp.status_code
        try:
            data = resp.json()
        except ValueError:
            data = {}

        if resp.is_error:
            message = (
                data.get("message") if isinstance(data, dict) and data.get("message") else None
            ) or resp.reason_phrase or "Request failed"
            self._record(method, path, status, started, query, json, message)
            log.warning("Backend %s %s -> %d: %s", method, path, status, message)
            raise BackendError(status, message)

        self._record(method, path, status, started, query, json, None)
        return data

    def _record(
        self,
        method: str,
        path: str,
        status: int,
        started: float,
        params: dict,
        body: Optional[dict],
        error: Optional[str],
    ) -> None:
        duration_ms = round((time.monotonic() - started) * 1000)
        record = ApiCallRecord(
            method=method,
            path=path,
            status=status,
            duration_ms=duration_ms,
            params={**params, **({"body": body} if body else {})},
            error=error,
        )
        record_api_call(record)
        emit_current(
            "backend_call",
            f"{method} {path}",
            {"status": status, "duration_ms": duration_ms, "error": error},
        )

    # ── Caller ID & users ──────────────────────────────────────

    async def normalize_phone(self, raw_number: str) -> str:
        data = await self._request(
            "GET", "/caller-id/normalize", params={"rawNumber": raw_number}
        )
        normalized = data.get("normalizedNumber") if isinstance(data, dict) else None
        if not normalized:
            raise BackendError(200, "normalize response had no normalizedNumber")
        return normalized

    async def find_users_by_phone(self, phone: str) -> list[UserRecord]:
        data = await self._request("GET", "/users/by-phone", params={"phone": phone})
        return _parse_all(UserRecord, _as_list(data), "users")

    async def search_users(
        self, name: Optional[str] = None, fuzzy: Optional[str] = None
    ) -> list[UserRecord]:
        if not name and not fuzzy:
            return []
        params = {"name": name} if name else {"fuzzy": fuzzy}
        data = await self._request("GET", "/users/search", params=params)
        return _parse_all(UserRecord, _as_list(data), "users")

    async def create_user(self, user: NewUser) -> CreatedUser:
        data = await self._request("POST", "/users", json=user.to_payload())
        return _parse(CreatedUser, data, "create user")

    # ── Organization & availability ────────────────────────────

    async def get_booking_rules(self, org_id: int) -> BookingRules:
        data = await self._request("GET", f"/organizations/{org_id}/booking-rules")
        return _parse(BookingRules, data, "booking rules")

    async def get_availability(
        self,
        org_id: int,
        from_date: str,
        to_date: str,
        provider_id: Optional[int] = None,
        visit_type: Optional[str] = None,
    ) -> list[Slot]:
        data = await self._request(
            "GET",
            "/availability",
            params={
                "organizationId": org_id,
                "fromDate": from_date,
                "toDate": to_date,
                "providerId": provider_id,
                "visitType": visit_type,
            },
        )
        return _parse_all(Slot, _as_list(data, key="slots"), "slots")

    # ── Appointments ───────────────────────────────────────────

    async def create_appointment(
        self,
        user_id: int,
        org_id: int,
        provider_id: int,
        slot_id: int,
        visit_type: str = "follow_up",
    ) -> CreatedAppointment:
        data = await self._request(
            "POST",
            "/appointments",
            json={
                "userId": user_id,
                "organizationId": org_id,
                "providerId": provider_id,
                "visitType": visit_type,
                "slotId": slot_id,
            },
        )
        return _parse(CreatedAppointment, data, "create appointment")

    async def list_appointments(
        self, user_id: int, status: str = "upcoming"
    ) -> list[AppointmentItem]:
        data = await self._request(
            "GET", "/appointments", params={"userId": user_id, "status": status}
        )
        return _parse_all(AppointmentItem, _as_list(data, key="appointments"), "appointments")

    async def get_reschedule_options(
        self,
        appointment_id: int,
        from_date: Optional[str] = None,
        to_date: Optional[str] = None,
    ) -> list[Slot]:
        body: dict = {}
        if from_date and to_date:
            body = {"preferredDateRange": {"from": from_date, "to": to_date}}
        data = await self._request(
            "POST", f"/appointments/{appointment_id}/reschedule-options", json=body
        )
        return _parse_all(Slot, _as_list(data, key="slots"), "slots")

    async def reschedule_appointment(self, appointment_id: int, new_slot_id: int) -> dict:
        data = await self._request(
            "PATCH", f"/appointments/{appointment_id}", json={"newSlotId": new_slot_id}
        )
        return data if isinstance(data, dict) else {}

    async def get_cancel_options(self, user_id: int) -> list[AppointmentItem]:
        data = await self._request(
            "POST", "/appointments/cancel-options", json={"userId": user_id}
        )
        return _parse_all(AppointmentItem, _as_list(data, key="appointments"), "appointments")

    async def cancel_appointment(self, appointment_id: int) -> dict:
        data = await self._request(
            "POST", f"/appointments/{appointment_id}/cancel", json={"confirmed": True}
        )
        return data if isinstance(data, dict) else {}


def _as_list(data: Any, key: Optional[str] = None) -> list:
    """Accept either a bare JSON array or an object wrapping one under ``key``."""
    if isinstance(data, list):
        return data
    if key and isinstance(data, dict) and isinstance(data.get(key), list):
        return data[key]
    return []


def _parse(model: type[M], data: Any, what: str) -> M:
    """Validate a 2xx reply; a reply of the wrong shape is a backend failure."""
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        log.warning("Backend %s reply did not match %s: %s", what, model.__name__, exc)
        raise BackendError(200, f"Unexpected response shape from {what}") from exc


def _parse_all(model: type[M], items: list, what: str) -> list[M]:
    return [_parse(model, item, what) for item in items]
