"""Per-call session persistence and call identity helpers.

The turn controller reads a call's ``ConversationState`` at the start of a
turn and writes the new one back at the end. ``SessionStore`` is the seam;
``InMemorySessionStore`` is the default and keeps everything in process.
"""

from __future__ import annotations

import asyncio
import logging
import secrets
import time
from abc import ABC, abstractmethod
from typing import Any, Mapping, Optional

from appointment_agent.models.state import ConversationState

log = logging.getLogger("appointment_agent.session_store")


def redact_pii(value: Optional[str]) -> str:
    """Mask PII for logging: show the first 3 and last 2 chars only."""
    if not value or len(value) <= 5:
        return "***"
    return value[:3] + "***" + value[-2:]


class SessionStore(ABC):
    """Where conversation state lives between turns."""

    @abstractmethod
    async def get(self, call_id: str) -> Optional[ConversationState]:
        """Return the saved state for ``call_id``, or None for a new call."""

    @abstractmethod
    async def put(self, state: ConversationState) -> None:
        """Save ``state`` under its ``call_id``, replacing any previous one."""

    @abstractmethod
    async def delete(self, call_id: str) -> None:
        """Forget a call."""

    @abstractmethod
    async def list_ids(self) -> list[str]:
        """Call ids currently stored, oldest first."""


class InMemorySessionStore(SessionStore):
    """Process-local store. State is lost on restart."""

    def __init__(self) -> None:
        self._states: dict[str, ConversationState] = {}
        self._lock = asyncio.Lock()

    async def get(self, call_id: str) -> Optional[ConversationState]:
        return self._states.get(call_id)

    async def put(self, state: ConversationState) -> None:
        async with self._lock:
            self._states[state.call_id] = state

    async def delete(self, call_id: str) -> None:
        async with self._lock:
            self._states.pop(call_id, None)
        log.info("Session removed: %s", call_id)

    async def list_ids(self) -> list[str]:
        return list(self._states)


# ── Call identity ────────────────────────────────────────────────


def _dig(data: Any, dotted: str) -> Any:
    for part in dotted.split("."):
        if not isinstance(data, Mapping):
            return None
        data = data.get(part)
    return data


def resolve_call_id(
    body: Mapping[str, Any],
    headers: Mapping[str, str],
    header_name: str = "x-vapi-call-id",
    body_path: str = "metadata.vapiCallId",
) -> str:
    """Find the call id for an inbound chat request.

    Looks at ``call.id``, then the configured header, then the configured
    dotted body path. Falls back to a fresh synthetic id, which makes the
    request a one-turn call.
    """
    for candidate in (
        _dig(body, "call.id"),
        headers.get(header_name) or headers.get(header_name.lower()),
        _dig(body, body_path),
    ):
        if isinstance(candidate, str) and candidate.strip():
            return candidate.strip()
    synthetic = f"call-{int(time.time() * 1000)}-{secrets.token_hex(4)}"
    log.info("No call id on request, using %s", synthetic)
    return synthetic


def resolve_caller_phone(body: Mapping[str, Any]) -> Optional[str]:
    """Caller-ID number from ``customer.number`` or ``metadata.rawCallerPhone``."""
    for candidate in (_dig(body, "customer.number"), _dig(body, "metadata.rawCallerPhone")):
        if isinstance(candidate, str) and candidate.strip():
            return candidate.strip()
    return None


def session_summary(state: ConversationState, detail: bool = False) -> dict[str, Any]:
    """Serialize a call for the API.

    With detail=False: summary suitable for listing.
    With detail=True: adds the recent messages and the flow in progress.
    """
    d: dict[str, Any] = {
        "call_id": state.call_id,
        "iteration_count": state.iteration_count,
        "current_step": state.current_step,
        "current_flow": state.current_flow,
        "current_intent": state.current_intent,
        "identity_confirmed": state.identity_confirmed,
        "user_name": redact_pii(state.user_name) if state.user_name else None,
        "should_transfer": state.should_transfer,
        "conversation_ended": state.conversation_ended,
        "session_started_at": state.session_started_at,
        "last_updated": state.last_updated,
    }
    if detail:
        d["flow"] = state.flow.model_dump() if state.flow is not None else None
        d["message_count"] = len(state.messages)
        d["recent_messages"] = [m.model_dump() for m in state.messages[-6:]]
        d["intent_history"] = [r.model_dump() for r in state.intent_history]
        d["failure_count"] = state.failure_count
        d["last_error"] = state.last_error
    return d
