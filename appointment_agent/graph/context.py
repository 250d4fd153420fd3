"""Per-turn collaborators handed to every node."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable

from appointment_agent.backend.base import SchedulingBackend
from appointment_agent.debug_events import emit_current
from appointment_agent.oracle.client import Oracle


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class NodeContext:
    """Backend, oracle and organization settings for one turn.

    ``clock`` is injectable so tests can pin "now" for relative dates.
    """

    backend: SchedulingBackend
    oracle: Oracle
    tz: str = "UTC"
    org_id: int = 1
    clock: Callable[[], datetime] = field(default=_utc_now)

    def now(self) -> datetime:
        return self.clock()

    def emit(self, event_type: str, state_id: str, data: dict) -> None:
        emit_current(event_type, state_id, data)
