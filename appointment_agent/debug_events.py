"""Per-call debug event broadcaster for real-time call tracing.

Each call id gets a DebugBroadcaster.  When events are emitted (node runs,
route decisions, oracle calls, backend calls), they are pushed to every
connected subscriber's asyncio.Queue for delivery over WebSocket and kept
in an event log for the call detail endpoint.

The turn controller binds the current call's broadcaster to a context
variable for the duration of a turn, so code deep inside the oracle or
backend client can emit without having the broadcaster passed down.
"""

from __future__ import annotations

import asyncio
import contextvars
import logging
import time
from collections import deque
from typing import Optional, TypedDict

log = logging.getLogger("appointment_agent.debug_events")


SUBSCRIBER_QUEUE_SIZE = 200
EVENT_LOG_LIMIT = 2000


class DebugEvent(TypedDict):
    type: str          # node_enter | node_exit | route | intent | oracle_* | backend_call | turn | error
    seq: int           # per call, starts at 1; gaps on a subscriber mean dropped events
    timestamp: float
    call_id: str
    state_id: str      # node name, oracle task or backend request
    data: dict


class DebugBroadcaster:
    """Per-call event broadcaster using asyncio.Queue per subscriber.

    The event log keeps the most recent ``EVENT_LOG_LIMIT`` events.
    """

    def __init__(self, call_id: str) -> None:
        self._call_id = call_id
        self._seq = 0
        self._subscribers: list[asyncio.Queue[DebugEvent]] = []
        self._event_log: deque[DebugEvent] = deque(maxlen=EVENT_LOG_LIMIT)

    def subscribe(self) -> asyncio.Queue[DebugEvent]:
        """Create a new subscriber queue and return it."""
        q: asyncio.Queue[DebugEvent] = asyncio.Queue(maxsize=SUBSCRIBER_QUEUE_SIZE)
        self._subscribers.append(q)
        log.info("Debug subscriber added for call %s (total: %d)",
                 self._call_id, len(self._subscribers))
        return q

    def unsubscribe(self, q: asyncio.Queue[DebugEvent]) -> None:
        """Remove a subscriber queue."""
        if q in self._subscribers:
            self._subscribers.remove(q)
            log.info("Debug subscriber removed for call %s (total: %d)",
                     self._call_id, len(self._subscribers))

    def emit(self, event_type: str, state_id: str, data: dict) -> DebugEvent:
        """Record an event and push it to every subscriber."""
        self._seq += 1
        event: DebugEvent = {
            "type": event_type,
            "seq": self._seq,
            "timestamp": time.time(),
            "call_id": self._call_id,
            "state_id": state_id,
            "data": data,
        }
        self._event_log.append(event)
        for q in self._subscribers:
            _offer(q, event)
        return event

    @property
    def event_log(self) -> list[DebugEvent]:
        """Recent event history for the call detail endpoint."""
        return list(self._event_log)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)


def _offer(q: asyncio.Queue[DebugEvent], event: DebugEvent) -> None:
    """Enqueue without blocking; a full queue loses its oldest event."""
    if q.full():
        try:
            q.get_nowait()
        except asyncio.QueueEmpty:
            pass
    try:
        q.put_nowait(event)
    except asyncio.QueueFull:
        log.debug("Dropped %s event for a slow subscriber", event["type"])


# ── Global broadcaster registry ──────────────────────────────────────

_broadcasters: dict[str, DebugBroadcaster] = {}


def get_broadcaster(call_id: str) -> DebugBroadcaster:
    """Get or create a broadcaster for a call."""
    if call_id not in _broadcasters:
        _broadcasters[call_id] = DebugBroadcaster(call_id)
        log.info("DebugBroadcaster created for call %s", call_id)
    return _broadcasters[call_id]


def remove_broadcaster(call_id: str) -> None:
    """Remove a broadcaster when the call ends."""
    if call_id in _broadcasters:
        del _broadcasters[call_id]
        log.info("DebugBroadcaster removed for call %s", call_id)


# ── Current-turn binding ─────────────────────────────────────────────

_current: contextvars.ContextVar[Optional[DebugBroadcaster]] = contextvars.ContextVar(
    "appointment_agent_broadcaster", default=None
)


def bind_broadcaster(broadcaster: Optional[DebugBroadcaster]) -> contextvars.Token:
    """Make ``broadcaster`` the target of ``emit_current`` in this context."""
    return _current.set(broadcaster)


def reset_broadcaster(token: contextvars.Token) -> None:
    _current.reset(token)


def emit_current(event_type: str, state_id: str, data: dict) -> None:
    """Emit on the broadcaster bound to the running turn, if any."""
    broadcaster = _current.get()
    if broadcaster is not None:
        broadcaster.emit(event_type, state_id, data)
