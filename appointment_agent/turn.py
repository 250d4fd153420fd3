"""Turn controller: one inbound chat request in, one assistant reply out.

For each turn it loads the call's state (or starts a new one), merges the
inbound transcript, bumps ``iteration_count``, runs the dialogue graph once,
appends the reply and saves the result. Turns for the same call id are
serialized with a per-call ``asyncio.Lock``; different calls run
concurrently.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Iterable, Optional, Sequence, Union

from appointment_agent import verbiage
from appointment_agent.backend.base import SchedulingBackend, capture_api_calls
from appointment_agent.debug_events import (
    bind_broadcaster,
    get_broadcaster,
    remove_broadcaster,
    reset_broadcaster,
)
from appointment_agent.graph.context import NodeContext
from appointment_agent.graph.engine import DialogueGraph
from appointment_agent.models.state import ChatMessage, ConversationState
from appointment_agent.oracle.client import Oracle
from appointment_agent.session_store import SessionStore, redact_pii

log = logging.getLogger("appointment_agent.turn")

INBOUND_ROLES = ("user", "assistant", "system")

# Calls whose last-turn backend log is kept for the inspection API.
LAST_CALLS_LIMIT = 500

MessageLike = Union[ChatMessage, dict]


def to_chat_messages(messages: Iterable[MessageLike]) -> list[ChatMessage]:
    """Keep user, assistant and system messages; drop tool calls and the like."""
    result: list[ChatMessage] = []
    for m in messages:
        if isinstance(m, ChatMessage):
            result.append(m)
            continue
        if not isinstance(m, dict) or m.get("role") not in INBOUND_ROLES:
            continue
        content = m.get("content")
        if isinstance(content, list):
            # OpenAI content parts
            content = " ".join(
                p.get("text", "") for p in content if isinstance(p, dict) and p.get("type") == "text"
            )
        result.append(ChatMessage(role=m["role"], content=content if isinstance(content, str) else ""))
    return result


def merge_messages(
    existing: Sequence[ChatMessage], inbound: Sequence[ChatMessage]
) -> list[ChatMessage]:
    """Combine the stored transcript with what the client sent.

    A client that resends the whole transcript (stored messages as a prefix)
    is taken as-is. Otherwise only its latest user message is appended.
    """
    existing = list(existing)
    inbound = list(inbound)
    if len(inbound) >= len(existing) and all(
        a.role == b.role and a.content == b.content for a, b in zip(existing, inbound)
    ):
        return inbound
    last_user = next((m for m in reversed(inbound) if m.role == "user"), None)
    if last_user is not None:
        existing.append(last_user)
    return existing


@dataclass
class TurnResult:
    state: ConversationState
    response: str
    path: list[str] = field(default_factory=list)
    api_calls: list[dict] = field(default_factory=list)


class TurnController:
    """Runs dialogue turns against a session store.

    Args:
        graph: The wired dialogue graph.
        store: Where per-call state is kept between turns.
        backend: Scheduling backend handed to nodes.
        oracle: Oracle capability handed to nodes.
        tz: Organization IANA timezone.
        org_id: Organization id new calls start with.
        clock: Optional "now" override for relative dates.
    """

    def __init__(
        self,
        graph: DialogueGraph,
        store: SessionStore,
        backend: SchedulingBackend,
        oracle: Oracle,
        tz: str = "UTC",
        org_id: int = 1,
        clock=None,
    ) -> None:
        self._graph = graph
        self._store = store
        self._backend = backend
        self._oracle = oracle
        self._tz = tz
        self._org_id = org_id
        self._clock = clock
        # Locks live only while a turn for the call is running or queued.
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_users: dict[str, int] = {}
        self._last_calls: OrderedDict[str, list[dict]] = OrderedDict()

    @property
    def store(self) -> SessionStore:
        return self._store

    def last_api_calls(self, call_id: str) -> list[dict]:
        """Backend calls made during the call's most recent turn."""
        return list(self._last_calls.get(call_id, []))

    def _context(self) -> NodeContext:
        ctx = NodeContext(
            backend=self._backend, oracle=self._oracle, tz=self._tz, org_id=self._org_id
        )
        if self._clock is not None:
            ctx.clock = self._clock
        return ctx

    def _begin(
        self,
        call_id: str,
        previous: Optional[ConversationState],
        inbound: list[ChatMessage],
        raw_caller_phone: Optional[str],
    ) -> ConversationState:
        if previous is None:
            return ConversationState(
                call_id=call_id,
                raw_caller_phone=raw_caller_phone,
                messages=inbound,
                iteration_count=1,
                org_id=self._org_id,
            )
        return previous.model_copy(
            update={
                "messages": merge_messages(previous.messages, inbound),
                "iteration_count": previous.iteration_count + 1,
                "raw_caller_phone": previous.raw_caller_phone or raw_caller_phone,
                "assistant_response": "",
                "verify_next": None,
                "in_flow_next_route": None,
            }
        )

    async def handle_turn(
        self,
        call_id: str,
        messages: Iterable[MessageLike],
        raw_caller_phone: Optional[str] = None,
    ) -> TurnResult:
        """Run one turn for ``call_id`` and return the reply."""
        inbound = to_chat_messages(messages)
        lock = self._locks.setdefault(call_id, asyncio.Lock())
        self._lock_users[call_id] = self._lock_users.get(call_id, 0) + 1
        try:
            async with lock:
                return await self._run_turn(call_id, inbound, raw_caller_phone)
        finally:
            self._lock_users[call_id] -= 1
            if not self._lock_users[call_id]:
                del self._lock_users[call_id]
                self._locks.pop(call_id, None)

    async def _run_turn(
        self,
        call_id: str,
        inbound: list[ChatMessage],
        raw_caller_phone: Optional[str],
    ) -> TurnResult:
        previous = await self._store.get(call_id)
        state = self._begin(call_id, previous, inbound, raw_caller_phone)
        broadcaster = get_broadcaster(call_id)
        token = bind_broadcaster(broadcaster)
        started = time.monotonic()
        try:
            with capture_api_calls() as calls:
                result = await self._graph.run(state, self._context())
        except Exception as exc:
            broadcaster.emit("error", "turn", {"error": exc.__class__.__name__})
            raise
        finally:
            reset_broadcaster(token)

        final = result.state
        response = final.assistant_response.strip()
        if not response:
            log.warning("[%s] Turn produced no reply, path=%s", call_id[:8], result.path)
            response = verbiage.ANYTHING_ELSE
        final = final.model_copy(
            update={
                "assistant_response": response,
                "messages": [*final.messages, ChatMessage(role="assistant", content=response)],
            }
        )
        await self._store.put(final)
        api_calls = [c.to_dict() for c in calls]
        self._last_calls[call_id] = api_calls
        self._last_calls.move_to_end(call_id)
        while len(self._last_calls) > LAST_CALLS_LIMIT:
            self._last_calls.popitem(last=False)

        duration_ms = round((time.monotonic() - started) * 1000)
        broadcaster.emit(
            "turn",
            final.current_step or "",
            {
                "iteration": final.iteration_count,
                "path": result.path,
                "duration_ms": duration_ms,
                "api_calls": len(api_calls),
            },
        )
        log.info(
            "[%s] Turn %d done in %dms via %s (caller %s)",
            call_id[:8],
            final.iteration_count,
            duration_ms,
            " > ".join(result.path),
            redact_pii(final.raw_caller_phone),
        )
        return TurnResult(state=final, response=response, path=result.path, api_calls=api_calls)

    async def end_call(self, call_id: str) -> None:
        await self._store.delete(call_id)
        self._last_calls.pop(call_id, None)
        remove_broadcaster(call_id)

