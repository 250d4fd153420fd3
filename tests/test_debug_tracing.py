"""Tests for debug event tracing: ensures events flow from a turn to the
call's broadcaster.

These tests verify that:
1. DebugBroadcaster emits events to subscribers
2. The registry hands out one broadcaster per call id
3. emit_current targets only the broadcaster bound to the running turn
4. A dialogue turn emits route, node and turn events in order
"""

import asyncio

import pytest

from appointment_agent.debug_events import (
    DebugBroadcaster,
    bind_broadcaster,
    emit_current,
    get_broadcaster,
    remove_broadcaster,
    reset_broadcaster,
)

from conftest import CALLER_PHONE


def drain(q: asyncio.Queue) -> list[dict]:
    events = []
    while not q.empty():
        events.append(q.get_nowait())
    return events


# ── DebugBroadcaster unit tests ─────────────────────────────────────


class TestDebugBroadcaster:
    def test_emit_without_subscribers(self):
        """Emitting with no subscribers should not raise."""
        b = DebugBroadcaster("test-1")
        b.emit("route", "entry", {"to": "normalize"})
        assert len(b.event_log) == 1

    def test_emit_to_subscriber(self):
        b = DebugBroadcaster("test-2")
        q = b.subscribe()
        b.emit("node_enter", "book_flow", {"step": "offer_slots"})

        event = q.get_nowait()
        assert event["type"] == "node_enter"
        assert event["state_id"] == "book_flow"
        assert event["data"]["step"] == "offer_slots"
        assert event["call_id"] == "test-2"
        assert "timestamp" in event

    def test_multiple_subscribers(self):
        b = DebugBroadcaster("test-3")
        q1 = b.subscribe()
        q2 = b.subscribe()
        b.emit("intent", "detect_intent", {"intent": "book"})

        assert q1.get_nowait()["type"] == q2.get_nowait()["type"] == "intent"

    def test_unsubscribe(self):
        b = DebugBroadcaster("test-4")
        q = b.subscribe()
        assert b.subscriber_count == 1
        b.unsubscribe(q)
        b.unsubscribe(q)
        assert b.subscriber_count == 0

        b.emit("route", "entry", {"to": "detect_intent"})
        assert q.empty()

    def test_event_log_returns_copy(self):
        b = DebugBroadcaster("test-5")
        b.emit("turn", "", {"iteration": 1})
        log1 = b.event_log
        log1.clear()
        assert len(b.event_log) == 1

    def test_queue_overflow_drops_oldest(self):
        """When the queue is full, oldest events should be dropped."""
        b = DebugBroadcaster("test-6")
        q = b.subscribe()
        for i in range(200):
            b.emit("oracle_call", "intent", {"n": i})
        assert q.full()

        b.emit("oracle_call", "intent", {"n": 200})
        first = q.get_nowait()
        assert first["data"]["n"] == 1
        assert first["seq"] == 2

    def test_sequence_numbers(self):
        b = DebugBroadcaster("test-7")
        seqs = [b.emit("route", "entry", {})["seq"] for _ in range(3)]
        assert seqs == [1, 2, 3]

    def test_event_log_is_bounded(self, monkeypatch):
        import appointment_agent.debug_events as debug_events

        monkeypatch.setattr(debug_events, "EVENT_LOG_LIMIT", 3)
        b = DebugBroadcaster("test-8")
        for i in range(5):
            b.emit("route", "entry", {"n": i})
        assert [e["data"]["n"] for e in b.event_log] == [2, 3, 4]


# ── Broadcaster registry tests ──────────────────────────────────────


class TestBroadcasterRegistry:
    def test_get_broadcaster_returns_same(self):
        assert get_broadcaster("registry-test-1") is get_broadcaster("registry-test-1")

    def test_remove_broadcaster(self):
        b1 = get_broadcaster("registry-test-2")
        remove_broadcaster("registry-test-2")
        remove_broadcaster("registry-test-2")
        assert get_broadcaster("registry-test-2") is not b1


class TestCurrentBinding:
    def test_emit_current_unbound_is_noop(self):
        emit_current("route", "entry", {"to": "normalize"})

    def test_emit_current_targets_bound_broadcaster(self):
        b = DebugBroadcaster("bound-1")
        token = bind_broadcaster(b)
        try:
            emit_current("backend_call", "GET /availability", {"status": 200})
        finally:
            reset_broadcaster(token)
        emit_current("backend_call", "GET /availability", {"status": 200})

        assert [e["state_id"] for e in b.event_log] == ["GET /availability"]


# ── Turn tracing ─────────────────────────────────────────────────────


class TestTurnEvents:
    @pytest.mark.asyncio
    async def test_first_turn_trace(self, controller, known_caller):
        call_id = "call-trace-0001"
        remove_broadcaster(call_id)
        q = get_broadcaster(call_id).subscribe()

        await controller.handle_turn(call_id, [{"role": "user", "content": "Hello"}], CALLER_PHONE)

        events = drain(q)
        assert events[0]["type"] == "route"
        assert events[0]["data"] == {"to": "normalize", "iteration": 1}
        entered = [e["state_id"] for e in events if e["type"] == "node_enter"]
        assert entered == ["normalize", "lookup", "greet_personalized"]
        exits = [e for e in events if e["type"] == "node_exit"]
        assert exits[-1]["data"]["spoke"] is True
        assert events[-1]["type"] == "turn"
        assert events[-1]["data"]["path"] == entered

    @pytest.mark.asyncio
    async def test_intent_event(self, controller, oracle):
        call_id = "call-trace-0002"
        remove_broadcaster(call_id)
        await controller.handle_turn(call_id, [{"role": "user", "content": "Hello"}])
        oracle.script("intent", "org_info")
        await controller.handle_turn(call_id, [{"role": "user", "content": "What are your hours?"}])

        intents = [e for e in get_broadcaster(call_id).event_log if e["type"] == "intent"]
        assert [e["data"]["intent"] for e in intents] == ["org_info"]

    @pytest.mark.asyncio
    async def test_end_call_drops_broadcaster(self, controller):
        call_id = "call-trace-0003"
        await controller.handle_turn(call_id, [{"role": "user", "content": "Hello"}])
        b = get_broadcaster(call_id)
        await controller.end_call(call_id)
        assert get_broadcaster(call_id) is not b
