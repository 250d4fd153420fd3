"""Tests for the turn controller: transcript merging, iteration counting,
first-turn greeting, persistence and the per-turn backend call log."""

import asyncio

import pytest
from langgraph.graph import END, START, StateGraph

from appointment_agent import turn, verbiage
from appointment_agent.graph.engine import DialogueGraph, graph_node
from appointment_agent.graph.reducer import NodeOutput
from appointment_agent.models.state import ChatMessage, ConversationState
from appointment_agent.turn import merge_messages, to_chat_messages

from conftest import CALLER_PHONE


# ── Transcript helpers ───────────────────────────────────────────


class TestToChatMessages:
    def test_drops_tool_and_function_roles(self):
        msgs = to_chat_messages([
            {"role": "system", "content": "You are a scheduler"},
            {"role": "user", "content": "hi"},
            {"role": "tool", "content": "{}"},
            {"role": "function", "content": "x"},
        ])
        assert [m.role for m in msgs] == ["system", "user"]

    def test_joins_text_content_parts(self):
        msgs = to_chat_messages([
            {"role": "user", "content": [
                {"type": "text", "text": "book"},
                {"type": "image_url", "image_url": {"url": "x"}},
                {"type": "text", "text": "tomorrow"},
            ]},
        ])
        assert msgs[0].content == "book tomorrow"

    def test_missing_content_is_empty(self):
        msgs = to_chat_messages([{"role": "assistant", "content": None}])
        assert msgs[0].content == ""


class TestMergeMessages:
    def test_full_transcript_replaces(self):
        existing = [ChatMessage(role="user", content="a"), ChatMessage(role="assistant", content="b")]
        inbound = existing + [ChatMessage(role="user", content="c")]
        assert merge_messages(existing, inbound) == inbound

    def test_partial_transcript_appends_last_user(self):
        existing = [ChatMessage(role="user", content="a"), ChatMessage(role="assistant", content="b")]
        inbound = [ChatMessage(role="user", content="c")]
        merged = merge_messages(existing, inbound)
        assert [m.content for m in merged] == ["a", "b", "c"]

    def test_no_user_message_keeps_existing(self):
        existing = [ChatMessage(role="user", content="a")]
        inbound = [ChatMessage(role="system", content="sys")]
        assert [m.content for m in merge_messages(existing, inbound)] == ["a"]


# ── Controller ───────────────────────────────────────────────────


class TestFirstTurn:
    @pytest.mark.asyncio
    async def test_hello_gets_greeting_and_services_only(self, make_caller, oracle, backend):
        caller = make_caller()
        reply = await caller.say("Hello")

        assert verbiage.GREET_GENERAL in reply
        assert verbiage.MENTION_SERVICES in reply
        assert caller.last.path == ["normalize", "lookup", "greet_general", "mention_services"]
        assert caller.state.iteration_count == 1
        # A greeting is never classified.
        assert oracle.asked("intent") == 0
        assert backend.calls == []

    @pytest.mark.asyncio
    async def test_known_caller_greeted_by_name(self, make_caller, known_caller, backend):
        caller = make_caller("call-known-0001", CALLER_PHONE)
        reply = await caller.say("Hi there")

        assert "Maria" in reply
        assert caller.state.current_step == "ask_are_you_name"
        assert caller.state.user_id == 42
        assert caller.state.normalized_phone == CALLER_PHONE
        assert [name for name, _ in backend.calls] == ["normalize_phone", "find_users_by_phone"]

    @pytest.mark.asyncio
    async def test_normalize_failure_still_greets(self, make_caller, backend):
        from appointment_agent.backend.base import BackendError

        backend.failures["normalize_phone"] = BackendError(500, "boom")
        caller = make_caller("call-x-0001", "+15550000000")
        reply = await caller.say("Hello")

        assert verbiage.MENTION_SERVICES in reply
        assert caller.state.failure_count == 1
        assert caller.state.normalized_phone is None


class TestIterationCount:
    @pytest.mark.asyncio
    async def test_counts_every_turn(self, make_caller, oracle):
        caller = make_caller()
        await caller.say("Hello")
        oracle.script("intent", "org_info", "org_info")
        await caller.say("What are your hours?")
        assert caller.state.iteration_count == 2
        await caller.say("And on weekends?")
        assert caller.state.iteration_count == 3

    @pytest.mark.asyncio
    async def test_transcript_grows_by_two_per_turn(self, make_caller, oracle):
        caller = make_caller()
        await caller.say("Hello")
        oracle.script("intent", "org_info")
        await caller.say("What are your hours?")
        roles = [m.role for m in caller.state.messages]
        assert roles == ["user", "assistant", "user", "assistant"]
        assert caller.state.messages[-1].content == caller.last.response


class TestPersistence:
    @pytest.mark.asyncio
    async def test_state_saved_under_call_id(self, controller, make_caller):
        caller = make_caller("call-persist-01")
        await caller.say("Hello")
        saved = await controller.store.get("call-persist-01")
        assert saved is not None
        assert saved.assistant_response == caller.last.response

    @pytest.mark.asyncio
    async def test_calls_are_independent(self, make_caller):
        a = make_caller("call-a-000001")
        b = make_caller("call-b-000001")
        await a.say("Hello")
        await b.say("Hello")
        assert a.state.iteration_count == 1
        assert b.state.iteration_count == 1

    @pytest.mark.asyncio
    async def test_end_call_forgets_state(self, controller, make_caller):
        caller = make_caller("call-end-00001")
        await caller.say("Hello")
        await controller.end_call("call-end-00001")
        assert await controller.store.get("call-end-00001") is None
        assert controller.last_api_calls("call-end-00001") == []


    @pytest.mark.asyncio
    async def test_concurrent_turns_serialized_and_lock_dropped(self, controller, make_caller):
        a = make_caller("call-lock-00001")
        b = make_caller("call-lock-00001")
        await asyncio.gather(a.say("Hello"), b.say("Hello"))
        assert sorted([a.state.iteration_count, b.state.iteration_count]) == [1, 2]
        assert controller._locks == {}
        assert controller._lock_users == {}

class TestApiCallLog:
    @pytest.mark.asyncio
    async def test_last_turn_calls_recorded_per_call(self, controller, make_caller, known_caller):
        # The fake backend does not record ApiCallRecords; only the HTTP client does.
        caller = make_caller("call-known-0001", CALLER_PHONE)
        await caller.say("Hello")
        assert caller.last.api_calls == []
        assert controller.last_api_calls("call-known-0001") == []

    @pytest.mark.asyncio
    async def test_log_kept_for_recent_calls_only(self, controller, make_caller, monkeypatch):
        monkeypatch.setattr(turn, "LAST_CALLS_LIMIT", 2)
        for n in range(3):
            await make_caller(f"call-lru-{n:05d}").say("Hello")
        assert list(controller._last_calls) == ["call-lru-00001", "call-lru-00002"]


class TestEmptyReplyFallback:
    @pytest.mark.asyncio
    async def test_silent_turn_falls_back(self, make_caller, oracle):
        caller = make_caller()
        await caller.say("Hello")
        # unsupported intent -> transfer speaks, so force a silent graph instead
        async def silent(state, ctx):
            return NodeOutput()

        builder = StateGraph(ConversationState)
        builder.add_node("silent", graph_node("silent", silent))
        builder.add_edge(START, "silent")
        builder.add_edge("silent", END)
        caller.controller._graph = DialogueGraph(builder)

        reply = await caller.say("anything")
        assert reply == verbiage.ANYTHING_ELSE
