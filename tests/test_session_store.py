"""Tests for session persistence and call identity resolution."""

import pytest

from appointment_agent.models.state import ChatMessage, ConversationState, RegistrationFlow
from appointment_agent.session_store import (
    InMemorySessionStore,
    redact_pii,
    resolve_call_id,
    resolve_caller_phone,
    session_summary,
)


class TestResolveCallId:
    def test_call_object_wins(self):
        body = {"call": {"id": "call-body"}, "metadata": {"vapiCallId": "call-meta"}}
        headers = {"x-vapi-call-id": "call-header"}
        assert resolve_call_id(body, headers) == "call-body"

    def test_header_before_metadata(self):
        body = {"metadata": {"vapiCallId": "call-meta"}}
        assert resolve_call_id(body, {"x-vapi-call-id": "call-header"}) == "call-header"

    def test_metadata_path(self):
        assert resolve_call_id({"metadata": {"vapiCallId": " call-meta "}}, {}) == "call-meta"

    def test_configurable_header_and_path(self):
        body = {"session": {"ref": "abc"}}
        assert resolve_call_id(body, {}, header_name="x-call", body_path="session.ref") == "abc"
        assert resolve_call_id({}, {"x-call": "hdr"}, header_name="x-call") == "hdr"

    def test_blank_values_ignored(self):
        body = {"call": {"id": "  "}, "metadata": "not a mapping"}
        call_id = resolve_call_id(body, {"x-vapi-call-id": ""})
        assert call_id.startswith("call-")

    def test_synthetic_ids_are_unique(self):
        assert resolve_call_id({}, {}) != resolve_call_id({}, {})


class TestResolveCallerPhone:
    def test_customer_number(self):
        body = {"customer": {"number": "+15551234567"}, "metadata": {"rawCallerPhone": "x"}}
        assert resolve_caller_phone(body) == "+15551234567"

    def test_metadata_fallback(self):
        assert resolve_caller_phone({"metadata": {"rawCallerPhone": "5551234567"}}) == "5551234567"

    def test_absent(self):
        assert resolve_caller_phone({"customer": {}}) is None


class TestRedactPii:
    def test_masks_middle(self):
        assert redact_pii("+15551234567") == "+15***67"

    @pytest.mark.parametrize("value", [None, "", "abc", "12345"])
    def test_short_values_fully_masked(self, value):
        assert redact_pii(value) == "***"


class TestInMemorySessionStore:
    @pytest.mark.asyncio
    async def test_crud(self):
        store = InMemorySessionStore()
        assert await store.get("call-a") is None

        await store.put(ConversationState(call_id="call-a"))
        await store.put(ConversationState(call_id="call-b"))
        await store.put(ConversationState(call_id="call-a", iteration_count=2))

        assert (await store.get("call-a")).iteration_count == 2
        assert await store.list_ids() == ["call-a", "call-b"]

        await store.delete("call-a")
        await store.delete("call-missing")
        assert await store.list_ids() == ["call-b"]


class TestSessionSummary:
    def make_state(self):
        return ConversationState(
            call_id="call-sum-0001",
            iteration_count=4,
            user_id=42,
            user_name="Maria Lopez",
            identity_confirmed=True,
            flow=RegistrationFlow(step="dob"),
            messages=[ChatMessage(role="user", content=f"m{i}") for i in range(8)],
        )

    def test_listing_fields(self):
        summary = session_summary(self.make_state())
        assert summary["call_id"] == "call-sum-0001"
        assert summary["current_flow"] == "registration"
        assert summary["user_name"] == "Mar***ez"
        assert "recent_messages" not in summary

    def test_detail_fields(self):
        detail = session_summary(self.make_state(), detail=True)
        assert detail["flow"]["step"] == "dob"
        assert detail["message_count"] == 8
        assert [m["content"] for m in detail["recent_messages"]] == ["m2", "m3", "m4", "m5", "m6", "m7"]
