"""Intent classification, at the top level and in the middle of a flow."""

from __future__ import annotations

import logging

from appointment_agent.graph.context import NodeContext
from appointment_agent.graph.reducer import NodeOutput
from appointment_agent.models.state import (
    BookingFlow,
    CancelFlow,
    ConversationState,
    IntentRecord,
    RescheduleFlow,
    utc_now_iso,
)
from appointment_agent.oracle import nlu

log = logging.getLogger("appointment_agent.nodes.intent")

# Flow kind -> the node that continues it.
FLOW_NODES = {
    "booking": "book_flow",
    "registration": "register_flow",
    "reschedule": "reschedule_flow",
    "cancel": "cancel_flow",
}

# Intents that mean "keep going with the current flow".
COMPATIBLE_INTENTS = {
    "booking": {"book"},
    "registration": {"register"},
    "reschedule": {"reschedule"},
    "cancel": {"cancel"},
}

CONFIRM_STEPS = {
    "booking": {"confirm"},
    "registration": {"confirm_all", "offer_waitlist", "phone"},
    "reschedule": {"confirm"},
    "cancel": {"confirm"},
}

TERMINAL_ROUTES = {
    "no_request": "thanks_end",
    "emergency": "advise_911",
    "invalid_business": "polite_rejection",
    "org_info": "org_info",
}


async def _classify(state: ConversationState, ctx: NodeContext) -> tuple[str, dict]:
    intent = await nlu.detect_intent(
        ctx.oracle,
        state.messages,
        previous_intent=state.current_intent,
        current_step=state.flow_step or state.current_step,
        user_name=state.user_name,
    )
    record = IntentRecord(
        intent=intent, timestamp=utc_now_iso(), iteration=state.iteration_count
    )
    patch: dict = {
        "previous_intent": state.current_intent,
        "current_intent": intent,
        "intent_history": [*state.intent_history, record],
    }
    if intent == "emergency":
        patch["is_emergency"] = True
    elif intent == "frustration":
        patch["is_frustrated"] = True
        patch["should_transfer"] = True
    ctx.emit("intent", "detect_intent", {"intent": intent})
    log.info("[%s] Intent: %s", state.call_id[:8], intent)
    return intent, patch


async def detect_intent(state: ConversationState, ctx: NodeContext) -> NodeOutput:
    _, patch = await _classify(state, ctx)
    return NodeOutput(patch=patch)


async def in_flow_intent_check(state: ConversationState, ctx: NodeContext) -> NodeOutput:
    """Decide whether a mid-flow reply continues the flow or starts something else.

    Answers to the flow's own questions usually classify as ``unsupported``
    and simply continue. Switching between cancel and reschedule keeps the
    chosen appointment so the caller does not have to pick it again.
    """
    kind = state.current_flow or ""
    intent, patch = await _classify(state, ctx)
    text = state.last_user_message()

    def route(target: str, **extra) -> NodeOutput:
        return NodeOutput(patch={**patch, "in_flow_next_route": target, **extra})

    same_flow = intent in COMPATIBLE_INTENTS.get(kind, set())
    if same_flow or intent == "unsupported":
        return route(FLOW_NODES[kind])

    if intent == "no_request":
        at_confirm = state.flow_step in CONFIRM_STEPS.get(kind, set())
        if at_confirm or not nlu.is_explicit_nothing_else(text):
            return route(FLOW_NODES[kind])
        return route("thanks_end", flow=None)

    log.info("[%s] Leaving %s flow for %s", state.call_id[:8], kind, intent)

    if intent in ("cancel", "reschedule", "book", "get_appointments") and not state.identity_confirmed:
        return route("verify_flow", flow=None)

    if intent == "cancel":
        step = "choose" if state.cancellable_appointments else "list"
        return route(
            "cancel_flow",
            flow=CancelFlow(step=step),
            available_slots=[],
            selected_slot_id=None,
        )
    if intent == "reschedule":
        step = "choose" if state.selected_appointment_id is not None else "list"
        keep_slots = kind == "reschedule"
        return route(
            "reschedule_flow",
            flow=RescheduleFlow(step=step),
            available_slots=state.available_slots if keep_slots else [],
            selected_slot_id=state.selected_slot_id if keep_slots else None,
        )
    if intent == "book":
        return route(
            "book_flow",
            flow=BookingFlow(),
            available_slots=[],
            selected_slot_id=None,
            failure_count=0,
        )
    if intent == "get_appointments":
        return route("get_appointments_flow", flow=None)
    if intent == "register":
        return route("register_flow", flow=None)
    if intent in TERMINAL_ROUTES:
        return route(TERMINAL_ROUTES[intent], flow=None)
    return route("transfer", flow=None)
