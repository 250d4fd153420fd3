"""Routing decisions: pure functions of the conversation state.

``entry_router`` picks the first node of a turn; the ``route_*`` functions
are the conditional edges evaluated after a node has run.
"""

from __future__ import annotations

import logging

from langgraph.graph import END

from appointment_agent.models.state import MID_FLOW_KINDS, ConversationState
from appointment_agent.oracle.nlu import is_explicit_nothing_else

log = logging.getLogger("appointment_agent.router")

IDENTITY_STEPS = ("ask_are_you_name", "ask_dob")

# Flows that need to know who the caller is before they can run.
IDENTITY_FLOWS = {
    "book": "book_flow",
    "reschedule": "reschedule_flow",
    "cancel": "cancel_flow",
    "get_appointments": "get_appointments_flow",
}

TERMINAL_INTENTS = {
    "emergency": "advise_911",
    "invalid_business": "polite_rejection",
    "unsupported": "transfer",
    "frustration": "transfer",
    "org_info": "org_info",
    "register": "register_flow",
}

VERIFY_TARGETS = frozenset(
    {"register_flow", "transfer", *IDENTITY_FLOWS.values()}
)


def entry_router(state: ConversationState) -> str:
    """First node of the turn."""
    if state.iteration_count == 1:
        return "normalize"
    if state.current_step in IDENTITY_STEPS:
        return "confirm_identity"
    if state.current_flow == "verify_user" and state.flow_step:
        return "verify_flow"
    if state.current_flow in MID_FLOW_KINDS and state.flow_step:
        return "in_flow_intent_check"
    return "detect_intent"


def route_after_lookup(state: ConversationState) -> str:
    return "greet_personalized" if state.has_identity else "greet_general"


def route_after_mention_services(state: ConversationState) -> str:
    # A greeting on the first turn is never an intent.
    return END if state.iteration_count <= 1 else "detect_intent"


def route_after_confirm_identity(state: ConversationState) -> str:
    return "identity_failed_end" if state.identity_check_failed else END


def intent_router(state: ConversationState) -> str:
    """Map ``current_intent`` to the node that serves it."""
    intent = state.current_intent or "unsupported"
    if intent == "no_request":
        if is_explicit_nothing_else(state.last_user_message()):
            return "thanks_end"
        return "transfer"
    if intent in IDENTITY_FLOWS:
        return IDENTITY_FLOWS[intent] if state.identity_confirmed else "verify_flow"
    return TERMINAL_INTENTS.get(intent, "transfer")


def verify_router(state: ConversationState) -> str:
    target = state.verify_next
    if target in VERIFY_TARGETS:
        return target
    return END


def in_flow_router(state: ConversationState) -> str:
    return state.in_flow_next_route or "transfer"
