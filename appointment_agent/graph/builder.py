"""Wires the dialogue nodes into a LangGraph ``StateGraph``."""

from __future__ import annotations

from langgraph.graph import END, START, StateGraph

from appointment_agent import nodes
from appointment_agent.graph import router
from appointment_agent.graph.engine import DialogueGraph, graph_node, traced_router
from appointment_agent.models.state import ConversationState

# Nodes whose reply ends the turn.
TERMINAL_NODES = (
    "greet_personalized",
    "identity_failed_end",
    "thanks_end",
    "advise_911",
    "polite_rejection",
    "transfer",
    "org_info",
    "register_flow",
    "book_flow",
    "reschedule_flow",
    "cancel_flow",
    "get_appointments_flow",
)

NODE_NAMES = (
    "normalize",
    "lookup",
    "greet_personalized",
    "greet_general",
    "mention_services",
    "confirm_identity",
    "identity_failed_end",
    "detect_intent",
    "in_flow_intent_check",
    "verify_flow",
    "thanks_end",
    "advise_911",
    "polite_rejection",
    "transfer",
    "org_info",
    "register_flow",
    "book_flow",
    "reschedule_flow",
    "cancel_flow",
    "get_appointments_flow",
)

# Where an intent can lead, at the start of a turn or from inside a flow.
INTENT_TARGETS = sorted(
    {
        "verify_flow",
        "thanks_end",
        "transfer",
        *router.IDENTITY_FLOWS.values(),
        *router.TERMINAL_INTENTS.values(),
    }
)


def build_dialogue_graph(max_steps: int = 12) -> DialogueGraph:
    graph = StateGraph(ConversationState)
    for name in NODE_NAMES:
        graph.add_node(name, graph_node(name, getattr(nodes, name)))

    graph.add_conditional_edges(
        START,
        traced_router("entry", router.entry_router),
        ["normalize", "confirm_identity", "verify_flow", "in_flow_intent_check", "detect_intent"],
    )
    graph.add_edge("normalize", "lookup")
    graph.add_conditional_edges(
        "lookup",
        traced_router("lookup", router.route_after_lookup),
        ["greet_personalized", "greet_general"],
    )
    graph.add_edge("greet_general", "mention_services")
    graph.add_conditional_edges(
        "mention_services",
        traced_router("mention_services", router.route_after_mention_services),
        ["detect_intent", END],
    )
    graph.add_conditional_edges(
        "confirm_identity",
        traced_router("confirm_identity", router.route_after_confirm_identity),
        ["identity_failed_end", END],
    )
    graph.add_conditional_edges(
        "detect_intent", traced_router("detect_intent", router.intent_router), INTENT_TARGETS
    )
    graph.add_conditional_edges(
        "in_flow_intent_check",
        traced_router("in_flow_intent_check", router.in_flow_router),
        INTENT_TARGETS,
    )
    graph.add_conditional_edges(
        "verify_flow",
        traced_router("verify_flow", router.verify_router),
        [*sorted(router.VERIFY_TARGETS), END],
    )
    for name in TERMINAL_NODES:
        graph.add_edge(name, END)

    return DialogueGraph(graph, max_steps=max_steps)
