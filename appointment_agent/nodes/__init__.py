"""Dialogue graph nodes.

Each node is ``async def node(state, ctx) -> NodeOutput`` and never mutates
``state``.
"""

from .appointments import get_appointments_flow
from .booking import book_flow
from .cancel import cancel_flow
from .identity import (
    confirm_identity,
    greet_general,
    greet_personalized,
    identity_failed_end,
    lookup,
    mention_services,
    normalize,
)
from .intent import detect_intent, in_flow_intent_check
from .register import register_flow
from .reschedule import reschedule_flow
from .terminal import advise_911, org_info, polite_rejection, thanks_end, transfer
from .verify import verify_flow

__all__ = [
    "advise_911",
    "book_flow",
    "cancel_flow",
    "confirm_identity",
    "detect_intent",
    "get_appointments_flow",
    "greet_general",
    "greet_personalized",
    "identity_failed_end",
    "in_flow_intent_check",
    "lookup",
    "mention_services",
    "normalize",
    "org_info",
    "polite_rejection",
    "register_flow",
    "reschedule_flow",
    "thanks_end",
    "transfer",
    "verify_flow",
]
