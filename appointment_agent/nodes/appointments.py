"""Read back the caller's upcoming appointments."""

from __future__ import annotations

import logging

from appointment_agent import verbiage
from appointment_agent.backend.base import BackendError
from appointment_agent.formatting import numbered_appointments
from appointment_agent.graph.context import NodeContext
from appointment_agent.graph.reducer import NodeOutput
from appointment_agent.models.state import ConversationState, VerifyFlow
from appointment_agent.nodes.common import backend_failure

log = logging.getLogger("appointment_agent.nodes.appointments")

NODE = "get_appointments_flow"


async def get_appointments_flow(state: ConversationState, ctx: NodeContext) -> NodeOutput:
    if state.user_id is None:
        return NodeOutput(
            verbiage.ASK_CURRENT_OR_FIRST,
            {"flow": VerifyFlow(pending_route=NODE), "current_step": "verify_user"},
        )
    try:
        items = await ctx.backend.list_appointments(state.user_id, "upcoming")
    except BackendError as exc:
        return backend_failure(state, ctx, NODE, exc, {"current_step": NODE})

    if not items:
        text = f"{verbiage.NO_UPCOMING} {verbiage.ANYTHING_ELSE}"
    else:
        listing = numbered_appointments(items, ctx.tz)
        text = f"{verbiage.YOUR_UPCOMING}\n{listing}\n{verbiage.ANYTHING_ELSE}"
    log.info("[%s] Listed %d upcoming appointments", state.call_id[:8], len(items))
    return NodeOutput(
        text,
        {
            "flow": None,
            "current_step": NODE,
            "next_action": "ask_anything_else",
            "failure_count": 0,
        },
    )
