"""Cancel flow.

``list`` fetches the cancellable appointments, ``choose`` resolves which one,
``confirm`` cancels only on an explicit yes. "No" or "never mind" keeps the
appointment and drops the selection, so a later yes cannot cancel a stale
pick.
"""

from __future__ import annotations

import logging

from appointment_agent import verbiage
from appointment_agent.backend.base import BackendError
from appointment_agent.formatting import numbered_appointments, slot_date_in_words
from appointment_agent.graph.context import NodeContext
from appointment_agent.graph.reducer import NodeOutput
from appointment_agent.models.state import CancelFlow, ConversationState, VerifyFlow
from appointment_agent.nodes.common import backend_failure
from appointment_agent.nodes.reschedule import pick_appointment
from appointment_agent.oracle import nlu
from appointment_agent.slot_matching import resolve_option

log = logging.getLogger("appointment_agent.nodes.cancel")

NODE = "cancel_flow"


def _out(flow: CancelFlow, response: str, step: str, **patch) -> NodeOutput:
    return NodeOutput(
        response,
        {"flow": flow.model_copy(update={"step": step}), "current_step": NODE, **patch},
    )


async def _list(state: ConversationState, ctx: NodeContext, flow: CancelFlow) -> NodeOutput:
    try:
        items = await ctx.backend.get_cancel_options(state.user_id)
    except BackendError as exc:
        retry = flow.model_copy(update={"step": "list"})
        return backend_failure(state, ctx, NODE, exc, {"flow": retry})
    if not items:
        return NodeOutput(
            f"{verbiage.NO_UPCOMING} {verbiage.ANYTHING_ELSE_SHORT}",
            {"flow": None, "cancellable_appointments": [], "current_step": NODE},
        )
    listing = numbered_appointments(items, ctx.tz)
    return _out(
        flow,
        f"{verbiage.FIND_UPCOMING}\n{listing}\n{verbiage.CANCEL_WHICH}",
        "choose",
        cancellable_appointments=items,
        selected_appointment_id=None,
    )


async def _choose(state: ConversationState, ctx: NodeContext, flow: CancelFlow) -> NodeOutput:
    text = state.last_user_message()
    items = state.cancellable_appointments
    if nlu.looks_negative(text) and resolve_option(text, len(items)) < 0:
        return NodeOutput(
            verbiage.ANYTHING_ELSE,
            {"flow": None, "selected_appointment_id": None, "current_step": NODE},
        )
    appointment = await pick_appointment(state, ctx, items)
    if appointment is None:
        # Carried over from the reschedule flow.
        appointment = state.find_appointment(state.selected_appointment_id)
    if appointment is None:
        listing = numbered_appointments(items, ctx.tz)
        return _out(flow, f"{listing}\n{verbiage.CANCEL_WHICH}", "choose")
    when = slot_date_in_words(appointment.start, ctx.tz)
    return _out(
        flow, verbiage.sure_cancel(when), "confirm", selected_appointment_id=appointment.id
    )


async def _confirm(state: ConversationState, ctx: NodeContext, flow: CancelFlow) -> NodeOutput:
    text = state.last_user_message()
    appointment = state.find_appointment(state.selected_appointment_id)

    if nlu.looks_negative(text):
        log.info("[%s] Cancel declined, appointment kept", state.call_id[:8])
        return _out(flow, verbiage.CANCEL_KEPT, "choose", selected_appointment_id=None)

    question = state.last_assistant_message()
    if not await nlu.is_confirming(ctx.oracle, question, text):
        if appointment is None:
            return _out(flow, verbiage.CANCEL_WHICH, "choose")
        when = slot_date_in_words(appointment.start, ctx.tz)
        return _out(flow, verbiage.sure_cancel(when), "confirm")

    if appointment is None:
        return _out(flow, verbiage.CANCEL_WHICH, "choose", selected_appointment_id=None)

    try:
        await ctx.backend.cancel_appointment(appointment.id)
    except BackendError as exc:
        retry = flow.model_copy(update={"step": "confirm"})
        return backend_failure(state, ctx, NODE, exc, {"flow": retry})

    log.info("Cancelled appointment %d", appointment.id)
    ctx.emit("cancelled", NODE, {"appointment_id": appointment.id})
    return NodeOutput(
        f"{verbiage.CANCEL_DONE} {verbiage.ANYTHING_ELSE_SHORT}",
        {
            "flow": None,
            "cancellable_appointments": [],
            "selected_appointment_id": None,
            "failure_count": 0,
            "last_error": None,
            "current_step": NODE,
            "next_action": "ask_anything_else",
        },
    )


async def cancel_flow(state: ConversationState, ctx: NodeContext) -> NodeOutput:
    if state.user_id is None:
        return NodeOutput(
            verbiage.ASK_CURRENT_OR_FIRST,
            {"flow": VerifyFlow(pending_route=NODE), "current_step": "verify_user"},
        )

    flow = state.flow if isinstance(state.flow, CancelFlow) else None
    if flow is None:
        out = await _list(state.model_copy(update={"failure_count": 0}), ctx, CancelFlow())
        out.patch.setdefault("failure_count", 0)
        return out

    if flow.step == "list" or not state.cancellable_appointments:
        return await _list(state, ctx, flow)
    if flow.step == "choose":
        return await _choose(state, ctx, flow)
    return await _confirm(state, ctx, flow)
