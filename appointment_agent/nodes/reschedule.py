"""Reschedule flow: list upcoming appointments, pick one, offer new times,
and move it on an explicit yes."""

from __future__ import annotations

import logging
from typing import Optional

from appointment_agent import verbiage
from appointment_agent.backend.base import BackendError
from appointment_agent.formatting import numbered_appointments, slot_date_in_words
from appointment_agent.graph.context import NodeContext
from appointment_agent.graph.reducer import NodeOutput
from appointment_agent.models.backend import AppointmentItem, Slot
from appointment_agent.models.state import ConversationState, RescheduleFlow, VerifyFlow
from appointment_agent.nodes.slot_flow import SlotFlowTurn, sort_slots
from appointment_agent.oracle import nlu
from appointment_agent.slot_matching import resolve_option

log = logging.getLogger("appointment_agent.nodes.reschedule")

NODE = "reschedule_flow"


async def pick_appointment(
    state: ConversationState, ctx: NodeContext, items: list[AppointmentItem]
) -> Optional[AppointmentItem]:
    """Resolve "option 2" or "the one on Friday" to one of ``items``."""
    text = state.last_user_message()
    index = resolve_option(text, len(items))
    if index >= 0:
        return items[index]
    matched = await nlu.match_appointment(
        ctx.oracle, text, [(a.id, slot_date_in_words(a.start, ctx.tz)) for a in items]
    )
    return next((a for a in items if a.id == matched), None)


class RescheduleTurn(SlotFlowTurn):
    node = NODE

    @property
    def appointment_id(self) -> Optional[int]:
        return self.state.selected_appointment_id

    async def fetch(self, from_date: Optional[str], to_date: Optional[str]) -> list[Slot]:
        slots = await self.ctx.backend.get_reschedule_options(
            self.appointment_id, from_date, to_date
        )
        log.info("Reschedule options for %s: %d slots", self.appointment_id, len(slots))
        return slots

    def confirm_prompt(self, when: str) -> str:
        return verbiage.confirm_reschedule(when)

    def list_prompt(self, listing: str) -> str:
        return verbiage.reschedule_times(listing)

    def empty_reply(self) -> NodeOutput:
        if self.state.available_slots:
            return self.out(
                f"{verbiage.NO_OPENINGS_TRY_OTHER_DAY} {verbiage.WHICH_SLOT}",
                "offer_slots",
                selected_slot_id=None,
            )
        return NodeOutput(
            verbiage.NO_RESCHEDULE_TIMES,
            {"flow": None, "available_slots": [], "selected_slot_id": None, "current_step": NODE},
        )

    async def list_appointments(self) -> NodeOutput:
        try:
            items = await self.ctx.backend.list_appointments(self.state.user_id, "upcoming")
        except BackendError as exc:
            return self.failed(exc, "list")
        if not items:
            return NodeOutput(
                f"{verbiage.NO_UPCOMING} {verbiage.ANYTHING_ELSE_SHORT}",
                {"flow": None, "cancellable_appointments": [], "current_step": NODE},
            )
        listing = numbered_appointments(items, self.ctx.tz)
        return self.out(
            f"{verbiage.FIND_UPCOMING}\n{listing}\n{verbiage.WHICH_TO_RESCHEDULE}",
            "choose",
            cancellable_appointments=items,
            selected_appointment_id=None,
            available_slots=[],
            selected_slot_id=None,
        )

    async def offer_new_times(self, appointment: AppointmentItem) -> NodeOutput:
        self.state = self.state.model_copy(
            update={"selected_appointment_id": appointment.id, "available_slots": []}
        )
        try:
            slots = sort_slots(await self.fetch(None, None))
        except BackendError as exc:
            return self.failed(exc, "choose")
        out = self.offer(slots)
        if out.patch.get("flow") is not None:
            out.patch["selected_appointment_id"] = appointment.id
        return out

    async def choose_appointment(self) -> NodeOutput:
        items = self.state.cancellable_appointments
        appointment = await pick_appointment(self.state, self.ctx, items)
        if appointment is None:
            # Carried over from the cancel flow.
            appointment = self.state.find_appointment(self.state.selected_appointment_id)
        if appointment is None:
            listing = numbered_appointments(items, self.ctx.tz)
            return self.out(f"{listing}\n{verbiage.WHICH_TO_RESCHEDULE}", "choose")
        return await self.offer_new_times(appointment)

    async def commit(self, slot: Slot) -> NodeOutput:
        appointment_id = self.appointment_id
        await self.ctx.backend.reschedule_appointment(appointment_id, slot.slot_id)
        log.info("Rescheduled appointment %d to slot %d", appointment_id, slot.slot_id)
        self.ctx.emit("rescheduled", NODE, {"appointment_id": appointment_id, "slot_id": slot.slot_id})
        return NodeOutput(
            verbiage.rescheduled(self.when(slot)),
            {
                "flow": None,
                "available_slots": [],
                "selected_slot_id": None,
                "cancellable_appointments": [],
                "selected_appointment_id": None,
                "failure_count": 0,
                "last_error": None,
                "current_step": NODE,
                "next_action": "ask_anything_else",
            },
        )


async def reschedule_flow(state: ConversationState, ctx: NodeContext) -> NodeOutput:
    if state.user_id is None:
        return NodeOutput(
            verbiage.ASK_CURRENT_OR_FIRST,
            {"flow": VerifyFlow(pending_route=NODE), "current_step": "verify_user"},
        )

    flow = state.flow if isinstance(state.flow, RescheduleFlow) else None
    if flow is None:
        turn = RescheduleTurn(state.model_copy(update={"failure_count": 0}), ctx, RescheduleFlow())
        out = await turn.list_appointments()
        out.patch.setdefault("failure_count", 0)
        return out

    turn = RescheduleTurn(state, ctx, flow)
    if flow.step == "list" or not state.cancellable_appointments:
        return await turn.list_appointments()
    if flow.step == "choose" or state.selected_appointment_id is None:
        return await turn.choose_appointment()
    if flow.step == "offer_slots" or not state.available_slots:
        return await turn.pick()
    return await turn.confirm()
