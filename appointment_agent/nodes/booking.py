"""Booking flow.

``check`` fetches availability for the window the caller asked about (this
week by default) and offers it. ``offer_slots`` resolves the caller's pick.
``confirm`` re-checks that the slot is still open and books it only on an
explicit yes.
"""

from __future__ import annotations

import logging
import re
from typing import Optional

from appointment_agent import verbiage
from appointment_agent.backend.base import BackendError
from appointment_agent.graph.context import NodeContext
from appointment_agent.graph.reducer import NodeOutput
from appointment_agent.models.backend import Slot
from appointment_agent.models.state import BookingFlow, ConversationState, VerifyFlow
from appointment_agent.nodes.slot_flow import SlotFlowTurn, sort_slots
from appointment_agent.oracle.datetime_parser import availability_window, parse_date_time

log = logging.getLogger("appointment_agent.nodes.booking")

NODE = "book_flow"

_PHYSICAL = re.compile(r"\bphysical\b|\bcheck[- ]?up\b|\bannual exam\b")
_PHONE_VISIT = re.compile(r"\bphone (visit|appointment|call)\b|\bover the phone\b|\bby phone\b")


def requested_visit_type(text: str, current: str = "follow_up") -> str:
    t = (text or "").lower()
    if _PHYSICAL.search(t):
        return "physical"
    if _PHONE_VISIT.search(t):
        return "phone"
    return current


def booking_instructions(visit_type: str) -> list[str]:
    lines = [verbiage.BOOK_INSTRUCTIONS_CARD]
    if visit_type == "physical":
        lines.append(verbiage.BOOK_INSTRUCTIONS_FASTING)
    if visit_type == "phone":
        lines.append(verbiage.BOOK_INSTRUCTIONS_PHONE)
    return lines


class BookingTurn(SlotFlowTurn):
    node = NODE

    def __init__(self, state: ConversationState, ctx: NodeContext, flow: BookingFlow) -> None:
        super().__init__(state, ctx, flow)
        self.visit_type = requested_visit_type(self.text, flow.visit_type)

    def flow_update(self) -> dict:
        return {"visit_type": self.visit_type}

    async def fetch(self, from_date: Optional[str], to_date: Optional[str]) -> list[Slot]:
        slots = await self.ctx.backend.get_availability(self.state.org_id, from_date, to_date)
        log.info("Availability %s..%s: %d slots", from_date, to_date, len(slots))
        return slots

    def confirm_prompt(self, when: str) -> str:
        return verbiage.confirm_slot_with_user(when)

    async def check(self, parse_utterance: bool = True) -> NodeOutput:
        parsed = None
        if parse_utterance:
            parsed = await parse_date_time(
                self.ctx.oracle,
                self.text,
                self.ctx.tz,
                self.ctx.now(),
                self.state.last_assistant_message() or None,
            )
        from_date, to_date = availability_window(parsed, self.ctx.tz, self.ctx.now())
        try:
            slots = sort_slots(await self.fetch(from_date, to_date))
        except BackendError as exc:
            return self.failed(exc, "check")
        return self.offer(slots)

    async def commit(self, slot: Slot) -> NodeOutput:
        user_id = self.state.user_id
        created = await self.ctx.backend.create_appointment(
            user_id,
            self.state.org_id,
            slot.provider_id,
            slot.slot_id,
            visit_type=self.visit_type,
        )
        log.info("Booked appointment %d for user %d", created.appointment_id, user_id)
        self.ctx.emit("booked", NODE, {"appointment_id": created.appointment_id})
        return NodeOutput(
            verbiage.booked(self.when(slot), booking_instructions(self.visit_type)),
            {
                "flow": None,
                "available_slots": [],
                "selected_slot_id": None,
                "failure_count": 0,
                "last_error": None,
                "current_step": NODE,
                "next_action": "ask_anything_else",
            },
        )


async def book_flow(state: ConversationState, ctx: NodeContext) -> NodeOutput:
    if state.user_id is None:
        return NodeOutput(
            verbiage.ASK_CURRENT_OR_FIRST,
            {"flow": VerifyFlow(pending_route=NODE), "current_step": "verify_user"},
        )

    flow = state.flow if isinstance(state.flow, BookingFlow) else None
    if flow is None:
        turn = BookingTurn(state.model_copy(update={"failure_count": 0}), ctx, BookingFlow())
        # Right after verification the last utterance is a date of birth, not a request.
        out = await turn.check(parse_utterance=state.current_step != "verified")
        out.patch.setdefault("failure_count", 0)
        return out

    turn = BookingTurn(state, ctx, flow)
    if flow.step == "check" or not state.available_slots:
        return await turn.check()
    if flow.step == "offer_slots":
        return await turn.pick()
    return await turn.confirm()
