"""Shared turn logic for flows that offer slots and ask for confirmation.

Booking and rescheduling both fetch candidate slots, resolve the caller's
pick, read it back, and commit only on an explicit yes after re-checking
that the slot is still open. Subclasses say where slots come from and what
committing means.
"""

from __future__ import annotations

import logging
from typing import Optional, Sequence

from appointment_agent import verbiage
from appointment_agent.backend.base import BackendError
from appointment_agent.formatting import condensed_availability, slot_date_in_words
from appointment_agent.graph.context import NodeContext
from appointment_agent.graph.reducer import NodeOutput
from appointment_agent.models.backend import Slot
from appointment_agent.models.state import ConversationState
from appointment_agent.nodes.common import backend_failure
from appointment_agent.oracle import nlu
from appointment_agent.oracle.datetime_parser import availability_window
from appointment_agent.slot_matching import (
    SlotMatch,
    find_closest_to_start,
    looks_like_date_time,
    match_slot,
    resolve_option,
)
from appointment_agent.timezones import add_days, date_in_timezone

log = logging.getLogger("appointment_agent.nodes.slot_flow")

WIDEN_DAYS = 6


def sort_slots(slots: Sequence[Slot]) -> list[Slot]:
    return sorted(slots, key=lambda s: s.start)


class SlotFlowTurn:
    """One turn of a slot-offering flow.

    Args:
        state: Conversation state at the start of the node.
        ctx: Turn collaborators.
        flow: The flow model; copied with a new step on every reply.
    """

    node = ""

    def __init__(self, state: ConversationState, ctx: NodeContext, flow) -> None:
        self.state = state
        self.ctx = ctx
        self.flow = flow
        self.text = state.last_user_message()

    # ── Hooks ────────────────────────────────────────────────

    async def fetch(self, from_date: Optional[str], to_date: Optional[str]) -> list[Slot]:
        raise NotImplementedError

    def confirm_prompt(self, when: str) -> str:
        raise NotImplementedError

    def list_prompt(self, listing: str) -> str:
        return verbiage.offer_slots(listing)

    def empty_reply(self) -> NodeOutput:
        return self.out(
            verbiage.NO_OPENINGS_TRY_OTHER_DAY, "check", available_slots=[], selected_slot_id=None
        )

    async def commit(self, slot: Slot) -> NodeOutput:
        raise NotImplementedError

    def flow_update(self) -> dict:
        return {}

    # ── Replies ──────────────────────────────────────────────

    def when(self, slot: Slot) -> str:
        return slot_date_in_words(slot.start, self.ctx.tz)

    def out(self, response: str, step: str, **patch) -> NodeOutput:
        flow = self.flow.model_copy(update={"step": step, **self.flow_update()})
        return NodeOutput(response, {"flow": flow, "current_step": self.node, **patch})

    def failed(self, exc: BackendError, step: str) -> NodeOutput:
        retry = self.flow.model_copy(update={"step": step, **self.flow_update()})
        return backend_failure(self.state, self.ctx, self.node, exc, {"flow": retry})

    def offer(self, slots: list[Slot], prefix: str = "") -> NodeOutput:
        """Offer a fetched list: none, one (straight to confirm) or several."""
        if not slots:
            return self.empty_reply()
        if len(slots) == 1:
            lead = f"{prefix} " if prefix else ""
            return self.out(
                f"{lead}{verbiage.single_slot_offer(self.when(slots[0]))}",
                "confirm",
                available_slots=slots,
                selected_slot_id=slots[0].slot_id,
            )
        return self.offer_list(slots, prefix)

    def offer_list(self, slots: list[Slot], prefix: str = "") -> NodeOutput:
        """List slots by day without picking one."""
        lead = f"{prefix} " if prefix else ""
        listing = condensed_availability([s.start for s in slots], self.ctx.tz)
        return self.out(
            f"{lead}{self.list_prompt(listing)}",
            "offer_slots",
            available_slots=slots,
            selected_slot_id=None,
        )

    def choose(self, slot: Slot, slots: Optional[list[Slot]] = None) -> NodeOutput:
        patch = {"selected_slot_id": slot.slot_id}
        if slots is not None:
            patch["available_slots"] = slots
        return self.out(self.confirm_prompt(self.when(slot)), "confirm", **patch)

    def reprompt(self) -> NodeOutput:
        if not self.state.available_slots:
            return self.empty_reply()
        return self.offer_list(self.state.available_slots)

    # ── Steps ────────────────────────────────────────────────

    async def apply_match(self, match: SlotMatch) -> NodeOutput:
        if match.kind in ("index", "closest") and match.slot is not None:
            return self.choose(match.slot)

        if match.kind == "other_day" and match.requested_date:
            day = match.requested_date
            try:
                slots = sort_slots(await self.fetch(day, day))
                if slots:
                    closest = find_closest_to_start(slots, match.parsed.iso_utc)
                    return self.choose(closest or slots[0], slots)
                wider = sort_slots(await self.fetch(day, add_days(day, WIDEN_DAYS)))
            except BackendError as exc:
                return self.failed(exc, "offer_slots")
            if not wider:
                return self.empty_reply()
            return self.offer_list(wider, prefix=verbiage.NO_EXACT_DAY)

        if match.kind == "range":
            from_date, to_date = availability_window(match.parsed, self.ctx.tz, self.ctx.now())
            try:
                slots = sort_slots(await self.fetch(from_date, to_date))
            except BackendError as exc:
                return self.failed(exc, "offer_slots")
            return self.offer(slots)

        return self.reprompt()

    async def match(self) -> SlotMatch:
        return await match_slot(
            self.text,
            self.state.available_slots,
            self.ctx.oracle,
            self.ctx.tz,
            self.ctx.now(),
            self.state.last_assistant_message() or None,
        )

    async def pick(self) -> NodeOutput:
        return await self.apply_match(await self.match())

    async def confirm(self) -> NodeOutput:
        """Handle the reply to a read-back.

        A new date, time or option changes the pick. Only an explicit yes
        with a pick in hand goes on to commit.
        """
        state = self.state
        selected = state.find_slot(state.selected_slot_id)
        slots = state.available_slots

        if looks_like_date_time(self.text):
            match = await self.match()
            same = (
                match.slot is not None
                and selected is not None
                and match.slot.slot_id == selected.slot_id
            )
            if match.kind != "none" and not (same and nlu.looks_affirmative(self.text)):
                return await self.apply_match(match)
        elif not nlu.looks_affirmative(self.text):
            index = resolve_option(self.text, len(slots))
            if index >= 0:
                return self.choose(slots[index])

        question = state.last_assistant_message()
        if not await nlu.is_confirming(self.ctx.oracle, question, self.text):
            if selected is not None and not nlu.looks_negative(self.text):
                return self.choose(selected)
            return self.reprompt()
        if selected is None:
            return self.reprompt()
        return await self.recheck_and_commit(selected)

    async def recheck_and_commit(self, slot: Slot) -> NodeOutput:
        day = date_in_timezone(slot.start, self.ctx.tz)
        try:
            fresh = sort_slots(await self.fetch(day, day))
        except BackendError as exc:
            return self.failed(exc, "confirm")
        current = next((s for s in fresh if s.slot_id == slot.slot_id), None)
        if current is None:
            log.info("Slot %d no longer open", slot.slot_id)
            return self.offer(fresh, prefix=verbiage.SLOT_NO_LONGER_AVAILABLE)
        try:
            return await self.commit(current)
        except BackendError as exc:
            return self.failed(exc, "confirm")
