"""Nodes that end a turn with a fixed answer: goodbye, 911, rejection,
transfer, and office hours."""

from __future__ import annotations

import logging

from appointment_agent import verbiage
from appointment_agent.backend.base import BackendError
from appointment_agent.graph.context import NodeContext
from appointment_agent.graph.reducer import NodeOutput
from appointment_agent.models.state import ConversationState
from appointment_agent.nodes.common import transfer_patch

log = logging.getLogger("appointment_agent.nodes.terminal")

WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")


async def thanks_end(state: ConversationState, ctx: NodeContext) -> NodeOutput:
    return NodeOutput(
        verbiage.CLOSE,
        {
            "flow": None,
            "conversation_ended": True,
            "call_ended": True,
            "current_step": "thanks_end",
        },
    )


async def advise_911(state: ConversationState, ctx: NodeContext) -> NodeOutput:
    log.warning("[%s] Emergency detected", state.call_id[:8])
    return NodeOutput(
        verbiage.EMERGENCY_911,
        {"flow": None, "is_emergency": True, "current_step": "advise_911"},
    )


async def polite_rejection(state: ConversationState, ctx: NodeContext) -> NodeOutput:
    return NodeOutput(
        verbiage.POLITE_REJECTION,
        {"rejection_count": state.rejection_count + 1, "current_step": "polite_rejection"},
    )


async def transfer(state: ConversationState, ctx: NodeContext) -> NodeOutput:
    """Hand off to staff. An earlier node's more specific wording is kept."""
    log.info("[%s] Transferring to staff", state.call_id[:8])
    response = None if state.assistant_response.strip() else verbiage.TRANSFER_STAFF
    return NodeOutput(response, transfer_patch())


def _clock(value: str) -> str:
    """``"09:00"`` -> ``"9am"``, ``"17:30"`` -> ``"5:30pm"``."""
    try:
        hour_s, minute_s = value.split(":")[:2]
        hour, minute = int(hour_s), int(minute_s)
    except ValueError:
        return value
    suffix = "am" if hour < 12 else "pm"
    h12 = hour % 12 or 12
    return f"{h12}{suffix}" if minute == 0 else f"{h12}:{minute:02d}{suffix}"


async def org_info(state: ConversationState, ctx: NodeContext) -> NodeOutput:
    """Read the office hours from the organization's booking rules."""
    try:
        rules = await ctx.backend.get_booking_rules(state.org_id)
    except BackendError as exc:
        log.warning("Booking rules unavailable: %s", exc.message)
        return NodeOutput(
            f"{verbiage.HOURS_UNAVAILABLE} {verbiage.ANYTHING_ELSE}",
            {"last_error": exc.message, "current_step": "org_info"},
        )

    hours = {day.lower(): window for day, window in rules.working_hours.items()}
    lines = [
        f"{day.capitalize()}: {_clock(hours[day].start)} to {_clock(hours[day].end)}"
        for day in WEEKDAYS
        if day in hours and hours[day].start and hours[day].end
    ]
    text = verbiage.hours_sentence(lines) if lines else verbiage.HOURS_UNKNOWN
    return NodeOutput(f"{text} {verbiage.ANYTHING_ELSE}", {"current_step": "org_info"})
