"""Caller identification and greeting nodes.

On the first turn the caller-ID number is normalized and looked up. A known
caller is greeted by name and asked to confirm their date of birth; anyone
else hears the general greeting and the service menu.
"""

from __future__ import annotations

import logging

from appointment_agent import verbiage
from appointment_agent.backend.base import BackendError
from appointment_agent.graph.context import NodeContext
from appointment_agent.graph.reducer import NodeOutput
from appointment_agent.models.state import ConversationState
from appointment_agent.nodes.common import transfer_patch
from appointment_agent.oracle.nlu import (
    dob_matches,
    looks_affirmative,
    normalize_dob,
    parse_dob,
    parse_dob_fallback,
)
from appointment_agent.session_store import redact_pii

log = logging.getLogger("appointment_agent.nodes.identity")

MAX_DOB_ATTEMPTS = 2


async def normalize(state: ConversationState, ctx: NodeContext) -> NodeOutput:
    """Canonicalize the caller-ID number. Failure is not fatal."""
    raw = state.raw_caller_phone
    if not raw or state.normalized_phone:
        return NodeOutput()
    try:
        normalized = await ctx.backend.normalize_phone(raw)
    except BackendError as exc:
        log.warning("Phone normalization failed for %s: %s", redact_pii(raw), exc.message)
        return NodeOutput(
            patch={"failure_count": state.failure_count + 1, "last_error": exc.message}
        )
    log.info("Normalized caller %s", redact_pii(normalized))
    return NodeOutput(patch={"normalized_phone": normalized})


async def lookup(state: ConversationState, ctx: NodeContext) -> NodeOutput:
    """Find the caller's record by phone."""
    phone = state.normalized_phone or state.raw_caller_phone
    if not phone:
        return NodeOutput()
    try:
        records = await ctx.backend.find_users_by_phone(phone)
    except BackendError as exc:
        log.warning("Lookup failed for %s: %s", redact_pii(phone), exc.message)
        return NodeOutput(
            patch={"failure_count": state.failure_count + 1, "last_error": exc.message}
        )
    if not records:
        log.info("No user for %s", redact_pii(phone))
        return NodeOutput()

    record = records[0]
    user = record.to_user_info()
    log.info("Caller identified as user %d (%s)", user.id, redact_pii(user.full_name))
    return NodeOutput(
        patch={
            "user": user,
            "user_id": user.id,
            "user_name": user.full_name,
            "user_dob": normalize_dob(record.dob),
            "is_registered": True,
        }
    )


async def greet_personalized(state: ConversationState, ctx: NodeContext) -> NodeOutput:
    first = state.user.first_name if state.user and state.user.first_name else "there"
    return NodeOutput(
        verbiage.greet_personalized(first),
        {"current_step": "ask_are_you_name", "dob_attempt_count": 0},
    )


async def greet_general(state: ConversationState, ctx: NodeContext) -> NodeOutput:
    return NodeOutput(verbiage.GREET_GENERAL)


async def mention_services(state: ConversationState, ctx: NodeContext) -> NodeOutput:
    # Follows the greeting when one was spoken this turn.
    greeting = state.assistant_response.strip()
    text = f"{greeting} {verbiage.MENTION_SERVICES}" if greeting else verbiage.MENTION_SERVICES
    return NodeOutput(text, {"current_step": "mention_services"})


async def confirm_identity(state: ConversationState, ctx: NodeContext) -> NodeOutput:
    """Check the date of birth a known caller gives against their record.

    A bare "yes" to "is this you?" asks for the date of birth. A date that
    parses but does not match transfers; two replies that are not dates at
    all end the call.
    """
    text = state.last_user_message()
    known_dob = normalize_dob(state.user_dob or (state.user.dob if state.user else None))
    if not known_dob or state.user_id is None:
        return NodeOutput(verbiage.MENTION_SERVICES, {"current_step": "mention_services"})

    if (
        state.current_step == "ask_are_you_name"
        and looks_affirmative(text)
        and parse_dob_fallback(text) is None
    ):
        return NodeOutput(
            verbiage.ASK_DOB_CONFIRM, {"current_step": "ask_dob", "dob_attempt_count": 0}
        )

    parsed = await parse_dob(ctx.oracle, text)
    if parsed is None:
        attempts = state.dob_attempt_count + 1
        if state.current_step == "ask_dob" and attempts >= MAX_DOB_ATTEMPTS:
            log.info("[%s] DOB not given after %d attempts", state.call_id[:8], attempts)
            return NodeOutput(
                patch={
                    "dob_attempt_count": attempts,
                    "identity_check_failed": True,
                    "current_step": None,
                }
            )
        return NodeOutput(
            verbiage.ASK_DOB_CONFIRM, {"current_step": "ask_dob", "dob_attempt_count": attempts}
        )

    if dob_matches(parsed, known_dob):
        log.info("[%s] Identity confirmed for user %d", state.call_id[:8], state.user_id)
        return NodeOutput(
            verbiage.CONFIRM_THEN_SERVICES,
            {
                "identity_confirmed": True,
                "current_step": "mention_services",
                "dob_attempt_count": 0,
            },
        )

    log.info("[%s] DOB mismatch for user %d", state.call_id[:8], state.user_id)
    # The caller-ID match is not theirs to use for the rest of the call.
    return NodeOutput(
        verbiage.DOB_VERIFY_FAIL_TRANSFER,
        transfer_patch(
            user=None,
            user_id=None,
            user_name=None,
            user_dob=None,
            is_registered=False,
            dob_attempt_count=0,
        ),
    )


async def identity_failed_end(state: ConversationState, ctx: NodeContext) -> NodeOutput:
    return NodeOutput(
        verbiage.IDENTITY_FAILED_GOODBYE,
        {"conversation_ended": True, "call_ended": True, "current_step": None},
    )
