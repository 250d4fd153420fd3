"""Identity verification for callers the caller-ID lookup did not find.

Steps::

    ask_current_or_first -> ask_name -> (ask_spell_last -> confirm_spelling)
        -> ask_dob -> (ask_phone) -> done
                                  \\-> offer_register_or_transfer

A record found by name is only a candidate. It becomes the caller's
identity once they give its date of birth or phone number.
"""

from __future__ import annotations

import logging
import re
from typing import Optional

from appointment_agent import verbiage
from appointment_agent.backend.base import BackendError
from appointment_agent.graph.context import NodeContext
from appointment_agent.graph.reducer import NodeOutput
from appointment_agent.graph.router import IDENTITY_FLOWS
from appointment_agent.models.state import ConversationState, UserInfo, VerifyFlow
from appointment_agent.nodes.common import backend_failure
from appointment_agent.oracle import nlu
from appointment_agent.session_store import redact_pii

log = logging.getLogger("appointment_agent.nodes.verify")

MAX_NAME_SEARCHES = 2
MAX_PHONE_ATTEMPTS = 2
MAX_DOB_ATTEMPTS = 2


def spelled_letters(text: str) -> str:
    """``"S M I T H"`` or ``"s-m-i-t-h"`` -> ``"SMITH"``; a plain word is kept whole."""
    tokens = re.findall(r"[A-Za-z]+", text or "")
    singles = [t for t in tokens if len(t) == 1]
    if len(singles) >= 2:
        return "".join(singles).upper()
    return tokens[-1].upper() if tokens else ""


def _stay(response: str, flow: VerifyFlow, **extra) -> NodeOutput:
    return NodeOutput(
        response,
        {"flow": flow, "verify_next": None, "current_step": "verify_user", **extra},
    )


def _leave(target: str, response: Optional[str] = None) -> NodeOutput:
    return NodeOutput(
        response, {"flow": None, "verify_next": target, "current_step": "verify_user"}
    )


def _offer_register(flow: VerifyFlow, prefix: str = "") -> NodeOutput:
    text = verbiage.NOT_FOUND_OFFER_REGISTER_OR_TRANSFER
    return _stay(
        f"{prefix} {text}".strip(),
        flow.model_copy(update={"step": "offer_register_or_transfer"}),
    )


def _found(flow: VerifyFlow, candidate: UserInfo) -> NodeOutput:
    if candidate.dob:
        return _stay(
            verbiage.ASK_DOB_CONFIRM,
            flow.model_copy(update={"step": "ask_dob", "candidate": candidate}),
            dob_attempt_count=0,
        )
    return _stay(
        verbiage.ASK_PHONE,
        flow.model_copy(update={"step": "ask_phone", "candidate": candidate}),
    )


def _verified(state: ConversationState, flow: VerifyFlow, user: UserInfo) -> NodeOutput:
    log.info("[%s] Verified user %d (%s)", state.call_id[:8], user.id, redact_pii(user.full_name))
    return NodeOutput(
        verbiage.CONFIRM_THEN_SERVICES,
        {
            "user": user,
            "user_id": user.id,
            "user_name": user.full_name,
            "user_dob": user.dob,
            "is_registered": True,
            "identity_confirmed": True,
            "dob_attempt_count": 0,
            "flow": None,
            "verify_next": flow.pending_route,
            "current_step": "verified",
        },
    )


async def verify_flow(state: ConversationState, ctx: NodeContext) -> NodeOutput:
    flow = state.flow if isinstance(state.flow, VerifyFlow) else None
    text = state.last_user_message()

    if flow is None:
        pending = IDENTITY_FLOWS.get(state.current_intent or "", "book_flow")
        return _stay(verbiage.ASK_CURRENT_OR_FIRST, VerifyFlow(pending_route=pending))

    step = flow.step

    if step == "ask_current_or_first":
        if nlu.is_first_visit(text) or nlu.looks_negative(text):
            return _leave("register_flow")
        if nlu.is_returning_user(text) or nlu.looks_affirmative(text):
            return _stay(verbiage.ASK_NAME, flow.model_copy(update={"step": "ask_name"}))
        return _stay(verbiage.ASK_CURRENT_OR_FIRST, flow)

    if step == "ask_name":
        name = await nlu.extract_full_name(ctx.oracle, text)
        records = []
        if name:
            try:
                records = await ctx.backend.search_users(name=name)
            except BackendError as exc:
                return backend_failure(state, ctx, "verify_flow", exc, {"flow": flow})
        if records:
            return _found(flow, records[0].to_user_info())
        attempts = flow.name_search_attempts + 1
        flow = flow.model_copy(update={"name_search_attempts": attempts})
        if attempts >= MAX_NAME_SEARCHES:
            return _offer_register(flow)
        return _stay(
            verbiage.NAME_NOT_FOUND_ASK_SPELL, flow.model_copy(update={"step": "ask_spell_last"})
        )

    if step == "ask_spell_last":
        letters = spelled_letters(text)
        if not letters:
            return _stay(verbiage.ASK_SPELL_AGAIN, flow)
        return _stay(
            verbiage.confirm_spelling_letters("-".join(letters)),
            flow.model_copy(update={"step": "confirm_spelling", "last_spelled_name": letters}),
        )

    if step == "confirm_spelling":
        question = state.last_assistant_message()
        if not await nlu.is_confirming(ctx.oracle, question, text):
            return _stay(verbiage.ASK_SPELL_AGAIN, flow.model_copy(update={"step": "ask_spell_last"}))
        spelled = flow.last_spelled_name or ""
        try:
            records = await ctx.backend.search_users(fuzzy=spelled)
        except BackendError as exc:
            return backend_failure(state, ctx, "verify_flow", exc, {"flow": flow})
        if records:
            return _found(flow, records[0].to_user_info())
        flow = flow.model_copy(update={"name_search_attempts": flow.name_search_attempts + 1})
        return _offer_register(flow, verbiage.searching_for_spelled(spelled.capitalize()))

    if step == "ask_dob":
        candidate = flow.candidate
        parsed = await nlu.parse_dob(ctx.oracle, text)
        if parsed is None:
            attempts = state.dob_attempt_count + 1
            if attempts >= MAX_DOB_ATTEMPTS:
                return _stay(
                    verbiage.ASK_PHONE,
                    flow.model_copy(update={"step": "ask_phone"}),
                    dob_attempt_count=attempts,
                )
            return _stay(verbiage.ASK_DOB_CONFIRM, flow, dob_attempt_count=attempts)
        if candidate is not None and nlu.dob_matches(parsed, candidate.dob):
            return _verified(state, flow, candidate)
        return _stay(
            f"{verbiage.DOB_MISMATCH_TRY_PHONE} {verbiage.ASK_PHONE}",
            flow.model_copy(update={"step": "ask_phone"}),
        )

    if step == "ask_phone":
        digits = nlu.extract_phone_digits(text)
        if len(digits) != 10:
            attempts = flow.phone_attempts + 1
            flow = flow.model_copy(update={"phone_attempts": attempts})
            if attempts >= MAX_PHONE_ATTEMPTS:
                return _offer_register(flow)
            return _stay(verbiage.ASK_PHONE, flow)
        phone = f"+1{digits}"
        try:
            phone = await ctx.backend.normalize_phone(phone)
        except BackendError as exc:
            log.info("Normalize failed during verification, using %s: %s", redact_pii(phone), exc.message)
        try:
            records = await ctx.backend.find_users_by_phone(phone)
        except BackendError as exc:
            log.warning("Phone lookup failed during verification: %s", exc.message)
            return _offer_register(flow)
        candidate = flow.candidate
        match = next(
            (r for r in records if candidate is None or r.id == candidate.id), None
        )
        if match is None:
            return _offer_register(flow)
        return _verified(state, flow, candidate or match.to_user_info())

    if step == "offer_register_or_transfer":
        question = state.last_assistant_message()
        if await nlu.is_confirming(ctx.oracle, question, text):
            return _leave("register_flow")
        return _leave("transfer", verbiage.TRANSFER_LOCATE_RECORD)

    return _stay(verbiage.ASK_CURRENT_OR_FIRST, flow.model_copy(update={"step": "ask_current_or_first"}))
