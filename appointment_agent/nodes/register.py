"""New patient registration.

Steps::

    start -> name -> dob -> gender -> phone -> email -> confirm_all
      \\-> offer_waitlist (organization not accepting new patients)

Each answer goes through the registration analyzer before it is stored, so
an off-topic reply gets a clarifying question instead of bad data. At
``confirm_all`` the caller can correct one field, which re-reads the
summary; only an explicit yes creates the user.
"""

from __future__ import annotations

import logging
from typing import Optional

from appointment_agent import verbiage
from appointment_agent.backend.base import BackendError
from appointment_agent.formatting import (
    format_phone_for_display,
    registration_summary,
    spoken_dob,
)
from appointment_agent.graph.context import NodeContext
from appointment_agent.graph.reducer import NodeOutput
from appointment_agent.models.backend import NewUser
from appointment_agent.models.state import (
    ConversationState,
    RegistrationData,
    RegistrationFlow,
    UserInfo,
)
from appointment_agent.nodes.common import transfer_patch
from appointment_agent.oracle import nlu
from appointment_agent.session_store import redact_pii

log = logging.getLogger("appointment_agent.nodes.register")

NODE = "register_flow"
PHONE_CONFIRM_QUESTION = "Is that the best number to reach you?"
CONFIRM_ALL_QUESTION = "Is everything correct?"


def _out(
    flow: RegistrationFlow,
    response: str,
    step: str,
    data: Optional[RegistrationData] = None,
    **patch,
) -> NodeOutput:
    update: dict = {"step": step}
    if data is not None:
        update["data"] = data
    return NodeOutput(
        response, {"flow": flow.model_copy(update=update), "current_step": NODE, **patch}
    )


def _summary(data: RegistrationData) -> str:
    return registration_summary(data.full_name, data.dob, data.gender, data.phone, data.email)


def _caller_phone(state: ConversationState) -> Optional[str]:
    phone = state.normalized_phone
    if phone and len(nlu.extract_phone_digits(phone)) >= 10:
        return phone
    return None


async def normalize_spoken_phone(ctx: NodeContext, text: str) -> Optional[str]:
    """E.164 for a number the caller said, via the backend; ``+1`` fallback."""
    digits = nlu.extract_phone_digits(text)
    if len(digits) != 10:
        return None
    try:
        normalized = await ctx.backend.normalize_phone(text.strip())
    except BackendError as exc:
        log.info("Normalize failed for spoken number, using +1 fallback: %s", exc.message)
        return f"+1{digits}"
    if len(nlu.extract_phone_digits(normalized)) >= 10:
        return normalized
    return f"+1{digits}"


async def _analyze(
    ctx: NodeContext, step: str, question: str, text: str, data: RegistrationData
) -> Optional[str]:
    """The clarifying question to ask instead of storing ``text``, if any."""
    analysis = await nlu.analyze_registration_response(
        ctx.oracle, step, question, text, data.model_dump(exclude_none=True)
    )
    if analysis.action == "reask" or (analysis.action == "clarify" and not analysis.valid):
        return analysis.clarification or question
    return None


# ── Steps ────────────────────────────────────────────────────────


async def _start(state: ConversationState, ctx: NodeContext, flow: RegistrationFlow) -> NodeOutput:
    try:
        rules = await ctx.backend.get_booking_rules(state.org_id)
    except BackendError as exc:
        log.warning("Booking rules unavailable, continuing registration: %s", exc.message)
        rules = None
    if rules is not None and not rules.accepting_bookings:
        return _out(flow, verbiage.CLINIC_NOT_ACCEPTING, "offer_waitlist")
    return _out(
        flow,
        f"{verbiage.REGISTER_INTRO} {verbiage.REGISTER_FULL_NAME}",
        "name",
        RegistrationData(),
    )


async def _offer_waitlist(state: ConversationState, ctx: NodeContext, flow: RegistrationFlow) -> NodeOutput:
    joined = await nlu.is_confirming(
        ctx.oracle, state.last_assistant_message(), state.last_user_message()
    )
    text = verbiage.ADD_WAITLIST_YES if joined else verbiage.ADD_WAITLIST_NO
    return NodeOutput(text, {"flow": None, "current_step": NODE})


async def _name(state: ConversationState, ctx: NodeContext, flow: RegistrationFlow) -> NodeOutput:
    text = state.last_user_message()
    if not text:
        return _out(flow, verbiage.REGISTER_FULL_NAME, "name")
    clarify = await _analyze(ctx, "name", verbiage.REGISTER_FULL_NAME, text, flow.data)
    if clarify:
        return _out(flow, clarify, "name")
    full_name = await nlu.extract_full_name(ctx.oracle, text)
    if not full_name:
        return _out(flow, verbiage.REGISTER_FULL_NAME, "name")
    first, last = nlu.split_full_name(full_name)
    data = flow.data.model_copy(update={"first_name": first, "last_name": last})
    return _out(flow, f"Thanks, {data.full_name}. {verbiage.REGISTER_DOB}", "dob", data)


async def _dob(state: ConversationState, ctx: NodeContext, flow: RegistrationFlow) -> NodeOutput:
    text = state.last_user_message()
    clarify = await _analyze(ctx, "dob", verbiage.REGISTER_DOB, text, flow.data)
    if clarify:
        return _out(flow, clarify, "dob")
    dob = await nlu.parse_dob(ctx.oracle, text)
    if dob is None:
        return _out(flow, verbiage.REGISTER_DOB_NOT_CAUGHT, "dob")
    data = flow.data.model_copy(update={"dob": dob})
    return _out(flow, f"Got it, {spoken_dob(dob)}. {verbiage.REGISTER_GENDER}", "gender", data)


async def _gender(state: ConversationState, ctx: NodeContext, flow: RegistrationFlow) -> NodeOutput:
    text = state.last_user_message()
    gender = await nlu.normalize_gender(ctx.oracle, text)
    if gender not in ("male", "female"):
        clarify = await _analyze(ctx, "gender", verbiage.REGISTER_GENDER, text, flow.data)
        if clarify:
            return _out(flow, clarify, "gender")
        gender = "other"

    data = flow.data.model_copy(update={"gender": gender})
    caller_phone = _caller_phone(state)
    if caller_phone:
        data = data.model_copy(update={"phone": caller_phone})
        prompt = verbiage.confirm_phone_on_file(format_phone_for_display(caller_phone))
        return _out(flow, f"Thanks. {prompt}", "phone", data)
    return _out(flow, f"Thanks. {verbiage.REGISTER_PHONE}", "phone", data)


async def _phone(state: ConversationState, ctx: NodeContext, flow: RegistrationFlow) -> NodeOutput:
    text = state.last_user_message()
    data = flow.data
    next_prompt = f"Thanks. {verbiage.REGISTER_EMAIL}"

    if data.phone:
        # Caller-ID number was read back for confirmation.
        if nlu.looks_affirmative(text):
            return _out(flow, next_prompt, "email")
        spoken = await normalize_spoken_phone(ctx, text)
        if spoken:
            return _out(flow, next_prompt, "email", data.model_copy(update={"phone": spoken}))
        if await nlu.is_confirming(ctx.oracle, PHONE_CONFIRM_QUESTION, text):
            return _out(flow, next_prompt, "email")
        return _out(flow, verbiage.REGISTER_PHONE, "phone", data.model_copy(update={"phone": None}))

    clarify = await _analyze(ctx, "phone", verbiage.REGISTER_PHONE, text, data)
    if clarify:
        return _out(flow, clarify, "phone")
    spoken = await normalize_spoken_phone(ctx, text)
    if not spoken:
        return _out(flow, verbiage.REGISTER_PHONE_NOT_CAUGHT, "phone")
    return _out(flow, next_prompt, "email", data.model_copy(update={"phone": spoken}))


async def _email(state: ConversationState, ctx: NodeContext, flow: RegistrationFlow) -> NodeOutput:
    text = state.last_user_message()
    email = None
    if not nlu.is_skip_email(text):
        clarify = await _analyze(ctx, "email", verbiage.REGISTER_EMAIL, text, flow.data)
        if clarify:
            return _out(flow, clarify, "email")
        email = await nlu.parse_email(ctx.oracle, text)
    data = flow.data.model_copy(update={"email": email})
    return _out(flow, _summary(data), "confirm_all", data)


async def _apply_correction(
    ctx: NodeContext, flow: RegistrationFlow, correction: nlu.Correction
) -> NodeOutput:
    flow = flow.model_copy(update={"correcting": None})
    data = flow.data
    value = correction.new_value
    if correction.field == "name":
        full_name = await nlu.extract_full_name(ctx.oracle, value) or value
        first, last = nlu.split_full_name(full_name)
        data = data.model_copy(update={"first_name": first, "last_name": last})
    elif correction.field == "dob":
        dob = await nlu.parse_dob(ctx.oracle, value)
        if dob is None:
            return _out(flow, verbiage.REGISTER_DOB_NOT_CAUGHT, "confirm_all")
        data = data.model_copy(update={"dob": dob})
    elif correction.field == "gender":
        data = data.model_copy(update={"gender": await nlu.normalize_gender(ctx.oracle, value)})
    elif correction.field == "phone":
        phone = await normalize_spoken_phone(ctx, value)
        if phone is None:
            return _out(flow, verbiage.REGISTER_PHONE_NOT_CAUGHT, "confirm_all")
        data = data.model_copy(update={"phone": phone})
    elif correction.field == "email":
        email = await nlu.parse_email(ctx.oracle, value) if value else None
        data = data.model_copy(update={"email": email})
    log.info("Registration correction applied to %s", correction.field)
    return _out(flow, _summary(data), "confirm_all", data)


async def _create(state: ConversationState, ctx: NodeContext, flow: RegistrationFlow) -> NodeOutput:
    data = flow.data
    new_user = NewUser(
        first_name=data.first_name or "",
        last_name=data.last_name or "",
        dob=data.dob or "",
        gender=data.gender or "other",
        phone=data.phone or state.normalized_phone or "",
        email=data.email,
    )
    try:
        created = await ctx.backend.create_user(new_user)
    except BackendError as exc:
        log.warning("Registration failed: %s", exc.message)
        return NodeOutput(
            verbiage.REGISTER_ERROR_TRANSFER,
            transfer_patch(failure_count=state.failure_count + 1, last_error=exc.message),
        )

    user = UserInfo(
        id=created.user_id,
        first_name=new_user.first_name,
        last_name=new_user.last_name,
        phone=new_user.phone or None,
        dob=new_user.dob or None,
    )
    log.info("Registered user %d (%s)", user.id, redact_pii(user.full_name))
    ctx.emit("registered", NODE, {"user_id": user.id})
    return NodeOutput(
        verbiage.REGISTER_SUCCESS,
        {
            "flow": None,
            "user": user,
            "user_id": user.id,
            "user_name": user.full_name,
            "user_dob": user.dob,
            "is_registered": True,
            "identity_confirmed": True,
            "failure_count": 0,
            "current_step": NODE,
            "next_action": "ask_anything_else",
        },
    )


_CORRECTION_QUESTIONS = {
    "name": verbiage.REGISTER_FULL_NAME,
    "dob": verbiage.REGISTER_DOB,
    "gender": verbiage.REGISTER_GENDER,
    "phone": verbiage.REGISTER_PHONE,
    "email": verbiage.REGISTER_EMAIL,
}


async def _confirm_all(state: ConversationState, ctx: NodeContext, flow: RegistrationFlow) -> NodeOutput:
    text = state.last_user_message()
    if flow.correcting:
        return await _apply_correction(ctx, flow, nlu.Correction(flow.correcting, text.strip()))
    if nlu.is_bare_affirmative(text):
        return await _create(state, ctx, flow)

    correction = await nlu.parse_correction(ctx.oracle, text, _summary(flow.data))
    if correction is not None:
        if correction.new_value:
            return await _apply_correction(ctx, flow, correction)
        update = {"step": "confirm_all", "correcting": correction.field}
        return NodeOutput(
            _CORRECTION_QUESTIONS[correction.field],
            {"flow": flow.model_copy(update=update), "current_step": NODE},
        )

    if nlu.has_reservation(text):
        return NodeOutput(verbiage.REGISTER_CORRECTION_TRANSFER, transfer_patch())
    if not nlu.looks_negative(text):
        if await nlu.is_confirming(ctx.oracle, CONFIRM_ALL_QUESTION, text):
            return await _create(state, ctx, flow)
        analysis = await nlu.analyze_registration_response(
            ctx.oracle,
            "confirm_all",
            CONFIRM_ALL_QUESTION,
            text,
            flow.data.model_dump(exclude_none=True),
        )
        if analysis.action == "clarify" and analysis.clarification:
            return _out(flow, analysis.clarification, "confirm_all")

    return NodeOutput(verbiage.REGISTER_CORRECTION_TRANSFER, transfer_patch())


_STEPS = {
    "start": _start,
    "offer_waitlist": _offer_waitlist,
    "name": _name,
    "dob": _dob,
    "gender": _gender,
    "phone": _phone,
    "email": _email,
    "confirm_all": _confirm_all,
}


async def register_flow(state: ConversationState, ctx: NodeContext) -> NodeOutput:
    flow = state.flow if isinstance(state.flow, RegistrationFlow) else None
    if flow is None:
        if state.is_registered or state.user_id is not None:
            return NodeOutput(verbiage.ALREADY_REGISTERED, {"flow": None, "current_step": NODE})
        flow = RegistrationFlow()
    return await _STEPS[flow.step](state, ctx, flow)
