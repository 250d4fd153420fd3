"""Helpers shared by the dialogue nodes."""

from __future__ import annotations

import logging
from typing import Optional

from appointment_agent import verbiage
from appointment_agent.backend.base import BackendError
from appointment_agent.graph.context import NodeContext
from appointment_agent.graph.reducer import NodeOutput
from appointment_agent.models.state import ConversationState

log = logging.getLogger("appointment_agent.nodes")


def transfer_patch(**extra) -> dict:
    """Patch that hands the caller to a human and drops any flow."""
    return {
        "flow": None,
        "should_transfer": True,
        "transfer_to_agent": True,
        "current_step": "transfer",
        **extra,
    }


def backend_failure(
    state: ConversationState,
    ctx: NodeContext,
    node: str,
    exc: BackendError,
    retry_patch: Optional[dict] = None,
) -> NodeOutput:
    """Resolve a failed backend call to a caller-facing reply.

    The first failure asks the caller to repeat and keeps ``retry_patch``
    (normally the flow parked at its fetch step); a repeated failure
    transfers to staff.
    """
    count = state.failure_count + 1
    log.warning(
        "[%s] %s backend failure #%d: %s", state.call_id[:8], node, count, exc.message
    )
    ctx.emit("backend_failure", node, {"status": exc.status, "failure_count": count})
    if state.failure_count == 0:
        return NodeOutput(
            verbiage.TOOL_RETRY,
            {**(retry_patch or {}), "failure_count": count, "last_error": exc.message},
        )
    return NodeOutput(
        verbiage.TRANSFER_STAFF,
        transfer_patch(failure_count=count, last_error=exc.message),
    )
