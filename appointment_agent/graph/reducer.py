"""State reducer: how a node's output is merged into the conversation state.

Nodes never mutate state. Each returns a ``NodeOutput`` carrying the
sentence it wants spoken (if any) and a patch of field updates; the runner
folds that into a new ``ConversationState`` with ``apply_patch``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional

from pydantic import BaseModel

from appointment_agent.models.state import ConversationState, utc_now_iso

# Owned by the turn controller; no node may rewrite them.
PROTECTED_FIELDS = frozenset({"call_id", "raw_caller_phone", "messages", "iteration_count"})


class PatchError(ValueError):
    """A node tried to write a field that does not exist or is protected."""


@dataclass
class NodeOutput:
    """What a node produced for this turn.

    ``response`` replaces ``assistant_response`` only when it is not None,
    so a node that stays silent leaves an earlier node's sentence intact.
    """

    response: Optional[str] = None
    patch: dict[str, Any] = field(default_factory=dict)


def _dump(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump()
    if isinstance(value, (list, tuple)):
        return [_dump(v) for v in value]
    return value


def apply_patch(state: ConversationState, output: NodeOutput) -> ConversationState:
    """Return a new state with ``output`` merged in.

    Raises:
        PatchError: A key is unknown or owned by the turn controller.
    """
    fields = ConversationState.model_fields
    for key in output.patch:
        if key not in fields:
            raise PatchError(f"Unknown state field: {key}")
        if key in PROTECTED_FIELDS:
            raise PatchError(f"Field {key} cannot be written by a node")

    data = state.model_dump()
    for key, value in output.patch.items():
        data[key] = _dump(value)
    if output.response is not None:
        data["assistant_response"] = output.response
    data["last_updated"] = utc_now_iso()
    return ConversationState.model_validate(data)
