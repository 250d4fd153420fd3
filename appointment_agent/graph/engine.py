"""Runs the dialogue on a LangGraph ``StateGraph``.

Dialogue nodes are async callables ``(state, ctx) -> NodeOutput``.
``graph_node`` adapts one into a LangGraph node: the turn's ``NodeContext``
travels in the run config, the output is folded in with ``apply_patch`` and
only the fields it changed are written back. ``traced_router`` wraps a
routing function so every edge taken shows up in the call's debug stream.
``DialogueGraph`` compiles the builder and runs one turn per ``run``.
"""

from __future__ import annotations

import functools
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

from langchain_core.runnables import RunnableConfig
from langgraph.errors import GraphRecursionError
from langgraph.graph import StateGraph

from appointment_agent.debug_events import emit_current
from appointment_agent.graph.context import NodeContext
from appointment_agent.graph.reducer import NodeOutput, apply_patch
from appointment_agent.models.state import ConversationState

log = logging.getLogger("appointment_agent.graph")

NodeFn = Callable[[ConversationState, NodeContext], Awaitable[NodeOutput]]
RouterFn = Callable[[ConversationState], str]

CONTEXT_KEY = "node_context"


class GraphError(RuntimeError):
    """The graph is miswired or a turn did not terminate."""


@dataclass
class GraphResult:
    state: ConversationState
    path: list[str] = field(default_factory=list)


def _context(config: RunnableConfig) -> NodeContext:
    ctx = (config.get("configurable") or {}).get(CONTEXT_KEY)
    if ctx is None:
        raise GraphError("Run config carries no NodeContext")
    return ctx


def graph_node(name: str, fn: NodeFn):
    """Adapt a dialogue node to LangGraph's ``(state, config) -> update``."""

    async def run_node(state: ConversationState, config: RunnableConfig) -> dict[str, Any]:
        ctx = _context(config)
        started = time.monotonic()
        log.info("[%s] node %s", state.call_id[:8], name)
        ctx.emit("node_enter", name, {"step": state.current_step, "flow": state.current_flow})

        output = await fn(state, ctx)
        updated = apply_patch(state, output)

        ctx.emit(
            "node_exit",
            name,
            {
                "duration_ms": round((time.monotonic() - started) * 1000),
                "spoke": output.response is not None,
                "patched": sorted(output.patch),
            },
        )
        changed = {*output.patch, "last_updated"}
        if output.response is not None:
            changed.add("assistant_response")
        return {key: getattr(updated, key) for key in changed}

    run_node.__name__ = name
    return run_node


def traced_router(source: str, fn: RouterFn) -> RouterFn:
    """Wrap a routing function so the chosen edge is logged and emitted."""

    @functools.wraps(fn)
    def route(state: ConversationState) -> str:
        target = fn(state)
        log.info("[%s] route %s -> %s", state.call_id[:8], source, target)
        emit_current("route", source, {"to": target, "iteration": state.iteration_count})
        return target

    return route


class DialogueGraph:
    """A compiled dialogue graph.

    Args:
        builder: The wired ``StateGraph``; compiled here.
        max_steps: Upper bound on nodes per turn. Exceeding it is a wiring
            bug and raises ``GraphError``.
    """

    def __init__(self, builder: StateGraph, max_steps: int = 12) -> None:
        self._nodes = list(builder.nodes)
        self._max_steps = max_steps
        self._compiled = builder.compile()

    @property
    def nodes(self) -> list[str]:
        return list(self._nodes)

    async def run(self, state: ConversationState, ctx: NodeContext) -> GraphResult:
        """Run one turn and return the final state and the nodes visited."""
        config: RunnableConfig = {
            "configurable": {CONTEXT_KEY: ctx},
            "recursion_limit": self._max_steps,
        }
        path: list[str] = []
        final: Any = state
        try:
            async for mode, chunk in self._compiled.astream(
                state, config, stream_mode=["updates", "values"]
            ):
                if mode == "updates":
                    path.extend(chunk)
                else:
                    final = chunk
        except GraphRecursionError as exc:
            raise GraphError(f"Turn exceeded {self._max_steps} steps: {path}") from exc

        return GraphResult(state=ConversationState.model_validate(final), path=path)
