"""Dialogue graph: reducer, routing, LangGraph wiring and the turn runner."""

from langgraph.graph import END

from .builder import build_dialogue_graph
from .context import NodeContext
from .engine import DialogueGraph, GraphError, GraphResult, graph_node, traced_router
from .reducer import NodeOutput, PatchError, apply_patch

__all__ = [
    "END",
    "DialogueGraph",
    "GraphError",
    "GraphResult",
    "NodeContext",
    "NodeOutput",
    "PatchError",
    "apply_patch",
    "build_dialogue_graph",
    "graph_node",
    "traced_router",
]
