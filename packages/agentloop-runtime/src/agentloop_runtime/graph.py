"""Execution graph: nodes keyed by id plus conditional edges.

Transition rule: from the current node, the first outgoing edge (in
declaration order) whose condition is absent or true wins. When no edge
matches, the run moves to :data:`FALLBACK_TARGET`, which is the end
node. Together with the runtime's step ceiling this guarantees every
run terminates.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from agentloop_core.errors import GraphNodeNotFoundError
from agentloop_core.logging import get_logger

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable

    from agentloop_runtime.runtime import ExecutionContext
    from agentloop_runtime.state import ExecutionState

logger = get_logger("runtime.graph")

START_NODE = "start"
END_NODE = "end"
FALLBACK_TARGET = END_NODE


class NodeKind(StrEnum):
    START = "start"
    REASONING = "reasoning"
    ACTION = "action"
    OBSERVATION = "observation"
    DECISION = "decision"
    END = "end"


@runtime_checkable
class Node(Protocol):
    """One unit of work in the graph."""

    id: str
    kind: NodeKind

    async def execute(
        self, state: ExecutionState, context: ExecutionContext
    ) -> ExecutionState: ...


@dataclass(frozen=True, slots=True)
class Edge:
    source: str
    target: str
    condition: Callable[[ExecutionState], bool] | None = None

    def matches(self, state: ExecutionState) -> bool:
        return self.condition is None or bool(self.condition(state))


class ExecutionGraph:
    """Fixed set of nodes and edges for one agent."""

    def __init__(self, nodes: Iterable[Node], edges: Iterable[Edge]) -> None:
        self._nodes: dict[str, Node] = {}
        for node in nodes:
            if node.id in self._nodes:
                msg = f"Duplicate node id: {node.id!r}"
                raise ValueError(msg)
            self._nodes[node.id] = node
        self._edges: dict[str, list[Edge]] = {}
        for edge in edges:
            self._edges.setdefault(edge.source, []).append(edge)

    @property
    def node_ids(self) -> list[str]:
        return list(self._nodes)

    def get_node(self, node_id: str) -> Node:
        try:
            return self._nodes[node_id]
        except KeyError:
            msg = f"Node {node_id!r} not found in graph"
            raise GraphNodeNotFoundError(msg) from None

    def outgoing(self, node_id: str) -> list[Edge]:
        return list(self._edges.get(node_id, ()))

    def next_node(self, node_id: str, state: ExecutionState) -> str:
        for edge in self._edges.get(node_id, ()):
            if edge.matches(state):
                return edge.target
        logger.debug("No edge matched from %s, falling back to %s", node_id, FALLBACK_TARGET)
        return FALLBACK_TARGET

    def validate(self) -> list[str]:
        """Return human-readable structural problems (empty when sound)."""
        problems: list[str] = []
        if START_NODE not in self._nodes:
            problems.append(f"missing {START_NODE!r} node")
        for source, edges in self._edges.items():
            if source not in self._nodes:
                problems.append(f"edge source {source!r} is not a node")
            for edge in edges:
                if edge.target != END_NODE and edge.target not in self._nodes:
                    problems.append(
                        f"edge {source!r} -> {edge.target!r} targets an unknown node"
                    )
        return problems


# ── Standard nodes ─────────────────────────────────────────────


class StartNode:
    """Entry node; passes state through unchanged."""

    kind = NodeKind.START

    def __init__(self, node_id: str = START_NODE) -> None:
        self.id = node_id

    async def execute(
        self, state: ExecutionState, context: ExecutionContext
    ) -> ExecutionState:
        return state


def is_done(state: ExecutionState) -> bool:
    return bool(state.metadata.get("done"))


def build_react_graph(reasoning: Node) -> ExecutionGraph:
    """start → reasoning, then reasoning loops until it marks the state done."""
    return ExecutionGraph(
        nodes=[StartNode(), reasoning],
        edges=[
            Edge(START_NODE, reasoning.id),
            Edge(reasoning.id, END_NODE, is_done),
            Edge(reasoning.id, reasoning.id),
        ],
    )
