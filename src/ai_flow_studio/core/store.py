"""
Graph Store - The single mutable holder of the current graph snapshot.

Every mutation replaces the snapshot wholesale and notifies subscribers.
Long-running work (resolution, runs) reads ``store.graph`` once and keeps
that snapshot; writes go back through ``patch_node_data`` so a node that
was deleted in the meantime is simply skipped.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Mapping

from ai_flow_studio.core.connections import ConnectionRequest, connect
from ai_flow_studio.core.graph import FlowGraph, Node, Point2D, apply_patch
from ai_flow_studio.core.node_types import NodeKind


logger = logging.getLogger(__name__)


# Payload fields that carry a run result
RESULT_KEYS = frozenset({
    "imageData",
    "images",
    "outputImage",
    "text",
    "videoUrl",
    "thumbnail",
    "segments",
    "splitRects",
})


class GraphEventType(Enum):
    NODE_ADDED = "node_added"
    NODE_PATCHED = "node_patched"
    STATUS_CHANGED = "status_changed"
    RESULT_CHANGED = "result_changed"
    NODE_REMOVED = "node_removed"
    EDGES_CHANGED = "edges_changed"
    GRAPH_REPLACED = "graph_replaced"


@dataclass
class GraphEvent:
    """Notification sent to subscribers after a mutation."""
    type: GraphEventType
    node_id: str | None = None
    data: dict[str, Any] = field(default_factory=dict)


GraphListener = Callable[[GraphEvent], None]


class GraphStore:
    """
    Owns the current FlowGraph snapshot.

    Usage:
        store = GraphStore()
        prompt = store.create_node(NodeKind.TEXT_PROMPT, data={"text": "a cat"})
        gen = store.create_node(NodeKind.GENERATE)
        store.connect(ConnectionRequest(prompt.id, "text", gen.id, "text"))
    """

    def __init__(self, graph: FlowGraph | None = None):
        self._graph = graph or FlowGraph()
        self._listeners: list[GraphListener] = []

    @property
    def graph(self) -> FlowGraph:
        """The current snapshot."""
        return self._graph

    # -------------------------------------------------------------------------
    # Subscriptions
    # -------------------------------------------------------------------------

    def subscribe(self, listener: GraphListener) -> Callable[[], None]:
        """Register a listener; returns a function that unregisters it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _emit(self, event: GraphEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("Graph listener failed on %s", event.type.value)

    # -------------------------------------------------------------------------
    # Mutations
    # -------------------------------------------------------------------------

    def commit(self, graph: FlowGraph) -> None:
        """Replace the snapshot wholesale."""
        self._graph = graph
        self._emit(GraphEvent(GraphEventType.GRAPH_REPLACED))

    def create_node(
        self,
        kind: NodeKind,
        position: Point2D | None = None,
        data: Mapping[str, Any] | None = None,
        node_id: str | None = None,
    ) -> Node:
        """Create a node with the kind's default payload and add it."""
        node = Node.create(kind, position, data, node_id)
        self.add_node(node)
        return node

    def add_node(self, node: Node) -> None:
        self._graph = self._graph.add_node(node)
        self._emit(GraphEvent(GraphEventType.NODE_ADDED, node.id))

    def remove_node(self, node_id: str) -> bool:
        """Remove a node and every edge touching it."""
        graph = self._graph.remove_node(node_id)
        if graph is self._graph:
            return False
        self._graph = graph
        self._emit(GraphEvent(GraphEventType.NODE_REMOVED, node_id))
        self._emit(GraphEvent(GraphEventType.EDGES_CHANGED, node_id))
        return True

    def duplicate_node(self, node_id: str) -> Node | None:
        graph, copy = self._graph.duplicate_node(node_id)
        if copy is None:
            return None
        self._graph = graph
        self._emit(GraphEvent(GraphEventType.NODE_ADDED, copy.id))
        return copy

    def patch_node_data(self, node_id: str, partial: Mapping[str, Any]) -> bool:
        """
        Shallow-merge ``partial`` into a node's payload.

        Returns False (and emits nothing) if the node no longer exists.
        """
        graph = apply_patch(self._graph, node_id, partial)
        if graph is self._graph:
            return False
        self._graph = graph

        payload = dict(partial)
        self._emit(GraphEvent(GraphEventType.NODE_PATCHED, node_id, payload))
        if "status" in partial:
            self._emit(GraphEvent(
                GraphEventType.STATUS_CHANGED,
                node_id,
                {"status": partial["status"], "error": partial.get("error")},
            ))
        if RESULT_KEYS.intersection(partial):
            self._emit(GraphEvent(GraphEventType.RESULT_CHANGED, node_id, payload))
        return True

    def connect(self, request: ConnectionRequest, label: str | None = None) -> bool:
        """Add an edge if legal; returns whether the graph changed."""
        graph = connect(self._graph, request, label)
        if graph is self._graph:
            return False
        self._graph = graph
        self._emit(GraphEvent(GraphEventType.EDGES_CHANGED, request.target))
        return True

    def disconnect(self, edge_id: str) -> bool:
        edge = self._graph.get_edge(edge_id)
        if edge is None:
            return False
        self._graph = self._graph.remove_edge(edge_id)
        self._emit(GraphEvent(GraphEventType.EDGES_CHANGED, edge.target))
        return True
