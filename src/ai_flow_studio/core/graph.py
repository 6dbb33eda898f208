"""
Flow Graph Model - Immutable snapshots of nodes and edges.

This module defines the fundamental building blocks:
- Node: A typed unit with a position and a data payload
- Edge: A directed link from a source output port to a target input port
- FlowGraph: A copy-on-write snapshot of nodes and edges

Every mutation returns a new FlowGraph and leaves the receiver untouched,
so a resolution that started on one snapshot keeps a consistent view while
other runs commit newer snapshots.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from types import MappingProxyType
from typing import Any, Iterable, Mapping, NewType
from uuid import uuid4

from ai_flow_studio.core.node_types import NodeKind


# Type aliases for clarity
NodeId = NewType("NodeId", str)
EdgeId = NewType("EdgeId", str)


def new_node_id(kind: NodeKind | None = None) -> NodeId:
    """Generate a new unique node ID."""
    prefix = kind.value if kind else "node"
    return NodeId(f"{prefix}-{uuid4().hex[:12]}")


def new_edge_id() -> EdgeId:
    """Generate a new unique edge ID."""
    return EdgeId(f"edge-{uuid4().hex[:12]}")


class NodeStatus(str, Enum):
    """Run status stored in ``node.data["status"]``."""
    IDLE = "idle"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class Direction(Enum):
    """Which side of a node an edge touches."""
    IN = "in"
    OUT = "out"
    BOTH = "both"


@dataclass(frozen=True)
class Point2D:
    """2D point for node positioning on the canvas."""
    x: float = 0.0
    y: float = 0.0

    def __add__(self, other: Point2D) -> Point2D:
        return Point2D(self.x + other.x, self.y + other.y)

    def __sub__(self, other: Point2D) -> Point2D:
        return Point2D(self.x - other.x, self.y - other.y)


def _freeze(data: Mapping[str, Any] | None) -> Mapping[str, Any]:
    return MappingProxyType(dict(data or {}))


@dataclass(frozen=True)
class Node:
    """
    A single node in the flow graph.

    The payload is a read-only mapping; use FlowGraph.patch_node_data
    (or apply_patch) to obtain a snapshot with an updated payload.
    """
    id: NodeId
    kind: NodeKind
    position: Point2D = field(default_factory=Point2D)
    data: Mapping[str, Any] = field(default_factory=lambda: _freeze(None))

    def __post_init__(self) -> None:
        if not isinstance(self.data, MappingProxyType):
            object.__setattr__(self, "data", _freeze(self.data))

    @classmethod
    def create(
        cls,
        kind: NodeKind,
        position: Point2D | None = None,
        data: Mapping[str, Any] | None = None,
        node_id: str | None = None,
    ) -> Node:
        """Factory method to create a node with the kind's default payload."""
        from ai_flow_studio.core.node_types import NodeRegistry

        payload = NodeRegistry.instance().default_data(kind)
        payload.update(data or {})
        return cls(
            id=NodeId(node_id) if node_id else new_node_id(kind),
            kind=kind,
            position=position or Point2D(),
            data=payload,
        )

    @property
    def status(self) -> NodeStatus:
        raw = self.data.get("status", NodeStatus.IDLE.value)
        try:
            return NodeStatus(raw)
        except ValueError:
            return NodeStatus.IDLE

    @property
    def error(self) -> str | None:
        return self.data.get("error")

    def get(self, key: str, default: Any = None) -> Any:
        """Get a payload value."""
        return self.data.get(key, default)

    def with_data(self, partial: Mapping[str, Any]) -> Node:
        """Return a copy with ``partial`` shallow-merged into the payload."""
        merged = dict(self.data)
        merged.update(partial)
        return replace(self, data=_freeze(merged))


@dataclass(frozen=True)
class Edge:
    """
    A directed connection between two nodes.

    Connects an output port of the source to an input port of the target.
    """
    id: EdgeId
    source: NodeId
    source_port: str
    target: NodeId
    target_port: str
    label: str | None = None

    @classmethod
    def create(
        cls,
        source: str,
        source_port: str,
        target: str,
        target_port: str,
        label: str | None = None,
    ) -> Edge:
        """Factory method to create a new edge."""
        return cls(
            id=new_edge_id(),
            source=NodeId(source),
            source_port=source_port,
            target=NodeId(target),
            target_port=target_port,
            label=label,
        )

    def same_endpoints(self, other: Edge) -> bool:
        return (
            self.source == other.source
            and self.source_port == other.source_port
            and self.target == other.target
            and self.target_port == other.target_port
        )


class FlowGraph:
    """
    An immutable snapshot of the flow graph.

    Nodes keep insertion order; edges are a tuple in insertion order, which
    is also the order used for multi-edge resolution and eviction.
    """

    __slots__ = ("_nodes", "_edges")

    def __init__(
        self,
        nodes: Iterable[Node] = (),
        edges: Iterable[Edge] = (),
    ):
        self._nodes: Mapping[NodeId, Node] = MappingProxyType({n.id: n for n in nodes})
        self._edges: tuple[Edge, ...] = tuple(edges)

    @classmethod
    def _from_parts(cls, nodes: dict[NodeId, Node], edges: tuple[Edge, ...]) -> FlowGraph:
        graph = cls.__new__(cls)
        graph._nodes = MappingProxyType(nodes)
        graph._edges = edges
        return graph

    # --- Read access ---

    @property
    def nodes(self) -> Mapping[NodeId, Node]:
        """All nodes (read-only view)."""
        return self._nodes

    @property
    def edges(self) -> tuple[Edge, ...]:
        """All edges in insertion order."""
        return self._edges

    def get_node(self, node_id: str) -> Node | None:
        """Get a node by ID."""
        return self._nodes.get(NodeId(node_id))

    def get_edge(self, edge_id: str) -> Edge | None:
        for edge in self._edges:
            if edge.id == edge_id:
                return edge
        return None

    def edges_touching(
        self,
        node_id: str,
        direction: Direction = Direction.BOTH,
        port_id: str | None = None,
    ) -> list[Edge]:
        """
        Get edges attached to a node.

        Args:
            node_id: Node to inspect
            direction: IN (node is target), OUT (node is source) or BOTH
            port_id: Restrict to this port on the node's side of the edge
        """
        result: list[Edge] = []
        for edge in self._edges:
            if direction in (Direction.IN, Direction.BOTH) and edge.target == node_id:
                if port_id is None or edge.target_port == port_id:
                    result.append(edge)
                    continue
            if direction in (Direction.OUT, Direction.BOTH) and edge.source == node_id:
                if port_id is None or edge.source_port == port_id:
                    result.append(edge)
        return result

    def incoming(self, node_id: str, port_id: str | None = None) -> list[Edge]:
        """Edges terminating on a node (optionally on one port), in edge order."""
        return self.edges_touching(node_id, Direction.IN, port_id)

    def outgoing(self, node_id: str, port_id: str | None = None) -> list[Edge]:
        """Edges leaving a node (optionally from one port), in edge order."""
        return self.edges_touching(node_id, Direction.OUT, port_id)

    # --- Copy-on-write mutations ---

    def add_node(self, node: Node) -> FlowGraph:
        """Return a snapshot that also contains ``node`` (replacing same id)."""
        nodes = dict(self._nodes)
        nodes[node.id] = node
        return FlowGraph._from_parts(nodes, self._edges)

    def remove_node(self, node_id: str) -> FlowGraph:
        """
        Return a snapshot without the node and every edge touching it.

        Removing an unknown node returns the same snapshot.
        """
        if node_id not in self._nodes:
            return self
        nodes = dict(self._nodes)
        del nodes[NodeId(node_id)]
        edges = tuple(
            e for e in self._edges
            if e.source != node_id and e.target != node_id
        )
        return FlowGraph._from_parts(nodes, edges)

    def add_edge(self, edge: Edge) -> FlowGraph:
        """
        Append an edge without policy checks.

        Callers that want validation and capacity handling use
        ``core.connections.connect``.
        """
        return FlowGraph._from_parts(dict(self._nodes), self._edges + (edge,))

    def remove_edge(self, edge_id: str) -> FlowGraph:
        """Return a snapshot without the given edge."""
        edges = tuple(e for e in self._edges if e.id != edge_id)
        if len(edges) == len(self._edges):
            return self
        return FlowGraph._from_parts(dict(self._nodes), edges)

    def remove_edges(self, edge_ids: Iterable[str]) -> FlowGraph:
        drop = set(edge_ids)
        if not drop:
            return self
        edges = tuple(e for e in self._edges if e.id not in drop)
        return FlowGraph._from_parts(dict(self._nodes), edges)

    def patch_node_data(self, node_id: str, partial: Mapping[str, Any]) -> FlowGraph:
        """
        Shallow-merge ``partial`` into a node's payload.

        A patch for a node that no longer exists is a no-op, which is what
        makes status writes from a run on a deleted node harmless.
        """
        node = self._nodes.get(NodeId(node_id))
        if node is None:
            return self
        nodes = dict(self._nodes)
        nodes[node.id] = node.with_data(partial)
        return FlowGraph._from_parts(nodes, self._edges)

    def move_node(self, node_id: str, position: Point2D) -> FlowGraph:
        node = self._nodes.get(NodeId(node_id))
        if node is None:
            return self
        return self.add_node(replace(node, position=position))

    def duplicate_node(
        self,
        node_id: str,
        offset: Point2D = Point2D(40.0, 40.0),
    ) -> tuple[FlowGraph, Node | None]:
        """
        Copy a node (payload included, run state reset) next to the original.

        Edges are not copied.
        """
        node = self._nodes.get(NodeId(node_id))
        if node is None:
            return self, None
        data = dict(node.data)
        if "status" in data:
            data["status"] = NodeStatus.IDLE.value
        data.pop("error", None)
        data.pop("taskId", None)
        copy = Node(
            id=new_node_id(node.kind),
            kind=node.kind,
            position=node.position + offset,
            data=data,
        )
        return self.add_node(copy), copy

    # --- Utility ---

    def __len__(self) -> int:
        """Return the number of nodes."""
        return len(self._nodes)

    def __contains__(self, node_id: object) -> bool:
        """Check if a node exists in the graph."""
        return node_id in self._nodes

    def __repr__(self) -> str:
        return f"FlowGraph(nodes={len(self._nodes)}, edges={len(self._edges)})"


def apply_patch(graph: FlowGraph, node_id: str, partial: Mapping[str, Any]) -> FlowGraph:
    """Reducer form of ``FlowGraph.patch_node_data``."""
    return graph.patch_node_data(node_id, partial)
