"""
Connections - Legality and capacity rules for edges.

The compatibility table maps every (target kind, target port) pair to the
kind of value it accepts, the node kinds allowed to feed it and its
capacity policy. ``connect`` is the only way edges should be added by
editing code; it never raises and returns the unchanged snapshot when a
candidate is illegal or over capacity.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum, auto

from ai_flow_studio.core.data_types import PortKind
from ai_flow_studio.core.errors import ValidationError
from ai_flow_studio.core.graph import Edge, FlowGraph
from ai_flow_studio.core.node_types import NodeKind, NodeRegistry


logger = logging.getLogger(__name__)


class CapacityMode(Enum):
    """How a port behaves when a new edge arrives."""
    REPLACE_SINGLE = auto()   # Drop existing edges, then insert
    CAPPED_EVICT = auto()     # Evict oldest edges to make room
    CAPPED_REJECT = auto()    # Refuse once full
    APPEND_ORDERED = auto()   # Accept until full, keep insertion order


@dataclass(frozen=True)
class CapacityPolicy:
    mode: CapacityMode
    limit: int = 1

    @classmethod
    def replace_single(cls) -> CapacityPolicy:
        return cls(CapacityMode.REPLACE_SINGLE, 1)

    @classmethod
    def capped_evict(cls, limit: int) -> CapacityPolicy:
        return cls(CapacityMode.CAPPED_EVICT, limit)

    @classmethod
    def capped_reject(cls, limit: int) -> CapacityPolicy:
        return cls(CapacityMode.CAPPED_REJECT, limit)

    @classmethod
    def append_ordered(cls, limit: int) -> CapacityPolicy:
        return cls(CapacityMode.APPEND_ORDERED, limit)


@dataclass(frozen=True)
class PortRule:
    """
    One row of the compatibility table.

    Attributes:
        kind: Kind of value the port accepts
        sources: Node kinds allowed on the other end
        policy: Capacity policy of the port
        allow_collections: Whether collection outputs may connect
        source_ports: If set, only these source port ids are accepted
    """
    kind: PortKind
    sources: frozenset[NodeKind]
    policy: CapacityPolicy
    allow_collections: bool = False
    source_ports: frozenset[str] | None = None


@dataclass(frozen=True)
class ConnectionRequest:
    """A candidate edge that has not been added to a graph yet."""
    source: str
    source_port: str
    target: str
    target_port: str

    @classmethod
    def from_edge(cls, edge: Edge) -> ConnectionRequest:
        return cls(edge.source, edge.source_port, edge.target, edge.target_port)

    def matches(self, edge: Edge) -> bool:
        return (
            edge.source == self.source
            and edge.source_port == self.source_port
            and edge.target == self.target
            and edge.target_port == self.target_port
        )


# Maximum number of images a generate node will accept
MAX_GENERATE_IMAGES = 6

# Maximum number of aggregated prompts / grid images
MAX_APPENDED_INPUTS = 20

TEXT_PRODUCERS = frozenset({
    NodeKind.TEXT_PROMPT,
    NodeKind.PROMPT_AGGREGATE,
    NodeKind.TEXT_NOTE,
    NodeKind.STORYBOARD_SPLIT,
    NodeKind.ANALYSIS,
})

IMAGE_PRODUCERS = frozenset({
    NodeKind.IMAGE,
    NodeKind.IMAGE_SPLIT,
    NodeKind.IMAGE_CROP,
    NodeKind.IMAGE_GRID,
    NodeKind.VIDEO_FRAME_EXTRACT,
    NodeKind.GENERATE,
    NodeKind.GENERATE_PRO,
    NodeKind.GENERATE_4,
    NodeKind.GENERATE_PRO_4,
    NodeKind.GENERATE_REF,
})

VIDEO_PRODUCERS = frozenset({
    NodeKind.KLING_VIDEO,
    NodeKind.VIDU_VIDEO,
    NodeKind.DOUBAO_VIDEO,
    NodeKind.SORA2_VIDEO,
    NodeKind.WAN26_VIDEO,
    NodeKind.VIDEO_COMPOSE,
})

VIDEO_NODE_KINDS = VIDEO_PRODUCERS


def _text(policy: CapacityPolicy | None = None) -> PortRule:
    return PortRule(PortKind.TEXT, TEXT_PRODUCERS, policy or CapacityPolicy.replace_single())


def _image(policy: CapacityPolicy | None = None, allow_collections: bool = False) -> PortRule:
    return PortRule(
        PortKind.IMAGE,
        IMAGE_PRODUCERS,
        policy or CapacityPolicy.replace_single(),
        allow_collections=allow_collections,
    )


def _build_table() -> dict[tuple[NodeKind, str], PortRule]:
    table: dict[tuple[NodeKind, str], PortRule] = {}
    generate_images = CapacityPolicy.capped_reject(MAX_GENERATE_IMAGES)
    appended = CapacityPolicy.append_ordered(MAX_APPENDED_INPUTS)

    for kind in (NodeKind.GENERATE, NodeKind.GENERATE_4, NodeKind.GENERATE_PRO_4):
        table[(kind, "text")] = _text()
        table[(kind, "img")] = _image(generate_images)

    table[(NodeKind.GENERATE_PRO, "text")] = _text(appended)
    table[(NodeKind.GENERATE_PRO, "img")] = _image(generate_images)

    table[(NodeKind.GENERATE_REF, "text")] = _text()
    table[(NodeKind.GENERATE_REF, "image1")] = _image()
    table[(NodeKind.GENERATE_REF, "image2")] = _image()

    table[(NodeKind.ANALYSIS, "img")] = _image()
    table[(NodeKind.IMAGE, "img")] = _image()
    table[(NodeKind.IMAGE_SPLIT, "img")] = _image()
    table[(NodeKind.IMAGE_CROP, "img")] = _image()
    table[(NodeKind.IMAGE_GRID, "img")] = _image(appended, allow_collections=True)

    table[(NodeKind.VIDEO_FRAME_EXTRACT, "video")] = PortRule(
        PortKind.VIDEO, VIDEO_PRODUCERS, CapacityPolicy.replace_single(),
    )

    table[(NodeKind.TEXT_PROMPT, "text")] = _text(appended)
    table[(NodeKind.PROMPT_AGGREGATE, "text")] = _text(appended)
    table[(NodeKind.TEXT_NOTE, "text")] = _text()
    table[(NodeKind.STORYBOARD_SPLIT, "text")] = _text()

    for kind in VIDEO_NODE_KINDS:
        table[(kind, "text")] = _text()

    table[(NodeKind.VIDU_VIDEO, "image")] = _image(CapacityPolicy.capped_evict(7))
    table[(NodeKind.KLING_VIDEO, "image")] = _image(CapacityPolicy.capped_evict(4))
    table[(NodeKind.DOUBAO_VIDEO, "image")] = _image(CapacityPolicy.capped_evict(2))
    table[(NodeKind.SORA2_VIDEO, "image")] = _image(CapacityPolicy.capped_evict(1))
    table[(NodeKind.WAN26_VIDEO, "image")] = _image()

    for index in range(1, 4):
        table[(NodeKind.VIDEO_COMPOSE, f"video-{index}")] = PortRule(
            PortKind.VIDEO,
            VIDEO_PRODUCERS,
            CapacityPolicy.replace_single(),
            source_ports=frozenset({"video"}),
        )

    return table


COMPATIBILITY: dict[tuple[NodeKind, str], PortRule] = _build_table()


def rule_for(kind: NodeKind, port_id: str) -> PortRule | None:
    """Look up the table row for a target port."""
    return COMPATIBILITY.get((kind, port_id))


def input_ports(kind: NodeKind) -> list[str]:
    """All input port ids declared for a node kind, in table order."""
    return [port for (k, port) in COMPATIBILITY if k == kind]


def rejection_reason(graph: FlowGraph, request: ConnectionRequest) -> str | None:
    """
    Explain why a candidate edge is illegal, or return None if it is legal.

    Capacity is not considered here; see ``can_accept_connection``.
    """
    if request.source == request.target:
        return "A node cannot connect to itself"

    source = graph.get_node(request.source)
    target = graph.get_node(request.target)
    if source is None or target is None:
        return "Both endpoints must exist"

    source_type = NodeRegistry.instance().get(source.kind)
    output = source_type.get_output(request.source_port) if source_type else None
    if output is None:
        return f"{source.kind.value} has no output '{request.source_port}'"

    rule = rule_for(target.kind, request.target_port)
    if rule is None:
        return f"{target.kind.value} has no input '{request.target_port}'"

    if source.kind not in rule.sources:
        return f"{target.kind.value}.{request.target_port} does not accept {source.kind.value}"

    if not output.kind.is_compatible_with(rule.kind):
        return (
            f"Cannot connect {output.kind.name.lower()} output "
            f"to {rule.kind.name.lower()} input"
        )

    if output.collection and not rule.allow_collections:
        return f"{target.kind.value}.{request.target_port} accepts single values only"

    if rule.source_ports is not None and request.source_port not in rule.source_ports:
        return f"{target.kind.value}.{request.target_port} does not accept port '{request.source_port}'"

    return None


def is_valid_connection(graph: FlowGraph, request: ConnectionRequest) -> bool:
    """Check node kinds, port kinds and the compatibility table."""
    return rejection_reason(graph, request) is None


def _capacity_reason(graph: FlowGraph, request: ConnectionRequest) -> str | None:
    target = graph.get_node(request.target)
    rule = rule_for(target.kind, request.target_port)
    policy = rule.policy
    if policy.mode in (CapacityMode.CAPPED_REJECT, CapacityMode.APPEND_ORDERED):
        if len(graph.incoming(request.target, request.target_port)) >= policy.limit:
            return (
                f"{target.kind.value}.{request.target_port} accepts at most "
                f"{policy.limit} connections"
            )
    return None


def _is_duplicate(graph: FlowGraph, request: ConnectionRequest) -> bool:
    return any(
        request.matches(edge)
        for edge in graph.incoming(request.target, request.target_port)
    )


def can_accept_connection(graph: FlowGraph, request: ConnectionRequest) -> bool:
    """
    Check legality and capacity together.

    A duplicate of an existing edge is accepted; connecting it is a no-op.
    """
    if rejection_reason(graph, request) is not None:
        return False
    if _is_duplicate(graph, request):
        return True
    return _capacity_reason(graph, request) is None


def _make_room(graph: FlowGraph, request: ConnectionRequest) -> FlowGraph | None:
    """
    Validate a candidate and evict whatever its port policy displaces.

    Returns None when the candidate duplicates an existing edge.
    """
    reason = rejection_reason(graph, request)
    if reason is not None:
        raise ValidationError(reason)

    if _is_duplicate(graph, request):
        return None

    reason = _capacity_reason(graph, request)
    if reason is not None:
        raise ValidationError(reason)

    target = graph.get_node(request.target)
    policy = rule_for(target.kind, request.target_port).policy
    existing = graph.incoming(request.target, request.target_port)

    if policy.mode == CapacityMode.REPLACE_SINGLE:
        graph = graph.remove_edges(e.id for e in existing)
    elif policy.mode == CapacityMode.CAPPED_EVICT and len(existing) >= policy.limit:
        overflow = len(existing) - policy.limit + 1
        # Edges are kept in insertion order, so the head is the oldest
        graph = graph.remove_edges(e.id for e in existing[:overflow])
    return graph


def restore_edge(graph: FlowGraph, edge: Edge) -> FlowGraph:
    """
    Re-add a saved edge under the same rules as a live connection.

    The edge keeps its id and no display data is copied.

    Raises:
        ValidationError: If the edge is illegal, a duplicate, or the port is full
    """
    prepared = _make_room(graph, ConnectionRequest.from_edge(edge))
    if prepared is None:
        raise ValidationError("Duplicate connection")
    return prepared.add_edge(edge)


def connect_or_raise(
    graph: FlowGraph,
    request: ConnectionRequest,
    label: str | None = None,
) -> FlowGraph:
    """
    Add an edge, applying the target port's capacity policy.

    Raises:
        ValidationError: If the candidate is illegal or the port is full
    """
    prepared = _make_room(graph, request)
    if prepared is None:
        return graph
    graph = prepared
    target = graph.get_node(request.target)

    edge = Edge.create(
        request.source,
        request.source_port,
        request.target,
        request.target_port,
        label=label,
    )
    graph = graph.add_edge(edge)

    if target.kind == NodeKind.IMAGE:
        graph = _copy_image_into_display(graph, request)

    return graph


def connect(
    graph: FlowGraph,
    request: ConnectionRequest,
    label: str | None = None,
) -> FlowGraph:
    """
    Add an edge if legal, returning the same snapshot when it is not.
    """
    try:
        return connect_or_raise(graph, request, label)
    except ValidationError as e:
        logger.debug("Rejected connection %s: %s", request, e)
        return graph


def _copy_image_into_display(graph: FlowGraph, request: ConnectionRequest) -> FlowGraph:
    """Show the source's current image in a display node right away."""
    from ai_flow_studio.core.resolver import stored_image_ref

    source = graph.get_node(request.source)
    ref = stored_image_ref(source, request.source_port)
    if ref is None:
        return graph
    return graph.patch_node_data(request.target, {"imageData": ref.value})


def find_violations(graph: FlowGraph) -> list[str]:
    """
    Check a whole snapshot against the edge invariants.

    Returns a list of human-readable problems; empty means the graph is
    consistent.
    """
    problems: list[str] = []
    seen: list[ConnectionRequest] = []
    counts: dict[tuple[str, str], int] = {}

    for edge in graph.edges:
        request = ConnectionRequest.from_edge(edge)
        reason = rejection_reason(graph, request)
        if reason is not None:
            problems.append(f"Edge {edge.id}: {reason}")
            continue
        if request in seen:
            problems.append(f"Edge {edge.id}: duplicate connection")
        seen.append(request)
        key = (edge.target, edge.target_port)
        counts[key] = counts.get(key, 0) + 1

    for (target_id, port), count in counts.items():
        target = graph.get_node(target_id)
        limit = rule_for(target.kind, port).policy.limit
        if count > limit:
            problems.append(
                f"Node {target_id}: {count} edges on '{port}' exceeds capacity {limit}"
            )

    return problems
