"""
Core module - Graph model, connection rules, resolution, and persistence.

This module provides the fundamental building blocks for AI Flow Studio:
- Graph: Immutable node/edge snapshots
- Node Types: The closed set of node kinds and their registry
- Connections: The compatibility table and capacity policies
- Resolver: Effective inputs of a node
- Store: The mutable holder of the current snapshot
- Workspace: JSON save/load

The execution orchestrator and task poller live in ``core.execution`` and
``core.polling``; import them from there.
"""

from ai_flow_studio.core.errors import (
    BackendError,
    FlowError,
    MissingInputError,
    PartialBatchFailure,
    TaskTimeoutError,
    UpstreamResolutionError,
    ValidationError,
)

from ai_flow_studio.core.data_types import (
    ImageData,
    MediaKind,
    MediaRef,
    PortKind,
    normalize_media_ref,
)

from ai_flow_studio.core.node_types import (
    NodeCategory,
    NodeKind,
    NodeRegistry,
    NodeType,
    OutputDefinition,
    register_node,
)

from ai_flow_studio.core.graph import (
    Direction,
    Edge,
    EdgeId,
    FlowGraph,
    Node,
    NodeId,
    NodeStatus,
    Point2D,
    apply_patch,
    new_edge_id,
    new_node_id,
)

from ai_flow_studio.core.connections import (
    COMPATIBILITY,
    CapacityMode,
    CapacityPolicy,
    ConnectionRequest,
    PortRule,
    can_accept_connection,
    connect,
    connect_or_raise,
    restore_edge,
    find_violations,
    is_valid_connection,
)

from ai_flow_studio.core.settings import EngineSettings

from ai_flow_studio.core.store import GraphEvent, GraphEventType, GraphStore

from ai_flow_studio.core.workspace import (
    graph_from_dict,
    graph_to_dict,
    load_workspace,
    save_workspace,
)


__all__ = [
    # errors.py
    "BackendError",
    "FlowError",
    "MissingInputError",
    "PartialBatchFailure",
    "TaskTimeoutError",
    "UpstreamResolutionError",
    "ValidationError",
    # data_types.py
    "ImageData",
    "MediaKind",
    "MediaRef",
    "PortKind",
    "normalize_media_ref",
    # node_types.py
    "NodeCategory",
    "NodeKind",
    "NodeRegistry",
    "NodeType",
    "OutputDefinition",
    "register_node",
    # graph.py
    "Direction",
    "Edge",
    "EdgeId",
    "FlowGraph",
    "Node",
    "NodeId",
    "NodeStatus",
    "Point2D",
    "apply_patch",
    "new_edge_id",
    "new_node_id",
    # connections.py
    "COMPATIBILITY",
    "CapacityMode",
    "CapacityPolicy",
    "ConnectionRequest",
    "PortRule",
    "can_accept_connection",
    "connect",
    "connect_or_raise",
    "restore_edge",
    "find_violations",
    "is_valid_connection",
    # settings.py
    "EngineSettings",
    # store.py
    "GraphEvent",
    "GraphEventType",
    "GraphStore",
    # workspace.py
    "graph_from_dict",
    "graph_to_dict",
    "load_workspace",
    "save_workspace",
]
