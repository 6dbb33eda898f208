"""
Workspace Persistence - Save and load flow graphs to/from disk.

This module provides functions to serialize and deserialize flow graphs
to a JSON format for workspace persistence. Node payloads are stored as-is,
so transient fields (status, error, task ids) survive a round trip.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any

from ai_flow_studio.core.connections import restore_edge
from ai_flow_studio.core.errors import ValidationError
from ai_flow_studio.core.graph import (
    Edge,
    EdgeId,
    FlowGraph,
    Node,
    NodeId,
    Point2D,
    new_edge_id,
)
from ai_flow_studio.core.node_types import NodeKind


logger = logging.getLogger(__name__)


WORKSPACE_VERSION = 1

# Workspace storage directory
WORKSPACE_DIR = Path.home() / ".local" / "share" / "ai_flow_studio" / "workspaces"


def get_workspace_dir() -> Path:
    """Get the workspace storage directory, creating if needed."""
    WORKSPACE_DIR.mkdir(parents=True, exist_ok=True)
    return WORKSPACE_DIR


def graph_to_dict(graph: FlowGraph) -> dict[str, Any]:
    """Convert a snapshot to a JSON-ready dict."""
    nodes = [
        {
            "id": node.id,
            "type": node.kind.value,
            "position": {"x": node.position.x, "y": node.position.y},
            "data": dict(node.data),
        }
        for node in graph.nodes.values()
    ]
    edges = []
    for edge in graph.edges:
        item = {
            "id": edge.id,
            "source": edge.source,
            "sourceHandle": edge.source_port,
            "target": edge.target,
            "targetHandle": edge.target_port,
        }
        if edge.label:
            item["label"] = edge.label
        edges.append(item)

    return {"version": WORKSPACE_VERSION, "nodes": nodes, "edges": edges}


def graph_from_dict(data: dict[str, Any]) -> FlowGraph:
    """
    Rebuild a snapshot from ``graph_to_dict`` output.

    Payloads are merged over each kind's defaults. Edges go back in
    through the live connection rules, and any edge those rules refuse is
    dropped with a warning.

    Raises:
        ValueError: If the data is not a workspace or names an unknown kind
    """
    if not isinstance(data, dict) or "nodes" not in data:
        raise ValueError("Invalid workspace format: missing 'nodes'")

    nodes: list[Node] = []
    for item in data.get("nodes", []):
        try:
            kind = NodeKind(item["type"])
        except KeyError:
            raise ValueError(f"Node without a type: {item.get('id')}") from None
        except ValueError:
            raise ValueError(f"Unknown node type: {item['type']}") from None

        pos = item.get("position") or {}
        nodes.append(Node.create(
            kind,
            position=Point2D(float(pos.get("x", 0.0)), float(pos.get("y", 0.0))),
            data=item.get("data") or {},
            node_id=item["id"],
        ))

    known = {n.id for n in nodes}
    graph = FlowGraph(nodes)
    for item in data.get("edges", []):
        source, target = item.get("source"), item.get("target")
        if source not in known or target not in known:
            logger.warning(
                "Dropping edge %s: endpoint missing (%s -> %s)",
                item.get("id"), source, target,
            )
            continue
        edge = Edge(
            id=EdgeId(item["id"]) if item.get("id") else new_edge_id(),
            source=NodeId(source),
            source_port=item.get("sourceHandle") or "",
            target=NodeId(target),
            target_port=item.get("targetHandle") or "",
            label=item.get("label"),
        )
        before = len(graph.edges)
        try:
            graph = restore_edge(graph, edge)
        except ValidationError as e:
            logger.warning("Dropping edge %s: %s", edge.id, e)
            continue
        if len(graph.edges) <= before:
            logger.warning(
                "Edge %s displaced earlier edges on %s.%s",
                edge.id, edge.target, edge.target_port,
            )

    return graph


def save_workspace(
    graph: FlowGraph,
    path: Path | None = None,
    name: str = "workspace",
) -> Path:
    """
    Save a workspace to disk.

    Args:
        graph: The snapshot to save
        path: Optional specific path, otherwise uses default location
        name: Workspace name (used for filename if path not specified)

    Returns:
        Path where workspace was saved
    """
    workspace_data = graph_to_dict(graph)
    workspace_data["name"] = name
    workspace_data["saved_at"] = datetime.now().isoformat()

    if path is None:
        path = get_workspace_dir() / f"{name}.json"

    with open(path, "w", encoding="utf-8") as f:
        json.dump(workspace_data, f, indent=2)

    logger.debug("Saved workspace with %d nodes to %s", len(graph), path)
    return path


def load_workspace(path: Path) -> FlowGraph:
    """
    Load a workspace from disk.

    Raises:
        FileNotFoundError: If workspace file doesn't exist
        ValueError: If workspace format is invalid
    """
    if not path.exists():
        raise FileNotFoundError(f"Workspace not found: {path}")

    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)

    if "version" not in data:
        raise ValueError(f"Invalid workspace format: {path}")

    return graph_from_dict(data)
