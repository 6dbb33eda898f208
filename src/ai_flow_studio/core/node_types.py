"""
Node Type System - Definitions and registry for node types.

This module defines how node types are specified:
- NodeKind: Closed set of node kinds known to the engine
- OutputDefinition: Describes an output port (possibly indexed)
- NodeType: Complete definition of a node type
- NodeRegistry: Global registry of available node types

Input ports are not declared here; they live in the compatibility table
in ``core.connections`` because their legality depends on the source.
"""

from __future__ import annotations

import copy
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from ai_flow_studio.core.data_types import PortKind


class NodeKind(str, Enum):
    """Every node kind the engine understands."""

    # Text
    TEXT_PROMPT = "textPrompt"
    PROMPT_AGGREGATE = "promptAggregate"
    TEXT_NOTE = "textNote"
    STORYBOARD_SPLIT = "storyboardSplit"

    # Image display and transforms
    IMAGE = "image"
    IMAGE_SPLIT = "imageSplit"
    IMAGE_CROP = "imageCrop"
    IMAGE_GRID = "imageGrid"
    VIDEO_FRAME_EXTRACT = "videoFrameExtract"

    # Image generation
    GENERATE = "generate"
    GENERATE_PRO = "generatePro"
    GENERATE_4 = "generate4"
    GENERATE_PRO_4 = "generatePro4"
    GENERATE_REF = "generateRef"
    ANALYSIS = "analysis"

    # Video generation
    KLING_VIDEO = "klingVideo"
    VIDU_VIDEO = "viduVideo"
    DOUBAO_VIDEO = "doubaoVideo"
    SORA2_VIDEO = "sora2Video"
    WAN26_VIDEO = "wan26Video"
    VIDEO_COMPOSE = "videoCompose"

    @classmethod
    def parse(cls, value: str) -> NodeKind:
        """Look up a kind by its wire name, raising ValueError if unknown."""
        return cls(value)


class NodeCategory(Enum):
    """Categories for organizing nodes in the library."""
    TEXT = "text"
    IMAGE = "image"
    TRANSFORM = "transform"
    GENERATION = "generation"
    VIDEO = "video"


_INDEXED_RE = re.compile(r"^(?P<name>[A-Za-z]+)(?P<index>\d+)$")


@dataclass
class OutputDefinition:
    """
    Definition of an output port on a node.

    Attributes:
        name: Port identifier, or the prefix for indexed ports
        label: Display label
        kind: Kind of value produced
        count: Number of indexed ports (``name1..nameN``); 1 means a plain port
        collection: True when the port carries a list of values
    """
    name: str
    label: str
    kind: PortKind
    count: int = 1
    collection: bool = False
    description: str = ""

    @property
    def indexed(self) -> bool:
        return self.count > 1

    def port_ids(self) -> list[str]:
        """All concrete port ids exposed by this definition."""
        if not self.indexed:
            return [self.name]
        return [f"{self.name}{i}" for i in range(1, self.count + 1)]

    def index_of(self, port_id: str) -> int | None:
        """
        Return the 1-based index a port id addresses, or None if no match.

        Plain ports return 1 when the id equals the name.
        """
        if not self.indexed:
            return 1 if port_id == self.name else None
        match = _INDEXED_RE.match(port_id)
        if not match or match.group("name") != self.name:
            return None
        index = int(match.group("index"))
        return index if 1 <= index <= self.count else None


def port_index(port_id: str, default: int = 1) -> int:
    """Numeric suffix of an indexed port id (``img3`` -> 3)."""
    match = _INDEXED_RE.match(port_id or "")
    return int(match.group("index")) if match else default


@dataclass
class NodeType:
    """
    Complete definition of a node type.

    NodeTypes are templates: they give a kind its display name, output
    ports and the default payload a freshly created node starts with.
    """
    kind: NodeKind
    name: str
    category: NodeCategory
    description: str = ""

    outputs: list[OutputDefinition] = field(default_factory=list)
    defaults: dict[str, Any] = field(default_factory=dict)

    # UI hints
    color: str = "#4a5568"

    @property
    def id(self) -> str:
        return self.kind.value

    def get_output(self, port_id: str) -> OutputDefinition | None:
        """Get the output definition that exposes ``port_id``."""
        for out in self.outputs:
            if out.index_of(port_id) is not None:
                return out
        return None

    def has_output(self, port_id: str) -> bool:
        return self.get_output(port_id) is not None

    def produces(self, kind: PortKind) -> bool:
        return any(out.kind == kind for out in self.outputs)

    def default_data(self) -> dict[str, Any]:
        """A fresh deep copy of the default payload."""
        return copy.deepcopy(self.defaults)


class NodeRegistry:
    """
    Global registry of available node types.

    The built-in catalog (``ai_flow_studio.nodes``) is loaded the first
    time the registry is requested.
    """

    _instance: NodeRegistry | None = None

    def __new__(cls) -> NodeRegistry:
        """Singleton pattern."""
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._types = {}
            cls._instance._loaded = False
        return cls._instance

    @classmethod
    def instance(cls) -> NodeRegistry:
        """Get the singleton instance, loading the built-in catalog once."""
        registry = cls()
        if not registry._loaded:
            registry._loaded = True
            from ai_flow_studio.nodes import register_all_nodes
            register_all_nodes()
        return registry

    def register(self, node_type: NodeType) -> None:
        """Register a node type."""
        self._types[node_type.kind] = node_type

    def get(self, kind: NodeKind | str) -> NodeType | None:
        """Get a node type by kind."""
        try:
            return self._types.get(NodeKind(kind))
        except ValueError:
            return None

    def get_all(self) -> list[NodeType]:
        """Get all registered node types."""
        return list(self._types.values())

    def list_by_category(self, category: NodeCategory) -> list[NodeType]:
        """Get all node types in a category."""
        return [t for t in self._types.values() if t.category == category]

    def kinds_producing(self, kind: PortKind) -> frozenset[NodeKind]:
        """Node kinds with at least one output of the given kind."""
        return frozenset(t.kind for t in self._types.values() if t.produces(kind))

    def default_data(self, kind: NodeKind) -> dict[str, Any]:
        node_type = self.get(kind)
        return node_type.default_data() if node_type else {}

    def __len__(self) -> int:
        return len(self._types)

    def __contains__(self, kind: object) -> bool:
        return kind in self._types


def register_node(node_type: NodeType) -> NodeType:
    """Register a node type with the global registry."""
    NodeRegistry().register(node_type)
    return node_type
