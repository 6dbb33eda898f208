"""
Generation Nodes - Nodes that call a generation backend for images or text.

Single-output nodes dispatch to create/edit/blend by the number of
connected images. Multi-output nodes run a fixed number of slots and
expose one output port per slot.
"""

from __future__ import annotations

from ai_flow_studio.core.data_types import PortKind
from ai_flow_studio.core.node_types import (
    NodeCategory,
    NodeKind,
    NodeType,
    OutputDefinition,
    NodeRegistry,
)


# Number of slots on multi-output generate nodes
BATCH_SLOTS = 4


def _image_output() -> OutputDefinition:
    return OutputDefinition(
        name="img",
        label="Image",
        kind=PortKind.IMAGE,
        description="Generated image",
    )


def _batch_output() -> OutputDefinition:
    return OutputDefinition(
        name="img",
        label="Image",
        kind=PortKind.IMAGE,
        count=BATCH_SLOTS,
        description="Image generated by slot N",
    )


def _generation_defaults(**extra) -> dict:
    defaults = {
        "status": "idle",
        "error": None,
        "imageData": None,
        "model": None,
        "aspectRatio": None,
        "imageSize": None,
        "history": [],
    }
    defaults.update(extra)
    return defaults


GENERATE_NODE = NodeType(
    kind=NodeKind.GENERATE,
    name="Generate",
    description="Generate, edit or blend images from a prompt",
    category=NodeCategory.GENERATION,
    outputs=[_image_output()],
    defaults=_generation_defaults(presetPrompt=""),
    color="#2563eb",
)


GENERATE_PRO_NODE = NodeType(
    kind=NodeKind.GENERATE_PRO,
    name="Generate (Pro)",
    description="Generate from several aggregated prompts",
    category=NodeCategory.GENERATION,
    outputs=[_image_output()],
    defaults=_generation_defaults(),
    color="#2563eb",
)


GENERATE_4_NODE = NodeType(
    kind=NodeKind.GENERATE_4,
    name="Generate x4",
    description="Generate up to four variations one after another",
    category=NodeCategory.GENERATION,
    outputs=[_batch_output()],
    defaults=_generation_defaults(count=BATCH_SLOTS, images=[]),
    color="#2563eb",
)


GENERATE_PRO_4_NODE = NodeType(
    kind=NodeKind.GENERATE_PRO_4,
    name="Generate x4 (Pro)",
    description="Generate four variations concurrently",
    category=NodeCategory.GENERATION,
    outputs=[_batch_output()],
    defaults=_generation_defaults(images=[]),
    color="#2563eb",
)


GENERATE_REF_NODE = NodeType(
    kind=NodeKind.GENERATE_REF,
    name="Reference Generate",
    description="Generate from a reference image and a subject image",
    category=NodeCategory.GENERATION,
    outputs=[_image_output()],
    defaults=_generation_defaults(),
    color="#2563eb",
)


ANALYSIS_NODE = NodeType(
    kind=NodeKind.ANALYSIS,
    name="Analyze Image",
    description="Describe an image with a vision model",
    category=NodeCategory.GENERATION,
    outputs=[
        OutputDefinition(
            name="text",
            label="Analysis",
            kind=PortKind.TEXT,
            description="Model response",
        ),
    ],
    defaults={
        "status": "idle",
        "error": None,
        "prompt": "Describe this image in detail.",
        "text": "",
        "model": None,
    },
    color="#7c3aed",
)


def register_generation_nodes() -> None:
    """Register all generation node types."""
    registry = NodeRegistry()
    registry.register(GENERATE_NODE)
    registry.register(GENERATE_PRO_NODE)
    registry.register(GENERATE_4_NODE)
    registry.register(GENERATE_PRO_4_NODE)
    registry.register(GENERATE_REF_NODE)
    registry.register(ANALYSIS_NODE)
