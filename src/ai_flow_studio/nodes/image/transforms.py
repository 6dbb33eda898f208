"""
Image Nodes - Display nodes and local image transforms.

The display node holds a single image reference. Split and crop nodes
derive their outputs lazily from a rectangle over an upstream image;
the grid node stores a pre-composited output; frame extraction exposes
the frames of an upstream video one at a time or as a collection.
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


# Maximum number of outputs on a split node
IMAGE_SPLIT_MAX_OUTPUTS = 50


IMAGE_NODE = NodeType(
    kind=NodeKind.IMAGE,
    name="Image",
    description="Displays an uploaded or upstream image",
    category=NodeCategory.IMAGE,
    outputs=[
        OutputDefinition(name="img", label="Image", kind=PortKind.IMAGE),
    ],
    defaults={"imageData": None, "imageUrl": None, "label": "Image"},
)


IMAGE_SPLIT_NODE = NodeType(
    kind=NodeKind.IMAGE_SPLIT,
    name="Image Split",
    description="Cut an image into a grid of regions",
    category=NodeCategory.TRANSFORM,
    outputs=[
        OutputDefinition(
            name="image",
            label="Region",
            kind=PortKind.IMAGE,
            count=IMAGE_SPLIT_MAX_OUTPUTS,
            description="Region N of the split",
        ),
    ],
    defaults={
        "status": "idle",
        "inputImage": None,
        "splitRects": [],
        "sourceWidth": None,
        "sourceHeight": None,
        "outputCount": 9,
    },
)


IMAGE_CROP_NODE = NodeType(
    kind=NodeKind.IMAGE_CROP,
    name="Image Crop",
    description="Crop a rectangle out of an upstream image",
    category=NodeCategory.TRANSFORM,
    outputs=[
        OutputDefinition(name="image", label="Cropped", kind=PortKind.IMAGE),
    ],
    defaults={
        "inputImage": None,
        "cropRect": None,
        "sourceWidth": None,
        "sourceHeight": None,
        "imageData": None,
    },
)


IMAGE_GRID_NODE = NodeType(
    kind=NodeKind.IMAGE_GRID,
    name="Image Grid",
    description="Compose connected images into a square grid",
    category=NodeCategory.TRANSFORM,
    outputs=[
        OutputDefinition(name="img", label="Grid", kind=PortKind.IMAGE),
    ],
    defaults={
        "status": "idle",
        "outputImage": None,
        "backgroundColor": "#ffffff",
        "padding": 0,
        "gap": 16,
    },
)


VIDEO_FRAME_EXTRACT_NODE = NodeType(
    kind=NodeKind.VIDEO_FRAME_EXTRACT,
    name="Frame Extract",
    description="Frames sampled from an upstream video",
    category=NodeCategory.TRANSFORM,
    outputs=[
        OutputDefinition(
            name="image",
            label="Selected Frame",
            kind=PortKind.IMAGE,
        ),
        OutputDefinition(
            name="images",
            label="All Frames",
            kind=PortKind.IMAGE,
            collection=True,
        ),
    ],
    defaults={"videoUrl": None, "frames": [], "selectedFrameIndex": 1},
)


def register_image_nodes() -> None:
    """Register display and transform node types."""
    registry = NodeRegistry()
    registry.register(IMAGE_NODE)
    registry.register(IMAGE_SPLIT_NODE)
    registry.register(IMAGE_CROP_NODE)
    registry.register(IMAGE_GRID_NODE)
    registry.register(VIDEO_FRAME_EXTRACT_NODE)
