"""
Image Nodes package.

Display, split, crop, grid and frame-extraction nodes.
"""

from ai_flow_studio.nodes.image.transforms import (
    IMAGE_CROP_NODE,
    IMAGE_GRID_NODE,
    IMAGE_NODE,
    IMAGE_SPLIT_MAX_OUTPUTS,
    IMAGE_SPLIT_NODE,
    VIDEO_FRAME_EXTRACT_NODE,
    register_image_nodes,
)

__all__ = [
    "IMAGE_CROP_NODE",
    "IMAGE_GRID_NODE",
    "IMAGE_NODE",
    "IMAGE_SPLIT_MAX_OUTPUTS",
    "IMAGE_SPLIT_NODE",
    "VIDEO_FRAME_EXTRACT_NODE",
    "register_image_nodes",
]
