"""
Nodes package - The built-in node catalog.

This package contains node type definitions organized by category:
- text: Prompt, aggregate prompt, note, storyboard split
- image: Display, split, crop, grid, frame extraction
- generation: Generate variants and image analysis
- video: Video provider nodes and compose
"""

from ai_flow_studio.nodes.generation import register_generation_nodes
from ai_flow_studio.nodes.image import register_image_nodes
from ai_flow_studio.nodes.text import register_text_nodes
from ai_flow_studio.nodes.video import register_video_nodes


def register_all_nodes() -> None:
    """Register all built-in nodes."""
    register_text_nodes()
    register_image_nodes()
    register_generation_nodes()
    register_video_nodes()


__all__ = [
    "register_all_nodes",
]
