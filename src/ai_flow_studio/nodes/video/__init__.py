"""
Video Nodes package.

Video provider nodes and the compose node.
"""

from ai_flow_studio.nodes.video.providers import (
    COMPOSE_VIDEO_INPUTS,
    DOUBAO_VIDEO_NODE,
    KLING_VIDEO_NODE,
    SORA2_VIDEO_NODE,
    VIDEO_COMPOSE_NODE,
    VIDU_VIDEO_NODE,
    WAN26_VIDEO_NODE,
    register_video_nodes,
)

__all__ = [
    "COMPOSE_VIDEO_INPUTS",
    "DOUBAO_VIDEO_NODE",
    "KLING_VIDEO_NODE",
    "SORA2_VIDEO_NODE",
    "VIDEO_COMPOSE_NODE",
    "VIDU_VIDEO_NODE",
    "WAN26_VIDEO_NODE",
    "register_video_nodes",
]
