"""
Video Nodes - Nodes that submit asynchronous video generation jobs.

One node kind per video provider, plus the compose node that stitches
up to three upstream clips together.
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


# Number of video inputs on the compose node (video-1..video-3)
COMPOSE_VIDEO_INPUTS = 3


def _video_defaults(**extra) -> dict:
    defaults = {
        "status": "idle",
        "error": None,
        "prompt": "",
        "videoUrl": None,
        "thumbnail": None,
        "taskId": None,
        "history": [],
        "videoVersion": 0,
        "duration": 5,
        "aspectRatio": "16:9",
    }
    defaults.update(extra)
    return defaults


def _video_node(kind: NodeKind, name: str, description: str, **extra) -> NodeType:
    return NodeType(
        kind=kind,
        name=name,
        description=description,
        category=NodeCategory.VIDEO,
        outputs=[
            OutputDefinition(
                name="video",
                label="Video",
                kind=PortKind.VIDEO,
                description="Generated clip",
            ),
        ],
        defaults=_video_defaults(**extra),
        color="#db2777",
    )


KLING_VIDEO_NODE = _video_node(
    NodeKind.KLING_VIDEO, "Kling", "Kling text/image to video",
    mode="std",
)

VIDU_VIDEO_NODE = _video_node(
    NodeKind.VIDU_VIDEO, "Vidu", "Vidu reference-to-video",
    resolution="720p",
)

DOUBAO_VIDEO_NODE = _video_node(
    NodeKind.DOUBAO_VIDEO, "Doubao", "Doubao Seedance first/last frame video",
    resolution="720p",
)

SORA2_VIDEO_NODE = _video_node(
    NodeKind.SORA2_VIDEO, "Sora 2", "Sora 2 text/image to video",
    duration=10,
)

WAN26_VIDEO_NODE = _video_node(
    NodeKind.WAN26_VIDEO, "Wan 2.6", "Wan 2.6 image to video",
)

VIDEO_COMPOSE_NODE = _video_node(
    NodeKind.VIDEO_COMPOSE, "Video Compose", "Reference-to-video from up to three clips",
)


def register_video_nodes() -> None:
    """Register all video node types."""
    registry = NodeRegistry()
    registry.register(KLING_VIDEO_NODE)
    registry.register(VIDU_VIDEO_NODE)
    registry.register(DOUBAO_VIDEO_NODE)
    registry.register(SORA2_VIDEO_NODE)
    registry.register(WAN26_VIDEO_NODE)
    registry.register(VIDEO_COMPOSE_NODE)
