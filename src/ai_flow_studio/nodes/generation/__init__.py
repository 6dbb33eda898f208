"""
Generation Nodes package.

Nodes for AI image generation and image analysis.
"""

from ai_flow_studio.nodes.generation.image_generation import (
    ANALYSIS_NODE,
    BATCH_SLOTS,
    GENERATE_4_NODE,
    GENERATE_NODE,
    GENERATE_PRO_4_NODE,
    GENERATE_PRO_NODE,
    GENERATE_REF_NODE,
    register_generation_nodes,
)

__all__ = [
    "ANALYSIS_NODE",
    "BATCH_SLOTS",
    "GENERATE_4_NODE",
    "GENERATE_NODE",
    "GENERATE_PRO_4_NODE",
    "GENERATE_PRO_NODE",
    "GENERATE_REF_NODE",
    "register_generation_nodes",
]
