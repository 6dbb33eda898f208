"""
Text Nodes package.

Prompt, aggregate, note and storyboard nodes.
"""

from ai_flow_studio.nodes.text.prompt import (
    PROMPT_AGGREGATE_NODE,
    STORYBOARD_MAX_OUTPUTS,
    STORYBOARD_SPLIT_NODE,
    TEXT_NOTE_NODE,
    TEXT_PROMPT_NODE,
    register_text_nodes,
)

__all__ = [
    "PROMPT_AGGREGATE_NODE",
    "STORYBOARD_MAX_OUTPUTS",
    "STORYBOARD_SPLIT_NODE",
    "TEXT_NOTE_NODE",
    "TEXT_PROMPT_NODE",
    "register_text_nodes",
]
