"""
Text Nodes - Nodes that provide or transform prompt text.

These include plain prompts, aggregating prompts, notes and the
storyboard splitter that fans a script out into numbered prompts.
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


# Maximum number of prompt outputs on a storyboard splitter
STORYBOARD_MAX_OUTPUTS = 20


def _text_output(description: str) -> OutputDefinition:
    return OutputDefinition(
        name="text",
        label="Text",
        kind=PortKind.TEXT,
        description=description,
    )


TEXT_PROMPT_NODE = NodeType(
    kind=NodeKind.TEXT_PROMPT,
    name="Prompt",
    description="Text prompt input for generation",
    category=NodeCategory.TEXT,
    outputs=[_text_output("The prompt text")],
    defaults={"text": ""},
)


PROMPT_AGGREGATE_NODE = NodeType(
    kind=NodeKind.PROMPT_AGGREGATE,
    name="Prompt (Pro)",
    description="Combines its own text with every connected prompt",
    category=NodeCategory.TEXT,
    outputs=[_text_output("Own text followed by connected prompts")],
    defaults={"text": "", "separator": "\n"},
)


TEXT_NOTE_NODE = NodeType(
    kind=NodeKind.TEXT_NOTE,
    name="Note",
    description="Free-form note; can also feed its text downstream",
    category=NodeCategory.TEXT,
    outputs=[_text_output("The note text")],
    defaults={"text": ""},
    color="#a16207",
)


STORYBOARD_SPLIT_NODE = NodeType(
    kind=NodeKind.STORYBOARD_SPLIT,
    name="Storyboard Split",
    description="Split a storyboard script into one prompt per shot",
    category=NodeCategory.TEXT,
    outputs=[
        OutputDefinition(
            name="prompt",
            label="Shot",
            kind=PortKind.TEXT,
            count=STORYBOARD_MAX_OUTPUTS,
            description="Text of shot N",
        ),
    ],
    defaults={
        "status": "idle",
        "inputText": "",
        "segments": [],
        "outputCount": 9,
    },
)


def register_text_nodes() -> None:
    """Register all text node types."""
    registry = NodeRegistry()
    registry.register(TEXT_PROMPT_NODE)
    registry.register(PROMPT_AGGREGATE_NODE)
    registry.register(TEXT_NOTE_NODE)
    registry.register(STORYBOARD_SPLIT_NODE)
