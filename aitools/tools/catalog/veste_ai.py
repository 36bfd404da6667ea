"""Veste AI: dresses the person in the clothing of a reference image."""

from aitools.tools.base import SlotKind, SlotSpec, ToolSpec, WorkflowSpec

TOOL = ToolSpec(
    tool_id="veste_ai",
    name="Veste AI",
    table="veste_ai_jobs",
    description="Clothing swap from a reference garment photo.",
    workflows={
        "default": WorkflowSpec(
            webapp_id="2018755100210106369",
            slots=(
                SlotSpec("person", SlotKind.IMAGE, ("41",), required=True),
                SlotSpec("clothing", SlotKind.IMAGE, ("43",), required=True),
            ),
        ),
    },
)
