"""Character Generator: builds a character sheet from four angle photos.

The ``refine`` variant reruns a completed job with its latest result and a
selection of panels to redo; each refinement appends a new output version.
"""

from aitools.tools.base import SlotKind, SlotSpec, ToolSpec, WorkflowSpec

TOOL = ToolSpec(
    tool_id="character_generator",
    name="Gerador de Personagem",
    table="character_generator_jobs",
    description="Character sheet from front, profile, semi-profile and low-angle photos.",
    workflows={
        "default": WorkflowSpec(
            webapp_id="2020943778751713282",
            slots=(
                SlotSpec("front", SlotKind.IMAGE, ("41",), required=True),
                SlotSpec("profile", SlotKind.IMAGE, ("39",), required=True),
                SlotSpec("semi_profile", SlotKind.IMAGE, ("40",), required=True),
                SlotSpec("low_angle", SlotKind.IMAGE, ("42",), required=True),
            ),
        ),
        "refine": WorkflowSpec(
            webapp_id="2021009449481150465",
            description="Refinar Avatar",
            slots=(
                SlotSpec("front", SlotKind.IMAGE, ("39",), required=True),
                SlotSpec("semi_profile", SlotKind.IMAGE, ("40",), required=True),
                SlotSpec("profile", SlotKind.IMAGE, ("41",), required=True),
                SlotSpec("low_angle", SlotKind.IMAGE, ("42",), required=True),
                SlotSpec("result", SlotKind.IMAGE, ("45",), required=True),
                SlotSpec("selected_numbers", SlotKind.TEXT, ("47",), required=True),
            ),
        ),
    },
)
