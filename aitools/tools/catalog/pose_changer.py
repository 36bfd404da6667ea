"""Pose Changer: puts the person from one photo into the pose of another."""

from aitools.tools.base import SlotKind, SlotSpec, ToolSpec, WorkflowSpec

TOOL = ToolSpec(
    tool_id="pose_changer",
    name="Pose Changer",
    table="pose_changer_jobs",
    description="Transfer the pose of a reference image onto a person photo.",
    workflows={
        "default": WorkflowSpec(
            webapp_id="2018451429635133442",
            slots=(
                SlotSpec("person", SlotKind.IMAGE, ("27",), required=True),
                SlotSpec("reference", SlotKind.IMAGE, ("60",), required=True),
            ),
        ),
    },
)
