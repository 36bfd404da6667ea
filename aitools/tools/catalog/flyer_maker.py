"""Flyer Maker: event flyer from artist photos, a reference layout and text fields."""

from aitools.tools.base import SlotKind, SlotSpec, ToolSpec, WorkflowSpec

TOOL = ToolSpec(
    tool_id="flyer_maker",
    name="Flyer Maker",
    table="flyer_maker_jobs",
    description="Event flyer generator.",
    workflows={
        "default": WorkflowSpec(
            webapp_id="2025656642724962305",
            slots=(
                # Only artists with an actual photo are sent, no duplication.
                SlotSpec("artists", SlotKind.IMAGE, ("11", "12", "13", "14", "15"), required=True),
                SlotSpec("reference", SlotKind.IMAGE, ("1",), required=True),
                SlotSpec("logo", SlotKind.IMAGE, ("28",), required=True),
                SlotSpec("date_time_location", SlotKind.TEXT, ("6",)),
                SlotSpec("artist_names", SlotKind.TEXT, ("10",)),
                SlotSpec("title", SlotKind.TEXT, ("7",)),
                SlotSpec("footer_promo", SlotKind.TEXT, ("9",)),
                SlotSpec("address", SlotKind.TEXT, ("103",)),
                SlotSpec(
                    "image_size", SlotKind.CHOICE, ("68",),
                    field_name="aspectRatio", default="3:4", choices=("3:4", "9:16"),
                ),
                SlotSpec(
                    "creativity", SlotKind.NUMBER, ("111",),
                    field_name="value", default=0, min_value=0, max_value=5,
                ),
            ),
        ),
    },
)
