"""Tool configuration records for the generic gateway.

A tool is pure configuration: which RunningHub AI-app to run, how request
parameters map onto the workflow's fixed node ids, which table stores its
jobs and what rate limits apply. Adding a tool means adding a module to
``aitools/tools/catalog/`` that defines a module-level ``TOOL``.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from aitools.errors import ValidationError
from aitools.ratelimit import RateRule


class SlotKind(str, Enum):
    IMAGE = "image"
    TEXT = "text"
    NUMBER = "number"
    CHOICE = "choice"


@dataclass(frozen=True)
class SlotSpec:
    """Maps one request parameter onto one or more workflow nodes.

    Image slots with several ``node_ids`` accept a list of images which are
    assigned to the nodes in order; missing trailing images are omitted.
    """
    name: str
    kind: SlotKind
    node_ids: Tuple[str, ...]
    field_name: str = ""
    required: bool = False
    default: Any = None
    min_value: Optional[float] = None
    max_value: Optional[float] = None
    choices: Tuple[str, ...] = ()

    @property
    def node_field(self) -> str:
        return self.field_name or self.kind.value


@dataclass(frozen=True)
class WorkflowSpec:
    webapp_id: str
    slots: Tuple[SlotSpec, ...]
    description: str = ""

    def image_slots(self) -> List[SlotSpec]:
        return [s for s in self.slots if s.kind == SlotKind.IMAGE]


@dataclass(frozen=True)
class ToolSpec:
    """Metadata describing a registered AI tool."""
    tool_id: str
    name: str
    table: str
    workflows: Dict[str, WorkflowSpec]
    family: str = "image"
    default_credit_cost: int = 60
    min_credit_cost: int = 1
    max_credit_cost: int = 500
    upload_limit: RateRule = RateRule(max_requests=10, window_seconds=60)
    run_limit: RateRule = RateRule(max_requests=5, window_seconds=60)
    description: str = ""
    extra: Dict[str, Any] = field(default_factory=dict)

    def workflow(self, variant: str = "default") -> WorkflowSpec:
        try:
            return self.workflows[variant]
        except KeyError:
            raise ValidationError(f"Unknown variant '{variant}' for tool '{self.tool_id}'")

    def check_credit_cost(self, cost: int) -> None:
        if not isinstance(cost, int) or not (self.min_credit_cost <= cost <= self.max_credit_cost):
            raise ValidationError(
                f"Invalid credit cost (must be {self.min_credit_cost}-{self.max_credit_cost})"
            )


def image_values(slot: SlotSpec, value: Any) -> List[str]:
    """Normalize an image slot value (str, list or None) to a list of refs."""
    if value is None or value == "":
        values: List[str] = []
    elif isinstance(value, (list, tuple)):
        values = [v for v in value if v]
    else:
        values = [value]
    if len(values) > len(slot.node_ids):
        raise ValidationError(f"'{slot.name}' accepts at most {len(slot.node_ids)} image(s)")
    if slot.required and not values:
        raise ValidationError(f"'{slot.name}' is required")
    return values


def coerce_value(slot: SlotSpec, value: Any) -> str:
    """Coerce a scalar parameter into the string the workflow node expects."""
    if slot.kind == SlotKind.NUMBER:
        try:
            number = float(value)
        except (TypeError, ValueError):
            number = float(slot.default or 0)
        if slot.min_value is not None:
            number = max(slot.min_value, number)
        if slot.max_value is not None:
            number = min(slot.max_value, number)
        return str(int(number)) if number.is_integer() else str(number)
    if slot.kind == SlotKind.CHOICE:
        return value if value in slot.choices else str(slot.default)
    if value is None:
        if slot.required:
            raise ValidationError(f"'{slot.name}' is required")
        return str(slot.default or "")
    return str(value)


def build_node_info_list(
    workflow: WorkflowSpec,
    params: Mapping[str, Any],
    image_refs: Mapping[str, Sequence[str]],
) -> List[Dict[str, str]]:
    """Build the provider ``nodeInfoList`` from parameters and uploaded image refs.

    ``image_refs`` holds provider file names per image slot, already
    transferred to the provider.
    """
    nodes: List[Dict[str, str]] = []
    for slot in workflow.slots:
        if slot.kind == SlotKind.IMAGE:
            for node_id, ref in zip(slot.node_ids, image_refs.get(slot.name, [])):
                nodes.append({"nodeId": node_id, "fieldName": slot.node_field, "fieldValue": ref})
            continue
        value = coerce_value(slot, params.get(slot.name))
        for node_id in slot.node_ids:
            nodes.append({"nodeId": node_id, "fieldName": slot.node_field, "fieldValue": value})
    return nodes
