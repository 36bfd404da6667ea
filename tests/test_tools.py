import pytest

from aitools.errors import ValidationError
from aitools.tools.base import build_node_info_list
from aitools.tools.registry import build_registry


@pytest.fixture
def tools():
    return build_registry()


def test_catalog_is_discovered(tools):
    ids = {spec.tool_id for spec in tools.list_tools()}
    assert ids == {"pose_changer", "veste_ai", "character_generator", "flyer_maker"}
    assert tools.tables()["flyer_maker"] == "flyer_maker_jobs"
    assert set(tools.family_members("veste_ai")) == ids


def test_unknown_tool_and_variant(tools):
    with pytest.raises(ValidationError):
        tools.require("nope")
    with pytest.raises(ValidationError):
        tools.require("pose_changer").workflow("refine")


def test_credit_cost_bounds(tools):
    spec = tools.require("pose_changer")
    spec.check_credit_cost(1)
    spec.check_credit_cost(500)
    for bad in (0, 501, -3):
        with pytest.raises(ValidationError):
            spec.check_credit_cost(bad)


def test_flyer_nodes_are_coerced(tools):
    workflow = tools.require("flyer_maker").workflow()
    nodes = build_node_info_list(
        workflow,
        {"title": "Festa", "image_size": "16:9", "creativity": 9},
        {"artists": ["f1", "f2"], "reference": ["r"], "logo": ["l"]},
    )
    by_node = {n["nodeId"]: n for n in nodes}
    assert by_node["11"]["fieldValue"] == "f1"
    assert by_node["12"]["fieldValue"] == "f2"
    # Artists without a photo are not sent.
    assert "13" not in by_node
    assert by_node["7"]["fieldValue"] == "Festa"
    assert by_node["68"] == {"nodeId": "68", "fieldName": "aspectRatio", "fieldValue": "3:4"}
    assert by_node["111"] == {"nodeId": "111", "fieldName": "value", "fieldValue": "5"}
    assert by_node["103"]["fieldValue"] == ""


def test_refine_requires_selection(tools):
    workflow = tools.require("character_generator").workflow("refine")
    refs = {name: ["x"] for name in ("front", "semi_profile", "profile", "low_angle", "result")}
    with pytest.raises(ValidationError):
        build_node_info_list(workflow, {}, refs)
    nodes = build_node_info_list(workflow, {"selected_numbers": "1,3"}, refs)
    assert {"nodeId": "47", "fieldName": "text", "fieldValue": "1,3"} in nodes
