from __future__ import annotations

import pytest

from adapters.layout.stacking import LayoutConfig, StackingLayoutEngine
from tests.helpers.graph_fixtures import flow, load_graph_fixture, make_graph, stage


def _merge_graph():
    # s2's flow is listed first; target-side order must still follow source y.
    return make_graph(
        [stage("s1", 0, 200), stage("s2", 0, 600), stage("t", 50, 400)],
        [flow("low", "s2", "t", 20), flow("high", "s1", "t", 10)],
    )


def _branch_graph():
    # Flows listed out of branch order on purpose.
    return make_graph(
        [stage("r", 0, 400), stage("a", 50, 200), stage("b", 50, 600)],
        [flow("rb", "r", "b", 20, 1), flow("ra", "r", "a", 10, 0)],
    )


def test_target_height_sums_incoming_widths(layout: StackingLayoutEngine) -> None:
    graph = _merge_graph()
    assert layout.flow_width(graph.flow("high")) == 80
    assert layout.flow_width(graph.flow("low")) == 160
    assert layout.node_height(graph, "t") == 248


def test_root_height_uses_outgoing_flows(layout: StackingLayoutEngine) -> None:
    assert layout.node_height(_branch_graph(), "r") == 248


def test_isolated_stage_gets_minimum_marker(layout: StackingLayoutEngine) -> None:
    graph = make_graph([stage("solo", 10)])
    assert layout.node_height(graph, "solo") == 120


def test_small_values_are_widened_to_minimum(layout: StackingLayoutEngine) -> None:
    graph = make_graph([stage("r", 0), stage("a", 10)], [flow("ra", "r", "a", 0.5)])
    assert layout.flow_width(graph.flow("ra")) == 20
    assert layout.node_height(graph, "a") == 20


def test_node_height_is_monotonic_in_flow_value(layout: StackingLayoutEngine) -> None:
    heights = []
    for value in (0.0, 1.0, 2.5, 5.0, 10.0, 50.0):
        graph = make_graph(
            [stage("r", 0), stage("a", 10), stage("b", 10), stage("m", 20)],
            [flow("am", "a", "m", value), flow("bm", "b", "m", 7)],
        )
        heights.append(layout.node_height(graph, "m"))
    assert heights == sorted(heights)
    assert heights[-1] > heights[0]


def test_source_side_stacks_by_branch_index(layout: StackingLayoutEngine) -> None:
    graph = _branch_graph()
    # r: height 248, top 400 - 124 = 276
    ra_source, _ = layout.flow_vertical_center(graph, graph.flow("ra"))
    rb_source, _ = layout.flow_vertical_center(graph, graph.flow("rb"))
    assert ra_source == pytest.approx(276 + 40)
    assert rb_source == pytest.approx(276 + 80 + 8 + 80)


def test_target_side_stacks_by_source_position(layout: StackingLayoutEngine) -> None:
    graph = _merge_graph()
    _, high_target = layout.flow_vertical_center(graph, graph.flow("high"))
    _, low_target = layout.flow_vertical_center(graph, graph.flow("low"))
    assert high_target == pytest.approx(276 + 40)
    assert low_target == pytest.approx(276 + 88 + 80)


def test_single_flow_is_centred_on_both_stages(layout: StackingLayoutEngine) -> None:
    graph = make_graph([stage("r", 0, 300), stage("a", 40, 500)], [flow("ra", "r", "a", 100)])
    assert layout.flow_vertical_center(graph, graph.flow("ra")) == pytest.approx((300, 500))


def test_hanging_flows_are_ignored(layout: StackingLayoutEngine) -> None:
    graph = make_graph(
        [stage("r", 0), stage("a", 40)],
        [flow("ra", "r", "a", 10), flow("ghost", "r", "missing", 90)],
    )
    assert layout.node_height(graph, "r") == 80
    assert layout.flow_vertical_center(graph, graph.flow("ghost")) is None

    plan = layout.build_plan(graph)
    assert [item.flow_id for item in plan.flows] == ["ra"]


def test_missing_vertical_offset_defaults_to_canvas_centre(
    layout: StackingLayoutEngine,
) -> None:
    plan = layout.build_plan(make_graph([stage("r", 0)]))
    assert plan.stage("r").center.y == 400


def test_build_plan_maps_positions_to_pixels(layout: StackingLayoutEngine) -> None:
    graph = make_graph([stage("r", 0, 400), stage("a", 50, 400)], [flow("ra", "r", "a", 100)])
    plan = layout.build_plan(graph)

    assert plan.stage("r").center.x == pytest.approx(100)
    assert plan.stage("a").center.x == pytest.approx(600)
    placement = plan.flow("ra")
    assert placement.source.x == pytest.approx(105)
    assert placement.target.x == pytest.approx(595)
    assert placement.width == 800


def test_bands_fill_the_target_node_exactly(layout: StackingLayoutEngine) -> None:
    graph = _merge_graph()
    plan = layout.build_plan(graph)
    target = plan.stage("t")
    last = plan.flow("low")
    assert last.target_offset + last.width / 2 == pytest.approx(target.height)


def test_plan_orders_stages_by_position(layout: StackingLayoutEngine) -> None:
    plan = layout.build_plan(load_graph_fixture("branching.json"))
    xs = [item.center.x for item in plan.stages]
    assert xs == sorted(xs)
    assert plan.stages[0].stage_id == "root"
    assert len(plan.flows) == 5


def test_plan_to_dict_uses_camel_case_offsets(layout: StackingLayoutEngine) -> None:
    payload = layout.build_plan(_merge_graph()).to_dict()
    assert set(payload) == {"stages", "flows"}
    assert {"id", "from", "to", "width", "sourceOffset", "targetOffset"} <= set(payload["flows"][0])


def test_default_config_uses_small_band_widths() -> None:
    engine = StackingLayoutEngine()
    assert engine.config == LayoutConfig()
    graph = make_graph([stage("r", 0), stage("a", 10)], [flow("ra", "r", "a", 1)])
    assert engine.flow_width(graph.flow("ra")) == 5
    assert engine.node_height(graph, "a") == 5


def test_flow_outside_graph_has_no_vertical_center(layout: StackingLayoutEngine) -> None:
    graph = make_graph([stage("r", 0), stage("a", 40)])
    assert layout.flow_vertical_center(graph, flow("stray", "r", "a", 10)) is None

    graph = make_graph([stage("r", 0), stage("a", 40)], [flow("ra", "r", "a", 10)])
    assert layout.flow_vertical_center(graph, flow("stray", "r", "a", 10)) is None
