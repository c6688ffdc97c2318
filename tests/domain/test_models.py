from __future__ import annotations

import pytest
from pydantic import ValidationError

from domain.models import Flow, FlowGraph, Stage
from tests.helpers.graph_fixtures import flow, make_graph, stage


def test_stage_keeps_position_as_given() -> None:
    # Axis bounds are configurable, so clamping happens in the engine.
    assert Stage(id="a", position=250).position == 250


def test_documents_use_camel_case_aliases() -> None:
    graph = FlowGraph.model_validate(
        {
            "stages": [{"id": "r", "name": "R", "position": 0, "yPosition": 150}],
            "flows": [
                {
                    "id": "f",
                    "name": "F",
                    "fromStageId": "r",
                    "toStageId": "r2",
                    "value": 10,
                    "branchIndex": None,
                }
            ],
        }
    )
    assert graph.stages[0].vertical_offset == 150
    assert graph.flows[0].from_stage_id == "r"
    assert graph.flows[0].branch_index == 0

    document = graph.to_document()
    assert document["stages"][0]["yPosition"] == 150
    assert document["flows"][0]["toStageId"] == "r2"


def test_negative_flow_value_is_rejected() -> None:
    with pytest.raises(ValidationError):
        Flow(id="f", from_stage_id="a", to_stage_id="b", value=-1)


def test_duplicate_ids_are_rejected() -> None:
    with pytest.raises(ValidationError, match="Duplicate stage id"):
        make_graph([stage("a", 0), stage("a", 10)])
    with pytest.raises(ValidationError, match="Duplicate flow id"):
        make_graph(
            [stage("a", 0), stage("b", 10)],
            [flow("f", "a", "b", 1), flow("f", "a", "b", 2)],
        )


def test_seed_graph_has_single_root() -> None:
    graph = FlowGraph.seed()
    assert [item.id for item in graph.roots()] == ["1"]
    assert graph.flows == []


def test_graph_queries() -> None:
    graph = make_graph(
        [stage("r", 0), stage("a", 20)],
        [flow("ra", "r", "a", 100), flow("ghost", "a", "missing", 5)],
    )
    assert graph.is_root("r")
    assert not graph.is_root("a")
    assert graph.is_hanging(graph.flow("ghost"))
    assert graph.adjacency() == {"r": ["a"], "a": ["missing"], "missing": []}
    assert [item.id for item in graph.outgoing_flows("a")] == ["ghost"]


def test_snapshots_are_frozen() -> None:
    graph = FlowGraph.seed()
    with pytest.raises(ValidationError):
        graph.stages[0].name = "Renamed"
