from __future__ import annotations

import json
from pathlib import Path

import pytest
from pydantic import ValidationError

from adapters.filesystem.graph_repository import FileSystemGraphRepository
from domain.models import FlowGraph
from tests.helpers.graph_fixtures import load_graph_fixture


def test_save_and_load_round_trip(tmp_path: Path) -> None:
    repo = FileSystemGraphRepository()
    graph = load_graph_fixture("branching.json")
    path = tmp_path / "nested" / "graph.json"

    repo.save(graph, path)

    assert repo.exists(path)
    assert repo.load(path) == graph
    assert not path.with_suffix(".json.tmp").exists()


def test_saved_document_uses_camel_case(tmp_path: Path) -> None:
    repo = FileSystemGraphRepository()
    path = tmp_path / "graph.json"
    repo.save(load_graph_fixture("branching.json"), path)

    payload = json.loads(path.read_text(encoding="utf-8"))
    first_flow = payload["flows"][0]
    assert {"fromStageId", "toStageId", "branchIndex"} <= set(first_flow)
    assert payload["stages"][0]["yPosition"] == 400


def test_missing_file_loads_empty_graph(tmp_path: Path) -> None:
    repo = FileSystemGraphRepository()
    path = tmp_path / "absent.json"
    assert not repo.exists(path)
    assert repo.load(path) == FlowGraph()


def test_partial_document_defaults_missing_lists(tmp_path: Path) -> None:
    path = tmp_path / "graph.json"
    path.write_text(json.dumps({"stages": [{"id": "1", "position": 0}]}), encoding="utf-8")

    graph = FileSystemGraphRepository().load(path)

    assert [item.id for item in graph.stages] == ["1"]
    assert graph.flows == []


def test_non_object_document_is_rejected(tmp_path: Path) -> None:
    path = tmp_path / "graph.json"
    path.write_text("[]", encoding="utf-8")
    with pytest.raises(ValueError, match="must be a JSON object"):
        FileSystemGraphRepository().load(path)


def test_invalid_flow_is_rejected(tmp_path: Path) -> None:
    path = tmp_path / "graph.json"
    document = {
        "stages": [],
        "flows": [{"id": "f", "fromStageId": "a", "toStageId": "b", "value": -5}],
    }
    path.write_text(json.dumps(document), encoding="utf-8")
    with pytest.raises(ValidationError):
        FileSystemGraphRepository().load(path)
