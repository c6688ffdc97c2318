from __future__ import annotations

import os
from collections.abc import Callable, Generator
from pathlib import Path

import pytest

from adapters.layout.stacking import LayoutConfig, StackingLayoutEngine
from app.config import AppSettings, LayoutSettings, StorageSettings
from domain.models import FlowGraph
from domain.services.coordinates import CoordinateMapper
from domain.services.flow_conservation import FlowConservationEngine
from domain.services.interaction import InteractionController
from tests.helpers.graph_fixtures import sequential_ids


def _clear_flow_env() -> None:
    for key in list(os.environ):
        if key.startswith("FLOW_"):
            os.environ.pop(key, None)


_clear_flow_env()


@pytest.fixture(autouse=True)
def clear_flow_env() -> Generator[None, None, None]:
    _clear_flow_env()
    yield
    _clear_flow_env()


@pytest.fixture
def engine() -> FlowConservationEngine:
    return FlowConservationEngine(id_factory=sequential_ids("n"))


@pytest.fixture
def mapper() -> CoordinateMapper:
    return CoordinateMapper()


@pytest.fixture
def layout_config() -> LayoutConfig:
    return LayoutConfig(
        min_flow_width=20.0,
        height_scale=8.0,
        flow_spacing=8.0,
        min_marker_height=120.0,
        marker_width=10.0,
        canvas_width=1200.0,
        canvas_height=800.0,
    )


@pytest.fixture
def layout(layout_config: LayoutConfig, mapper: CoordinateMapper) -> StackingLayoutEngine:
    return StackingLayoutEngine(layout_config, mapper)


@pytest.fixture
def controller(engine: FlowConservationEngine, mapper: CoordinateMapper) -> InteractionController:
    return InteractionController(engine=engine, mapper=mapper, canvas_width=1200.0)


@pytest.fixture
def seed_graph() -> FlowGraph:
    return FlowGraph.seed()


@pytest.fixture
def app_settings(tmp_path: Path) -> AppSettings:
    return AppSettings(
        layout=LayoutSettings(canvas_width=1200.0, canvas_height=800.0),
        storage=StorageSettings(graph_path=tmp_path / "graph.json"),
    )


@pytest.fixture
def app_settings_factory(app_settings: AppSettings) -> Callable[..., AppSettings]:
    def _factory(**overrides: object) -> AppSettings:
        return app_settings.model_copy(update=overrides)

    return _factory
