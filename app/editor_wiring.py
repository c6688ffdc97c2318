from __future__ import annotations

from typing import Callable

from adapters.filesystem.graph_repository import FileSystemGraphRepository
from adapters.layout.stacking import StackingLayoutEngine
from app.config import AppSettings
from domain.models import FlowGraph
from domain.ports.repositories import GraphRepository
from domain.services.coordinates import CoordinateMapper
from domain.services.flow_conservation import FlowConservationEngine
from domain.services.interaction import InteractionController
from domain.services.session import EditorSession


def build_mapper(settings: AppSettings) -> CoordinateMapper:
    return CoordinateMapper(settings.axis.to_axis_config())


def build_engine(
    settings: AppSettings, id_factory: Callable[[], str] | None = None
) -> FlowConservationEngine:
    config = settings.engine.to_engine_config(settings.axis)
    return FlowConservationEngine(config, id_factory=id_factory)


def build_layout(settings: AppSettings) -> StackingLayoutEngine:
    return StackingLayoutEngine(settings.layout.to_layout_config(), build_mapper(settings))


def build_graph_repository(settings: AppSettings) -> GraphRepository:
    return FileSystemGraphRepository()


def build_session(
    settings: AppSettings,
    graph: FlowGraph | None = None,
    id_factory: Callable[[], str] | None = None,
) -> EditorSession:
    controller = InteractionController(
        engine=build_engine(settings, id_factory=id_factory),
        mapper=build_mapper(settings),
        canvas_width=settings.layout.canvas_width,
    )
    return EditorSession(
        graph=graph if graph is not None else FlowGraph.seed(),
        controller=controller,
        layout=build_layout(settings),
    )
