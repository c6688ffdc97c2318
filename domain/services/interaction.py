from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import List, Union

from domain.errors import CycleDetectedError
from domain.models import FlowGraph, Stage
from domain.services.coordinates import CoordinateMapper
from domain.services.flow_conservation import FlowConservationEngine
from domain.services.graph_metrics import path_exists

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Idle:
    pass


@dataclass(frozen=True)
class EditingStage:
    stage_id: str


@dataclass(frozen=True)
class AwaitingBranchTarget:
    source_id: str


@dataclass(frozen=True)
class EditingFlow:
    flow_id: str
    name: str
    percent: float


InteractionState = Union[Idle, EditingStage, EditingFlow, AwaitingBranchTarget]

IDLE = Idle()


@dataclass(frozen=True)
class Transition:
    state: InteractionState
    graph: FlowGraph


class InteractionController:
    """Pure transition functions for the canvas selection state.

    Every handler takes the current state and graph and returns the next pair;
    only one of stage edit, flow edit or branch selection can be active since
    the state is a single value.
    """

    def __init__(
        self,
        engine: FlowConservationEngine | None = None,
        mapper: CoordinateMapper | None = None,
        canvas_width: float = 12000.0,
    ) -> None:
        self.engine = engine or FlowConservationEngine()
        self.mapper = mapper or CoordinateMapper()
        self.canvas_width = canvas_width

    def click_stage(
        self, state: InteractionState, graph: FlowGraph, stage_id: str
    ) -> Transition:
        if graph.stage(stage_id) is None:
            return Transition(state, graph)

        if isinstance(state, AwaitingBranchTarget):
            if stage_id == state.source_id:
                return Transition(IDLE, graph)
            try:
                graph = self.engine.connect_stages(graph, state.source_id, stage_id)
            except CycleDetectedError as exc:
                logger.debug("Rejected flow %s -> %s: %s", state.source_id, stage_id, exc)
            return Transition(IDLE, graph)

        if isinstance(state, EditingStage) and state.stage_id == stage_id:
            return Transition(IDLE, graph)
        return Transition(EditingStage(stage_id), graph)

    def request_branch(self, state: InteractionState, graph: FlowGraph) -> Transition:
        if not isinstance(state, EditingStage):
            return Transition(state, graph)
        return Transition(AwaitingBranchTarget(state.stage_id), graph)

    def click_canvas(
        self,
        state: InteractionState,
        graph: FlowGraph,
        canvas_x: float,
        canvas_y: float,
        zoom: float = 1.0,
    ) -> Transition:
        if not isinstance(state, AwaitingBranchTarget):
            return Transition(IDLE, graph)

        source = graph.stage(state.source_id)
        if source is None:
            return Transition(IDLE, graph)
        position = self.mapper.resolve_branch_position(
            source.position, canvas_x, self.canvas_width, zoom
        )
        if position is None:
            logger.debug("Canvas click at x=%.1f is not right of %s.", canvas_x, source.id)
            return Transition(state, graph)
        graph = self.engine.create_branch_stage(
            graph, source.id, position, vertical_offset=canvas_y
        )
        return Transition(IDLE, graph)

    def click_flow(self, state: InteractionState, graph: FlowGraph, flow_id: str) -> Transition:
        if isinstance(state, EditingFlow) and state.flow_id == flow_id:
            return Transition(state, graph)
        flow = graph.flow(flow_id)
        if flow is None:
            return Transition(state, graph)
        percent = self.engine.share_of_parent(graph, flow_id)
        return Transition(EditingFlow(flow_id, flow.name, percent), graph)

    def edit_flow_draft(
        self,
        state: InteractionState,
        graph: FlowGraph,
        percent: float | None = None,
        name: str | None = None,
    ) -> Transition:
        if not isinstance(state, EditingFlow):
            return Transition(state, graph)
        draft = state
        if percent is not None:
            draft = replace(draft, percent=percent)
        if name is not None:
            draft = replace(draft, name=name)
        return Transition(draft, graph)

    def save(
        self,
        state: InteractionState,
        graph: FlowGraph,
        name: str | None = None,
        color: str | None = None,
    ) -> Transition:
        if isinstance(state, EditingFlow):
            flow = graph.flow(state.flow_id)
            if flow is None:
                return Transition(IDLE, graph)
            graph = self.engine.apply_manual_edit(graph, state.flow_id, state.percent)
            if state.name != flow.name:
                graph = self.engine.rename_flow(graph, state.flow_id, state.name)
            return Transition(IDLE, graph)
        if isinstance(state, EditingStage):
            graph = self.engine.update_stage(graph, state.stage_id, name=name, color=color)
            return Transition(IDLE, graph)
        return Transition(state, graph)

    def cancel(self, state: InteractionState, graph: FlowGraph) -> Transition:
        return Transition(IDLE, graph)

    def delete_stage(self, state: InteractionState, graph: FlowGraph) -> Transition:
        if not isinstance(state, EditingStage):
            return Transition(state, graph)
        return Transition(IDLE, self.engine.delete_stage(graph, state.stage_id))

    def disconnect_flow(
        self, state: InteractionState, graph: FlowGraph, flow_id: str
    ) -> Transition:
        graph = self.engine.disconnect_flow(graph, flow_id)
        if isinstance(state, EditingFlow) and state.flow_id == flow_id:
            state = IDLE
        return Transition(state, graph)

    def drag_stage(
        self,
        state: InteractionState,
        graph: FlowGraph,
        stage_id: str,
        position: float,
        vertical_offset: float | None = None,
    ) -> Transition:
        config = self.mapper.config
        bounded = max(config.visible_min, min(config.visible_max, position))
        graph = self.engine.move_stage(
            graph, stage_id, self.mapper.snap(bounded), vertical_offset
        )
        return Transition(state, graph)

    def linkable_stages(self, state: InteractionState, graph: FlowGraph) -> List[Stage]:
        if not isinstance(state, AwaitingBranchTarget):
            return []
        source = graph.stage(state.source_id)
        if source is None:
            return []
        adjacency = graph.adjacency()
        return [
            stage
            for stage in graph.stages
            if stage.id != source.id
            and stage.position > source.position
            and not path_exists(adjacency, stage.id, source.id)
        ]
