from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from domain.models import (
    Flow,
    FlowGraph,
    FlowPlacement,
    Point,
    RenderPlan,
    Stage,
    StagePlacement,
)
from domain.ports.layout import LayoutEngine
from domain.services.coordinates import CoordinateMapper

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LayoutConfig:
    min_flow_width: float = 5.0
    height_scale: float = 2.0
    flow_spacing: float = 2.0
    min_marker_height: float = 120.0
    marker_width: float = 10.0
    canvas_width: float = 12000.0
    canvas_height: float = 800.0


@dataclass(frozen=True)
class _Bundles:
    stages: Dict[str, Stage]
    outgoing: Dict[str, List[Flow]]
    incoming: Dict[str, List[Flow]]


class StackingLayoutEngine(LayoutEngine):
    """Stacks flows inside each stage so that no two bands overlap.

    Source-side bundles are ordered by branch index, target-side bundles by the
    vertical position of each flow's source stage, which keeps incoming bands
    from crossing regardless of creation order.
    """

    def __init__(
        self,
        config: LayoutConfig | None = None,
        mapper: CoordinateMapper | None = None,
    ) -> None:
        self.config = config or LayoutConfig()
        self.mapper = mapper or CoordinateMapper()

    def flow_width(self, flow: Flow) -> float:
        return max(self.config.min_flow_width, flow.value * self.config.height_scale)

    def stage_center_y(self, stage: Stage) -> float:
        if stage.vertical_offset is None:
            return self.config.canvas_height / 2
        return stage.vertical_offset

    def node_height(self, graph: FlowGraph, stage_id: str) -> float:
        return self._node_height(self._bundles(graph), stage_id)

    def flow_vertical_center(
        self, graph: FlowGraph, flow: Flow
    ) -> Optional[Tuple[float, float]]:
        bundles = self._bundles(graph)
        siblings = bundles.outgoing.get(flow.from_stage_id, [])
        if flow not in siblings:
            # Hanging, or not part of this graph at all.
            return None
        return self._vertical_centers(bundles, flow)

    def build_plan(self, graph: FlowGraph) -> RenderPlan:
        bundles = self._bundles(graph)
        canvas_width = self.config.canvas_width
        half_marker = self.config.marker_width / 2

        stages: List[StagePlacement] = []
        for stage in sorted(graph.stages, key=lambda item: item.position):
            stages.append(
                StagePlacement(
                    stage_id=stage.id,
                    center=Point(
                        self.mapper.position_to_pixel(stage.position, canvas_width),
                        self.stage_center_y(stage),
                    ),
                    height=self._node_height(bundles, stage.id),
                    width=self.config.marker_width,
                )
            )

        flows: List[FlowPlacement] = []
        for flow in graph.flows:
            source = bundles.stages.get(flow.from_stage_id)
            target = bundles.stages.get(flow.to_stage_id)
            if source is None or target is None:
                logger.debug("Skipping hanging flow %s.", flow.id)
                continue
            source_y, target_y = self._vertical_centers(bundles, flow)
            source_x = self.mapper.position_to_pixel(source.position, canvas_width)
            target_x = self.mapper.position_to_pixel(target.position, canvas_width)
            source_top = self.stage_center_y(source) - self._node_height(bundles, source.id) / 2
            target_top = self.stage_center_y(target) - self._node_height(bundles, target.id) / 2
            flows.append(
                FlowPlacement(
                    flow_id=flow.id,
                    source=Point(source_x + half_marker, source_y),
                    target=Point(target_x - half_marker, target_y),
                    width=self.flow_width(flow),
                    source_offset=source_y - source_top,
                    target_offset=target_y - target_top,
                )
            )

        return RenderPlan(stages=stages, flows=flows)

    def _bundles(self, graph: FlowGraph) -> _Bundles:
        stages = {stage.id: stage for stage in graph.stages}
        outgoing: Dict[str, List[Flow]] = {}
        incoming: Dict[str, List[Flow]] = {}
        for flow in graph.flows:
            if flow.from_stage_id not in stages or flow.to_stage_id not in stages:
                continue
            outgoing.setdefault(flow.from_stage_id, []).append(flow)
            incoming.setdefault(flow.to_stage_id, []).append(flow)

        for siblings in outgoing.values():
            siblings.sort(key=lambda item: item.branch_index)
        for siblings in incoming.values():
            siblings.sort(key=lambda item: self.stage_center_y(stages[item.from_stage_id]))
        return _Bundles(stages=stages, outgoing=outgoing, incoming=incoming)

    def _bundle_height(self, flows: List[Flow]) -> float:
        widths = sum(self.flow_width(flow) for flow in flows)
        return widths + self.config.flow_spacing * (len(flows) - 1)

    def _node_height(self, bundles: _Bundles, stage_id: str) -> float:
        incoming = bundles.incoming.get(stage_id)
        if incoming:
            return self._bundle_height(incoming)
        outgoing = bundles.outgoing.get(stage_id)
        if outgoing:
            return self._bundle_height(outgoing)
        return self.config.min_marker_height

    def _stack_offset(self, siblings: List[Flow], flow: Flow) -> float:
        offset = 0.0
        for sibling in siblings:
            if sibling.id == flow.id:
                break
            offset += self.flow_width(sibling) + self.config.flow_spacing
        return offset + self.flow_width(flow) / 2

    def _vertical_centers(self, bundles: _Bundles, flow: Flow) -> Tuple[float, float]:
        source = bundles.stages[flow.from_stage_id]
        target = bundles.stages[flow.to_stage_id]
        source_top = self.stage_center_y(source) - self._node_height(bundles, source.id) / 2
        target_top = self.stage_center_y(target) - self._node_height(bundles, target.id) / 2
        source_offset = self._stack_offset(bundles.outgoing[source.id], flow)
        target_offset = self._stack_offset(bundles.incoming[target.id], flow)
        return source_top + source_offset, target_top + target_offset
