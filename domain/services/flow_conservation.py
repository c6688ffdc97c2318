from __future__ import annotations

import logging
import uuid
from collections import deque
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Optional

from domain.errors import CycleDetectedError
from domain.models import (
    AXIS_MAX,
    AXIS_MIN,
    DEFAULT_COLOR,
    ROOT_BUDGET,
    Flow,
    FlowGraph,
    Stage,
)
from domain.services.graph_metrics import find_cycle_path, path_exists

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConservationConfig:
    epsilon: float = 0.01
    min_flow_value: float = 0.01
    root_budget: float = ROOT_BUDGET
    default_flow_color: str = DEFAULT_COLOR
    default_stage_color: str = DEFAULT_COLOR
    axis_min: float = AXIS_MIN
    axis_max: float = AXIS_MAX


@dataclass(frozen=True)
class ConservationViolation:
    stage_id: str
    incoming: float
    outgoing: float

    @property
    def delta(self) -> float:
        return self.outgoing - self.incoming


class _FlowTable:
    """Working copy of a snapshot's flows with per-stage indexes built once."""

    def __init__(self, flows: Iterable[Flow], root_budget: float) -> None:
        self.root_budget = root_budget
        self._flows: Dict[str, Flow] = {flow.id: flow for flow in flows}
        self._outgoing: Dict[str, List[str]] = {}
        self._incoming: Dict[str, List[str]] = {}
        for flow in self._flows.values():
            self._index(flow)

    def _index(self, flow: Flow) -> None:
        self._outgoing.setdefault(flow.from_stage_id, []).append(flow.id)
        self._incoming.setdefault(flow.to_stage_id, []).append(flow.id)

    def get(self, flow_id: str) -> Optional[Flow]:
        return self._flows.get(flow_id)

    def add(self, flow: Flow) -> None:
        self._flows[flow.id] = flow
        self._index(flow)

    def outgoing(self, stage_id: str) -> List[Flow]:
        return [self._flows[flow_id] for flow_id in self._outgoing.get(stage_id, [])]

    def children(self, stage_id: str) -> List[str]:
        return [flow.to_stage_id for flow in self.outgoing(stage_id)]

    def incoming_value(self, stage_id: str) -> float:
        flow_ids = self._incoming.get(stage_id, [])
        if not flow_ids:
            return self.root_budget
        return sum(self._flows[flow_id].value for flow_id in flow_ids)

    def outgoing_value(self, stage_id: str) -> float:
        return sum(flow.value for flow in self.outgoing(stage_id))

    def set_value(self, flow_id: str, value: float) -> None:
        self._flows[flow_id] = self._flows[flow_id].model_copy(update={"value": value})

    def equal_split(self, stage_id: str) -> None:
        outgoing = self.outgoing(stage_id)
        if not outgoing:
            return
        share = self.incoming_value(stage_id) / len(outgoing)
        for flow in outgoing:
            self.set_value(flow.id, share)

    def nodes(self, stage_order: Iterable[str]) -> List[str]:
        ordered: Dict[str, None] = dict.fromkeys(stage_order)
        for flow in self._flows.values():
            ordered.setdefault(flow.from_stage_id)
            ordered.setdefault(flow.to_stage_id)
        return list(ordered)

    def topological_order(
        self, stage_order: Iterable[str], seeds: Optional[Iterable[str]] = None
    ) -> List[str]:
        """Kahn ordering of every node, or of the nodes reachable from ``seeds``.

        Ties keep ``stage_order`` so repeated calls visit stages identically.
        Raises CycleDetectedError when the (reachable) graph is not a DAG.
        """
        nodes = self.nodes(stage_order)
        if seeds is not None:
            reachable: Dict[str, None] = {}
            stack = list(dict.fromkeys(seeds))
            while stack:
                node = stack.pop()
                if node in reachable:
                    continue
                reachable[node] = None
                stack.extend(self.children(node))
            nodes = [node for node in nodes if node in reachable]

        members = set(nodes)
        rank = {node: idx for idx, node in enumerate(nodes)}
        indegree = {node: 0 for node in nodes}
        for node in nodes:
            for child in self.children(node):
                if child in members:
                    indegree[child] += 1

        queue = deque(node for node in nodes if indegree[node] == 0)
        order: List[str] = []
        while queue:
            node = queue.popleft()
            order.append(node)
            released = []
            for child in dict.fromkeys(self.children(node)):
                if child not in members:
                    continue
                indegree[child] -= self.children(node).count(child)
                if indegree[child] == 0:
                    released.append(child)
            queue.extend(sorted(released, key=rank.__getitem__))

        if len(order) < len(nodes):
            adjacency = {node: self.children(node) for node in nodes if node not in order}
            path = find_cycle_path(adjacency) or sorted(adjacency)
            raise CycleDetectedError(path)
        return order

    def to_list(self) -> List[Flow]:
        return list(self._flows.values())


class FlowConservationEngine:
    """Keeps every stage's outgoing total equal to its incoming budget.

    All public operations take a FlowGraph snapshot and return a new one. The
    input snapshot is never modified, which lets callers keep it for undo.
    """

    def __init__(
        self,
        config: ConservationConfig | None = None,
        id_factory: Callable[[], str] | None = None,
    ) -> None:
        self.config = config or ConservationConfig()
        self._id_factory = id_factory or (lambda: uuid.uuid4().hex)

    # Queries -----------------------------------------------------------------

    def incoming_value(self, graph: FlowGraph, stage_id: str) -> float:
        return self._table(graph).incoming_value(stage_id)

    def outgoing_value(self, graph: FlowGraph, stage_id: str) -> float:
        return self._table(graph).outgoing_value(stage_id)

    def share_of_parent(self, graph: FlowGraph, flow_id: str) -> float:
        """Flow value as a percentage of its source stage's incoming value."""
        flow = graph.flow(flow_id)
        if flow is None:
            return 0.0
        incoming = self.incoming_value(graph, flow.from_stage_id)
        return (flow.value / incoming) * 100 if incoming > 0 else 0.0

    def conservation_violations(self, graph: FlowGraph) -> List[ConservationViolation]:
        table = self._table(graph)
        violations: List[ConservationViolation] = []
        for stage in graph.stages:
            if not table.outgoing(stage.id):
                continue
            incoming = table.incoming_value(stage.id)
            outgoing = table.outgoing_value(stage.id)
            if abs(outgoing - incoming) > self.config.epsilon:
                violations.append(
                    ConservationViolation(stage_id=stage.id, incoming=incoming, outgoing=outgoing)
                )
        return violations

    def clamp_position(self, position: float) -> float:
        return max(self.config.axis_min, min(self.config.axis_max, position))

    # Flow creation -----------------------------------------------------------

    def branch_create(
        self,
        graph: FlowGraph,
        from_stage_id: str,
        to_stage_id: str,
        color: str | None = None,
    ) -> FlowGraph:
        """Add a flow and equal-split the source budget across all its children.

        Any previous unequal split of the source is discarded. Duplicate edges
        are allowed; callers decide whether a second edge makes sense.
        """
        adjacency = graph.adjacency()
        if from_stage_id == to_stage_id or path_exists(adjacency, to_stage_id, from_stage_id):
            raise CycleDetectedError([from_stage_id, to_stage_id, from_stage_id])

        table = self._table(graph)
        existing = table.outgoing(from_stage_id)
        share = table.incoming_value(from_stage_id) / (len(existing) + 1)
        for flow in existing:
            table.set_value(flow.id, share)
        table.add(
            Flow(
                id=self._id_factory(),
                name=f"Flow {len(graph.flows) + 1}",
                from_stage_id=from_stage_id,
                to_stage_id=to_stage_id,
                value=share,
                branch_index=len(existing),
                color=color or self.config.default_flow_color,
            )
        )
        self._rebalance_table(table, graph)
        return graph.with_flows(table.to_list())

    def create_branch_stage(
        self,
        graph: FlowGraph,
        from_stage_id: str,
        position: float,
        vertical_offset: float | None = None,
        name: str | None = None,
        color: str | None = None,
    ) -> FlowGraph:
        source = graph.stage(from_stage_id)
        if source is None:
            logger.debug("Branch source %s not found; ignoring.", from_stage_id)
            return graph
        stage = Stage(
            id=self._id_factory(),
            name=name or f"Stage {len(graph.stages) + 1}",
            position=self.clamp_position(position),
            vertical_offset=vertical_offset,
            color=self.config.default_stage_color,
        )
        if stage.position <= source.position:
            logger.debug(
                "Rejected branch from %s at %.2f: not right of %.2f.",
                from_stage_id,
                stage.position,
                source.position,
            )
            return graph
        expanded = FlowGraph(stages=[*graph.stages, stage], flows=list(graph.flows))
        return self.branch_create(expanded, from_stage_id, stage.id, color)

    def connect_stages(
        self,
        graph: FlowGraph,
        from_stage_id: str,
        to_stage_id: str,
        color: str | None = None,
    ) -> FlowGraph:
        source = graph.stage(from_stage_id)
        target = graph.stage(to_stage_id)
        if source is None or target is None:
            logger.debug("Cannot connect %s -> %s: stage missing.", from_stage_id, to_stage_id)
            return graph
        if target.position <= source.position:
            logger.debug(
                "Rejected flow %s -> %s: target is not right of source.",
                from_stage_id,
                to_stage_id,
            )
            return graph
        return self.branch_create(graph, from_stage_id, to_stage_id, color)

    # Repair ------------------------------------------------------------------

    def rebalance(self, graph: FlowGraph) -> FlowGraph:
        table = self._table(graph)
        self._rebalance_table(table, graph)
        return graph.with_flows(table.to_list())

    def recalculate_subtree(self, graph: FlowGraph, stage_id: str) -> FlowGraph:
        table = self._table(graph)
        self._recalculate(table, graph, [stage_id])
        return graph.with_flows(table.to_list())

    def apply_manual_edit(self, graph: FlowGraph, flow_id: str, percent: float) -> FlowGraph:
        """Set a flow to ``percent`` of its parent's budget and rebalance around it.

        Siblings absorb the remainder in proportion to their current values.
        The downstream rebalance cannot tell which flow the user edited, so the
        edited value is re-asserted afterwards and the siblings are scaled once
        more against the parent's final budget.
        """
        edited = graph.flow(flow_id)
        if edited is None:
            logger.debug("Manual edit ignored: flow %s not found.", flow_id)
            return graph

        parent_id = edited.from_stage_id
        table = self._table(graph)
        siblings = len(table.outgoing(parent_id)) - 1

        incoming = table.incoming_value(parent_id)
        value = self._clamp_edit((percent / 100) * incoming, incoming, siblings)
        table.set_value(flow_id, value)
        self._redistribute(table, parent_id, flow_id, value, incoming)

        self._rebalance_table(table, graph)

        final_incoming = table.incoming_value(parent_id)
        value = self._clamp_edit(value, final_incoming, siblings)
        table.set_value(flow_id, value)
        self._redistribute(table, parent_id, flow_id, value, final_incoming)

        # Children of rescaled siblings settle against their new budgets.
        self._rebalance_table(table, graph)
        return graph.with_flows(table.to_list())

    # Removal -----------------------------------------------------------------

    def delete_stage(self, graph: FlowGraph, stage_id: str) -> FlowGraph:
        if graph.stage(stage_id) is None:
            logger.debug("Delete ignored: stage %s not found.", stage_id)
            return graph
        if graph.is_root(stage_id):
            logger.debug("Delete ignored: stage %s is a root.", stage_id)
            return graph

        parents = [flow.from_stage_id for flow in graph.incoming_flows(stage_id)]
        children = [flow.to_stage_id for flow in graph.outgoing_flows(stage_id)]
        remaining = [
            flow
            for flow in graph.flows
            if flow.from_stage_id != stage_id and flow.to_stage_id != stage_id
        ]
        pruned = FlowGraph(
            stages=[stage for stage in graph.stages if stage.id != stage_id],
            flows=remaining,
        )
        table = self._table(pruned)
        self._recalculate(table, pruned, [*parents, *children])
        return pruned.with_flows(table.to_list())

    def disconnect_flow(self, graph: FlowGraph, flow_id: str) -> FlowGraph:
        flow = graph.flow(flow_id)
        if flow is None:
            logger.debug("Disconnect ignored: flow %s not found.", flow_id)
            return graph
        pruned = graph.with_flows([item for item in graph.flows if item.id != flow_id])
        table = self._table(pruned)
        self._recalculate(table, pruned, [flow.from_stage_id, flow.to_stage_id])
        return pruned.with_flows(table.to_list())

    # Stage attributes --------------------------------------------------------

    def move_stage(
        self,
        graph: FlowGraph,
        stage_id: str,
        position: float,
        vertical_offset: float | None = None,
    ) -> FlowGraph:
        update: Dict[str, object] = {"position": self.clamp_position(position)}
        if vertical_offset is not None:
            update["vertical_offset"] = vertical_offset
        return self._update_stage(graph, stage_id, update)

    def update_stage(
        self,
        graph: FlowGraph,
        stage_id: str,
        name: str | None = None,
        color: str | None = None,
    ) -> FlowGraph:
        update: Dict[str, object] = {}
        if name is not None:
            update["name"] = name
        if color is not None:
            update["color"] = color
        return self._update_stage(graph, stage_id, update)

    def rename_flow(self, graph: FlowGraph, flow_id: str, name: str) -> FlowGraph:
        if graph.flow(flow_id) is None:
            return graph
        return graph.with_flows(
            [
                flow.model_copy(update={"name": name}) if flow.id == flow_id else flow
                for flow in graph.flows
            ]
        )

    # Internals ---------------------------------------------------------------

    def _table(self, graph: FlowGraph) -> _FlowTable:
        return _FlowTable(graph.flows, self.config.root_budget)

    def _update_stage(
        self, graph: FlowGraph, stage_id: str, update: Dict[str, object]
    ) -> FlowGraph:
        if graph.stage(stage_id) is None:
            logger.debug("Stage update ignored: stage %s not found.", stage_id)
            return graph
        if not update:
            return graph
        return FlowGraph(
            stages=[
                stage.model_copy(update=update) if stage.id == stage_id else stage
                for stage in graph.stages
            ],
            flows=list(graph.flows),
        )

    def _rebalance_table(self, table: _FlowTable, graph: FlowGraph) -> None:
        stage_ids = [stage.id for stage in graph.stages]
        known = set(stage_ids)
        for node in table.topological_order(stage_ids):
            if node not in known or not table.outgoing(node):
                continue
            drift = table.outgoing_value(node) - table.incoming_value(node)
            if abs(drift) > self.config.epsilon:
                table.equal_split(node)

    def _recalculate(self, table: _FlowTable, graph: FlowGraph, seeds: List[str]) -> None:
        stage_ids = [stage.id for stage in graph.stages]
        for node in table.topological_order(stage_ids, seeds=seeds):
            table.equal_split(node)

    def _clamp_edit(self, value: float, incoming: float, siblings: int) -> float:
        # Each sibling keeps at least the floor, so the parent still balances.
        ceiling = incoming
        if siblings:
            ceiling = max(0.0, incoming - siblings * self.config.min_flow_value)
        return max(0.0, min(value, ceiling))

    def _redistribute(
        self,
        table: _FlowTable,
        parent_id: str,
        edited_id: str,
        edited_value: float,
        incoming: float,
    ) -> None:
        others = [flow for flow in table.outgoing(parent_id) if flow.id != edited_id]
        if not others:
            return
        remaining = max(0.0, incoming - edited_value)
        others_total = sum(flow.value for flow in others)
        if remaining <= 0 or others_total <= 0:
            for flow in others:
                table.set_value(flow.id, self.config.min_flow_value)
            return
        scale = remaining / others_total
        for flow in others:
            table.set_value(flow.id, flow.value * scale)
