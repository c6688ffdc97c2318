from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass

from domain.models import FlowGraph


@dataclass(frozen=True)
class GraphMetrics:
    stages: int
    flows: int
    in_degree: dict[str, int]
    out_degree: dict[str, int]
    roots: set[str]
    sinks: set[str]
    branch_stages: set[str]
    merge_stages: set[str]
    dangling_flow_ids: set[str]
    is_acyclic: bool
    cycle_path: list[str] | None
    weakly_connected: bool


def compute_graph_metrics(graph: FlowGraph) -> GraphMetrics:
    stage_ids = graph.stage_ids()
    dangling = {flow.id for flow in graph.flows if graph.is_hanging(flow)}

    in_degree = {stage_id: 0 for stage_id in stage_ids}
    out_degree = {stage_id: 0 for stage_id in stage_ids}
    for flow in graph.flows:
        if flow.id in dangling:
            continue
        out_degree[flow.from_stage_id] += 1
        in_degree[flow.to_stage_id] += 1

    adjacency = graph.adjacency()
    cycle_path = find_cycle_path(adjacency)

    return GraphMetrics(
        stages=len(stage_ids),
        flows=len(graph.flows),
        in_degree=in_degree,
        out_degree=out_degree,
        roots={stage_id for stage_id, deg in in_degree.items() if deg == 0},
        sinks={stage_id for stage_id, deg in out_degree.items() if deg == 0},
        branch_stages={stage_id for stage_id, deg in out_degree.items() if deg > 1},
        merge_stages={stage_id for stage_id, deg in in_degree.items() if deg > 1},
        dangling_flow_ids=dangling,
        is_acyclic=cycle_path is None,
        cycle_path=cycle_path,
        weakly_connected=_is_weakly_connected(stage_ids, adjacency),
    )


def find_cycle_path(adjacency: Mapping[str, Sequence[str]]) -> list[str] | None:
    """Return the first directed cycle found as ``[a, b, ..., a]``, or None.

    Iterative three-colour DFS; deep chains never hit the recursion limit.
    """
    color: dict[str, int] = {}
    for start in adjacency:
        if color.get(start, 0):
            continue
        color[start] = 1
        path = [start]
        iterators = [iter(adjacency.get(start, ()))]
        while iterators:
            neighbor = next(iterators[-1], None)
            if neighbor is None:
                color[path.pop()] = 2
                iterators.pop()
                continue
            state = color.get(neighbor, 0)
            if state == 1:
                return path[path.index(neighbor) :] + [neighbor]
            if state == 0:
                color[neighbor] = 1
                path.append(neighbor)
                iterators.append(iter(adjacency.get(neighbor, ())))
    return None


def path_exists(adjacency: Mapping[str, Sequence[str]], source: str, target: str) -> bool:
    stack = [source]
    visited: set[str] = set()
    while stack:
        node = stack.pop()
        if node == target:
            return True
        if node in visited:
            continue
        visited.add(node)
        stack.extend(adjacency.get(node, ()))
    return False


def _is_weakly_connected(vertices: set[str], adjacency: Mapping[str, list[str]]) -> bool:
    if not vertices:
        return True
    undirected: dict[str, set[str]] = {node: set() for node in vertices}
    for source, targets in adjacency.items():
        for target in targets:
            if source not in vertices or target not in vertices:
                continue
            undirected[source].add(target)
            undirected[target].add(source)

    start = next(iter(vertices))
    stack = [start]
    visited: set[str] = set()
    while stack:
        node = stack.pop()
        if node in visited:
            continue
        visited.add(node)
        stack.extend(undirected.get(node, set()) - visited)
    return visited == vertices
