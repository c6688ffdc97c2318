from __future__ import annotations

from typing import Protocol

from domain.models import FlowGraph, RenderPlan


class LayoutEngine(Protocol):
    def build_plan(self, graph: FlowGraph) -> RenderPlan:
        ...
