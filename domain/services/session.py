from __future__ import annotations

from typing import List

from domain.models import FlowGraph, RenderPlan
from domain.ports.layout import LayoutEngine
from domain.services.coordinates import Viewport
from domain.services.interaction import (
    IDLE,
    InteractionController,
    InteractionState,
    Transition,
)

HISTORY_LIMIT = 50


class EditorSession:
    """Owns the current graph, the interaction state, the view and undo history.

    Every transition that changes the graph records the previous snapshot,
    except stage drags, which happen continuously under the pointer.
    """

    def __init__(
        self,
        graph: FlowGraph,
        controller: InteractionController,
        layout: LayoutEngine,
        history_limit: int = HISTORY_LIMIT,
    ) -> None:
        self.graph = graph
        self.state: InteractionState = IDLE
        self.controller = controller
        self.layout = layout
        self.history_limit = history_limit
        self.zoom_locked = True
        self.viewport: Viewport = controller.mapper.home_viewport(controller.canvas_width)
        self._history: List[FlowGraph] = []

    @property
    def can_undo(self) -> bool:
        return bool(self._history)

    def undo(self) -> bool:
        if not self._history:
            return False
        self.graph = self._history.pop()
        self.state = IDLE
        return True

    def render(self) -> RenderPlan:
        return self.layout.build_plan(self.graph)

    # Pointer and keyboard events -------------------------------------------

    def click_stage(self, stage_id: str) -> None:
        self._apply(self.controller.click_stage(self.state, self.graph, stage_id))

    def click_flow(self, flow_id: str) -> None:
        self._apply(self.controller.click_flow(self.state, self.graph, flow_id))

    def click_canvas(self, screen_x: float, screen_y: float) -> None:
        point = self.viewport.screen_to_canvas(screen_x, screen_y)
        self._apply(
            self.controller.click_canvas(
                self.state, self.graph, point.x, point.y, zoom=self.viewport.zoom
            )
        )

    def request_branch(self) -> None:
        self._apply(self.controller.request_branch(self.state, self.graph))

    def edit_flow_draft(self, percent: float | None = None, name: str | None = None) -> None:
        self._apply(
            self.controller.edit_flow_draft(self.state, self.graph, percent=percent, name=name)
        )

    def save(self, name: str | None = None, color: str | None = None) -> None:
        self._apply(self.controller.save(self.state, self.graph, name=name, color=color))

    def cancel(self) -> None:
        self._apply(self.controller.cancel(self.state, self.graph))

    def delete_stage(self) -> None:
        self._apply(self.controller.delete_stage(self.state, self.graph))

    def disconnect_flow(self, flow_id: str) -> None:
        self._apply(self.controller.disconnect_flow(self.state, self.graph, flow_id))

    def drag_stage(
        self, stage_id: str, position: float, vertical_offset: float | None = None
    ) -> None:
        transition = self.controller.drag_stage(
            self.state, self.graph, stage_id, position, vertical_offset
        )
        self._apply(transition, record=False)

    # View ------------------------------------------------------------------

    def wheel(self, screen_x: float, screen_y: float, wheel_delta: float) -> None:
        if self.zoom_locked:
            return
        self.viewport = self.controller.mapper.zoom_at(
            self.viewport, screen_x, screen_y, wheel_delta
        )

    def pan_to(self, pan_x: float, pan_y: float) -> None:
        self.viewport = self.viewport.pan_to(pan_x, pan_y)

    def reset_view(self) -> None:
        self.viewport = self.controller.mapper.home_viewport(self.controller.canvas_width)

    def _apply(self, transition: Transition, record: bool = True) -> None:
        if record and transition.graph != self.graph:
            self._history.append(self.graph)
            if len(self._history) > self.history_limit:
                self._history.pop(0)
        self.graph = transition.graph
        self.state = transition.state
