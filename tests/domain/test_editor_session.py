from __future__ import annotations

import pytest

from adapters.layout.stacking import StackingLayoutEngine
from domain.models import FlowGraph
from domain.services.interaction import (
    IDLE,
    AwaitingBranchTarget,
    EditingStage,
    InteractionController,
)
from domain.services.session import EditorSession


@pytest.fixture
def session(
    seed_graph: FlowGraph,
    controller: InteractionController,
    layout: StackingLayoutEngine,
) -> EditorSession:
    return EditorSession(seed_graph, controller, layout)


def _branch(session: EditorSession, screen_x: float, screen_y: float = 300) -> None:
    session.click_stage("1")
    session.request_branch()
    session.click_canvas(screen_x, screen_y)


def test_new_session_starts_at_home_view(session: EditorSession) -> None:
    assert session.state == IDLE
    assert session.viewport.pan_x == pytest.approx(-90)
    assert session.zoom_locked
    assert not session.can_undo


def test_canvas_click_is_converted_through_viewport(session: EditorSession) -> None:
    session.click_stage("1")
    session.request_branch()
    assert session.state == AwaitingBranchTarget("1")

    # Screen x 257 is canvas x 347 under the home pan, i.e. position 24.7.
    session.click_canvas(257, 300)

    assert session.state == IDLE
    created = session.graph.stage("n1")
    assert created.position == 25
    assert created.vertical_offset == 300


def test_undo_restores_previous_snapshot(session: EditorSession, seed_graph: FlowGraph) -> None:
    _branch(session, 257)
    assert session.can_undo

    assert session.undo()
    assert session.graph == seed_graph
    assert session.state == IDLE
    assert not session.undo()


def test_selection_changes_are_not_recorded(session: EditorSession) -> None:
    session.click_stage("1")
    session.cancel()
    assert not session.can_undo


def test_drags_are_not_recorded(session: EditorSession) -> None:
    _branch(session, 257)
    session.drag_stage("n1", 40, 100)
    session.drag_stage("n1", 45, 120)

    assert session.graph.stage("n1").position == 45
    session.undo()
    assert session.graph.stage("n1") is None


def test_history_is_bounded(
    seed_graph: FlowGraph,
    controller: InteractionController,
    layout: StackingLayoutEngine,
) -> None:
    session = EditorSession(seed_graph, controller, layout, history_limit=3)
    for screen_x in (257, 357, 457, 557, 657):
        _branch(session, screen_x)

    undone = 0
    while session.undo():
        undone += 1
    assert undone == 3
    assert len(session.graph.stages) == 3


def test_wheel_is_ignored_while_zoom_locked(session: EditorSession) -> None:
    before = session.viewport
    session.wheel(100, 100, -120)
    assert session.viewport == before

    session.zoom_locked = False
    session.wheel(100, 100, -120)
    assert session.viewport.zoom == pytest.approx(1.1)

    session.reset_view()
    assert session.viewport == before


def test_pan_keeps_zoom(session: EditorSession) -> None:
    session.pan_to(-500, 40)
    viewport = session.viewport
    assert (viewport.pan_x, viewport.pan_y, viewport.zoom) == (-500, 40, 1.0)


def test_delete_through_session(session: EditorSession) -> None:
    _branch(session, 257)
    session.click_stage("n1")
    assert session.state == EditingStage("n1")

    session.delete_stage()

    assert session.graph.stage("n1") is None
    assert session.graph.flows == []


def test_render_uses_layout(session: EditorSession) -> None:
    _branch(session, 257)
    plan = session.render()
    assert [item.stage_id for item in plan.stages] == ["1", "n1"]
    assert plan.flow("n2").width == 800
