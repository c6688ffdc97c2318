from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import orjson
import typer
from pydantic import ValidationError
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from app.config import AppSettings, load_settings
from app.editor_wiring import build_engine, build_graph_repository, build_layout, build_mapper
from domain.errors import FlowGraphError, UnknownFlowError, UnknownStageError
from domain.models import FlowGraph
from domain.ports.repositories import GraphRepository
from domain.services.flow_conservation import FlowConservationEngine
from domain.services.graph_metrics import compute_graph_metrics

app = typer.Typer(no_args_is_help=True)
console = Console()

GraphOption = typer.Option(
    None, "--graph", help="Graph JSON file (defaults to storage.graph_path)."
)
ConfigOption = typer.Option(None, "--config", help="YAML settings file.")


@dataclass
class _Workspace:
    settings: AppSettings
    path: Path
    repository: GraphRepository
    engine: FlowConservationEngine

    def load(self) -> FlowGraph:
        if not self.repository.exists(self.path):
            console.print(f"[red]Graph file not found:[/] {self.path} (run 'init' first)")
            raise typer.Exit(code=1)
        try:
            return self.repository.load(self.path)
        except ValueError as exc:
            console.print(f"[red]Invalid graph file:[/] {exc}")
            raise typer.Exit(code=1) from exc

    def commit(self, before: FlowGraph, after: FlowGraph, message: str) -> None:
        if after == before:
            console.print(f"[yellow]Unchanged:[/] {message}")
            raise typer.Exit(code=1)
        self.repository.save(after, self.path)
        console.print(f"[green]Saved[/] {self.path}")


def _workspace(config: Optional[Path], graph: Optional[Path]) -> _Workspace:
    try:
        settings = load_settings(config)
    except (FileNotFoundError, ValidationError) as exc:
        console.print(f"[red]Invalid configuration:[/] {exc}")
        raise typer.Exit(code=1) from exc
    return _Workspace(
        settings=settings,
        path=graph or settings.storage.graph_path,
        repository=build_graph_repository(settings),
        engine=build_engine(settings),
    )


def _require_stage(graph: FlowGraph, stage_id: str) -> None:
    if graph.stage(stage_id) is None:
        raise UnknownStageError(stage_id)


def _require_flow(graph: FlowGraph, flow_id: str) -> None:
    if graph.flow(flow_id) is None:
        raise UnknownFlowError(flow_id)


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log engine decisions."),
) -> None:
    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(message)s",
            handlers=[RichHandler(console=console, show_path=False)],
        )


@app.command("init")
def init(
    force: bool = typer.Option(False, help="Overwrite an existing graph file."),
    graph: Optional[Path] = GraphOption,
    config: Optional[Path] = ConfigOption,
) -> None:
    workspace = _workspace(config, graph)
    if workspace.repository.exists(workspace.path) and not force:
        console.print(f"[yellow]Graph already exists:[/] {workspace.path} (use --force)")
        raise typer.Exit(code=1)
    workspace.repository.save(FlowGraph.seed(), workspace.path)
    console.print(f"[green]Wrote[/] {workspace.path}")


@app.command("show")
def show(graph: Optional[Path] = GraphOption, config: Optional[Path] = ConfigOption) -> None:
    workspace = _workspace(config, graph)
    current = workspace.load()
    engine = workspace.engine

    stages = Table(title="Stages")
    for column in ("id", "name", "position", "in", "out"):
        stages.add_column(column)
    for stage in sorted(current.stages, key=lambda item: item.position):
        stages.add_row(
            stage.id,
            stage.name,
            f"{stage.position:g}%",
            f"{engine.incoming_value(current, stage.id):.2f}",
            f"{engine.outgoing_value(current, stage.id):.2f}",
        )
    console.print(stages)

    flows = Table(title="Flows")
    for column in ("id", "name", "from", "to", "value", "share"):
        flows.add_column(column)
    for flow in current.flows:
        flows.add_row(
            flow.id,
            flow.name,
            flow.from_stage_id,
            flow.to_stage_id,
            f"{flow.value:.2f}",
            f"{engine.share_of_parent(current, flow.id):.2f}%",
        )
    console.print(flows)


@app.command("branch")
def branch(
    from_stage: str = typer.Argument(..., help="Source stage id."),
    position: float = typer.Argument(..., help="Axis position of the new stage."),
    y: Optional[float] = typer.Option(None, "--y", help="Vertical offset in pixels."),
    name: Optional[str] = typer.Option(None, help="Name of the new stage."),
    graph: Optional[Path] = GraphOption,
    config: Optional[Path] = ConfigOption,
) -> None:
    workspace = _workspace(config, graph)
    current = workspace.load()
    mapper = build_mapper(workspace.settings)
    with _domain_errors():
        _require_stage(current, from_stage)
        updated = workspace.engine.create_branch_stage(
            current, from_stage, mapper.snap(position), vertical_offset=y, name=name
        )
    workspace.commit(current, updated, f"position {position:g} is not right of {from_stage}")


@app.command("connect")
def connect(
    from_stage: str = typer.Argument(..., help="Source stage id."),
    to_stage: str = typer.Argument(..., help="Target stage id."),
    graph: Optional[Path] = GraphOption,
    config: Optional[Path] = ConfigOption,
) -> None:
    workspace = _workspace(config, graph)
    current = workspace.load()
    with _domain_errors():
        _require_stage(current, from_stage)
        _require_stage(current, to_stage)
        updated = workspace.engine.connect_stages(current, from_stage, to_stage)
    workspace.commit(current, updated, f"{to_stage} is not right of {from_stage}")


@app.command("edit-flow")
def edit_flow(
    flow_id: str = typer.Argument(..., help="Flow id."),
    percent: float = typer.Argument(..., help="Share of the parent's incoming value, 0-100."),
    name: Optional[str] = typer.Option(None, help="New flow name."),
    graph: Optional[Path] = GraphOption,
    config: Optional[Path] = ConfigOption,
) -> None:
    workspace = _workspace(config, graph)
    current = workspace.load()
    with _domain_errors():
        _require_flow(current, flow_id)
        updated = workspace.engine.apply_manual_edit(current, flow_id, percent)
        if name is not None:
            updated = workspace.engine.rename_flow(updated, flow_id, name)
    workspace.commit(current, updated, f"flow {flow_id} already at {percent:g}%")


@app.command("delete-stage")
def delete_stage(
    stage_id: str = typer.Argument(..., help="Stage id."),
    graph: Optional[Path] = GraphOption,
    config: Optional[Path] = ConfigOption,
) -> None:
    workspace = _workspace(config, graph)
    current = workspace.load()
    with _domain_errors():
        _require_stage(current, stage_id)
        updated = workspace.engine.delete_stage(current, stage_id)
    workspace.commit(current, updated, f"{stage_id} is a root stage and cannot be deleted")


@app.command("disconnect")
def disconnect(
    flow_id: str = typer.Argument(..., help="Flow id."),
    graph: Optional[Path] = GraphOption,
    config: Optional[Path] = ConfigOption,
) -> None:
    workspace = _workspace(config, graph)
    current = workspace.load()
    with _domain_errors():
        _require_flow(current, flow_id)
        updated = workspace.engine.disconnect_flow(current, flow_id)
    workspace.commit(current, updated, f"flow {flow_id}")


@app.command("move")
def move(
    stage_id: str = typer.Argument(..., help="Stage id."),
    position: float = typer.Argument(..., help="New axis position (snapped to the tick)."),
    y: Optional[float] = typer.Option(None, "--y", help="Vertical offset in pixels."),
    graph: Optional[Path] = GraphOption,
    config: Optional[Path] = ConfigOption,
) -> None:
    workspace = _workspace(config, graph)
    current = workspace.load()
    mapper = build_mapper(workspace.settings)
    with _domain_errors():
        _require_stage(current, stage_id)
        updated = workspace.engine.move_stage(current, stage_id, mapper.snap(position), y)
    workspace.commit(current, updated, f"{stage_id} already at {position:g}")


@app.command("rebalance")
def rebalance(graph: Optional[Path] = GraphOption, config: Optional[Path] = ConfigOption) -> None:
    workspace = _workspace(config, graph)
    current = workspace.load()
    with _domain_errors():
        updated = workspace.engine.rebalance(current)
    if updated == current:
        console.print("[green]Already balanced[/]")
        return
    workspace.repository.save(updated, workspace.path)
    console.print(f"[green]Rebalanced[/] {workspace.path}")


@app.command("layout")
def layout(
    output: Optional[Path] = typer.Option(None, help="Write the render plan JSON here."),
    graph: Optional[Path] = GraphOption,
    config: Optional[Path] = ConfigOption,
) -> None:
    workspace = _workspace(config, graph)
    plan = build_layout(workspace.settings).build_plan(workspace.load())
    payload = orjson.dumps(plan.to_dict(), option=orjson.OPT_INDENT_2)
    if output is None:
        typer.echo(payload.decode("utf-8"))
        return
    output.parent.mkdir(parents=True, exist_ok=True)
    output.write_bytes(payload)
    console.print(f"[green]Wrote[/] {output}")


@app.command("validate")
def validate(graph: Optional[Path] = GraphOption, config: Optional[Path] = ConfigOption) -> None:
    workspace = _workspace(config, graph)
    current = workspace.load()

    metrics = compute_graph_metrics(current)
    problems: list[str] = []
    if not metrics.is_acyclic:
        problems.append("cycle: " + " -> ".join(metrics.cycle_path or []))
    for flow_id in sorted(metrics.dangling_flow_ids):
        problems.append(f"hanging flow: {flow_id}")
    if metrics.is_acyclic:
        for violation in workspace.engine.conservation_violations(current):
            problems.append(
                f"unbalanced stage {violation.stage_id}: "
                f"in={violation.incoming:.2f} out={violation.outgoing:.2f}"
            )

    console.print(
        f"{metrics.stages} stages, {metrics.flows} flows, "
        f"roots: {', '.join(sorted(metrics.roots)) or '-'}"
    )
    if problems:
        for problem in problems:
            console.print(f"[red]{problem}[/]")
        raise typer.Exit(code=1)
    console.print(f"[green]Valid flow graph:[/] {workspace.path}")


@contextmanager
def _domain_errors() -> Iterator[None]:
    try:
        yield
    except FlowGraphError as exc:
        console.print(f"[red]{exc}[/]")
        raise typer.Exit(code=1) from exc


if __name__ == "__main__":
    app()
