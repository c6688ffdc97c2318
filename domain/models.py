from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Optional, Set

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

AXIS_MIN = -10.0
AXIS_MAX = 110.0
ROOT_BUDGET = 100.0
DEFAULT_COLOR = "#667eea"
SEED_STAGE_ID = "1"


class Stage(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str = Field(..., min_length=1)
    name: str = ""
    position: float = 0.0
    vertical_offset: Optional[float] = Field(default=None, alias="yPosition")
    color: Optional[str] = None


class Flow(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str = Field(..., min_length=1)
    name: str = ""
    from_stage_id: str = Field(..., alias="fromStageId")
    to_stage_id: str = Field(..., alias="toStageId")
    value: float = Field(default=0.0, ge=0.0)
    branch_index: int = Field(default=0, alias="branchIndex")
    color: Optional[str] = None

    @field_validator("branch_index", mode="before")
    @classmethod
    def default_branch_index(cls, value: object) -> object:
        # Documents written before branch indices existed store null here.
        return 0 if value is None else value


class FlowGraph(BaseModel):
    """Immutable snapshot of the diagram: every stage and every flow.

    Engine operations never mutate a snapshot; they build a new one, so two
    snapshots can always be compared for history purposes.
    """

    model_config = ConfigDict(frozen=True)

    stages: List[Stage] = Field(default_factory=list)
    flows: List[Flow] = Field(default_factory=list)

    @model_validator(mode="after")
    def ensure_unique_ids(self) -> "FlowGraph":
        for label, items in (("stage", self.stages), ("flow", self.flows)):
            seen: Set[str] = set()
            for item in items:
                if item.id in seen:
                    msg = f"Duplicate {label} id found: {item.id}"
                    raise ValueError(msg)
                seen.add(item.id)
        return self

    @classmethod
    def seed(cls) -> "FlowGraph":
        return cls(
            stages=[Stage(id=SEED_STAGE_ID, name="Start", position=0.0, color=DEFAULT_COLOR)]
        )

    def stage(self, stage_id: str) -> Optional[Stage]:
        return next((stage for stage in self.stages if stage.id == stage_id), None)

    def flow(self, flow_id: str) -> Optional[Flow]:
        return next((flow for flow in self.flows if flow.id == flow_id), None)

    def stage_ids(self) -> Set[str]:
        return {stage.id for stage in self.stages}

    def incoming_flows(self, stage_id: str) -> List[Flow]:
        return [flow for flow in self.flows if flow.to_stage_id == stage_id]

    def outgoing_flows(self, stage_id: str) -> List[Flow]:
        return [flow for flow in self.flows if flow.from_stage_id == stage_id]

    def is_root(self, stage_id: str) -> bool:
        return not any(flow.to_stage_id == stage_id for flow in self.flows)

    def roots(self) -> List[Stage]:
        targets = {flow.to_stage_id for flow in self.flows}
        return [stage for stage in self.stages if stage.id not in targets]

    def is_hanging(self, flow: Flow) -> bool:
        ids = self.stage_ids()
        return flow.from_stage_id not in ids or flow.to_stage_id not in ids

    def adjacency(self) -> Dict[str, List[str]]:
        adjacency: Dict[str, List[str]] = {stage.id: [] for stage in self.stages}
        for flow in self.flows:
            adjacency.setdefault(flow.from_stage_id, []).append(flow.to_stage_id)
            adjacency.setdefault(flow.to_stage_id, [])
        return adjacency

    def with_flows(self, flows: List[Flow]) -> "FlowGraph":
        return FlowGraph(stages=list(self.stages), flows=flows)

    def to_document(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


@dataclass(frozen=True)
class Point:
    x: float
    y: float


@dataclass(frozen=True)
class StagePlacement:
    stage_id: str
    center: Point
    height: float
    width: float

    @property
    def top(self) -> float:
        return self.center.y - self.height / 2


@dataclass(frozen=True)
class FlowPlacement:
    flow_id: str
    source: Point
    target: Point
    width: float
    source_offset: float
    target_offset: float


@dataclass(frozen=True)
class RenderPlan:
    stages: List[StagePlacement]
    flows: List[FlowPlacement]

    def stage(self, stage_id: str) -> Optional[StagePlacement]:
        return next((item for item in self.stages if item.stage_id == stage_id), None)

    def flow(self, flow_id: str) -> Optional[FlowPlacement]:
        return next((item for item in self.flows if item.flow_id == flow_id), None)

    def to_dict(self) -> dict:
        return {
            "stages": [
                {
                    "id": item.stage_id,
                    "x": item.center.x,
                    "y": item.center.y,
                    "height": item.height,
                    "width": item.width,
                }
                for item in self.stages
            ],
            "flows": [
                {
                    "id": item.flow_id,
                    "from": {"x": item.source.x, "y": item.source.y},
                    "to": {"x": item.target.x, "y": item.target.y},
                    "width": item.width,
                    "sourceOffset": item.source_offset,
                    "targetOffset": item.target_offset,
                }
                for item in self.flows
            ],
        }
