from __future__ import annotations

from typing import List


class FlowGraphError(ValueError):
    """Raised when an operation cannot be applied to the flow graph."""


class CycleDetectedError(FlowGraphError):
    def __init__(self, path: List[str]) -> None:
        self.path = list(path)
        super().__init__(f"Cycle detected in flow graph: {' -> '.join(self.path)}")


class UnknownStageError(FlowGraphError):
    def __init__(self, stage_id: str) -> None:
        self.stage_id = stage_id
        super().__init__(f"Stage not found: {stage_id}")


class UnknownFlowError(FlowGraphError):
    def __init__(self, flow_id: str) -> None:
        self.flow_id = flow_id
        super().__init__(f"Flow not found: {flow_id}")
