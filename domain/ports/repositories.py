from __future__ import annotations

from pathlib import Path
from typing import Protocol

from domain.models import FlowGraph


class GraphRepository(Protocol):
    def exists(self, path: Path) -> bool: ...

    def load(self, path: Path) -> FlowGraph: ...

    def save(self, graph: FlowGraph, path: Path) -> None: ...
