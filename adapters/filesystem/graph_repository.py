from __future__ import annotations

from pathlib import Path
from typing import Any

import orjson
from filelock import FileLock

from domain.models import FlowGraph
from domain.ports.repositories import GraphRepository


class FileSystemGraphRepository(GraphRepository):
    """Bulk save/load of the full ``{"stages": [...], "flows": [...]}`` snapshot."""

    def exists(self, path: Path) -> bool:
        return path.is_file()

    def load(self, path: Path) -> FlowGraph:
        if not path.exists():
            return FlowGraph()
        data = orjson.loads(path.read_bytes())
        if not isinstance(data, dict):
            msg = f"Graph document must be a JSON object: {path}"
            raise ValueError(msg)
        return FlowGraph.model_validate(
            {"stages": data.get("stages") or [], "flows": data.get("flows") or []}
        )

    def save(self, graph: FlowGraph, path: Path) -> None:
        lock_path = path.with_suffix(f"{path.suffix}.lock")
        path.parent.mkdir(parents=True, exist_ok=True)
        with FileLock(str(lock_path)):
            _write_atomic(path, graph.to_document())


def _write_atomic(path: Path, payload: Any) -> None:
    tmp_path = path.with_suffix(f"{path.suffix}.tmp")
    tmp_path.write_bytes(orjson.dumps(payload, option=orjson.OPT_INDENT_2))
    tmp_path.replace(path)
