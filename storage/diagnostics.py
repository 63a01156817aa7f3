"""
Diagnostics sinks
Where per-task generation audit records go.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
import json
import logging
from pathlib import Path
import threading
from typing import Dict, List, Optional, Tuple

from core import TaskGenerationDiagnostics, task_name


logger = logging.getLogger(__name__)


class BaseDiagnosticsSink(ABC):
    """
    Fire-and-forget destination for `TaskGenerationDiagnostics`.

    `record` must never raise into the generation path; implementations
    log and drop on failure.
    """

    @abstractmethod
    def record(self, entry: TaskGenerationDiagnostics) -> None:
        pass

    @abstractmethod
    def entries(self, asset_id: Optional[str] = None) -> List[TaskGenerationDiagnostics]:
        pass

    def latest(self, asset_id: str, task) -> Optional[TaskGenerationDiagnostics]:
        name = task_name(task)
        matches = [entry for entry in self.entries(asset_id) if task_name(entry.task) == name]
        return matches[-1] if matches else None


class MemoryDiagnosticsSink(BaseDiagnosticsSink):
    """Keeps the newest record per (asset, task); for tests and dry runs."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._entries: Dict[Tuple[str, str], TaskGenerationDiagnostics] = {}

    def record(self, entry: TaskGenerationDiagnostics) -> None:
        with self._lock:
            key = (entry.asset_id, task_name(entry.task))
            # reinsert so iteration order follows the latest write
            self._entries.pop(key, None)
            self._entries[key] = entry

    def entries(self, asset_id: Optional[str] = None) -> List[TaskGenerationDiagnostics]:
        with self._lock:
            values = list(self._entries.values())
        if asset_id is None:
            return values
        return [entry for entry in values if entry.asset_id == asset_id]

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()


class JsonlDiagnosticsSink(BaseDiagnosticsSink):
    """Appends one JSON line per record."""

    def __init__(self, path: str) -> None:
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    def record(self, entry: TaskGenerationDiagnostics) -> None:
        line = entry.model_dump_json()
        try:
            with self._lock, open(self.path, "a", encoding="utf-8") as f:
                f.write(line + "\n")
        except OSError as e:
            logger.warning(f"Failed to write diagnostics to {self.path}: {e}")

    def entries(self, asset_id: Optional[str] = None) -> List[TaskGenerationDiagnostics]:
        if not self.path.exists():
            return []
        with self._lock:
            lines = self.path.read_text(encoding="utf-8").splitlines()

        result: List[TaskGenerationDiagnostics] = []
        for line in lines:
            if not line.strip():
                continue
            try:
                entry = TaskGenerationDiagnostics.model_validate(json.loads(line))
            except ValueError as e:
                logger.debug(f"Skipping unreadable diagnostics line: {e}")
                continue
            if asset_id is None or entry.asset_id == asset_id:
                result.append(entry)
        return result


def get_diagnostics_sink(path: Optional[str] = None) -> BaseDiagnosticsSink:
    """JSONL sink when a path is given, in-memory otherwise."""
    if path:
        return JsonlDiagnosticsSink(path)
    return MemoryDiagnosticsSink()
