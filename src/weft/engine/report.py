# src/weft/engine/report.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass
class RunReport:
    """
    Outcome of one process run, keyed by worker id.

    Only the coordinating thread of a run mutates a report.
    """
    completed: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    results: dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failed

    def record_completed(self, worker_id: str, result: Any) -> None:
        self.completed.append(worker_id)
        self.results[worker_id] = result

    def as_dict(self) -> dict[str, Any]:
        return {
            "completed": list(self.completed),
            "failed": list(self.failed),
            "skipped": list(self.skipped),
        }
