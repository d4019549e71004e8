from __future__ import annotations

"""
MIT License
Copyright (c) 2026 socioy
See LICENSE file for full license text.

This module defines run records and metrics shared by the registry and stores.
"""

from dataclasses import dataclass, field, replace
import time
from typing import Any, Literal

RunStatus = Literal["pending", "running", "completed", "cancelled", "error"]
ACTIVE_STATUSES: frozenset[str] = frozenset({"pending", "running"})
TERMINAL_STATUSES: frozenset[str] = frozenset({"completed", "cancelled", "error"})


@dataclass(frozen=True, slots=True)
class RunMetrics:
    """Aggregate cost and token counters for one run."""

    cost_usd: float | None = None
    duration_ms: int | None = None
    tokens_in: int = 0
    tokens_out: int = 0

    @property
    def total_tokens(self) -> int:
        return self.tokens_in + self.tokens_out


@dataclass(frozen=True, slots=True)
class Run:
    """One execution of an external agent process."""

    id: int
    agent_ref: str
    project_path: str
    task: str
    model: str
    status: RunStatus = "pending"
    created_at: int = field(default_factory=lambda: int(time.time() * 1000))
    metrics: RunMetrics = field(default_factory=RunMetrics)
    pid: int | None = None
    session_id: str | None = None
    finished_at: int | None = None

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    def with_status(self, status: RunStatus) -> "Run":
        finished_at = self.finished_at
        if status in TERMINAL_STATUSES and finished_at is None:
            finished_at = now_ms()
        return replace(self, status=status, finished_at=finished_at)

    def with_metrics(self, **changes: Any) -> "Run":
        return replace(self, metrics=replace(self.metrics, **changes))


def now_ms() -> int:
    return int(time.time() * 1000)

