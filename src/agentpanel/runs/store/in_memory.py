from __future__ import annotations

"""In-process run store for local development and tests."""

import asyncio
import itertools
from typing import Optional

from ...errors import RunNotFoundError
from ..models import Run
from .base import RunStore


class InMemoryRunStore(RunStore):
    """Process-local run history; lost when the process exits."""

    def __init__(self) -> None:
        super().__init__()
        self._lock = asyncio.Lock()
        self._ids = itertools.count(1)
        self._runs_by_id: dict[int, Run] = {}
        self._output_by_run: dict[int, list[str]] = {}

    async def create_run(self, agent_ref: str, project_path: str, task: str, model: str) -> Run:
        self._ensure_setup()
        async with self._lock:
            run = Run(
                id=next(self._ids),
                agent_ref=agent_ref,
                project_path=project_path,
                task=task,
                model=model,
            )
            self._runs_by_id[run.id] = run
            return run

    async def update_run(self, run: Run) -> None:
        self._ensure_setup()
        async with self._lock:
            if run.id not in self._runs_by_id:
                raise RunNotFoundError(run.id)
            self._runs_by_id[run.id] = run

    async def get_run(self, run_id: int) -> Optional[Run]:
        self._ensure_setup()
        async with self._lock:
            return self._runs_by_id.get(run_id)

    async def list_runs(self, limit: int = 1000) -> list[Run]:
        self._ensure_setup()
        async with self._lock:
            runs = sorted(self._runs_by_id.values(), key=lambda run: (run.created_at, run.id), reverse=True)
            return runs[:limit]

    async def append_output(self, run_id: int, line: str) -> None:
        self._ensure_setup()
        async with self._lock:
            self._output_by_run.setdefault(run_id, []).append(line)

    async def get_output(self, run_id: int, limit: int | None = None) -> list[str]:
        self._ensure_setup()
        async with self._lock:
            lines = self._output_by_run.get(run_id, [])
            if limit is not None:
                return list(lines[-limit:]) if limit > 0 else []
            return list(lines)
