from __future__ import annotations

"""
MIT License
Copyright (c) 2026 socioy
See LICENSE file for full license text.

This module defines the abstract interface for run persistence backends.
"""

from abc import ABC, abstractmethod
from typing import Optional

from ..models import Run


class RunStore(ABC):
    """
    Base contract for run persistence backends.

    Ordering:
    - `list_runs(...)` returns newest first (by creation time, then id).
    - `get_output(...)` returns lines in the order they were appended.
    """

    def __init__(self) -> None:
        self._is_setup = False

    async def setup(self) -> None:
        """Initialize backend resources."""
        self._is_setup = True

    async def close(self) -> None:
        """Release backend resources."""
        self._is_setup = False

    async def __aenter__(self) -> "RunStore":
        await self.setup()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    def _ensure_setup(self) -> None:
        if not self._is_setup:
            raise RuntimeError(
                "RunStore is not initialized. Call setup() or use `async with`."
            )

    @abstractmethod
    async def create_run(
        self,
        agent_ref: str,
        project_path: str,
        task: str,
        model: str,
    ) -> Run:
        """Insert a new `pending` run and return it with its assigned id."""

    @abstractmethod
    async def update_run(self, run: Run) -> None:
        """Replace the stored record for `run.id`."""

    @abstractmethod
    async def get_run(self, run_id: int) -> Optional[Run]:
        """Return one run, or `None` when unknown."""

    @abstractmethod
    async def list_runs(self, limit: int = 1000) -> list[Run]:
        """List runs newest first."""

    @abstractmethod
    async def append_output(self, run_id: int, line: str) -> None:
        """Append one output line for a run."""

    @abstractmethod
    async def get_output(self, run_id: int, limit: int | None = None) -> list[str]:
        """Return the most recent `limit` output lines, oldest first."""
