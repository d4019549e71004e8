"""
Process-wide registry of known runs.

The registry is the only owner of run state. It keeps the run collection in
newest-first order, derives the set of active run ids after every mutation,
caches refreshes for a short TTL while nothing is active, and polls only while
something is.
"""

from __future__ import annotations

import asyncio
import time
from collections import OrderedDict
from dataclasses import replace
from typing import TYPE_CHECKING, Any, Callable, Iterable

import structlog

from ..config import PanelConfig
from ..errors import RunStopError
from ..telemetry import NullTelemetrySink, TelemetrySink
from .models import Run, RunStatus

if TYPE_CHECKING:
    from ..execution.events import EventBus, Subscription
    from ..execution.process import ProcessControl

logger = structlog.get_logger(__name__)


class RunRegistry:
    """
    Deduplicated, bounded view of run state for UI consumers.

    Ordering: pushes prepend unknown runs at the head; refreshes prepend
    unknown runs in fetch order; existing runs keep their position. The
    collection is capped at `max_runs` by dropping from the tail (oldest).

    Attributes:
        error: Message of the last failed operation; existing runs are kept.
        is_loading_runs: `True` while a refresh is in flight.
        is_loading_output: `True` while an output fetch is in flight.
        last_fetch_at: Clock reading of the last successful refresh.
    """

    def __init__(
        self,
        process_control: "ProcessControl",
        *,
        config: PanelConfig | None = None,
        telemetry: TelemetrySink | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config or PanelConfig()
        self.error: str | None = None
        self.is_loading_runs = False
        self.is_loading_output = False
        self.last_fetch_at: float | None = None
        self._process_control = process_control
        self._telemetry = telemetry or NullTelemetrySink()
        self._clock = clock
        self._runs: list[Run] = []
        self._running_ids: frozenset[int] = frozenset()
        self._hidden: set[int] = set()
        self._session_outputs: OrderedDict[int, str] = OrderedDict()
        self._poll_task: asyncio.Task[None] | None = None
        self._push_subscription: "Subscription | None" = None

    @property
    def runs(self) -> list[Run]:
        return list(self._runs)

    @property
    def running_ids(self) -> frozenset[int]:
        return self._running_ids

    @property
    def session_outputs(self) -> dict[int, str]:
        return dict(self._session_outputs)

    @property
    def is_polling(self) -> bool:
        return self._poll_task is not None and not self._poll_task.done()

    def get(self, run_id: int) -> Run | None:
        for run in self._runs:
            if run.id == run_id:
                return run
        return None

    def running_runs(self) -> list[Run]:
        return [run for run in self._runs if run.is_active]

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    def is_cache_fresh(self) -> bool:
        """`True` when a non-forced refresh would be skipped right now."""
        if self.last_fetch_at is None or self._running_ids:
            return False
        return self._clock() - self.last_fetch_at < self.config.cache_ttl_s

    async def refresh(self, force: bool = False) -> bool:
        """
        Reconcile the run collection with the process controller.

        Failures are recorded on `error` and never raised; the last known runs
        stay visible.

        Returns:
            `True` when a fetch happened and succeeded.
        """
        if not force and self.is_cache_fresh():
            return False

        now = self._clock()
        self.is_loading_runs = True
        self.error = None
        try:
            fetched = await self._process_control.list_runs()
        except Exception as e:
            self.error = str(e) or "Failed to fetch agent runs"
            logger.warning("Run refresh failed", error=self.error)
            self._telemetry.increment_counter("registry.refresh_failed")
            return False
        finally:
            self.is_loading_runs = False

        self._merge(fetched)
        self.last_fetch_at = now
        self._telemetry.increment_counter("registry.refresh")
        self._telemetry.record_histogram("registry.refresh_ms", (self._clock() - now) * 1000.0)
        return True

    def apply_push_update(self, run: Run) -> None:
        """Upsert one pushed run: replace in place, or prepend when new."""
        if run.id in self._hidden:
            return
        for index, existing in enumerate(self._runs):
            if existing.id == run.id:
                self._runs[index] = run
                break
        else:
            self._runs.insert(0, run)
        self._trim()
        self._recompute()

    def _merge(self, fetched: Iterable[Run]) -> None:
        positions = {run.id: index for index, run in enumerate(self._runs)}
        fresh: dict[int, Run] = {}
        seen: set[int] = set()
        for run in fetched:
            seen.add(run.id)
            if run.id in self._hidden:
                continue
            index = positions.get(run.id)
            if index is None:
                fresh[run.id] = run
            else:
                self._runs[index] = run
        if fresh:
            self._runs[:0] = list(fresh.values())
        # Hidden ids the controller no longer reports cannot come back.
        self._hidden &= seen
        self._trim()
        self._recompute()

    def _trim(self) -> None:
        overflow = len(self._runs) - self.config.max_runs
        if overflow > 0:
            del self._runs[-overflow:]

    def _recompute(self) -> None:
        self._running_ids = frozenset(run.id for run in self._runs if run.is_active)

    # ------------------------------------------------------------------
    # Controlled updates from execution sessions
    # ------------------------------------------------------------------

    def set_status(self, run_id: int, status: RunStatus, *, default: Run | None = None) -> Run | None:
        """
        Set a run's status; `default` is inserted first when the id is unknown.

        Returns:
            The updated run, or `None` when the run is unknown and no default
            was given.
        """
        current = self.get(run_id) or default
        if current is None:
            return None
        updated = current.with_status(status)
        self.apply_push_update(updated)
        return updated

    def record_usage(self, run_id: int, *, tokens_in: int, tokens_out: int) -> Run | None:
        return self._update_metrics(run_id, tokens_in=tokens_in, tokens_out=tokens_out)

    def record_result(
        self,
        run_id: int,
        *,
        duration_ms: int | None = None,
        cost_usd: float | None = None,
        is_error: bool = False,
    ) -> Run | None:
        changes: dict[str, Any] = {}
        if duration_ms is not None:
            changes["duration_ms"] = duration_ms
        if cost_usd is not None:
            changes["cost_usd"] = cost_usd
        run = self._update_metrics(run_id, **changes) if changes else self.get(run_id)
        if run is None:
            return None
        return self.set_status(run_id, "error" if is_error else "completed")

    def record_session(self, run_id: int, session_id: str) -> Run | None:
        current = self.get(run_id)
        if current is None or current.session_id == session_id:
            return current
        updated = replace(current, session_id=session_id)
        self.apply_push_update(updated)
        return updated

    def _update_metrics(self, run_id: int, **changes: Any) -> Run | None:
        current = self.get(run_id)
        if current is None:
            return None
        updated = current.with_metrics(**changes)
        self.apply_push_update(updated)
        return updated

    # ------------------------------------------------------------------
    # User operations
    # ------------------------------------------------------------------

    async def fetch_session_output(self, run_id: int) -> str | None:
        """
        Fetch and cache the tail of a run's output.

        Returns:
            The cached suffix, or `None` when the fetch failed.
        """
        self.is_loading_output = True
        self.error = None
        try:
            output = await self._process_control.get_run_output(run_id)
        except Exception as e:
            self.error = str(e) or "Failed to fetch session output"
            logger.warning("Session output fetch failed", run_id=run_id, error=self.error)
            return None
        finally:
            self.is_loading_output = False

        limit = self.config.max_output_chars
        trimmed = output[-limit:] if len(output) > limit else output
        self._session_outputs.pop(run_id, None)
        self._session_outputs[run_id] = trimmed
        while len(self._session_outputs) > self.config.max_session_outputs:
            self._session_outputs.popitem(last=False)
        return trimmed

    async def create_run(self, agent_ref: str, project_path: str, task: str, model: str) -> Run:
        """Start a run through the process controller and track it."""
        try:
            run_id = await self._process_control.start_run(agent_ref, project_path, task, model)
            run = await self._process_control.get_run(run_id)
        except Exception as e:
            self.error = str(e) or "Failed to create agent run"
            raise
        self.apply_push_update(run)
        return run

    async def cancel_run(self, run_id: int) -> bool:
        """
        Cancel a run and mark it cancelled locally.

        Raises:
            RunStopError: When the process controller fails.
        """
        try:
            acknowledged = await self._process_control.kill_run(run_id)
        except Exception as e:
            self.error = str(e) or "Failed to cancel agent run"
            raise RunStopError(self.error) from e
        self.set_status(run_id, "cancelled")
        return acknowledged

    async def hide_run(self, run_id: int) -> None:
        """
        Remove a run from the local view, killing it first if still active.

        The run stays in the process controller's history; later refreshes and
        pushes for it are ignored.
        """
        run = self.get(run_id)
        if run is not None and run.is_active:
            try:
                await self._process_control.kill_run(run_id)
            except Exception as e:
                self.error = str(e) or "Failed to delete agent run"
                raise RunStopError(self.error) from e
        self._hidden.add(run_id)
        self._runs = [item for item in self._runs if item.id != run_id]
        self._session_outputs.pop(run_id, None)
        self._recompute()

    def clear_error(self) -> None:
        self.error = None

    # ------------------------------------------------------------------
    # Polling and push wiring
    # ------------------------------------------------------------------

    def start_polling(self, interval_s: float | None = None) -> None:
        """Start the poll loop, replacing any loop already running."""
        self.stop_polling()
        interval = self.config.poll_interval_s if interval_s is None else interval_s
        self._poll_task = asyncio.get_running_loop().create_task(
            self._poll_loop(interval), name="agentpanel-registry-poll"
        )

    def stop_polling(self) -> None:
        task, self._poll_task = self._poll_task, None
        if task is not None and not task.done():
            task.cancel()

    async def _poll_loop(self, interval_s: float) -> None:
        while True:
            await asyncio.sleep(interval_s)
            if self._running_ids:
                await self.refresh()

    def attach(self, bus: "EventBus") -> None:
        """Apply every run published on the run-update channel."""
        from ..execution.events import RUN_UPDATE_CHANNEL

        self.detach()
        self._push_subscription = bus.listen(RUN_UPDATE_CHANNEL, self._handle_push)

    def detach(self) -> None:
        subscription, self._push_subscription = self._push_subscription, None
        if subscription is not None:
            subscription.cancel()

    def _handle_push(self, payload: Any) -> None:
        if isinstance(payload, Run):
            self.apply_push_update(payload)
        else:
            logger.warning("Ignoring malformed run update", payload_type=type(payload).__name__)

    async def aclose(self) -> None:
        task = self._poll_task
        self.stop_polling()
        self.detach()
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)
