"""
Execution session: one run's lifecycle from start to completion.

A session starts a run, observes its four event channels, feeds output into a
`StreamAssembler`, and reports derived facts to the `RunRegistry`. `stop()`
terminates the run; `teardown()` only detaches observation and leaves the run
executing in the background.
"""

from __future__ import annotations

import json
import time
from functools import partial
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable

import structlog

from ..config import PanelConfig
from ..errors import RunStartError, RunStopError
from ..messages.assembler import StreamAssembler, TokenUsage
from ..messages.bounded import BoundedList
from ..messages.types import ResultMessage, StreamMessage, error_result
from ..runs.models import Run, RunStatus
from ..telemetry import NullTelemetrySink, TelemetrySink, emit
from .events import (
    EventBus,
    Subscription,
    cancelled_channel,
    complete_channel,
    error_channel,
    output_channel,
)
from .process import ProcessControl

if TYPE_CHECKING:
    from ..runs.registry import RunRegistry

logger = structlog.get_logger(__name__)


class ExecutionSession:
    """
    Owns the subscriptions and timeline for the run it started.

    Attributes:
        agent_ref: Agent the session runs.
        project_path: Working directory handed to the process.
        run_id: Id of the current run, `None` before a successful start.
        is_running: `True` between a successful start and a terminal event.
        error: Human-readable error of the last run, if any.
        session_id: Agent session id announced on the feed.
    """

    def __init__(
        self,
        process_control: ProcessControl,
        bus: EventBus,
        *,
        agent_ref: str,
        project_path: str,
        registry: "RunRegistry | None" = None,
        config: PanelConfig | None = None,
        telemetry: TelemetrySink | None = None,
        on_session_info: Callable[[str, str], None] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config or PanelConfig()
        self.agent_ref = agent_ref
        self.project_path = project_path
        self.task = ""
        self.model = self.config.default_model
        self.run_id: int | None = None
        self.is_running = False
        self.error: str | None = None
        self.session_id: str | None = None
        self._process_control = process_control
        self._bus = bus
        self._registry = registry
        self._telemetry = telemetry or NullTelemetrySink()
        self._on_session_info = on_session_info
        self._clock = clock
        self._started_at: float | None = None
        self._elapsed_s = 0.0
        self._subscriptions: list[Subscription] = []
        self._torn_down = False
        self.assembler = StreamAssembler(
            config=self.config,
            on_token_update=self._handle_tokens,
            on_session_info=self._handle_session_info,
            telemetry=self._telemetry,
        )

    @property
    def messages(self) -> BoundedList[StreamMessage]:
        return self.assembler.messages

    @property
    def raw_output(self) -> BoundedList[str]:
        return self.assembler.raw_lines

    @property
    def elapsed_s(self) -> float:
        """Seconds since start while running; frozen at the final value afterwards."""
        if self._started_at is None:
            return self._elapsed_s
        return self._clock() - self._started_at

    @property
    def subscriptions(self) -> list[Subscription]:
        return list(self._subscriptions)

    async def start(self, task: str, model: str | None = None) -> int:
        """
        Start a run of `task` and begin observing it.

        Raises:
            RunStartError: When the task or project path is invalid or the
                process controller rejects the start. The timeline then ends
                with a synthetic error result explaining the failure.
        """
        self._release()
        self.assembler.clear()
        self.task = task
        self.model = model or self.config.default_model
        self.run_id = None
        self.error = None
        self.session_id = None
        self._torn_down = False
        self.is_running = True
        self._started_at = self._clock()
        self._elapsed_s = 0.0

        try:
            if not task or not task.strip():
                raise RunStartError("Task must not be empty")
            if not Path(self.project_path).expanduser().is_dir():
                raise RunStartError(f"Project path does not exist: {self.project_path}")
            run_id = await self._process_control.start_run(
                self.agent_ref, self.project_path, task, self.model
            )
        except Exception as e:
            text = f"Failed to execute agent: {e}"
            self._stop_clock()
            self.error = text
            self.assembler.append(error_result(text))
            logger.warning("Agent start failed", agent=self.agent_ref, error=str(e))
            emit(self._telemetry, "run.start_failed", agent=self.agent_ref, error=str(e))
            if isinstance(e, RunStartError):
                raise
            raise RunStartError(text) from e

        self.run_id = run_id
        self._subscriptions = [
            self._bus.listen(output_channel(run_id), partial(self._handle_output, run_id)),
            self._bus.listen(error_channel(run_id), partial(self._handle_error, run_id)),
            self._bus.listen(complete_channel(run_id), partial(self._handle_complete, run_id)),
            self._bus.listen(cancelled_channel(run_id), partial(self._handle_cancelled, run_id)),
        ]
        if self._registry is not None:
            self._registry.set_status(
                run_id,
                "running",
                default=Run(
                    id=run_id,
                    agent_ref=self.agent_ref,
                    project_path=self.project_path,
                    task=task,
                    model=self.model,
                ),
            )
        logger.info("Agent run observed", run_id=run_id, agent=self.agent_ref)
        emit(self._telemetry, "run.started", run_id=run_id, agent=self.agent_ref, model=self.model)
        return run_id

    async def stop(self, run_id: int | None = None) -> bool:
        """
        Ask the process controller to terminate a run.

        Returns:
            Whether termination was acknowledged. `False` when no run is known
            or the run had already finished.

        Raises:
            RunStopError: When the process controller itself fails.
        """
        target = run_id if run_id is not None else self.run_id
        if target is None:
            logger.warning("No run id available to stop", agent=self.agent_ref)
            return False

        try:
            acknowledged = await self._process_control.kill_run(target)
        except Exception as e:
            raise RunStopError(f"Failed to stop agent run {target}: {e}") from e

        if not acknowledged:
            logger.warning("Run was not stopped; it may have already finished", run_id=target)
        if target == self.run_id:
            self._stop_clock()
        if acknowledged and self._registry is not None:
            self._registry.set_status(target, "cancelled")
        emit(self._telemetry, "run.stop_requested", run_id=target, acknowledged=acknowledged)
        return acknowledged

    def teardown(self) -> None:
        """Stop observing the current run without cancelling it."""
        self._torn_down = True
        self._release()
        logger.debug("Session detached", run_id=self.run_id)

    async def load_history(self, run_id: int) -> int:
        """
        Load a finished run's stored output into the timeline.

        Returns:
            Number of feed lines read.
        """
        blob = await self._process_control.get_run_output(run_id)
        return self.assembler.load_output(blob)

    def _is_current(self, run_id: int) -> bool:
        return not self._torn_down and self.run_id == run_id and bool(self._subscriptions)

    def _handle_output(self, run_id: int, payload: Any) -> None:
        if not self._is_current(run_id):
            return
        line = payload if isinstance(payload, str) else json.dumps(payload)
        message = self.assembler.handle_line(line)
        if isinstance(message, ResultMessage) and self._registry is not None:
            self._registry.record_result(
                run_id,
                duration_ms=message.duration_ms,
                cost_usd=message.cost,
                is_error=message.is_error,
            )

    def _handle_error(self, run_id: int, payload: Any) -> None:
        if not self._is_current(run_id):
            return
        text = str(payload) if payload is not None else "Agent reported an error"
        logger.warning("Agent error", run_id=run_id, error=text)
        self.error = text
        self.assembler.append(error_result(text))
        self.assembler.settle()
        self._finish(run_id, "error")

    def _handle_complete(self, run_id: int, success: Any) -> None:
        if not self._is_current(run_id):
            return
        if not success:
            self.error = self.error or "Agent execution failed"
        self._finish(run_id, "completed" if success else "error")

    def _handle_cancelled(self, run_id: int, payload: Any = None) -> None:
        _ = payload
        if not self._is_current(run_id):
            return
        self.error = "Agent execution was cancelled"
        self._finish(run_id, "cancelled")

    def _handle_tokens(self, usage: TokenUsage) -> None:
        if self.run_id is not None and self._registry is not None:
            self._registry.record_usage(
                self.run_id,
                tokens_in=usage.input_tokens,
                tokens_out=usage.output_tokens,
            )

    def _handle_session_info(self, session_id: str, project_id: str) -> None:
        self.session_id = session_id
        if self.run_id is not None and self._registry is not None:
            self._registry.record_session(self.run_id, session_id)
        if self._on_session_info is not None:
            self._on_session_info(session_id, project_id)

    def _finish(self, run_id: int, status: RunStatus) -> None:
        self._stop_clock()
        self.assembler.settle()
        if self._registry is not None:
            self._registry.set_status(run_id, status)
        self._release()
        logger.info("Agent run finished", run_id=run_id, status=status)
        emit(self._telemetry, "run.finished", run_id=run_id, status=status)

    def _stop_clock(self) -> None:
        if self._started_at is not None:
            self._elapsed_s = self._clock() - self._started_at
        self._started_at = None
        self.is_running = False

    def _release(self) -> None:
        subscriptions, self._subscriptions = self._subscriptions, []
        EventBus.release_all(subscriptions)
