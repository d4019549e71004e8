"""
Process control: the contract the panel uses to drive agent processes, and a
local implementation that spawns them as subprocesses.
"""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Protocol

import structlog

from ..config import PanelConfig
from ..errors import ProcessControlError, RunNotFoundError, RunStartError
from ..messages.bounded import BoundedList
from ..messages.types import ResultMessage, SystemMessage, parse_message
from ..runs.models import Run
from ..runs.store.base import RunStore
from ..telemetry import NullTelemetrySink, TelemetrySink, emit
from .events import (
    RUN_UPDATE_CHANNEL,
    EventBus,
    cancelled_channel,
    complete_channel,
    error_channel,
    output_channel,
)

logger = structlog.get_logger(__name__)

_STREAM_LIMIT_BYTES = 16 * 1024 * 1024
_STDERR_TAIL_LINES = 50


class ProcessControl(Protocol):
    """
    Contract for starting, cancelling and inspecting agent runs.

    Implementations publish each run's feed on the channels named in
    `agentpanel.execution.events`.
    """

    async def start_run(self, agent_ref: str, project_path: str, task: str, model: str) -> int:
        """
        Start a run and return its id.

        Raises:
            RunStartError: When parameters are invalid.
            ProcessControlError: When the process cannot be spawned.
        """
        ...

    async def kill_run(self, run_id: int) -> bool:
        """Terminate a run; `False` when it is unknown or already finished."""
        ...

    async def get_run(self, run_id: int) -> Run:
        """Return the current record for one run."""
        ...

    async def list_runs(self) -> list[Run]:
        """Return all known runs, newest first."""
        ...

    async def get_run_output(self, run_id: int) -> str:
        """Return the run's captured output as newline-delimited JSON."""
        ...


@dataclass(slots=True)
class _LiveProcess:
    run: Run
    process: asyncio.subprocess.Process
    output: BoundedList[str]
    stderr_tail: BoundedList[str] = field(default_factory=lambda: BoundedList(_STDERR_TAIL_LINES))
    supervisor: asyncio.Task[None] | None = None
    kill_requested: bool = False


class LocalProcessControl:
    """
    Run agents as local subprocesses.

    The command comes from `PanelConfig.agent_command`; `{task}`, `{model}` and
    `{agent}` placeholders are substituted per run. Stdout lines are buffered,
    persisted, folded into run metrics and published; a non-zero exit publishes
    the stderr tail on the error channel before the completion event.
    """

    def __init__(
        self,
        bus: EventBus,
        store: RunStore,
        *,
        config: PanelConfig | None = None,
        telemetry: TelemetrySink | None = None,
    ) -> None:
        self.config = config or PanelConfig()
        self._bus = bus
        self._store = store
        self._telemetry = telemetry or NullTelemetrySink()
        self._live: dict[int, _LiveProcess] = {}

    def build_command(self, agent_ref: str, task: str, model: str) -> list[str]:
        values = {"task": task, "model": model, "agent": agent_ref}
        return [part.format_map(values) for part in self.config.agent_command]

    def live_run_ids(self) -> list[int]:
        return list(self._live)

    async def start_run(self, agent_ref: str, project_path: str, task: str, model: str) -> int:
        if not task or not task.strip():
            raise RunStartError("Task must not be empty")
        path = Path(project_path).expanduser()
        if not path.is_dir():
            raise RunStartError(f"Project path does not exist: {project_path}")
        model = model or self.config.default_model

        run = await self._store.create_run(agent_ref, str(path), task, model)
        command = self.build_command(agent_ref, task, model)
        try:
            process = await asyncio.create_subprocess_exec(
                *command,
                cwd=str(path),
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                limit=_STREAM_LIMIT_BYTES,
            )
        except OSError as e:
            await self._save(run.with_status("error"))
            raise ProcessControlError(f"Failed to spawn agent process: {e}") from e

        run = replace(run, status="running", pid=process.pid)
        live = _LiveProcess(run=run, process=process, output=BoundedList(self.config.output_buffer_lines))
        self._live[run.id] = live
        await self._save(run)
        live.supervisor = asyncio.create_task(self._supervise(live), name=f"agentpanel-run-{run.id}")
        logger.info("Agent run started", run_id=run.id, pid=process.pid, agent=agent_ref, model=model)
        emit(self._telemetry, "process.started", run_id=run.id, agent=agent_ref, model=model)
        return run.id

    async def kill_run(self, run_id: int) -> bool:
        live = self._live.get(run_id)
        if live is None or live.process.returncode is not None or live.kill_requested:
            return False

        try:
            live.process.terminate()
        except ProcessLookupError:
            return False
        live.kill_requested = True
        try:
            await asyncio.wait_for(live.process.wait(), timeout=self.config.kill_timeout_s)
        except asyncio.TimeoutError:
            logger.warning("Agent did not exit after terminate; killing", run_id=run_id)
            live.process.kill()
            await live.process.wait()

        live.run = live.run.with_status("cancelled")
        await self._save(live.run)
        self._live.pop(run_id, None)
        logger.info("Agent run cancelled", run_id=run_id)
        emit(self._telemetry, "process.cancelled", run_id=run_id)
        self._bus.publish(cancelled_channel(run_id))
        return True

    async def get_run(self, run_id: int) -> Run:
        live = self._live.get(run_id)
        if live is not None:
            return live.run
        run = await self._store.get_run(run_id)
        if run is None:
            raise RunNotFoundError(run_id)
        return run

    async def list_runs(self) -> list[Run]:
        return await self._store.list_runs(limit=self.config.max_runs)

    async def get_run_output(self, run_id: int) -> str:
        live = self._live.get(run_id)
        if live is not None:
            return "\n".join(live.output)
        if await self._store.get_run(run_id) is None:
            raise RunNotFoundError(run_id)
        lines = await self._store.get_output(run_id, limit=self.config.output_buffer_lines)
        return "\n".join(lines)

    async def aclose(self) -> None:
        """Kill every live process and wait for their supervisors."""
        supervisors = [live.supervisor for live in self._live.values() if live.supervisor is not None]
        for run_id in list(self._live):
            await self.kill_run(run_id)
        if supervisors:
            await asyncio.gather(*supervisors, return_exceptions=True)

    async def _supervise(self, live: _LiveProcess) -> None:
        run_id = live.run.id
        pumps = [
            asyncio.ensure_future(self._pump_stdout(live)),
            asyncio.ensure_future(self._pump_stderr(live)),
        ]
        try:
            await asyncio.gather(*pumps)
            returncode = await live.process.wait()
        except Exception:
            logger.exception("Agent supervisor failed", run_id=run_id)
            returncode = await self._reap(live)
            for pump in pumps:
                pump.cancel()
            await asyncio.gather(*pumps, return_exceptions=True)

        if live.kill_requested:
            return

        success = returncode == 0
        live.run = live.run.with_status("completed" if success else "error")
        await self._save(live.run)
        self._live.pop(run_id, None)
        logger.info("Agent run finished", run_id=run_id, returncode=returncode)
        emit(self._telemetry, "process.finished", run_id=run_id, returncode=returncode)
        if not success:
            detail = "\n".join(live.stderr_tail) or f"Agent exited with code {returncode}"
            self._bus.publish(error_channel(run_id), detail)
        self._bus.publish(complete_channel(run_id), success)

    async def _pump_stdout(self, live: _LiveProcess) -> None:
        stream = live.process.stdout
        if stream is None:
            return
        run_id = live.run.id
        while True:
            try:
                raw = await stream.readline()
            except ValueError as e:
                # Line exceeded the stream limit; the reader skips past it.
                logger.warning("Dropping oversized agent output line", run_id=run_id, error=str(e))
                continue
            if not raw:
                break
            line = raw.decode("utf-8", errors="replace").rstrip("\r\n")
            if not line.strip():
                continue
            live.output.append(line)
            await self._store.append_output(run_id, line)
            folded = _fold_line(live.run, line)
            if folded is not live.run:
                live.run = folded
                await self._save(folded)
            self._bus.publish(output_channel(run_id), line)

    async def _pump_stderr(self, live: _LiveProcess) -> None:
        stream = live.process.stderr
        if stream is None:
            return
        async for raw in stream:
            line = raw.decode("utf-8", errors="replace").rstrip("\r\n")
            if line:
                live.stderr_tail.append(line)
                logger.debug("Agent stderr", run_id=live.run.id, line=line)

    async def _reap(self, live: _LiveProcess) -> int:
        """Kill the process if it is still alive and wait for its exit code."""
        if live.process.returncode is None:
            try:
                live.process.kill()
            except ProcessLookupError:
                pass
        returncode = await live.process.wait()
        return returncode if returncode else -1

    async def _save(self, run: Run) -> None:
        await self._store.update_run(run)
        self._bus.publish(RUN_UPDATE_CHANNEL, run)


def _fold_line(run: Run, line: str) -> Run:
    """Return `run` updated with session and metrics facts carried by `line`."""
    try:
        payload = json.loads(line)
    except (ValueError, RecursionError):
        return run
    message = parse_message(payload)
    if isinstance(message, SystemMessage) and message.subtype == "init" and message.session_id:
        if message.session_id != run.session_id:
            return replace(run, session_id=message.session_id)
        return run
    if isinstance(message, ResultMessage):
        changes: dict[str, object] = {}
        if message.cost is not None:
            changes["cost_usd"] = message.cost
        if message.duration_ms is not None:
            changes["duration_ms"] = message.duration_ms
        if message.usage is not None:
            changes["tokens_in"] = message.usage.input_tokens
            changes["tokens_out"] = message.usage.output_tokens
        if changes:
            return run.with_metrics(**changes)
    return run
