from __future__ import annotations

"""
MIT License
Copyright (c) 2026 socioy
See LICENSE file for full license text.

This module defines environment-driven runtime configuration for the agent panel.
"""

import os
import shlex
from dataclasses import dataclass

from .errors import PanelConfigurationError

DEFAULT_AGENT_COMMAND: tuple[str, ...] = (
    "claude",
    "-p",
    "{task}",
    "--model",
    "{model}",
    "--output-format",
    "stream-json",
    "--verbose",
)


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise PanelConfigurationError(f"{name} must be an integer, got {raw!r}") from e


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError as e:
        raise PanelConfigurationError(f"{name} must be a number, got {raw!r}") from e


@dataclass(frozen=True, slots=True)
class PanelConfig:
    # Timeline memory bounds
    max_messages: int = 1000
    max_raw_lines: int = 1000
    max_accumulated_chars: int = 10_000

    # Run registry
    max_runs: int = 1000
    max_output_chars: int = 10_000
    max_session_outputs: int = 500
    poll_interval_s: float = 3.0
    cache_ttl_s: float = 5.0

    # Local process control
    agent_command: tuple[str, ...] = DEFAULT_AGENT_COMMAND
    default_model: str = "sonnet"
    kill_timeout_s: float = 5.0
    output_buffer_lines: int = 10_000

    # Persistence
    run_store_backend: str = "memory"
    sqlite_path: str = "agentpanel_runs.sqlite3"

    def __post_init__(self) -> None:
        if not self.agent_command:
            raise PanelConfigurationError("agent_command must not be empty")
        for name in ("max_messages", "max_raw_lines", "max_runs", "max_session_outputs"):
            if getattr(self, name) < 1:
                raise PanelConfigurationError(f"{name} must be >= 1")

    @staticmethod
    def from_env() -> "PanelConfig":
        command = os.getenv("AGENTPANEL_AGENT_COMMAND")
        return PanelConfig(
            max_messages=_env_int("AGENTPANEL_MAX_MESSAGES", 1000),
            max_raw_lines=_env_int("AGENTPANEL_MAX_RAW_LINES", 1000),
            max_accumulated_chars=_env_int("AGENTPANEL_MAX_ACCUMULATED_CHARS", 10_000),
            max_runs=_env_int("AGENTPANEL_MAX_RUNS", 1000),
            max_output_chars=_env_int("AGENTPANEL_MAX_OUTPUT_CHARS", 10_000),
            max_session_outputs=_env_int("AGENTPANEL_MAX_SESSION_OUTPUTS", 500),
            poll_interval_s=_env_float("AGENTPANEL_POLL_INTERVAL_S", 3.0),
            cache_ttl_s=_env_float("AGENTPANEL_CACHE_TTL_S", 5.0),
            agent_command=tuple(shlex.split(command)) if command else DEFAULT_AGENT_COMMAND,
            default_model=os.getenv("AGENTPANEL_DEFAULT_MODEL", "sonnet"),
            kill_timeout_s=_env_float("AGENTPANEL_KILL_TIMEOUT_S", 5.0),
            output_buffer_lines=_env_int("AGENTPANEL_OUTPUT_BUFFER_LINES", 10_000),
            run_store_backend=os.getenv("AGENTPANEL_RUN_STORE", "memory"),
            sqlite_path=os.getenv("AGENTPANEL_SQLITE_PATH", "agentpanel_runs.sqlite3"),
        )
