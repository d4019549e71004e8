from __future__ import annotations

"""
MIT License
Copyright (c) 2026 socioy
See LICENSE file for full license text.

This module creates run store backends from configuration or environment variables.
"""

from ..config import PanelConfig
from ..errors import PanelConfigurationError
from .store.base import RunStore
from .store.in_memory import InMemoryRunStore
from .store.sqlite import SQLiteRunStore


def create_run_store(config: PanelConfig) -> RunStore:
    """Create the run store named by `config.run_store_backend`."""
    backend = config.run_store_backend.strip().lower()

    if backend in ("mem", "memory", "inmemory", "in_memory"):
        return InMemoryRunStore()

    if backend in ("sqlite", "sqlite3"):
        return SQLiteRunStore(path=config.sqlite_path)

    raise PanelConfigurationError(f"Unknown AGENTPANEL_RUN_STORE: {backend}")


def create_run_store_from_env() -> RunStore:
    """Create a run store based on `AGENTPANEL_RUN_STORE` and related settings."""
    return create_run_store(PanelConfig.from_env())
