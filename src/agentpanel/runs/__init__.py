"""
Run records, persistence backends and the run registry.
"""

from .models import ACTIVE_STATUSES, TERMINAL_STATUSES, Run, RunMetrics, RunStatus
from .store import InMemoryRunStore, RunStore, SQLiteRunStore
from .factory import create_run_store, create_run_store_from_env
from .registry import RunRegistry

__all__ = [
    "Run",
    "RunMetrics",
    "RunStatus",
    "ACTIVE_STATUSES",
    "TERMINAL_STATUSES",
    "RunStore",
    "InMemoryRunStore",
    "SQLiteRunStore",
    "create_run_store",
    "create_run_store_from_env",
    "RunRegistry",
]
