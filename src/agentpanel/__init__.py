"""
Agent panel core: run execution, stream assembly and run registry.
"""

from .config import PanelConfig
from .errors import (
    PanelConfigurationError,
    PanelError,
    ProcessControlError,
    RunError,
    RunNotFoundError,
    RunStartError,
    RunStopError,
    RunStoreError,
)
from .execution import EventBus, ExecutionSession, LocalProcessControl, ProcessControl
from .messages import StreamAssembler
from .runs import Run, RunMetrics, RunRegistry

__all__ = [
    "PanelConfig",
    "PanelError",
    "PanelConfigurationError",
    "RunError",
    "RunStartError",
    "RunStopError",
    "RunNotFoundError",
    "ProcessControlError",
    "RunStoreError",
    "EventBus",
    "ExecutionSession",
    "LocalProcessControl",
    "ProcessControl",
    "StreamAssembler",
    "Run",
    "RunMetrics",
    "RunRegistry",
]
