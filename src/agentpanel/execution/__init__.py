"""
Event channels, process control and per-run execution sessions.
"""

from .events import (
    RUN_UPDATE_CHANNEL,
    EventBus,
    Subscription,
    cancelled_channel,
    complete_channel,
    error_channel,
    output_channel,
    run_channels,
)
from .process import LocalProcessControl, ProcessControl
from .session import ExecutionSession

__all__ = [
    "RUN_UPDATE_CHANNEL",
    "EventBus",
    "Subscription",
    "output_channel",
    "error_channel",
    "complete_channel",
    "cancelled_channel",
    "run_channels",
    "ProcessControl",
    "LocalProcessControl",
    "ExecutionSession",
]
