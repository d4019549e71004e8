"""
Panel-level error taxonomy.
"""

from __future__ import annotations


class PanelError(Exception):
    """Base exception for all agent-panel failures."""
    pass


class PanelConfigurationError(PanelError):
    """
    Raised when panel configuration is invalid.

    Typical cases:
    - unknown run store backend
    - malformed numeric environment values
    - empty agent command template
    """
    pass


class RunError(PanelError):
    """Base exception for run lifecycle failures."""
    pass


class RunStartError(RunError):
    """Raised when a run cannot be started or its parameters are invalid."""
    pass


class RunStopError(RunError):
    """Raised when the process controller fails while cancelling a run."""
    pass


class RunNotFoundError(RunError):
    """Raised when a run id is not known to the process controller or store."""

    def __init__(self, run_id: int) -> None:
        super().__init__(f"Run {run_id} not found")
        self.run_id = run_id


class ProcessControlError(PanelError):
    """Raised for failures talking to, or spawning, the external agent process."""
    pass


class RunStoreError(PanelError):
    """Raised when run persistence fails."""
    pass
