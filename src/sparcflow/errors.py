from __future__ import annotations


class SparcflowError(RuntimeError):
    """Base class for workflow engine failures."""


class NodeExecutionError(SparcflowError):
    """Raised when a phase node fails or exceeds its time limit."""

    def __init__(self, message: str, *, phase: str, timed_out: bool = False) -> None:
        super().__init__(message)
        self.phase = phase
        self.timed_out = timed_out


class OrchestrationError(SparcflowError):
    """Raised when the decision policy fails; aborts the whole run."""


class PersistenceError(SparcflowError):
    """Raised when a workflow record cannot be read or written."""

    def __init__(self, message: str, *, issue_id: str | None = None) -> None:
        super().__init__(message)
        self.issue_id = issue_id
