"""Workflow exceptions."""


class WorkflowError(Exception):
    """Base error for a daily agent run."""

    def __init__(
        self,
        message: str,
        operation: str | None = None,
        recoverable: bool = True,
        execution_id: str | None = None,
    ):
        super().__init__(message)
        self.operation = operation
        self.recoverable = recoverable
        self.execution_id = execution_id


class WorkflowTimeoutError(WorkflowError):
    """The run exceeded its total time budget between stages."""

    def __init__(self, message: str, elapsed_seconds: float, budget_seconds: float, **kwargs):
        super().__init__(message, operation="time_budget", recoverable=True, **kwargs)
        self.elapsed_seconds = elapsed_seconds
        self.budget_seconds = budget_seconds


class WorkflowConfigError(WorkflowError):
    """Stored per-account configuration failed validation. Never retried."""

    def __init__(self, message: str, **kwargs):
        super().__init__(message, operation="load_config", recoverable=False, **kwargs)


class IntakeError(WorkflowError):
    """Candidate messages could not be fetched."""


class DigestPersistenceError(WorkflowError):
    """The digest could not be written."""
