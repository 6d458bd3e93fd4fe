"""
Domain subpackage for the daily agent feature.
"""

from .config import AgentConfig, QuietHours
from .errors import (
    DigestPersistenceError,
    IntakeError,
    WorkflowConfigError,
    WorkflowError,
    WorkflowTimeoutError,
)
from .models import (
    CandidateMessage,
    Digest,
    ExecutionRecord,
    ExecutionStatus,
    RunContext,
    WorkflowStep,
)

__all__ = [
    "AgentConfig",
    "QuietHours",
    "DigestPersistenceError",
    "IntakeError",
    "WorkflowConfigError",
    "WorkflowError",
    "WorkflowTimeoutError",
    "CandidateMessage",
    "Digest",
    "ExecutionRecord",
    "ExecutionStatus",
    "RunContext",
    "WorkflowStep",
]
