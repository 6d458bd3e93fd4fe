"""
Daily agent feature package.

Everything the daily inbox workflow needs (domain models, repositories,
pipeline stages, orchestrator, scheduler job and admin API) lives in this
slice. Only domain types are re-exported here.
"""

from .domain.models import CandidateMessage, Digest, ExecutionRecord  # noqa: F401
