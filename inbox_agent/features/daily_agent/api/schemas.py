"""
Admin API request and response models for the daily agent.
"""

from typing import Any

from pydantic import BaseModel, Field


class RunWorkflowRequest(BaseModel):
    """Manual trigger options."""

    bypass_activity_guard: bool = Field(
        default=True, description="Run even if the account owner is currently active"
    )


class ExecutionSummaryResponse(BaseModel):
    success: bool
    execution_id: str
    status: str
    results: dict[str, int]
    metrics: dict[str, Any] = Field(default_factory=dict)
    digest_summary: str | None = None


class ExecutionDetailResponse(BaseModel):
    id: str
    account_id: str
    status: str
    started_at: Any
    ended_at: Any = None
    results: dict[str, Any] = Field(default_factory=dict)
    costs_cents: dict[str, int] = Field(default_factory=dict)
    step_durations: dict[str, float] = Field(default_factory=dict)
    warnings: list[str] = Field(default_factory=list)
    digest_summary: str | None = None
    error: str | None = None
    step_log: list[dict[str, Any]] = Field(default_factory=list)


class DigestResponse(BaseModel):
    account_id: str
    date_key: str
    digest: dict[str, Any]
