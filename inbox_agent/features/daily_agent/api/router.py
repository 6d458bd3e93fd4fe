"""
Admin routes for the daily agent.

Usage:
    1. POST /admin/daily-agent/{account_id}/run - Run the workflow now
    2. GET /admin/daily-agent/{account_id}/executions/{execution_id} - Execution record
    3. GET /admin/daily-agent/{account_id}/digests/{date_key} - Stored digest
"""

from fastapi import APIRouter, Depends, HTTPException, status

from inbox_agent.db.helpers import DatabaseError
from inbox_agent.features.daily_agent.api.schemas import (
    DigestResponse,
    ExecutionDetailResponse,
    ExecutionSummaryResponse,
    RunWorkflowRequest,
)
from inbox_agent.features.daily_agent.domain.errors import WorkflowConfigError, WorkflowError
from inbox_agent.features.daily_agent.repository.workflow_repository import (
    PostgresWorkflowRepository,
    WorkflowRepository,
)
from inbox_agent.features.daily_agent.services.workflow_service import (
    DailyAgentWorkflow,
    build_daily_agent_workflow,
    summary_to_dict,
)
from inbox_agent.infrastructure.observability.logging import get_logger

router = APIRouter(prefix="/admin/daily-agent", tags=["daily-agent"])
logger = get_logger(__name__)

_workflow: DailyAgentWorkflow | None = None


def get_repository() -> WorkflowRepository:
    return PostgresWorkflowRepository()


def get_workflow() -> DailyAgentWorkflow:
    global _workflow
    if _workflow is None:
        _workflow = build_daily_agent_workflow()
    return _workflow


@router.post("/{account_id}/run", response_model=ExecutionSummaryResponse)
async def run_workflow(
    account_id: str,
    request: RunWorkflowRequest | None = None,
    workflow: DailyAgentWorkflow = Depends(get_workflow),
):
    """
    Run the daily workflow synchronously for one account.

    Raises:
        422: Stored agent config is invalid
        500: The run failed; detail carries the execution id
    """
    options = request or RunWorkflowRequest()
    logger.info(
        "Manual daily agent run requested",
        account_id=account_id,
        bypass_activity_guard=options.bypass_activity_guard,
    )

    try:
        summary = await workflow.run(
            account_id, bypass_activity_guard=options.bypass_activity_guard
        )
    except WorkflowConfigError as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={"error": str(e), "operation": e.operation},
        ) from e
    except WorkflowError as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={
                "error": str(e),
                "operation": e.operation,
                "execution_id": e.execution_id,
            },
        ) from e
    except DatabaseError as e:
        logger.error("Manual daily agent run failed", account_id=account_id, error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"error": "Database error", "operation": e.operation},
        ) from e

    return ExecutionSummaryResponse(**summary_to_dict(summary))


@router.get("/{account_id}/executions/{execution_id}", response_model=ExecutionDetailResponse)
async def get_execution(
    account_id: str,
    execution_id: str,
    repository: WorkflowRepository = Depends(get_repository),
):
    record = await repository.get_execution(account_id, execution_id)
    if not record:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Execution not found")
    return ExecutionDetailResponse(**record)


@router.get("/{account_id}/digests/{date_key}", response_model=DigestResponse)
async def get_digest(
    account_id: str,
    date_key: str,
    repository: WorkflowRepository = Depends(get_repository),
):
    digest = await repository.get_digest(account_id, date_key)
    if not digest:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Digest not found")
    return DigestResponse(account_id=account_id, date_key=date_key, digest=digest)
