from datetime import UTC, datetime
from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

from inbox_agent.features.daily_agent.api.router import get_repository, get_workflow
from inbox_agent.features.daily_agent.domain.errors import (
    WorkflowConfigError,
    WorkflowTimeoutError,
)
from inbox_agent.features.daily_agent.domain.models import (
    AutoHandledSummary,
    Digest,
    DigestEntry,
    ExecutionRecord,
    ExecutionStatus,
    ExecutionSummary,
    PriorityTier,
    ResultCounters,
    StepLogEntry,
    StepStatus,
    WorkflowStep,
)
from inbox_agent.features.daily_agent.repository.workflow_repository import execution_to_document
from inbox_agent.main import app

NOW = datetime(2026, 3, 10, 17, 0, tzinfo=UTC)
ACCOUNT = "creator-1"


@pytest.fixture
def workflow():
    summary = ExecutionSummary(
        success=True,
        execution_id="exec_abc",
        status=ExecutionStatus.COMPLETED,
        results=ResultCounters(messages_fetched=3, auto_responses_sent=1),
        metrics={"duration_ms": 120.0},
        digest_summary="1 conversation handled automatically",
    )
    return SimpleNamespace(run=AsyncMock(return_value=summary))


@pytest.fixture
def client(workflow, fake_repository):
    app.dependency_overrides[get_workflow] = lambda: workflow
    app.dependency_overrides[get_repository] = lambda: fake_repository
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_run_defaults_to_bypassing_activity_guard(client, workflow):
    response = client.post(f"/admin/daily-agent/{ACCOUNT}/run")

    assert response.status_code == 200
    data = response.json()
    assert data["execution_id"] == "exec_abc"
    assert data["status"] == "completed"
    assert data["results"]["auto_responses_sent"] == 1
    assert data["digest_summary"] == "1 conversation handled automatically"
    workflow.run.assert_awaited_once_with(ACCOUNT, bypass_activity_guard=True)


def test_run_can_respect_activity_guard(client, workflow):
    response = client.post(
        f"/admin/daily-agent/{ACCOUNT}/run", json={"bypass_activity_guard": False}
    )

    assert response.status_code == 200
    workflow.run.assert_awaited_once_with(ACCOUNT, bypass_activity_guard=False)


def test_run_failure_returns_execution_id(client, workflow):
    workflow.run.side_effect = WorkflowTimeoutError(
        "Workflow exceeded time budget",
        elapsed_seconds=301.0,
        budget_seconds=300.0,
        execution_id="exec_failed",
    )

    response = client.post(f"/admin/daily-agent/{ACCOUNT}/run")

    assert response.status_code == 500
    detail = response.json()["detail"]
    assert detail["execution_id"] == "exec_failed"
    assert detail["operation"] == "time_budget"


def test_run_with_invalid_config_is_unprocessable(client, workflow):
    workflow.run.side_effect = WorkflowConfigError("Invalid agent config for creator-1")

    response = client.post(f"/admin/daily-agent/{ACCOUNT}/run")

    assert response.status_code == 422
    assert response.json()["detail"]["operation"] == "load_config"


def test_get_execution_returns_record_with_step_log(client, fake_repository):
    record = ExecutionRecord(
        id="exec_abc",
        account_id=ACCOUNT,
        status=ExecutionStatus.COMPLETED,
        started_at=NOW,
        ended_at=NOW,
        digest_summary="Your daily digest is ready",
    )
    fake_repository.executions[record.id] = execution_to_document(record)
    fake_repository.step_logs[record.id] = [
        StepLogEntry(step=WorkflowStep.FETCH, status=StepStatus.COMPLETED, message="fetch done")
    ]

    response = client.get(f"/admin/daily-agent/{ACCOUNT}/executions/exec_abc")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "completed"
    assert data["step_log"][0]["step"] == "fetch"
    assert data["costs_cents"]["total"] == 0


def test_get_execution_is_scoped_to_account(client, fake_repository):
    record = ExecutionRecord(
        id="exec_abc", account_id="someone-else", status=ExecutionStatus.RUNNING, started_at=NOW
    )
    fake_repository.executions[record.id] = execution_to_document(record)

    response = client.get(f"/admin/daily-agent/{ACCOUNT}/executions/exec_abc")

    assert response.status_code == 404


def test_get_digest(client, fake_repository):
    fake_repository.digests[(ACCOUNT, "2026-03-10")] = Digest(
        account_id=ACCOUNT,
        date_key="2026-03-10",
        high_priority=[
            DigestEntry(
                message_id="m1",
                conversation_id="c1",
                sender_id="fan-1",
                preview="Sponsorship offer",
                category="business_opportunity",
                score=95,
                tier=PriorityTier.HIGH,
                estimated_minutes=30,
            )
        ],
        medium_priority=[],
        auto_handled=AutoHandledSummary(faq_count=1, archived_count=2),
        capacity_used=1,
        estimated_time_commitment=30,
        created_at=NOW,
    )

    response = client.get(f"/admin/daily-agent/{ACCOUNT}/digests/2026-03-10")

    assert response.status_code == 200
    digest = response.json()["digest"]
    assert digest["high_priority"][0]["tier"] == "high"
    assert digest["auto_handled"]["total"] == 3
    assert client.get(f"/admin/daily-agent/{ACCOUNT}/digests/2026-03-09").status_code == 404
