"""
Timezone-aware trigger for the daily workflow.

A sweep checks every enrolled account and runs the workflow for those whose
local wall-clock time is within the tolerance window of their configured
run time. Sweeps are meant to run at the top of every hour.
"""

import time
from datetime import UTC, datetime, timedelta

from pydantic import ValidationError

from inbox_agent.config import settings
from inbox_agent.features.daily_agent.domain.config import AgentConfig, parse_clock
from inbox_agent.features.daily_agent.domain.models import SchedulerRunRecord
from inbox_agent.features.daily_agent.repository.workflow_repository import WorkflowRepository
from inbox_agent.features.daily_agent.services.workflow_service import DailyAgentWorkflow
from inbox_agent.infrastructure.observability.logging import get_logger
from inbox_agent.services.infrastructure.batching import gather_in_batches

logger = get_logger(__name__)

MINUTES_PER_DAY = 24 * 60
SWEEP_CONCURRENCY = 5


def minutes_from_target(config: AgentConfig, now: datetime) -> int:
    """Distance in minutes between local time and the run time, across midnight."""
    local = config.local_now(now)
    target = parse_clock(config.run_time)
    diff = abs((local.hour * 60 + local.minute) - (target.hour * 60 + target.minute))
    return min(diff, MINUTES_PER_DAY - diff)


def is_due(config: AgentConfig, now: datetime, tolerance_minutes: int) -> bool:
    return minutes_from_target(config, now) <= tolerance_minutes


def seconds_until_next_slot(now: datetime, interval_minutes: int) -> float:
    """Seconds until the next multiple of interval_minutes past midnight UTC."""
    midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)
    elapsed = (now - midnight).total_seconds()
    interval = interval_minutes * 60
    next_slot = (int(elapsed // interval) + 1) * interval
    return (midnight + timedelta(seconds=next_slot) - now).total_seconds()


class DailyAgentScheduler:
    def __init__(
        self,
        repository: WorkflowRepository,
        workflow: DailyAgentWorkflow,
        tolerance_minutes: int = settings.SCHEDULER_TOLERANCE_MINUTES,
        concurrency: int = SWEEP_CONCURRENCY,
    ):
        self.repository = repository
        self.workflow = workflow
        self.tolerance_minutes = tolerance_minutes
        self.concurrency = concurrency

    async def sweep(self, now: datetime | None = None) -> SchedulerRunRecord:
        """
        Trigger the workflow for every enrolled account that is due.

        Workflow failures are counted, not raised; they are already recorded
        on the account's execution record.
        """
        now = now or datetime.now(UTC)
        started = time.monotonic()

        accounts = await self.repository.list_enrolled_accounts()
        due: list[str] = []
        skipped = 0
        errors = 0

        for account_id, document in accounts:
            try:
                config = AgentConfig.model_validate(document or {})
            except ValidationError as e:
                errors += 1
                logger.warning(
                    "Skipping account with invalid agent config",
                    account_id=account_id,
                    errors=e.error_count(),
                )
                continue

            if config.daily_workflow_enabled and is_due(config, now, self.tolerance_minutes):
                due.append(account_id)
            else:
                skipped += 1

        outcomes = await gather_in_batches(
            due,
            self.workflow.run,
            batch_size=self.concurrency,
            operation="daily_agent_sweep",
        )
        errors += sum(1 for outcome in outcomes if not outcome.ok)

        record = SchedulerRunRecord(
            started_at=now,
            duration_ms=round((time.monotonic() - started) * 1000, 1),
            accounts_checked=len(accounts),
            triggered=len(due),
            skipped=skipped,
            errors=errors,
        )

        try:
            await self.repository.record_scheduler_run(record)
        except Exception as e:
            logger.warning("Failed to record scheduler run", error=str(e))

        logger.info(
            "Scheduler sweep completed",
            accounts_checked=record.accounts_checked,
            triggered=record.triggered,
            skipped=record.skipped,
            errors=record.errors,
            duration_ms=record.duration_ms,
        )
        return record
