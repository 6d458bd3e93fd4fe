"""
Daily agent scheduler job.

Runs a scheduler sweep at the top of every interval (hourly by default).
Each sweep triggers the workflow for enrolled accounts whose local run time
has arrived. Opens its own database pool and Redis connection because it
runs in the worker process, not under the API lifespan.
"""

import asyncio
from datetime import UTC, datetime

from inbox_agent.config import settings
from inbox_agent.db.pool import db_pool
from inbox_agent.features.daily_agent.domain.models import SchedulerRunRecord
from inbox_agent.features.daily_agent.repository.workflow_repository import (
    PostgresWorkflowRepository,
)
from inbox_agent.features.daily_agent.services.scheduler import (
    DailyAgentScheduler,
    seconds_until_next_slot,
)
from inbox_agent.features.daily_agent.services.workflow_service import build_daily_agent_workflow
from inbox_agent.infrastructure.observability.logging import get_logger, setup_logging
from inbox_agent.services.infrastructure.redis_client import fast_redis

logger = get_logger(__name__)

ERROR_BACKOFF_SECONDS = 60


class DailyAgentJobError(Exception):
    """Custom exception for daily agent job operations."""

    def __init__(self, message: str, operation: str | None = None, recoverable: bool = True):
        super().__init__(message)
        self.operation = operation
        self.recoverable = recoverable


class DailyAgentJobMetrics:
    """Metrics for one scheduler sweep."""

    def __init__(self):
        self.reset()

    def reset(self):
        self.start_time = datetime.now(UTC)
        self.accounts_checked = 0
        self.workflows_triggered = 0
        self.accounts_skipped = 0
        self.errors = 0
        self.total_duration_seconds = 0.0

    def record_sweep(self, record: SchedulerRunRecord):
        self.accounts_checked = record.accounts_checked
        self.workflows_triggered = record.triggered
        self.accounts_skipped = record.skipped
        self.errors = record.errors

    def finalize(self):
        self.total_duration_seconds = (datetime.now(UTC) - self.start_time).total_seconds()

    def to_dict(self) -> dict:
        return {
            "job_run": "daily_agent_scheduler",
            "start_time": self.start_time.isoformat(),
            "total_duration_seconds": round(self.total_duration_seconds, 2),
            "accounts_checked": self.accounts_checked,
            "workflows_triggered": self.workflows_triggered,
            "accounts_skipped": self.accounts_skipped,
            "errors": self.errors,
        }


def build_daily_agent_scheduler() -> DailyAgentScheduler:
    repository = PostgresWorkflowRepository()
    return DailyAgentScheduler(repository, build_daily_agent_workflow(repository))


class DailyAgentJob:
    def __init__(self, scheduler: DailyAgentScheduler | None = None):
        self.is_running = False
        self.last_run_time: datetime | None = None
        self.job_metrics = DailyAgentJobMetrics()
        self._scheduler = scheduler

    @property
    def scheduler(self) -> DailyAgentScheduler:
        if self._scheduler is None:
            self._scheduler = build_daily_agent_scheduler()
        return self._scheduler

    async def run_once(self, now: datetime | None = None) -> dict:
        """
        Run a single scheduler sweep.

        Returns:
            Dict: sweep metrics, or a skipped marker if a sweep is in progress

        Raises:
            DailyAgentJobError: enrolled accounts could not be loaded
        """
        if self.is_running:
            logger.warning("Daily agent sweep already running, skipping this iteration")
            return {"skipped": True, "reason": "already_running"}

        try:
            self.is_running = True
            self.job_metrics.reset()

            record = await self.scheduler.sweep(now)
            self.job_metrics.record_sweep(record)
            self.job_metrics.finalize()
            self.last_run_time = datetime.now(UTC)
            return self.job_metrics.to_dict()

        except Exception as e:
            logger.error("Daily agent sweep failed", error=str(e), error_type=type(e).__name__)
            self.job_metrics.finalize()
            raise DailyAgentJobError(f"Daily agent sweep failed: {e}", operation="sweep") from e

        finally:
            self.is_running = False

    def get_job_status(self) -> dict:
        return {
            "job_name": "daily_agent_scheduler",
            "is_running": self.is_running,
            "last_run_time": self.last_run_time.isoformat() if self.last_run_time else None,
            "interval_minutes": settings.SCHEDULER_INTERVAL_MINUTES,
            "tolerance_minutes": settings.SCHEDULER_TOLERANCE_MINUTES,
            "last_run_metrics": self.job_metrics.to_dict() if self.last_run_time else None,
        }


daily_agent_job = DailyAgentJob()


async def _open_resources() -> None:
    setup_logging(log_level=settings.LOG_LEVEL)
    await db_pool.initialize(role="worker")
    try:
        await fast_redis.initialize()
    except RuntimeError as e:
        # Boundary rate limits fail open without Redis
        logger.warning("Redis unavailable, continuing without rate-limit store", error=str(e))


async def _close_resources() -> None:
    await fast_redis.close()
    await db_pool.close()


async def run_daily_agent_sweep() -> None:
    """Run one sweep and exit."""
    await _open_resources()
    try:
        metrics = await daily_agent_job.run_once()
        logger.info("Daily agent sweep finished", **metrics)
    finally:
        await _close_resources()


async def start_daily_agent_scheduler() -> None:
    """Run sweeps forever, aligned to the scheduler interval."""
    interval = settings.SCHEDULER_INTERVAL_MINUTES
    await _open_resources()
    logger.info("Starting daily agent scheduler", interval_minutes=interval)

    try:
        while True:
            delay = seconds_until_next_slot(datetime.now(UTC), interval)
            await asyncio.sleep(delay)

            try:
                metrics = await daily_agent_job.run_once()
                if not metrics.get("skipped", False):
                    logger.info("Daily agent scheduler cycle completed", **metrics)
            except DailyAgentJobError as e:
                logger.error("Error in daily agent scheduler", error=str(e))
                await asyncio.sleep(ERROR_BACKOFF_SECONDS)
    finally:
        await _close_resources()
