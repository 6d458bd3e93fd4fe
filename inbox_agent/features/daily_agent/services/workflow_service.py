"""
Daily agent workflow orchestrator.

Owns one run for one account: loads and validates the account config,
applies the activity guard, creates the execution record and drives the
stages strictly in order:

    fetch -> classify -> faq_detect -> draft_responses -> digest -> summary

The digest step covers priority scoring, auto-archive and digest
persistence. The total time budget is checked between stages only; a stage
that is already running is never interrupted. Soft failures are counted on
the run context by the stages themselves. Anything raised out of a stage is
a hard failure: the record is marked failed and the error propagates to the
caller.
"""

import time
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime, timedelta
from typing import Any, TypeVar
from uuid import uuid4

from pydantic import ValidationError

from inbox_agent.config import settings
from inbox_agent.features.daily_agent.domain.config import AgentConfig
from inbox_agent.features.daily_agent.domain.errors import (
    DigestPersistenceError,
    WorkflowConfigError,
    WorkflowError,
    WorkflowTimeoutError,
)
from inbox_agent.features.daily_agent.domain.models import (
    AutoHandledSummary,
    CandidateMessage,
    Digest,
    ExecutionRecord,
    ExecutionStatus,
    ExecutionSummary,
    RunContext,
    StepLogEntry,
    StepStatus,
    WorkflowStep,
)
from inbox_agent.features.daily_agent.pipeline.archive.service import AutoArchiveService
from inbox_agent.features.daily_agent.pipeline.classification.service import ClassificationStage
from inbox_agent.features.daily_agent.pipeline.drafting.service import DraftStage
from inbox_agent.features.daily_agent.pipeline.faq.service import FAQStage
from inbox_agent.features.daily_agent.pipeline.intake.service import MessageIntakeService
from inbox_agent.features.daily_agent.pipeline.scoring.service import (
    PriorityScoringStage,
    build_digest,
)
from inbox_agent.features.daily_agent.pipeline.summary.service import (
    EMPTY_SUMMARY,
    SKIPPED_SUMMARY,
    DigestNotifier,
    summarize_run,
)
from inbox_agent.features.daily_agent.repository.boundary_rate_limit_repository import (
    BoundaryRateLimitRepository,
)
from inbox_agent.features.daily_agent.repository.workflow_repository import (
    PostgresWorkflowRepository,
    WorkflowRepository,
)
from inbox_agent.infrastructure.observability.logging import (
    bind_execution_context,
    clear_execution_context,
    get_logger,
)
from inbox_agent.services.ai.classification_service import build_classification_service
from inbox_agent.services.ai.opportunity_service import build_opportunity_service
from inbox_agent.services.messaging.faq_match_service import FAQMatchService
from inbox_agent.services.messaging.push_notification_service import PushNotificationService

logger = get_logger(__name__)

T = TypeVar("T")

# Per-step duration above which a warning is recorded, in seconds
STEP_WARNING_THRESHOLDS: dict[WorkflowStep, float] = {
    WorkflowStep.FETCH: 30,
    WorkflowStep.CLASSIFY: 60,
    WorkflowStep.FAQ: 45,
    WorkflowStep.DRAFT: 90,
    WorkflowStep.DIGEST: 15,
    WorkflowStep.SUMMARY: 15,
}


def new_execution_id() -> str:
    return f"exec_{uuid4().hex}"


class DailyAgentWorkflow:
    """Runs the daily inbox workflow for one account at a time."""

    def __init__(
        self,
        repository: WorkflowRepository,
        intake: MessageIntakeService,
        classification: ClassificationStage,
        faq: FAQStage,
        drafting: DraftStage,
        scoring: PriorityScoringStage,
        archive: AutoArchiveService,
        notifier: DigestNotifier,
        time_budget_seconds: float = settings.WORKFLOW_TIME_BUDGET_SECONDS,
        clock: Callable[[], float] = time.monotonic,
        now_fn: Callable[[], datetime] | None = None,
    ):
        self.repository = repository
        self.intake = intake
        self.classification = classification
        self.faq = faq
        self.drafting = drafting
        self.scoring = scoring
        self.archive = archive
        self.notifier = notifier
        self.time_budget_seconds = time_budget_seconds
        self._clock = clock
        self._now = now_fn or (lambda: datetime.now(UTC))

    async def run(self, account_id: str, bypass_activity_guard: bool = False) -> ExecutionSummary:
        """
        Run the workflow once for an account.

        Args:
            account_id: Account whose inbox is processed
            bypass_activity_guard: Run even if the owner is currently active

        Returns:
            ExecutionSummary for the completed or skipped run

        Raises:
            WorkflowConfigError: stored account config is invalid
            WorkflowError: a hard failure aborted the run (record marked failed)
        """
        config = await self.load_config(account_id)
        execution_id = new_execution_id()
        bind_execution_context(account_id=account_id, execution_id=execution_id)

        try:
            now = self._now()
            if not bypass_activity_guard and await self.is_account_active(account_id, config, now):
                return await self._record_skipped(account_id, execution_id, now)

            ctx = RunContext(
                account_id=account_id,
                execution_id=execution_id,
                started_at=now,
                config=config,
            )
            return await self._execute(ctx)
        finally:
            clear_execution_context("account_id", "execution_id")

    async def load_config(self, account_id: str) -> AgentConfig:
        try:
            document = await self.repository.get_agent_config_document(account_id)
        except Exception as e:
            raise WorkflowError(
                f"Failed to load agent config: {e}", operation="load_config"
            ) from e

        try:
            return AgentConfig.model_validate(document or {})
        except ValidationError as e:
            logger.error("Invalid agent config", account_id=account_id, errors=e.error_count())
            raise WorkflowConfigError(f"Invalid agent config for {account_id}: {e}") from e

    async def is_account_active(self, account_id: str, config: AgentConfig, now: datetime) -> bool:
        """True if the owner is online or was seen within the activity threshold."""
        try:
            presence = await self.repository.get_presence(account_id)
        except Exception as e:
            # Unknown presence counts as active
            logger.warning("Presence check failed, treating account as active", error=str(e))
            return True

        if presence.online:
            return True
        if presence.last_seen_at is None:
            return False
        return now - presence.last_seen_at < timedelta(minutes=config.active_threshold_minutes)

    async def _record_skipped(
        self, account_id: str, execution_id: str, now: datetime
    ) -> ExecutionSummary:
        record = ExecutionRecord(
            id=execution_id,
            account_id=account_id,
            status=ExecutionStatus.SKIPPED,
            started_at=now,
            ended_at=now,
            digest_summary=SKIPPED_SUMMARY,
        )
        await self.repository.create_execution(record)
        logger.info("Workflow skipped, account owner is active")
        return ExecutionSummary(
            success=True,
            execution_id=execution_id,
            status=ExecutionStatus.SKIPPED,
            results=record.results,
            digest_summary=SKIPPED_SUMMARY,
        )

    async def _execute(self, ctx: RunContext) -> ExecutionSummary:
        record = ExecutionRecord(
            id=ctx.execution_id,
            account_id=ctx.account_id,
            status=ExecutionStatus.RUNNING,
            started_at=ctx.started_at,
            results=ctx.results,
            costs=ctx.costs,
            step_durations=ctx.step_durations,
            warnings=ctx.warnings,
        )
        await self.repository.create_execution(record)
        logger.info("Workflow started", budget_seconds=self.time_budget_seconds)

        started = self._clock()
        try:
            summary_text = await self._run_stages(ctx, started)
            record.status = ExecutionStatus.COMPLETED
            record.ended_at = self._now()
            record.digest_summary = summary_text
            await self.repository.update_execution(record)
        except Exception as e:
            if isinstance(e, WorkflowError) and e.execution_id is None:
                e.execution_id = ctx.execution_id
            logger.error(
                "Workflow failed",
                error=str(e),
                error_type=type(e).__name__,
                elapsed_seconds=round(self._clock() - started, 2),
            )
            await self._mark_failed(record, e)
            raise

        duration_ms = round((self._clock() - started) * 1000, 1)
        logger.info(
            "Workflow completed",
            duration_ms=duration_ms,
            summary=summary_text,
            **ctx.results.to_dict(),
        )
        return ExecutionSummary(
            success=True,
            execution_id=ctx.execution_id,
            status=ExecutionStatus.COMPLETED,
            results=ctx.results,
            metrics={
                "duration_ms": duration_ms,
                "step_durations": dict(ctx.step_durations),
                "costs_cents": ctx.costs.to_cents(),
                "warnings": list(ctx.warnings),
            },
            digest_summary=summary_text,
        )

    async def _run_stages(self, ctx: RunContext, started: float) -> str:
        config = ctx.config
        now = ctx.started_at

        candidates = await self._step(
            ctx, WorkflowStep.FETCH, lambda: self.intake.fetch(ctx, now)
        )
        if not candidates:
            logger.info("No candidate messages, remaining steps skipped")
            return EMPTY_SUMMARY

        self._check_budget(ctx, started, WorkflowStep.CLASSIFY)
        if config.categorization_enabled:
            await self._step(
                ctx, WorkflowStep.CLASSIFY, lambda: self.classification.run(ctx, candidates)
            )
        else:
            await self._log_step(
                ctx, WorkflowStep.CLASSIFY, StepStatus.SKIPPED, "Categorization disabled"
            )

        self._check_budget(ctx, started, WorkflowStep.FAQ)
        if config.faq_detection_enabled:
            await self._step(ctx, WorkflowStep.FAQ, lambda: self.faq.run(ctx, candidates))
        else:
            await self._log_step(
                ctx, WorkflowStep.FAQ, StepStatus.SKIPPED, "FAQ detection disabled"
            )

        self._check_budget(ctx, started, WorkflowStep.DRAFT)
        if config.voice_matching_enabled:
            await self._step(ctx, WorkflowStep.DRAFT, lambda: self.drafting.run(ctx, candidates))
        else:
            await self._log_step(
                ctx, WorkflowStep.DRAFT, StepStatus.SKIPPED, "Voice matching disabled"
            )

        self._check_budget(ctx, started, WorkflowStep.DIGEST)
        digest = await self._step(
            ctx, WorkflowStep.DIGEST, lambda: self._build_and_save_digest(ctx, candidates, started)
        )

        self._check_budget(ctx, started, WorkflowStep.SUMMARY)
        return await self._step(ctx, WorkflowStep.SUMMARY, lambda: self._summarize(ctx, digest))

    async def _build_and_save_digest(
        self, ctx: RunContext, candidates: list[CandidateMessage], started: float
    ) -> Digest:
        now = ctx.started_at
        selection = await self.scoring.run(ctx, candidates, now)

        self._check_budget(ctx, started, WorkflowStep.DIGEST)
        archive_result = await self.archive.archive_overflow(ctx, selection.beyond_capacity, now)
        ctx.results.archived_count = archive_result.archived_count
        ctx.results.boundaries_sent = archive_result.boundaries_sent
        ctx.results.rate_limited = archive_result.rate_limited
        ctx.results.safety_blocked = archive_result.safety_blocked
        ctx.results.errors += archive_result.errors

        digest = build_digest(
            ctx.account_id,
            ctx.config.local_now(now).date().isoformat(),
            selection,
            AutoHandledSummary(
                faq_count=ctx.results.auto_responses_sent,
                archived_count=ctx.results.archived_count,
            ),
        )
        try:
            await self.repository.save_digest(digest)
        except Exception as e:
            raise DigestPersistenceError(
                f"Failed to save digest: {e}",
                operation="save_digest",
                execution_id=ctx.execution_id,
            ) from e

        logger.info(
            "Digest saved",
            date_key=digest.date_key,
            high=len(digest.high_priority),
            medium=len(digest.medium_priority),
            capacity_used=digest.capacity_used,
            estimated_minutes=digest.estimated_time_commitment,
        )
        return digest

    async def _summarize(self, ctx: RunContext, digest: Digest) -> str:
        summary_text = summarize_run(ctx.results)
        await self.notifier.notify(ctx, digest, summary_text, self._now())
        return summary_text

    def _check_budget(self, ctx: RunContext, started: float, next_step: WorkflowStep) -> None:
        elapsed = self._clock() - started
        if elapsed > self.time_budget_seconds:
            raise WorkflowTimeoutError(
                f"Workflow exceeded time budget of {self.time_budget_seconds}s "
                f"before {next_step.value} ({elapsed:.1f}s elapsed)",
                elapsed_seconds=elapsed,
                budget_seconds=self.time_budget_seconds,
                execution_id=ctx.execution_id,
            )

    async def _step(
        self,
        ctx: RunContext,
        step: WorkflowStep,
        action: Callable[[], Awaitable[T]],
    ) -> T:
        await self._log_step(ctx, step, StepStatus.RUNNING, f"{step.value} started")
        step_started = self._clock()
        try:
            result = await action()
        except Exception as e:
            self._record_duration(ctx, step, self._clock() - step_started)
            await self._log_step(ctx, step, StepStatus.FAILED, str(e), level="error")
            raise

        duration = self._record_duration(ctx, step, self._clock() - step_started)
        await self._log_step(
            ctx, step, StepStatus.COMPLETED, f"{step.value} completed in {duration:.2f}s"
        )
        return result

    def _record_duration(self, ctx: RunContext, step: WorkflowStep, duration: float) -> float:
        ctx.step_durations[step.value] = round(duration * 1000, 1)
        threshold = STEP_WARNING_THRESHOLDS[step]
        if duration > threshold:
            warning = f"{step.value} took {duration:.1f}s (threshold {threshold}s)"
            ctx.warnings.append(warning)
            logger.warning(
                "Slow workflow step", step=step.value, duration_ms=round(duration * 1000, 1)
            )
        return duration

    async def _log_step(
        self,
        ctx: RunContext,
        step: WorkflowStep,
        status: StepStatus,
        message: str,
        level: str = "info",
    ) -> None:
        try:
            await self.repository.append_step_log(
                ctx.execution_id,
                StepLogEntry(step=step, status=status, message=message, level=level),
            )
        except Exception as e:
            logger.warning("Failed to write step log", step=step.value, error=str(e))

    async def _mark_failed(self, record: ExecutionRecord, error: Exception) -> None:
        record.status = ExecutionStatus.FAILED
        record.ended_at = self._now()
        record.error = str(error)
        try:
            await self.repository.update_execution(record)
        except Exception as e:
            logger.error("Failed to mark execution as failed", error=str(e))


def build_daily_agent_workflow(repository: WorkflowRepository | None = None) -> DailyAgentWorkflow:
    """Wire the workflow against the production clients."""
    repository = repository or PostgresWorkflowRepository()
    return DailyAgentWorkflow(
        repository=repository,
        intake=MessageIntakeService(repository),
        classification=ClassificationStage(
            build_classification_service(), build_opportunity_service(), repository
        ),
        faq=FAQStage(FAQMatchService(), repository),
        drafting=DraftStage(repository),
        scoring=PriorityScoringStage(repository),
        archive=AutoArchiveService(repository, BoundaryRateLimitRepository()),
        notifier=DigestNotifier(repository, PushNotificationService()),
    )


def summary_to_dict(summary: ExecutionSummary) -> dict[str, Any]:
    return {
        "success": summary.success,
        "execution_id": summary.execution_id,
        "status": summary.status.value,
        "results": summary.results.to_dict(),
        "metrics": summary.metrics,
        "digest_summary": summary.digest_summary,
    }
