"""
FAQ auto-response stage.

Matches candidates against the account's FAQ templates. Confident matches
are either answered automatically or queued for approval, up to a per-run
cap on automatic replies.

The manual-override check is a point-in-time query: a reply the owner sends
between that query and the automatic reply being written is not detected.
"""

from datetime import UTC, datetime
from typing import Protocol

from inbox_agent.config import settings
from inbox_agent.features.daily_agent.domain.models import CandidateMessage, FAQMatch, RunContext
from inbox_agent.features.daily_agent.repository.workflow_repository import WorkflowRepository
from inbox_agent.infrastructure.observability.logging import get_logger
from inbox_agent.services.infrastructure.batching import gather_in_batches
from inbox_agent.services.infrastructure.retry import CapabilityError

logger = get_logger(__name__)

AUTO_RESPONSE_CONFIDENCE = 0.8
FAQ_DETECTION_COST_USD = 0.03


class FAQMatcher(Protocol):
    async def detect(self, text: str, account_id: str, message_id: str | None = None) -> FAQMatch: ...


class FAQStage:
    def __init__(
        self,
        matcher: FAQMatcher,
        repository: WorkflowRepository,
        batch_size: int = settings.WORKFLOW_BATCH_SIZE,
    ):
        self.matcher = matcher
        self.repository = repository
        self.batch_size = batch_size

    def _cap_reached(self, ctx: RunContext) -> bool:
        return ctx.results.auto_responses_sent >= ctx.config.max_auto_responses

    async def run(self, ctx: RunContext, messages: list[CandidateMessage]) -> None:
        outcomes = await gather_in_batches(
            messages,
            lambda message: self._process(ctx, message),
            batch_size=self.batch_size,
            operation="faq_detect",
            should_continue=lambda: not self._cap_reached(ctx),
        )
        for outcome in outcomes:
            if not outcome.ok:
                ctx.record_error()

        logger.info(
            "FAQ stage completed",
            faqs_detected=ctx.results.faqs_detected,
            auto_responses_sent=ctx.results.auto_responses_sent,
            manual_overrides=ctx.results.manual_overrides,
            cap=ctx.config.max_auto_responses,
        )

    async def _process(self, ctx: RunContext, message: CandidateMessage) -> None:
        # Parallel messages in one batch can cross the cap
        if self._cap_reached(ctx):
            return

        try:
            match = await self.matcher.detect(message.text, ctx.account_id, message.message_id)
        except CapabilityError as e:
            logger.warning(
                "FAQ detection failed for message",
                message_id=message.message_id,
                kind=e.kind.value,
                error=str(e),
            )
            ctx.record_error()
            return

        ctx.costs.faq_detection += match.cost if match.cost is not None else FAQ_DETECTION_COST_USD

        if not (match.is_faq and match.confidence >= AUTO_RESPONSE_CONFIDENCE):
            return

        message.is_faq = True
        ctx.results.faqs_detected += 1

        if ctx.config.require_approval or not match.suggested_response:
            await self._queue_for_review(message, match)
            return

        if await self._has_manual_override(ctx, message):
            await self._mark_manual_override(ctx, message)
            return

        if self._cap_reached(ctx):
            await self._queue_for_review(message, match)
            return

        # Reserve the slot before awaiting so concurrent siblings see it
        ctx.results.auto_responses_sent += 1
        try:
            await self.repository.create_message(
                message.conversation_id,
                ctx.account_id,
                match.suggested_response,
                {
                    "is_auto_response": True,
                    "original_message_id": message.message_id,
                    "faq_template_id": match.template_id,
                },
            )
        except Exception:
            ctx.results.auto_responses_sent -= 1
            raise

        message.auto_response_sent = True
        await self.repository.update_message_metadata(
            message.conversation_id,
            message.message_id,
            {
                "is_faq": True,
                "auto_response_sent": True,
                "faq_template_id": match.template_id,
                "ai_processed": True,
                "ai_processed_at": datetime.now(UTC).isoformat(),
            },
        )

    async def _queue_for_review(self, message: CandidateMessage, match: FAQMatch) -> None:
        message.pending_review = True
        await self.repository.update_message_metadata(
            message.conversation_id,
            message.message_id,
            {
                "is_faq": True,
                "faq_confidence": match.confidence,
                "faq_template_id": match.template_id,
                "suggested_response": match.suggested_response,
                "pending_review": True,
            },
        )

    async def _has_manual_override(self, ctx: RunContext, message: CandidateMessage) -> bool:
        try:
            return await self.repository.has_owner_message_since(
                message.conversation_id, ctx.account_id, ctx.started_at
            )
        except Exception as e:
            # Unknown state counts as an override
            logger.warning(
                "Manual override check failed, skipping auto-response",
                conversation_id=message.conversation_id,
                error=str(e),
            )
            return True

    async def _mark_manual_override(self, ctx: RunContext, message: CandidateMessage) -> None:
        message.manual_override = True
        ctx.results.manual_overrides += 1
        logger.info(
            "Manual override detected, auto-response skipped",
            conversation_id=message.conversation_id,
            message_id=message.message_id,
        )
        await self.repository.update_message_metadata(
            message.conversation_id,
            message.message_id,
            {
                "manual_override": True,
                "ai_processed": True,
                "skipped_reason": "manual_override",
            },
        )
