"""
Draft request stage.

Flags every candidate that was not handled by the FAQ stage for a
voice-matched draft reply and puts it in the owner's review queue.
"""

from inbox_agent.config import settings
from inbox_agent.features.daily_agent.domain.models import CandidateMessage, RunContext
from inbox_agent.features.daily_agent.repository.workflow_repository import WorkflowRepository
from inbox_agent.infrastructure.observability.logging import get_logger
from inbox_agent.services.infrastructure.batching import gather_in_batches

logger = get_logger(__name__)

DRAFT_COST_USD = 1.50


def needs_draft(message: CandidateMessage) -> bool:
    return not (message.is_faq or message.auto_response_sent or message.manual_override)


class DraftStage:
    def __init__(self, repository: WorkflowRepository, batch_size: int = settings.WORKFLOW_BATCH_SIZE):
        self.repository = repository
        self.batch_size = batch_size

    async def run(self, ctx: RunContext, messages: list[CandidateMessage]) -> None:
        pending = [message for message in messages if needs_draft(message)]

        outcomes = await gather_in_batches(
            pending,
            self._request_draft,
            batch_size=self.batch_size,
            operation="draft_responses",
        )

        drafted = 0
        for outcome in outcomes:
            if outcome.ok:
                drafted += 1
            else:
                ctx.record_error()

        ctx.results.messages_needing_review += drafted
        ctx.costs.drafting += drafted * DRAFT_COST_USD
        logger.info("Draft requests queued", drafted=drafted, candidates=len(pending))

    async def _request_draft(self, message: CandidateMessage) -> None:
        await self.repository.update_message_metadata(
            message.conversation_id,
            message.message_id,
            {"needs_draft_response": True, "pending_review": True},
        )
        message.needs_draft_response = True
        message.pending_review = True
