"""
Message intake and filtering.

Collects inbound messages from the lookback window across all of an
account's conversations, drops the ones automation must not touch, and
caches per-conversation relationship context on the run context so the
scoring stage doesn't read conversations twice.
"""

from datetime import UTC, datetime, timedelta

from inbox_agent.config import settings
from inbox_agent.features.daily_agent.domain.errors import IntakeError
from inbox_agent.features.daily_agent.domain.models import (
    CandidateMessage,
    ConversationContext,
    ConversationRecord,
    RunContext,
    StoredMessage,
)
from inbox_agent.features.daily_agent.repository.workflow_repository import WorkflowRepository
from inbox_agent.infrastructure.observability.logging import get_logger
from inbox_agent.services.infrastructure.batching import gather_in_batches

logger = get_logger(__name__)

LOOKBACK_WINDOW = timedelta(hours=settings.WORKFLOW_LOOKBACK_HOURS)
ACTIVE_CONVERSATION_WINDOW = timedelta(minutes=settings.WORKFLOW_ACTIVE_CONVERSATION_MINUTES)
VIP_MIN_MESSAGE_COUNT = 10
VIP_MIN_AGE_DAYS = 30


def build_conversation_context(conversation: ConversationRecord, now: datetime) -> ConversationContext:
    age_days = (now - conversation.created_at).total_seconds() / 86400
    return ConversationContext(
        conversation_id=conversation.conversation_id,
        age_days=age_days,
        last_interaction_at=conversation.last_message_at or conversation.created_at,
        message_count=conversation.message_count,
        is_vip=conversation.message_count > VIP_MIN_MESSAGE_COUNT and age_days > VIP_MIN_AGE_DAYS,
    )


def exceeds_escalation_threshold(metadata: dict, threshold: float) -> bool:
    """
    True if a previously stored sentiment marks the message as a crisis.

    Stored scores are on the [-1, 1] scale; the threshold is on a [0, 1]
    scale, so the score is rescaled before comparing.
    """
    if not metadata.get("sentiment"):
        return False

    score = metadata.get("sentiment_score")
    if score is None:
        return False

    return (float(score) + 1) / 2 < threshold


def to_candidate(message: StoredMessage) -> CandidateMessage:
    metadata = message.metadata
    stored_score = metadata.get("priority_score")
    return CandidateMessage(
        conversation_id=message.conversation_id,
        message_id=message.message_id,
        sender_id=message.sender_id,
        text=message.text,
        timestamp=message.timestamp,
        stored_priority_score=float(stored_score) if stored_score is not None else None,
        pending_review=bool(metadata.get("pending_review", False)),
    )


class MessageIntakeService:
    def __init__(self, repository: WorkflowRepository, batch_size: int = settings.WORKFLOW_BATCH_SIZE):
        self.repository = repository
        self.batch_size = batch_size

    async def fetch(self, ctx: RunContext, now: datetime | None = None) -> list[CandidateMessage]:
        """
        Return candidate messages for this run.

        Raises:
            IntakeError: conversations or messages could not be read
        """
        now = now or datetime.now(UTC)
        since = now - LOOKBACK_WINDOW
        active_cutoff = now - ACTIVE_CONVERSATION_WINDOW

        try:
            conversations = await self.repository.list_conversations(ctx.account_id)
        except Exception as e:
            raise IntakeError(
                f"Failed to list conversations: {e}",
                operation="list_conversations",
                execution_id=ctx.execution_id,
            ) from e

        eligible: list[ConversationRecord] = []
        skipped_active = 0
        for conversation in conversations:
            if conversation.last_message_at and conversation.last_message_at > active_cutoff:
                skipped_active += 1
                continue
            eligible.append(conversation)
            ctx.conversation_contexts[conversation.conversation_id] = build_conversation_context(
                conversation, now
            )

        outcomes = await gather_in_batches(
            eligible,
            lambda conversation: self.repository.list_messages_since(
                conversation.conversation_id, since
            ),
            batch_size=self.batch_size,
            operation="fetch_messages",
        )

        failed = [outcome for outcome in outcomes if not outcome.ok]
        if failed:
            raise IntakeError(
                f"Failed to fetch messages for {len(failed)} conversation(s): {failed[0].error}",
                operation="list_messages_since",
                execution_id=ctx.execution_id,
            ) from failed[0].error

        candidates: list[CandidateMessage] = []
        skipped = {"own": 0, "processed": 0, "crisis": 0}
        for outcome in outcomes:
            for message in outcome.result:
                if message.sender_id == ctx.account_id:
                    skipped["own"] += 1
                    continue
                metadata = message.metadata
                if metadata.get("ai_processed") and not metadata.get("pending_review"):
                    skipped["processed"] += 1
                    continue
                if exceeds_escalation_threshold(metadata, ctx.config.escalation_threshold):
                    skipped["crisis"] += 1
                    continue
                candidates.append(to_candidate(message))

        ctx.results.messages_fetched = len(candidates)
        logger.info(
            "Intake completed",
            conversations_total=len(conversations),
            conversations_active_skipped=skipped_active,
            candidates=len(candidates),
            skipped_own=skipped["own"],
            skipped_processed=skipped["processed"],
            skipped_crisis=skipped["crisis"],
        )
        return candidates
