"""
Classification and opportunity scoring stage.

Each candidate is classified independently; a message whose classification
call exhausts its retries is logged and left unclassified without affecting
the rest of its batch.
"""

from dataclasses import replace
from datetime import UTC, datetime
from typing import Protocol

from inbox_agent.config import settings
from inbox_agent.features.daily_agent.domain.models import (
    CRISIS_SENTIMENT_THRESHOLD,
    CandidateMessage,
    Classification,
    MessageCategory,
    OpportunityAssessment,
    RunContext,
)
from inbox_agent.features.daily_agent.repository.workflow_repository import WorkflowRepository
from inbox_agent.infrastructure.observability.logging import get_logger
from inbox_agent.services.infrastructure.batching import gather_in_batches
from inbox_agent.services.infrastructure.retry import CapabilityError

logger = get_logger(__name__)

LOW_CONFIDENCE_THRESHOLD = 0.7
URGENT_SENTIMENT_THRESHOLD = -0.5

CLASSIFICATION_COST_USD = 0.05
OPPORTUNITY_COST_USD = 1.50


class MessageClassifier(Protocol):
    async def classify(self, text: str) -> Classification: ...


class OpportunityScorer(Protocol):
    async def score(self, text: str) -> OpportunityAssessment: ...


def apply_classification_guards(raw: Classification) -> Classification:
    """
    Adjust a raw model answer.

    Low confidence falls back to general; strongly negative sentiment forces
    urgent and wins over the confidence guard.
    """
    category = raw.category
    if raw.confidence < LOW_CONFIDENCE_THRESHOLD:
        category = MessageCategory.GENERAL
    if raw.sentiment_score < URGENT_SENTIMENT_THRESHOLD:
        category = MessageCategory.URGENT

    return replace(
        raw,
        category=category,
        crisis_detected=raw.sentiment_score < CRISIS_SENTIMENT_THRESHOLD,
    )


def classification_metadata(message: CandidateMessage, now: datetime) -> dict:
    updates = {
        "category": message.category.value if message.category else None,
        "confidence": message.confidence,
        "ai_categorized_at": now.isoformat(),
    }
    if message.sentiment is not None:
        updates.update(
            {
                "sentiment": message.sentiment.value,
                "sentiment_score": message.sentiment_score,
                "emotional_tone": message.emotional_tone,
                "crisis_detected": message.crisis_detected,
            }
        )
    if message.opportunity is not None:
        updates.update(
            {
                "opportunity_score": message.opportunity.score,
                "opportunity_type": message.opportunity.type.value,
                "opportunity_indicators": message.opportunity.indicators,
                "opportunity_analysis": message.opportunity.analysis,
            }
        )
    return updates


class ClassificationStage:
    def __init__(
        self,
        classifier: MessageClassifier,
        opportunity_scorer: OpportunityScorer,
        repository: WorkflowRepository,
        batch_size: int = settings.WORKFLOW_BATCH_SIZE,
    ):
        self.classifier = classifier
        self.opportunity_scorer = opportunity_scorer
        self.repository = repository
        self.batch_size = batch_size

    async def run(self, ctx: RunContext, messages: list[CandidateMessage]) -> None:
        outcomes = await gather_in_batches(
            messages,
            lambda message: self._process(ctx, message),
            batch_size=self.batch_size,
            operation="classify",
        )
        for outcome in outcomes:
            if not outcome.ok:
                ctx.record_error()

        logger.info(
            "Classification stage completed",
            messages=len(messages),
            categorized=ctx.results.messages_categorized,
            cost_usd=round(ctx.costs.categorization, 2),
        )

    async def _process(self, ctx: RunContext, message: CandidateMessage) -> None:
        try:
            raw = await self.classifier.classify(message.text)
        except CapabilityError as e:
            logger.warning(
                "Skipping message after classification failure",
                message_id=message.message_id,
                kind=e.kind.value,
                error=str(e),
            )
            ctx.record_error()
            return

        ctx.costs.categorization += CLASSIFICATION_COST_USD
        message.apply_classification(
            apply_classification_guards(raw),
            include_sentiment=ctx.config.sentiment_analysis_enabled,
        )

        if message.category is MessageCategory.BUSINESS_OPPORTUNITY:
            message.opportunity = await self.opportunity_scorer.score(message.text)
            ctx.costs.categorization += OPPORTUNITY_COST_USD

        ctx.results.messages_categorized += 1

        await self.repository.update_message_metadata(
            message.conversation_id,
            message.message_id,
            classification_metadata(message, datetime.now(UTC)),
        )
