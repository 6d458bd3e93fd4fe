"""
Priority scoring and digest building.

Scores are additive weights clamped to [0, 100]. A score already stored on
the message is reused as-is so a partial re-run ranks messages the same way.
"""

from datetime import UTC, datetime, timedelta

from inbox_agent.features.daily_agent.domain.models import (
    AutoHandledSummary,
    CandidateMessage,
    ConversationContext,
    Digest,
    DigestEntry,
    DigestSelection,
    MessageCategory,
    PriorityResult,
    PriorityTier,
    RunContext,
)
from inbox_agent.features.daily_agent.pipeline.intake.service import build_conversation_context
from inbox_agent.features.daily_agent.repository.workflow_repository import WorkflowRepository
from inbox_agent.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

# Score weights
BUSINESS_POINTS = 50
URGENT_POINTS = 40
CRISIS_POINTS = 100
HIGH_OPPORTUNITY_POINTS = 50
HIGH_OPPORTUNITY_THRESHOLD = 80
VIP_POINTS = 30
FREQUENT_CONTACT_POINTS = 30
FREQUENT_CONTACT_MIN_MESSAGES = 10
RECENT_INTERACTION_POINTS = 15
RECENT_INTERACTION_WINDOW = timedelta(days=7)

# Tier boundaries
HIGH_TIER_MIN = 70
MEDIUM_TIER_MIN = 40

# Digest shape
MAX_HIGH_PRIORITY = 3
MAX_MEDIUM_PRIORITY = 7
PREVIEW_LENGTH = 140
BUSINESS_ESTIMATE_MINUTES = 30
DEFAULT_ESTIMATE_MINUTES = 10


def clamp_score(value: float) -> int:
    return int(round(max(0.0, min(100.0, value))))


def tier_for(score: int) -> PriorityTier:
    if score >= HIGH_TIER_MIN:
        return PriorityTier.HIGH
    if score >= MEDIUM_TIER_MIN:
        return PriorityTier.MEDIUM
    return PriorityTier.LOW


def normalize_stored_score(stored: float) -> int:
    """Stored scores at or below 1 are on the legacy 0-1 scale."""
    if stored <= 1:
        stored = stored * 100
    return clamp_score(stored)


def score_message(
    message: CandidateMessage, context: ConversationContext, now: datetime
) -> PriorityResult:
    if message.stored_priority_score is not None:
        score = normalize_stored_score(message.stored_priority_score)
        return PriorityResult(score=score, tier=tier_for(score), reused=True)

    breakdown = {"category": 0, "sentiment": 0, "opportunity": 0, "relationship": 0}

    if message.category is MessageCategory.BUSINESS_OPPORTUNITY:
        breakdown["category"] += BUSINESS_POINTS
    elif message.category is MessageCategory.URGENT:
        breakdown["category"] += URGENT_POINTS

    if message.is_crisis:
        breakdown["sentiment"] += CRISIS_POINTS

    opportunity_score = message.opportunity_score
    if opportunity_score is not None and opportunity_score > HIGH_OPPORTUNITY_THRESHOLD:
        breakdown["opportunity"] += HIGH_OPPORTUNITY_POINTS

    if context.is_vip:
        breakdown["relationship"] += VIP_POINTS
    if context.message_count > FREQUENT_CONTACT_MIN_MESSAGES:
        breakdown["relationship"] += FREQUENT_CONTACT_POINTS
    if now - context.last_interaction_at < RECENT_INTERACTION_WINDOW:
        breakdown["relationship"] += RECENT_INTERACTION_POINTS

    score = clamp_score(sum(breakdown.values()))
    return PriorityResult(score=score, tier=tier_for(score), breakdown=breakdown)


def _rank_key(message: CandidateMessage) -> tuple:
    # Higher score first, then the longest-waiting message
    return (-(message.priority_score or 0), message.timestamp, message.message_id)


def rank_for_digest(scored: list[CandidateMessage], capacity: int) -> DigestSelection:
    """Split scored messages into digest tiers and overflow."""
    ordered = sorted(scored, key=_rank_key)
    within_capacity = ordered[:capacity]
    beyond_capacity = ordered[capacity:]

    high = [m for m in within_capacity if m.priority_tier is PriorityTier.HIGH][:MAX_HIGH_PRIORITY]
    medium = [m for m in within_capacity if m.priority_tier is PriorityTier.MEDIUM][
        :MAX_MEDIUM_PRIORITY
    ]

    return DigestSelection(
        high_priority=high, medium_priority=medium, beyond_capacity=beyond_capacity
    )


def estimated_minutes(message: CandidateMessage) -> int:
    if message.category is MessageCategory.BUSINESS_OPPORTUNITY:
        return BUSINESS_ESTIMATE_MINUTES
    return DEFAULT_ESTIMATE_MINUTES


def _digest_entry(message: CandidateMessage) -> DigestEntry:
    return DigestEntry(
        message_id=message.message_id,
        conversation_id=message.conversation_id,
        sender_id=message.sender_id,
        preview=message.text[:PREVIEW_LENGTH],
        category=message.category.value if message.category else None,
        score=message.priority_score or 0,
        tier=message.priority_tier or PriorityTier.LOW,
        estimated_minutes=estimated_minutes(message),
    )


def build_digest(
    account_id: str,
    date_key: str,
    selection: DigestSelection,
    auto_handled: AutoHandledSummary,
) -> Digest:
    high = [_digest_entry(m) for m in selection.high_priority]
    medium = [_digest_entry(m) for m in selection.medium_priority]
    return Digest(
        account_id=account_id,
        date_key=date_key,
        high_priority=high,
        medium_priority=medium,
        auto_handled=auto_handled,
        capacity_used=len(high) + len(medium),
        estimated_time_commitment=sum(entry.estimated_minutes for entry in high + medium),
    )


def is_scoreable(message: CandidateMessage) -> bool:
    return not (message.auto_response_sent or message.manual_override)


class PriorityScoringStage:
    def __init__(self, repository: WorkflowRepository):
        self.repository = repository

    async def run(
        self, ctx: RunContext, messages: list[CandidateMessage], now: datetime | None = None
    ) -> DigestSelection:
        now = now or datetime.now(UTC)
        scored: list[CandidateMessage] = []

        for message in filter(is_scoreable, messages):
            context = await self._context_for(ctx, message.conversation_id, now)
            if context is None:
                logger.warning(
                    "No conversation context, message left unscored",
                    conversation_id=message.conversation_id,
                    message_id=message.message_id,
                )
                continue

            result = score_message(message, context, now)
            message.priority_score = result.score
            message.priority_tier = result.tier
            scored.append(message)

            if result.reused:
                continue

            try:
                await self.repository.update_message_metadata(
                    message.conversation_id,
                    message.message_id,
                    {
                        "priority_score": result.score,
                        "priority_tier": result.tier.value,
                        "priority_breakdown": result.breakdown,
                        "relationship_context": {
                            "is_vip": context.is_vip,
                            "message_count": context.message_count,
                            "age_days": round(context.age_days, 1),
                        },
                        "ai_processed": True,
                    },
                )
            except Exception as e:
                logger.warning(
                    "Failed to persist priority score",
                    message_id=message.message_id,
                    error=str(e),
                )
                ctx.record_error()

        ctx.results.messages_scored = len(scored)
        selection = rank_for_digest(scored, ctx.config.daily_capacity)
        logger.info(
            "Priority scoring completed",
            scored=len(scored),
            high=len(selection.high_priority),
            medium=len(selection.medium_priority),
            beyond_capacity=len(selection.beyond_capacity),
        )
        return selection

    async def _context_for(
        self, ctx: RunContext, conversation_id: str, now: datetime
    ) -> ConversationContext | None:
        context = ctx.conversation_contexts.get(conversation_id)
        if context is not None:
            return context

        conversation = await self.repository.get_conversation(conversation_id)
        if conversation is None:
            return None

        context = build_conversation_context(conversation, now)
        ctx.conversation_contexts[conversation_id] = context
        return context
