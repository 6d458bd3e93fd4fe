"""
Auto-archive and boundary replies for messages beyond daily capacity.

Messages are handled one at a time so two messages from the same sender in
one run cannot both pass the rate-limit check. When the rate-limit state
cannot be read or claimed, the message is still archived but gets no
boundary reply. If the undo entry or message flags cannot be written, the
conversation is un-archived so nothing stays archived without an undo path.
"""

from datetime import UTC, datetime, timedelta

from inbox_agent.features.daily_agent.domain.models import (
    ArchiveResult,
    CandidateMessage,
    ConversationContext,
    MessageCategory,
    RunContext,
    UndoArchiveEntry,
)
from inbox_agent.features.daily_agent.repository.boundary_rate_limit_repository import (
    BoundaryRateLimitRepository,
    RateLimitStoreError,
    sender_pair_key,
)
from inbox_agent.features.daily_agent.repository.workflow_repository import WorkflowRepository
from inbox_agent.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

UNDO_WINDOW = timedelta(hours=24)
PROTECTED_CATEGORIES = frozenset({MessageCategory.BUSINESS_OPPORTUNITY, MessageCategory.URGENT})

DEFAULT_BOUNDARY_MESSAGE_TEMPLATE = """Hi! I get hundreds of messages daily and can't personally respond to everyone.

For quick questions, check out my FAQ: {{faqUrl}}
For deeper connection, join my community: {{communityUrl}}

I read every message, but I focus on responding to those I can give thoughtful attention to. If this is time-sensitive, feel free to follow up and I'll prioritize it.

Thank you for understanding!

[This message was sent automatically]"""


def render_boundary_message(
    template: str,
    creator_name: str | None = None,
    faq_url: str | None = None,
    community_url: str | None = None,
) -> str:
    return (
        template.replace("{{creatorName}}", creator_name or "[Creator]")
        .replace("{{faqUrl}}", faq_url or "[FAQ not configured]")
        .replace("{{communityUrl}}", community_url or "[Community not configured]")
    )


def is_protected(message: CandidateMessage, context: ConversationContext | None) -> bool:
    """True if the message must never be auto-archived."""
    if message.category is None or message.category in PROTECTED_CATEGORIES:
        return True
    # Unknown relationship is treated like VIP
    if context is None or context.is_vip:
        return True
    return message.is_crisis or message.crisis_detected


class AutoArchiveService:
    def __init__(
        self,
        repository: WorkflowRepository,
        rate_limits: BoundaryRateLimitRepository,
    ):
        self.repository = repository
        self.rate_limits = rate_limits

    async def archive_overflow(
        self,
        ctx: RunContext,
        messages: list[CandidateMessage],
        now: datetime | None = None,
    ) -> ArchiveResult:
        result = ArchiveResult()
        config = ctx.config

        if not config.auto_archive_enabled:
            logger.info("Auto-archive disabled, leaving overflow untouched", overflow=len(messages))
            return result
        if not messages:
            return result

        now = now or datetime.now(UTC)
        creator_name = config.creator_name or await self._display_name(ctx.account_id)
        boundary_text = render_boundary_message(
            config.boundary_message_template or DEFAULT_BOUNDARY_MESSAGE_TEMPLATE,
            creator_name=creator_name,
            faq_url=config.faq_url,
            community_url=config.community_url,
        )

        for message in messages:
            context = ctx.conversation_contexts.get(message.conversation_id)
            if is_protected(message, context):
                result.safety_blocked += 1
                continue

            try:
                await self._archive_one(ctx, message, boundary_text, now, result)
            except Exception as e:
                result.errors += 1
                logger.error(
                    "Auto-archive failed for message",
                    conversation_id=message.conversation_id,
                    message_id=message.message_id,
                    error=str(e),
                    error_type=type(e).__name__,
                )

        logger.info(
            "Auto-archive completed",
            archived=result.archived_count,
            boundaries_sent=result.boundaries_sent,
            rate_limited=result.rate_limited,
            quiet_hours_suppressed=result.quiet_hours_suppressed,
            safety_blocked=result.safety_blocked,
            errors=result.errors,
        )
        return result

    async def _archive_one(
        self,
        ctx: RunContext,
        message: CandidateMessage,
        boundary_text: str,
        now: datetime,
        result: ArchiveResult,
    ) -> None:
        await self.repository.archive_conversation(message.conversation_id, ctx.account_id)

        try:
            boundary_sent = await self._boundary_reply(ctx, message, boundary_text, now, result)
            await self.repository.create_undo_entry(
                UndoArchiveEntry(
                    account_id=ctx.account_id,
                    conversation_id=message.conversation_id,
                    message_id=message.message_id,
                    archived_at=now,
                    expires_at=now + UNDO_WINDOW,
                    boundary_message_sent=boundary_sent,
                )
            )
            await self.repository.update_message_metadata(
                message.conversation_id,
                message.message_id,
                {
                    "auto_archived": True,
                    "boundary_message_sent": boundary_sent,
                    "ai_processed": True,
                },
            )
        except Exception:
            await self._restore_conversation(ctx, message)
            raise

        result.archived_count += 1

    async def _boundary_reply(
        self,
        ctx: RunContext,
        message: CandidateMessage,
        boundary_text: str,
        now: datetime,
        result: ArchiveResult,
    ) -> bool:
        pair_key = sender_pair_key(ctx.account_id, message.sender_id)

        try:
            if await self.rate_limits.is_rate_limited(pair_key, now):
                result.rate_limited += 1
                return False
            if ctx.config.quiet_hours.contains(ctx.config.local_now(now)):
                result.quiet_hours_suppressed += 1
                return False
            if await self.rate_limits.try_claim(pair_key, now) is None:
                result.rate_limited += 1
                return False
        except RateLimitStoreError as e:
            # Unknown window state counts as rate limited
            result.rate_limited += 1
            logger.warning(
                "Boundary rate limit unavailable, reply withheld",
                conversation_id=message.conversation_id,
                operation=e.operation,
                error=str(e),
            )
            return False

        if not await self._send_boundary(ctx, message, boundary_text):
            await self.rate_limits.release(pair_key)
            return False

        result.boundaries_sent += 1
        return True

    async def _restore_conversation(self, ctx: RunContext, message: CandidateMessage) -> None:
        try:
            await self.repository.unarchive_conversation(message.conversation_id, ctx.account_id)
        except Exception as e:
            logger.error(
                "Failed to un-archive conversation after incomplete auto-archive",
                conversation_id=message.conversation_id,
                error=str(e),
            )
        else:
            logger.warning(
                "Auto-archive rolled back",
                conversation_id=message.conversation_id,
                message_id=message.message_id,
            )

    async def _display_name(self, account_id: str) -> str | None:
        try:
            return await self.repository.get_display_name(account_id)
        except Exception as e:
            logger.warning("Display name lookup failed, using placeholder", error=str(e))
            return None

    async def _send_boundary(
        self, ctx: RunContext, message: CandidateMessage, boundary_text: str
    ) -> bool:
        try:
            await self.repository.create_message(
                message.conversation_id,
                ctx.account_id,
                boundary_text,
                {
                    "is_auto_boundary": True,
                    "boundary_reason": "low_priority",
                    "original_message_id": message.message_id,
                },
            )
        except Exception as e:
            logger.warning(
                "Boundary message send failed, archive kept",
                conversation_id=message.conversation_id,
                error=str(e),
            )
            return False
        return True
