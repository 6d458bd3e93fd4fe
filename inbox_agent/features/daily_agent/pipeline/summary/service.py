"""
Run summary text and the digest-ready push notification.

The notification is best effort: nothing in this module raises into the
workflow once the digest has been saved.
"""

from datetime import UTC, datetime

from inbox_agent.features.daily_agent.domain.models import Digest, ResultCounters, RunContext
from inbox_agent.features.daily_agent.repository.workflow_repository import WorkflowRepository
from inbox_agent.infrastructure.observability.logging import get_logger
from inbox_agent.services.messaging.push_notification_service import PushNotificationService

logger = get_logger(__name__)

NOTIFICATION_TITLE = "Daily Digest Ready"
SKIPPED_SUMMARY = "Skipped: Creator is currently online/active"
EMPTY_SUMMARY = "0 handled, 0 need review"
EXCLUDED_PLATFORMS = frozenset({"expo"})


def _plural(count: int, singular: str, plural: str) -> str:
    return singular if count == 1 else plural


def summarize_run(results: ResultCounters) -> str:
    handled = results.total_handled
    review = results.messages_needing_review

    if results.errors > 0:
        return (
            f"{results.errors} {_plural(results.errors, 'error', 'errors')} "
            "occurred during processing"
        )
    if review > 0:
        return f"{handled} handled, {review} {_plural(review, 'needs', 'need')} your review"
    if handled > 0:
        return f"{handled} {_plural(handled, 'conversation', 'conversations')} handled automatically"
    return "Your daily digest is ready"


def digest_id(digest: Digest) -> str:
    return f"{digest.account_id}_{digest.date_key}"


class DigestNotifier:
    def __init__(self, repository: WorkflowRepository, push_service: PushNotificationService):
        self.repository = repository
        self.push_service = push_service

    async def notify(
        self,
        ctx: RunContext,
        digest: Digest,
        summary_text: str,
        now: datetime | None = None,
    ) -> bool:
        """Send the digest notification. Returns True if at least one device accepted it."""
        config = ctx.config
        now = now or datetime.now(UTC)

        if not config.notifications_enabled:
            logger.info("Notifications disabled, digest notification skipped")
            return False

        if config.quiet_hours.contains(config.local_now(now)):
            logger.info("Quiet hours, digest notification skipped")
            return False

        try:
            endpoints = await self.repository.get_device_endpoints(ctx.account_id)
            endpoints = [e for e in endpoints if e.token and e.platform not in EXCLUDED_PLATFORMS]
            if not endpoints:
                logger.info("No deliverable device tokens, digest notification skipped")
                return False

            report = await self.push_service.send_multicast(
                endpoints,
                title=NOTIFICATION_TITLE,
                body=summary_text,
                data={
                    "type": "daily_digest",
                    "digest_id": digest_id(digest),
                    "date": digest.date_key,
                    "screen": "daily-digest",
                },
            )
        except Exception as e:
            logger.warning(
                "Digest notification failed",
                error=str(e),
                error_type=type(e).__name__,
            )
            return False

        logger.info(
            "Digest notification sent",
            succeeded=report.success_count,
            failed=report.failure_count,
            endpoints=len(endpoints),
        )
        return report.success_count > 0
