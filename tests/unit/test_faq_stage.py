from datetime import UTC, datetime, timedelta

import pytest

from inbox_agent.features.daily_agent.domain.config import AgentConfig
from inbox_agent.features.daily_agent.domain.models import CandidateMessage, FAQMatch, RunContext
from inbox_agent.features.daily_agent.pipeline.faq.service import FAQStage
from inbox_agent.services.infrastructure.retry import CapabilityError

NOW = datetime(2026, 3, 10, 17, 0, tzinfo=UTC)
ACCOUNT = "creator-1"
QUESTION = "When is the next livestream?"
ANSWER = "Every Friday at 6pm!"


def _build_context(**config):
    return RunContext(
        account_id=ACCOUNT,
        execution_id="exec_test",
        started_at=NOW,
        config=AgentConfig(**config),
    )


def _seed(repo, message_id, text=QUESTION):
    conversation_id = f"conv-{message_id}"
    repo.add_conversation(ACCOUNT, conversation_id, NOW - timedelta(days=3))
    repo.add_message(conversation_id, message_id, "fan-1", text, NOW - timedelta(hours=1))
    return CandidateMessage(
        conversation_id=conversation_id,
        message_id=message_id,
        sender_id="fan-1",
        text=text,
        timestamp=NOW - timedelta(hours=1),
    )


def _confident_match(confidence=0.9):
    return FAQMatch(
        is_faq=True, confidence=confidence, suggested_response=ANSWER, template_id="tpl-1"
    )


@pytest.mark.asyncio
async def test_confident_match_is_answered_automatically(fake_repository, fake_faq_matcher):
    message = _seed(fake_repository, "m1")
    fake_faq_matcher.matches[QUESTION] = _confident_match()
    ctx = _build_context(require_approval=False)

    await FAQStage(fake_faq_matcher, fake_repository).run(ctx, [message])

    assert message.auto_response_sent is True
    assert ctx.results.faqs_detected == 1
    assert ctx.results.auto_responses_sent == 1
    assert ctx.costs.faq_detection == pytest.approx(0.03)

    [created] = fake_repository.created_messages
    assert created["sender_id"] == ACCOUNT
    assert created["text"] == ANSWER
    assert created["metadata"] == {
        "is_auto_response": True,
        "original_message_id": "m1",
        "faq_template_id": "tpl-1",
    }
    stored = fake_repository.metadata_for(message.conversation_id, "m1")
    assert stored["auto_response_sent"] is True
    assert stored["ai_processed"] is True


@pytest.mark.asyncio
async def test_match_below_confidence_is_ignored(fake_repository, fake_faq_matcher):
    message = _seed(fake_repository, "m1")
    fake_faq_matcher.matches[QUESTION] = _confident_match(confidence=0.75)
    ctx = _build_context(require_approval=False)

    await FAQStage(fake_faq_matcher, fake_repository).run(ctx, [message])

    assert message.is_faq is False
    assert ctx.results.faqs_detected == 0
    assert fake_repository.created_messages == []


@pytest.mark.asyncio
async def test_require_approval_queues_suggestion(fake_repository, fake_faq_matcher):
    message = _seed(fake_repository, "m1")
    fake_faq_matcher.matches[QUESTION] = _confident_match()
    ctx = _build_context(require_approval=True)

    await FAQStage(fake_faq_matcher, fake_repository).run(ctx, [message])

    assert message.pending_review is True
    assert message.auto_response_sent is False
    assert ctx.results.auto_responses_sent == 0
    assert fake_repository.created_messages == []
    stored = fake_repository.metadata_for(message.conversation_id, "m1")
    assert stored["suggested_response"] == ANSWER
    assert stored["pending_review"] is True


@pytest.mark.asyncio
async def test_owner_reply_after_run_start_is_manual_override(fake_repository, fake_faq_matcher):
    message = _seed(fake_repository, "m1")
    fake_repository.add_message(
        message.conversation_id, "owner-reply", ACCOUNT, "On it!", NOW + timedelta(minutes=1)
    )
    fake_faq_matcher.matches[QUESTION] = _confident_match()
    ctx = _build_context(require_approval=False)

    await FAQStage(fake_faq_matcher, fake_repository).run(ctx, [message])

    assert message.manual_override is True
    assert ctx.results.manual_overrides == 1
    assert ctx.results.auto_responses_sent == 0
    assert fake_repository.created_messages == []
    stored = fake_repository.metadata_for(message.conversation_id, "m1")
    assert stored["skipped_reason"] == "manual_override"


@pytest.mark.asyncio
async def test_override_check_failure_skips_auto_response(fake_repository, fake_faq_matcher):
    message = _seed(fake_repository, "m1")
    fake_faq_matcher.matches[QUESTION] = _confident_match()
    fake_repository.fail_on["has_owner_message_since"] = RuntimeError("db down")
    ctx = _build_context(require_approval=False)

    await FAQStage(fake_faq_matcher, fake_repository).run(ctx, [message])

    assert message.manual_override is True
    assert fake_repository.created_messages == []


@pytest.mark.asyncio
async def test_auto_responses_respect_cap_within_one_batch(fake_repository, fake_faq_matcher):
    messages = [_seed(fake_repository, f"m{i}") for i in range(5)]
    fake_faq_matcher.matches[QUESTION] = _confident_match()
    ctx = _build_context(require_approval=False, max_auto_responses=2)

    await FAQStage(fake_faq_matcher, fake_repository).run(ctx, messages)

    assert ctx.results.auto_responses_sent == 2
    assert len(fake_repository.created_messages) == 2


@pytest.mark.asyncio
async def test_cap_stops_further_batches(fake_repository, fake_faq_matcher):
    messages = [_seed(fake_repository, f"m{i}") for i in range(3)]
    fake_faq_matcher.matches[QUESTION] = _confident_match()
    ctx = _build_context(require_approval=False, max_auto_responses=1)

    await FAQStage(fake_faq_matcher, fake_repository, batch_size=1).run(ctx, messages)

    assert len(fake_faq_matcher.calls) == 1
    assert ctx.results.auto_responses_sent == 1


@pytest.mark.asyncio
async def test_detection_failure_is_counted_and_skipped(fake_repository, fake_faq_matcher):
    class FailingMatcher:
        async def detect(self, text, account_id, message_id=None):
            raise CapabilityError("faq service down")

    message = _seed(fake_repository, "m1")
    ctx = _build_context(require_approval=False)

    await FAQStage(FailingMatcher(), fake_repository).run(ctx, [message])

    assert ctx.results.errors == 1
    assert ctx.costs.faq_detection == 0
    assert message.is_faq is False
