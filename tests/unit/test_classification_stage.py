from datetime import UTC, datetime, timedelta

import pytest

from inbox_agent.features.daily_agent.domain.config import AgentConfig
from inbox_agent.features.daily_agent.domain.models import (
    CandidateMessage,
    Classification,
    MessageCategory,
    RunContext,
    Sentiment,
)
from inbox_agent.features.daily_agent.pipeline.classification.service import (
    ClassificationStage,
    apply_classification_guards,
)

NOW = datetime(2026, 3, 10, 17, 0, tzinfo=UTC)


def _raw(category=MessageCategory.FAN_ENGAGEMENT, confidence=0.9, sentiment_score=0.4):
    return Classification(
        category=category,
        confidence=confidence,
        sentiment=Sentiment.NEGATIVE if sentiment_score < 0 else Sentiment.POSITIVE,
        sentiment_score=sentiment_score,
        emotional_tone=["calm"],
    )


def _build_context(**config):
    return RunContext(
        account_id="creator-1",
        execution_id="exec_test",
        started_at=NOW,
        config=AgentConfig(**config),
    )


def _seed(repo, message_id, text):
    conversation_id = f"conv-{message_id}"
    repo.add_conversation("creator-1", conversation_id, NOW - timedelta(days=3))
    repo.add_message(conversation_id, message_id, "fan-1", text, NOW - timedelta(hours=2))
    return CandidateMessage(
        conversation_id=conversation_id,
        message_id=message_id,
        sender_id="fan-1",
        text=text,
        timestamp=NOW - timedelta(hours=2),
    )


def test_low_confidence_falls_back_to_general():
    result = apply_classification_guards(
        _raw(category=MessageCategory.BUSINESS_OPPORTUNITY, confidence=0.5)
    )

    assert result.category is MessageCategory.GENERAL
    assert result.crisis_detected is False


def test_negative_sentiment_forces_urgent():
    result = apply_classification_guards(_raw(sentiment_score=-0.6))

    assert result.category is MessageCategory.URGENT
    assert result.crisis_detected is False


def test_urgent_override_wins_over_low_confidence():
    result = apply_classification_guards(_raw(confidence=0.4, sentiment_score=-0.6))

    assert result.category is MessageCategory.URGENT


def test_crisis_flag_set_below_threshold():
    result = apply_classification_guards(_raw(sentiment_score=-0.85))

    assert result.category is MessageCategory.URGENT
    assert result.crisis_detected is True


def test_crisis_threshold_itself_is_not_crisis():
    result = apply_classification_guards(_raw(sentiment_score=-0.7))

    assert result.category is MessageCategory.URGENT
    assert result.crisis_detected is False


@pytest.mark.asyncio
async def test_stage_scores_business_messages_and_tracks_cost(
    fake_repository, fake_classifier, fake_opportunity_scorer
):
    business = _seed(fake_repository, "m1", "Sponsorship offer for your channel")
    fan = _seed(fake_repository, "m2", "Loved the last video")
    fake_classifier.results[business.text] = _raw(
        category=MessageCategory.BUSINESS_OPPORTUNITY, confidence=0.95
    )
    ctx = _build_context()

    stage = ClassificationStage(fake_classifier, fake_opportunity_scorer, fake_repository)
    await stage.run(ctx, [business, fan])

    assert business.category is MessageCategory.BUSINESS_OPPORTUNITY
    assert business.opportunity_score == 90
    assert fan.category is MessageCategory.FAN_ENGAGEMENT
    assert fan.opportunity is None
    assert fake_opportunity_scorer.calls == [business.text]
    assert ctx.results.messages_categorized == 2
    assert ctx.costs.categorization == pytest.approx(0.05 * 2 + 1.50)

    stored = fake_repository.metadata_for(business.conversation_id, business.message_id)
    assert stored["category"] == "business_opportunity"
    assert stored["opportunity_score"] == 90
    assert "ai_categorized_at" in stored


@pytest.mark.asyncio
async def test_stage_skips_message_after_classifier_failure(
    fake_repository, fake_classifier, fake_opportunity_scorer
):
    broken = _seed(fake_repository, "m1", "unparseable")
    fine = _seed(fake_repository, "m2", "Hello there")
    fake_classifier.failures.add(broken.text)
    ctx = _build_context()

    stage = ClassificationStage(fake_classifier, fake_opportunity_scorer, fake_repository)
    await stage.run(ctx, [broken, fine])

    assert broken.category is None
    assert fine.category is MessageCategory.FAN_ENGAGEMENT
    assert ctx.results.messages_categorized == 1
    assert ctx.results.errors == 1
    assert ctx.costs.categorization == pytest.approx(0.05)
    assert "category" not in fake_repository.metadata_for(broken.conversation_id, "m1")


@pytest.mark.asyncio
async def test_sentiment_disabled_keeps_urgent_guard(
    fake_repository, fake_classifier, fake_opportunity_scorer
):
    message = _seed(fake_repository, "m1", "This is unacceptable")
    fake_classifier.results[message.text] = _raw(sentiment_score=-0.8)
    ctx = _build_context(sentiment_analysis_enabled=False)

    stage = ClassificationStage(fake_classifier, fake_opportunity_scorer, fake_repository)
    await stage.run(ctx, [message])

    assert message.category is MessageCategory.URGENT
    assert message.sentiment is None
    assert message.sentiment_score is None
    assert message.is_crisis is False
    assert "sentiment" not in fake_repository.metadata_for(message.conversation_id, "m1")
