import json
from types import SimpleNamespace

import httpx
import openai
import pytest

from inbox_agent.features.daily_agent.domain.models import MessageCategory, OpportunityType
from inbox_agent.services.ai.classification_service import ClassificationService
from inbox_agent.services.ai.opportunity_service import (
    OpportunityScoringService,
    rule_based_opportunity_score,
)
from inbox_agent.services.infrastructure.retry import CapabilityError, ErrorKind


def _completion(content: str | None):
    return SimpleNamespace(
        choices=[SimpleNamespace(message=SimpleNamespace(content=content))],
        usage=None,
    )


class FakeCompletions:
    """Replays queued responses; exceptions in the queue are raised."""

    def __init__(self, responses):
        self.responses = list(responses)
        self.calls = 0

    async def create(self, **kwargs):
        self.calls += 1
        response = self.responses[min(self.calls, len(self.responses)) - 1]
        if isinstance(response, Exception):
            raise response
        return response


def _client(completions: FakeCompletions):
    return SimpleNamespace(chat=SimpleNamespace(completions=completions))


def _timeout_error():
    return openai.APITimeoutError(
        request=httpx.Request("POST", "https://api.openai.com/v1/chat/completions")
    )


def test_rule_based_score_sponsorship_with_budget():
    result = rule_based_opportunity_score("We'd love to sponsor you, budget is $5k")

    assert result.score == 70
    assert result.type is OpportunityType.SPONSORSHIP
    assert result.used_fallback is True
    assert result.analysis == "Business opportunity detected (rule-based fallback scoring)"


def test_rule_based_score_sums_every_signal():
    text = (
        "Hello! Our brand would like to sponsor a series and collaborate on content. "
        "We have a budget set aside and can discuss your rate for the full campaign."
    )

    result = rule_based_opportunity_score(text)

    assert result.score == 100
    assert "professional tone" in result.indicators


def test_rule_based_score_without_signal_defaults_to_50():
    result = rule_based_opportunity_score("hi")

    assert result.score == 50
    assert result.type is OpportunityType.SALE
    assert result.indicators == ["business inquiry"]


@pytest.mark.asyncio
async def test_opportunity_scoring_falls_back_after_four_failures():
    completions = FakeCompletions([_timeout_error()])
    service = OpportunityScoringService(_client(completions))

    result = await service.score("Brand deal for your channel, payment negotiable")

    assert completions.calls == 4
    assert result.used_fallback is True
    assert result.type is OpportunityType.SPONSORSHIP
    assert result.score == 70


@pytest.mark.asyncio
async def test_opportunity_scoring_uses_model_answer():
    body = {
        "score": 85,
        "type": "collaboration",
        "indicators": ["collaboration request"],
        "analysis": "Clear collaboration pitch",
    }
    completions = FakeCompletions([_completion(json.dumps(body))])
    service = OpportunityScoringService(_client(completions))

    result = await service.score("Let's collaborate")

    assert result.score == 85
    assert result.type is OpportunityType.COLLABORATION
    assert result.used_fallback is False


@pytest.mark.asyncio
async def test_classification_retries_malformed_output():
    body = {
        "category": "fan_engagement",
        "confidence": 0.92,
        "sentiment": "negative",
        "sentimentScore": -0.8,
        "emotionalTone": ["upset"],
    }
    completions = FakeCompletions([_completion("not json"), _completion(json.dumps(body))])
    service = ClassificationService(_client(completions))

    result = await service.classify("I'm really upset")

    assert completions.calls == 2
    assert result.category is MessageCategory.FAN_ENGAGEMENT
    assert result.sentiment_score == -0.8
    assert result.crisis_detected is True


@pytest.mark.asyncio
async def test_classification_rejects_out_of_range_payload():
    body = {
        "category": "spam",
        "confidence": 1.7,
        "sentiment": "neutral",
        "sentimentScore": 0,
        "emotionalTone": [],
    }
    completions = FakeCompletions([_completion(json.dumps(body))])
    service = ClassificationService(_client(completions))

    with pytest.raises(CapabilityError) as exc:
        await service.classify("buy followers")

    assert exc.value.kind is ErrorKind.TRANSIENT
    assert completions.calls == 4


@pytest.mark.asyncio
async def test_classification_without_client_is_permanent():
    service = ClassificationService(None)

    with pytest.raises(CapabilityError) as exc:
        await service.classify("hello")

    assert exc.value.kind is ErrorKind.PERMANENT
    assert exc.value.recoverable is False
