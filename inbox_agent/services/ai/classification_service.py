"""
Message category and sentiment classification via OpenAI.

Returns the model's answer validated but unadjusted; the classification
stage applies the confidence and sentiment guards.
"""

from openai import AsyncOpenAI
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from inbox_agent.config import settings
from inbox_agent.features.daily_agent.domain.models import (
    CRISIS_SENTIMENT_THRESHOLD,
    Classification,
    MessageCategory,
    Sentiment,
)
from inbox_agent.infrastructure.observability.logging import get_logger
from inbox_agent.services.ai.completion import JsonCompletionService, build_openai_client
from inbox_agent.services.infrastructure.retry import CapabilityError, retry_with_backoff

logger = get_logger(__name__)

CLASSIFICATION_SYSTEM_PROMPT = """You are a message analysis system for a creator messaging platform.

Classify the message into exactly ONE category:
- fan_engagement: fan messages, compliments, casual conversation, appreciation
- business_opportunity: sponsorship inquiries, collaboration requests, partnership proposals, deals
- spam: promotional content, suspicious links, irrelevant messages, scams
- urgent: complaints, crisis situations, time-sensitive requests
- general: anything that fits none of the above

Score sentiment from -1.0 (very negative) to 1.0 (very positive) and list the emotional
tones you detect (e.g. excited, frustrated, grateful, anxious, demanding).

Respond ONLY with a JSON object:
{"category": "...", "confidence": 0.0-1.0, "reasoning": "...",
 "sentiment": "positive|negative|neutral|mixed", "sentimentScore": -1.0-1.0,
 "emotionalTone": ["..."]}"""


class ClassificationPayload(BaseModel):
    """Shape the model must return."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    category: MessageCategory
    confidence: float = Field(ge=0, le=1)
    sentiment: Sentiment
    sentiment_score: float = Field(alias="sentimentScore", ge=-1, le=1)
    emotional_tone: list[str] = Field(alias="emotionalTone")
    reasoning: str = ""


class ClassificationService(JsonCompletionService):
    operation = "classify_message"

    def __init__(self, client: AsyncOpenAI | None = None):
        super().__init__(
            client,
            model=settings.OPENAI_CLASSIFICATION_MODEL,
            temperature=settings.OPENAI_CLASSIFICATION_TEMPERATURE,
        )

    async def classify(self, text: str) -> Classification:
        """
        Classify one message, retrying transient failures.

        Raises:
            CapabilityError: retries exhausted or a non-retryable failure
        """
        return await retry_with_backoff(lambda: self._classify_once(text), operation=self.operation)

    async def _classify_once(self, text: str) -> Classification:
        payload = await self._complete_json(CLASSIFICATION_SYSTEM_PROMPT, f'Message: "{text}"')

        try:
            parsed = ClassificationPayload.model_validate(payload)
        except ValidationError as e:
            raise CapabilityError(
                f"Invalid classification response: {e.error_count()} errors",
                operation=self.operation,
            ) from e

        return Classification(
            category=parsed.category,
            confidence=parsed.confidence,
            sentiment=parsed.sentiment,
            sentiment_score=parsed.sentiment_score,
            emotional_tone=parsed.emotional_tone,
            reasoning=parsed.reasoning,
            crisis_detected=parsed.sentiment_score < CRISIS_SENTIMENT_THRESHOLD,
        )


def build_classification_service() -> ClassificationService:
    return ClassificationService(build_openai_client())
