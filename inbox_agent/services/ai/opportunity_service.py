"""
Business opportunity scoring via OpenAI with a deterministic keyword fallback.

score() never raises: when the model call exhausts its retries, the
rule-based scorer produces the result instead.
"""

from openai import AsyncOpenAI
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from inbox_agent.config import settings
from inbox_agent.features.daily_agent.domain.models import OpportunityAssessment, OpportunityType
from inbox_agent.infrastructure.observability.logging import get_logger
from inbox_agent.services.ai.completion import JsonCompletionService, build_openai_client
from inbox_agent.services.infrastructure.retry import CapabilityError, retry_with_backoff

logger = get_logger(__name__)

SPONSORSHIP_KEYWORDS = ("sponsor", "brand deal", "sponsored", "brand partnership", "endorsement")
BUDGET_KEYWORDS = ("$", "budget", "payment", "compensation", "fee", "paid", "rate", "price")
COLLABORATION_KEYWORDS = (
    "collaborate",
    "collaboration",
    "partner",
    "partnership",
    "work together",
    "team up",
)

SPONSORSHIP_POINTS = 40
BUDGET_POINTS = 30
COLLABORATION_POINTS = 20
PROFESSIONAL_TONE_POINTS = 10
PROFESSIONAL_MIN_LENGTH = 100
NO_SIGNAL_SCORE = 50

OPPORTUNITY_SYSTEM_PROMPT = """You are a business opportunity detection system for a creator messaging platform.

Score the value of the business message from 0 to 100:
- brand/sponsorship mentions: +40
- budget/compensation mentions: +30
- partnership/collaboration keywords: +20
- professional, specific, clear intent: +10

Opportunity types: sponsorship, collaboration, partnership, sale.

Respond ONLY with a JSON object:
{"score": 0-100, "type": "...", "indicators": ["..."], "analysis": "one sentence"}"""


class OpportunityPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    score: int = Field(ge=0, le=100)
    type: OpportunityType
    indicators: list[str]
    analysis: str


def _mentions_any(text: str, keywords: tuple[str, ...]) -> bool:
    return any(keyword in text for keyword in keywords)


def rule_based_opportunity_score(text: str) -> OpportunityAssessment:
    """Keyword scorer used when the model is unavailable."""
    lowered = text.lower()
    score = 0
    indicators: list[str] = []

    has_sponsorship = _mentions_any(lowered, SPONSORSHIP_KEYWORDS)
    has_collaboration = _mentions_any(lowered, COLLABORATION_KEYWORDS)

    if has_sponsorship:
        score += SPONSORSHIP_POINTS
        indicators.append("sponsorship keywords")
    if _mentions_any(lowered, BUDGET_KEYWORDS):
        score += BUDGET_POINTS
        indicators.append("budget discussion")
    if has_collaboration:
        score += COLLABORATION_POINTS
        indicators.append("collaboration proposal")
    if len(lowered) > PROFESSIONAL_MIN_LENGTH and "!!!" not in lowered:
        score += PROFESSIONAL_TONE_POINTS
        indicators.append("professional tone")

    if has_sponsorship:
        opportunity_type = OpportunityType.SPONSORSHIP
    elif has_collaboration:
        opportunity_type = OpportunityType.COLLABORATION
    elif "partner" in lowered:
        opportunity_type = OpportunityType.PARTNERSHIP
    else:
        opportunity_type = OpportunityType.SALE

    if score == 0:
        score = NO_SIGNAL_SCORE
        indicators.append("business inquiry")

    return OpportunityAssessment(
        score=min(score, 100),
        type=opportunity_type,
        indicators=indicators,
        analysis="Business opportunity detected (rule-based fallback scoring)",
        used_fallback=True,
    )


class OpportunityScoringService(JsonCompletionService):
    operation = "score_opportunity"

    def __init__(self, client: AsyncOpenAI | None = None):
        super().__init__(
            client,
            model=settings.OPENAI_OPPORTUNITY_MODEL,
            temperature=settings.OPENAI_OPPORTUNITY_TEMPERATURE,
        )

    async def score(self, text: str) -> OpportunityAssessment:
        try:
            return await retry_with_backoff(
                lambda: self._score_once(text), operation=self.operation
            )
        except CapabilityError as e:
            logger.warning(
                "Opportunity scoring unavailable, using rule-based fallback",
                kind=e.kind.value,
                error=str(e),
            )
            return rule_based_opportunity_score(text)

    async def _score_once(self, text: str) -> OpportunityAssessment:
        payload = await self._complete_json(OPPORTUNITY_SYSTEM_PROMPT, f'Message: "{text}"')

        try:
            parsed = OpportunityPayload.model_validate(payload)
        except ValidationError as e:
            raise CapabilityError(
                f"Invalid opportunity response: {e.error_count()} errors",
                operation=self.operation,
            ) from e

        return OpportunityAssessment(
            score=parsed.score,
            type=parsed.type,
            indicators=parsed.indicators,
            analysis=parsed.analysis,
        )


def build_opportunity_service() -> OpportunityScoringService:
    return OpportunityScoringService(build_openai_client())
