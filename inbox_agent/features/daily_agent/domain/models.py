"""Domain models for the daily inbox agent workflow."""

from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from inbox_agent.features.daily_agent.domain.config import AgentConfig


class ExecutionStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    SKIPPED = "skipped"
    FAILED = "failed"


class WorkflowStep(str, Enum):
    FETCH = "fetch"
    CLASSIFY = "classify"
    FAQ = "faq_detect"
    DRAFT = "draft_responses"
    DIGEST = "digest"
    SUMMARY = "summary"


class StepStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    SKIPPED = "skipped"
    FAILED = "failed"


class MessageCategory(str, Enum):
    FAN_ENGAGEMENT = "fan_engagement"
    BUSINESS_OPPORTUNITY = "business_opportunity"
    SPAM = "spam"
    URGENT = "urgent"
    GENERAL = "general"


class Sentiment(str, Enum):
    POSITIVE = "positive"
    NEGATIVE = "negative"
    NEUTRAL = "neutral"
    MIXED = "mixed"


class OpportunityType(str, Enum):
    SPONSORSHIP = "sponsorship"
    COLLABORATION = "collaboration"
    PARTNERSHIP = "partnership"
    SALE = "sale"


class PriorityTier(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


# Sentiment score below which a message is treated as a crisis
CRISIS_SENTIMENT_THRESHOLD = -0.7


@dataclass(slots=True)
class ConversationContext:
    conversation_id: str
    age_days: float
    last_interaction_at: datetime
    message_count: int
    is_vip: bool


@dataclass(slots=True)
class Classification:
    category: MessageCategory
    confidence: float
    sentiment: Sentiment
    sentiment_score: float
    emotional_tone: list[str]
    reasoning: str = ""
    crisis_detected: bool = False


@dataclass(slots=True)
class OpportunityAssessment:
    score: int
    type: OpportunityType
    indicators: list[str]
    analysis: str
    used_fallback: bool = False


@dataclass(slots=True)
class FAQMatch:
    is_faq: bool
    confidence: float
    suggested_response: str | None = None
    template_id: str | None = None
    cost: float | None = None


@dataclass(slots=True)
class CandidateMessage:
    """An inbound message selected by intake and mutated by later stages."""

    conversation_id: str
    message_id: str
    sender_id: str
    text: str
    timestamp: datetime
    category: MessageCategory | None = None
    confidence: float | None = None
    sentiment: Sentiment | None = None
    sentiment_score: float | None = None
    emotional_tone: list[str] = field(default_factory=list)
    crisis_detected: bool = False
    opportunity: OpportunityAssessment | None = None
    stored_priority_score: float | None = None
    priority_score: int | None = None
    priority_tier: PriorityTier | None = None
    is_faq: bool = False
    auto_response_sent: bool = False
    needs_draft_response: bool = False
    manual_override: bool = False
    pending_review: bool = False

    @property
    def opportunity_score(self) -> int | None:
        return self.opportunity.score if self.opportunity else None

    @property
    def is_crisis(self) -> bool:
        return self.sentiment_score is not None and self.sentiment_score < CRISIS_SENTIMENT_THRESHOLD

    def apply_classification(self, classification: Classification, include_sentiment: bool) -> None:
        self.category = classification.category
        self.confidence = classification.confidence
        if include_sentiment:
            self.sentiment = classification.sentiment
            self.sentiment_score = classification.sentiment_score
            self.emotional_tone = list(classification.emotional_tone)
            self.crisis_detected = classification.crisis_detected


@dataclass(slots=True)
class PriorityResult:
    score: int
    tier: PriorityTier
    breakdown: dict[str, int] = field(default_factory=dict)
    reused: bool = False


@dataclass(slots=True)
class DigestEntry:
    message_id: str
    conversation_id: str
    sender_id: str
    preview: str
    category: str | None
    score: int
    tier: PriorityTier
    estimated_minutes: int


@dataclass(slots=True)
class AutoHandledSummary:
    faq_count: int = 0
    archived_count: int = 0

    @property
    def total(self) -> int:
        return self.faq_count + self.archived_count


@dataclass(slots=True)
class DigestSelection:
    high_priority: list[CandidateMessage]
    medium_priority: list[CandidateMessage]
    beyond_capacity: list[CandidateMessage]


@dataclass(slots=True)
class Digest:
    account_id: str
    date_key: str
    high_priority: list[DigestEntry]
    medium_priority: list[DigestEntry]
    auto_handled: AutoHandledSummary
    capacity_used: int
    estimated_time_commitment: int
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["auto_handled"]["total"] = self.auto_handled.total
        data["created_at"] = self.created_at.isoformat()
        return data


@dataclass(slots=True)
class ArchiveResult:
    archived_count: int = 0
    boundaries_sent: int = 0
    rate_limited: int = 0
    safety_blocked: int = 0
    quiet_hours_suppressed: int = 0
    errors: int = 0


@dataclass(slots=True)
class BoundaryRateLimitEntry:
    sender_pair_key: str
    last_sent_at: datetime
    expires_at: datetime


@dataclass(slots=True)
class UndoArchiveEntry:
    account_id: str
    conversation_id: str
    message_id: str
    archived_at: datetime
    expires_at: datetime
    boundary_message_sent: bool
    can_undo: bool = True


@dataclass(slots=True)
class PresenceStatus:
    online: bool = False
    last_seen_at: datetime | None = None


@dataclass(slots=True)
class DeviceEndpoint:
    token: str
    platform: str = "native"


@dataclass(slots=True)
class StepLogEntry:
    step: WorkflowStep
    status: StepStatus
    message: str
    level: str = "info"
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))


@dataclass(slots=True)
class ResultCounters:
    messages_fetched: int = 0
    messages_categorized: int = 0
    faqs_detected: int = 0
    auto_responses_sent: int = 0
    manual_overrides: int = 0
    messages_needing_review: int = 0
    messages_scored: int = 0
    archived_count: int = 0
    boundaries_sent: int = 0
    rate_limited: int = 0
    safety_blocked: int = 0
    errors: int = 0

    @property
    def total_handled(self) -> int:
        return self.auto_responses_sent + self.archived_count

    def to_dict(self) -> dict[str, int]:
        return asdict(self)


@dataclass(slots=True)
class CostAccumulator:
    """Spend per capability for one run, in USD."""

    categorization: float = 0.0
    faq_detection: float = 0.0
    drafting: float = 0.0

    @property
    def total(self) -> float:
        return self.categorization + self.faq_detection + self.drafting

    def to_cents(self) -> dict[str, int]:
        return {
            "categorization": round(self.categorization * 100),
            "faq_detection": round(self.faq_detection * 100),
            "drafting": round(self.drafting * 100),
            "total": round(self.total * 100),
        }


@dataclass(slots=True)
class ExecutionRecord:
    id: str
    account_id: str
    status: ExecutionStatus
    started_at: datetime
    ended_at: datetime | None = None
    step_log: list[StepLogEntry] = field(default_factory=list)
    results: ResultCounters = field(default_factory=ResultCounters)
    costs: CostAccumulator = field(default_factory=CostAccumulator)
    step_durations: dict[str, float] = field(default_factory=dict)
    warnings: list[str] = field(default_factory=list)
    digest_summary: str | None = None
    error: str | None = None


@dataclass(slots=True)
class RunContext:
    """Mutable state for one run, owned by the orchestrator and passed to each stage."""

    account_id: str
    execution_id: str
    started_at: datetime
    config: AgentConfig
    results: ResultCounters = field(default_factory=ResultCounters)
    costs: CostAccumulator = field(default_factory=CostAccumulator)
    step_durations: dict[str, float] = field(default_factory=dict)
    warnings: list[str] = field(default_factory=list)
    conversation_contexts: dict[str, ConversationContext] = field(default_factory=dict)

    def record_error(self) -> None:
        self.results.errors += 1


@dataclass(slots=True)
class ExecutionSummary:
    success: bool
    execution_id: str
    status: ExecutionStatus
    results: ResultCounters
    metrics: dict[str, Any] = field(default_factory=dict)
    digest_summary: str | None = None


@dataclass(slots=True)
class ConversationRecord:
    conversation_id: str
    created_at: datetime
    last_message_at: datetime | None
    message_count: int


@dataclass(slots=True)
class StoredMessage:
    """A message row as read from the store, before intake filtering."""

    message_id: str
    conversation_id: str
    sender_id: str
    text: str
    timestamp: datetime
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class SchedulerRunRecord:
    started_at: datetime
    duration_ms: float
    accounts_checked: int
    triggered: int
    skipped: int
    errors: int
