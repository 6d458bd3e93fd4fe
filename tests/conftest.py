from datetime import UTC, datetime
from itertools import count

import pytest

from inbox_agent.features.daily_agent.domain.models import (
    Classification,
    ConversationRecord,
    DeviceEndpoint,
    Digest,
    ExecutionRecord,
    FAQMatch,
    MessageCategory,
    OpportunityAssessment,
    OpportunityType,
    PresenceStatus,
    SchedulerRunRecord,
    Sentiment,
    StepLogEntry,
    StoredMessage,
    UndoArchiveEntry,
)
from inbox_agent.features.daily_agent.repository.workflow_repository import execution_to_document
from inbox_agent.services.infrastructure.retry import CapabilityError
from inbox_agent.services.messaging.push_notification_service import DeliveryReport


class FakeRedis:
    def __init__(self):
        self.store: dict[str, str] = {}
        self.ttls: dict[str, int | None] = {}

    async def get(self, key: str) -> str | None:
        return self.store.get(key)

    async def set_if_absent(self, key: str, value: str, ttl_s: int) -> bool:
        if key in self.store:
            return False
        self.store[key] = value
        self.ttls[key] = ttl_s
        return True

    async def delete(self, key: str) -> bool:
        self.ttls.pop(key, None)
        return self.store.pop(key, None) is not None

    def expire(self, key: str) -> None:
        """Simulate the key's TTL running out."""
        self.store.pop(key, None)
        self.ttls.pop(key, None)


class FakeWorkflowRepository:
    """In-memory WorkflowRepository. Set fail_on[method] to make a call raise."""

    def __init__(self):
        self.config_documents: dict[str, dict] = {}
        self.display_names: dict[str, str] = {}
        self.presence: dict[str, PresenceStatus] = {}
        self.device_endpoints: dict[str, list[DeviceEndpoint]] = {}
        self.conversations: dict[str, ConversationRecord] = {}
        self.participants: dict[str, list[str]] = {}
        self.messages: dict[str, list[StoredMessage]] = {}
        self.created_messages: list[dict] = []
        self.archived: list[tuple[str, str]] = []
        self.undo_entries: list[UndoArchiveEntry] = []
        self.execution_history: list[dict] = []
        self.executions: dict[str, dict] = {}
        self.step_logs: dict[str, list[StepLogEntry]] = {}
        self.digests: dict[tuple[str, str], Digest] = {}
        self.scheduler_runs: list[SchedulerRunRecord] = []
        self.fail_on: dict[str, Exception] = {}
        self._ids = count(1)

    def _maybe_fail(self, method: str) -> None:
        if method in self.fail_on:
            raise self.fail_on[method]

    # Test setup helpers

    def add_conversation(
        self,
        account_id: str,
        conversation_id: str,
        created_at: datetime,
        last_message_at: datetime | None = None,
        message_count: int = 1,
    ) -> ConversationRecord:
        record = ConversationRecord(
            conversation_id=conversation_id,
            created_at=created_at,
            last_message_at=last_message_at,
            message_count=message_count,
        )
        self.conversations[conversation_id] = record
        self.participants.setdefault(account_id, []).append(conversation_id)
        self.messages.setdefault(conversation_id, [])
        return record

    def add_message(
        self,
        conversation_id: str,
        message_id: str,
        sender_id: str,
        text: str,
        timestamp: datetime,
        metadata: dict | None = None,
    ) -> StoredMessage:
        message = StoredMessage(
            message_id=message_id,
            conversation_id=conversation_id,
            sender_id=sender_id,
            text=text,
            timestamp=timestamp,
            metadata=dict(metadata or {}),
        )
        self.messages.setdefault(conversation_id, []).append(message)
        return message

    def metadata_for(self, conversation_id: str, message_id: str) -> dict:
        for message in self.messages.get(conversation_id, []):
            if message.message_id == message_id:
                return message.metadata
        raise KeyError(message_id)

    # WorkflowRepository

    async def get_agent_config_document(self, account_id):
        self._maybe_fail("get_agent_config_document")
        return self.config_documents.get(account_id)

    async def get_display_name(self, account_id):
        self._maybe_fail("get_display_name")
        return self.display_names.get(account_id)

    async def get_presence(self, account_id):
        self._maybe_fail("get_presence")
        return self.presence.get(account_id, PresenceStatus())

    async def get_device_endpoints(self, account_id):
        self._maybe_fail("get_device_endpoints")
        return list(self.device_endpoints.get(account_id, []))

    async def list_enrolled_accounts(self):
        self._maybe_fail("list_enrolled_accounts")
        return [
            (account_id, document)
            for account_id, document in self.config_documents.items()
            if document.get("daily_workflow_enabled")
        ]

    async def list_conversations(self, account_id):
        self._maybe_fail("list_conversations")
        return [self.conversations[cid] for cid in self.participants.get(account_id, [])]

    async def get_conversation(self, conversation_id):
        self._maybe_fail("get_conversation")
        return self.conversations.get(conversation_id)

    async def list_messages_since(self, conversation_id, since):
        self._maybe_fail("list_messages_since")
        return [m for m in self.messages.get(conversation_id, []) if m.timestamp >= since]

    async def has_owner_message_since(self, conversation_id, account_id, since):
        self._maybe_fail("has_owner_message_since")
        return any(
            m.sender_id == account_id and m.timestamp > since
            for m in self.messages.get(conversation_id, [])
        )

    async def update_message_metadata(self, conversation_id, message_id, updates):
        self._maybe_fail("update_message_metadata")
        self.metadata_for(conversation_id, message_id).update(updates)

    async def create_message(self, conversation_id, sender_id, text, metadata):
        self._maybe_fail("create_message")
        message_id = f"created-{next(self._ids)}"
        self.created_messages.append(
            {
                "conversation_id": conversation_id,
                "sender_id": sender_id,
                "text": text,
                "metadata": dict(metadata),
            }
        )
        self.add_message(
            conversation_id, message_id, sender_id, text, datetime.now(UTC), metadata
        )
        return message_id

    async def archive_conversation(self, conversation_id, account_id):
        self._maybe_fail("archive_conversation")
        self.archived.append((conversation_id, account_id))

    async def unarchive_conversation(self, conversation_id, account_id):
        self._maybe_fail("unarchive_conversation")
        self.archived.remove((conversation_id, account_id))

    async def create_undo_entry(self, entry):
        self._maybe_fail("create_undo_entry")
        self.undo_entries.append(entry)

    async def create_execution(self, record: ExecutionRecord):
        self._maybe_fail("create_execution")
        document = execution_to_document(record)
        self.executions[record.id] = document
        self.execution_history.append(document)

    async def update_execution(self, record: ExecutionRecord):
        self._maybe_fail("update_execution")
        document = execution_to_document(record)
        self.executions[record.id] = document
        self.execution_history.append(document)

    async def get_execution(self, account_id, execution_id):
        self._maybe_fail("get_execution")
        document = self.executions.get(execution_id)
        if not document or document["account_id"] != account_id:
            return None
        steps = [
            {
                "step": entry.step.value,
                "status": entry.status.value,
                "level": entry.level,
                "message": entry.message,
                "created_at": entry.created_at.isoformat(),
            }
            for entry in self.step_logs.get(execution_id, [])
        ]
        return {**document, "step_log": steps}

    async def append_step_log(self, execution_id, entry):
        self._maybe_fail("append_step_log")
        self.step_logs.setdefault(execution_id, []).append(entry)

    async def save_digest(self, digest):
        self._maybe_fail("save_digest")
        self.digests[(digest.account_id, digest.date_key)] = digest

    async def get_digest(self, account_id, date_key):
        self._maybe_fail("get_digest")
        digest = self.digests.get((account_id, date_key))
        return digest.to_dict() if digest else None

    async def record_scheduler_run(self, run):
        self._maybe_fail("record_scheduler_run")
        self.scheduler_runs.append(run)


def make_classification(
    category: MessageCategory = MessageCategory.FAN_ENGAGEMENT,
    confidence: float = 0.9,
    sentiment_score: float = 0.5,
    sentiment: Sentiment = Sentiment.POSITIVE,
) -> Classification:
    return Classification(
        category=category,
        confidence=confidence,
        sentiment=sentiment,
        sentiment_score=sentiment_score,
        emotional_tone=["grateful"],
    )


class FakeClassifier:
    """Returns classifications keyed by message text; unknown text gets the default."""

    def __init__(self):
        self.results: dict[str, Classification] = {}
        self.failures: set[str] = set()
        self.default = make_classification()
        self.calls: list[str] = []
        self.on_call = None

    async def classify(self, text):
        self.calls.append(text)
        if self.on_call is not None:
            self.on_call(text)
        if text in self.failures:
            raise CapabilityError("classification unavailable")
        return self.results.get(text, self.default)


class FakeOpportunityScorer:
    def __init__(self):
        self.score_value = 90
        self.calls: list[str] = []

    async def score(self, text):
        self.calls.append(text)
        return OpportunityAssessment(
            score=self.score_value,
            type=OpportunityType.SPONSORSHIP,
            indicators=["sponsorship keywords"],
            analysis="Strong sponsorship lead",
        )


class FakeFAQMatcher:
    def __init__(self):
        self.matches: dict[str, FAQMatch] = {}
        self.calls: list[str] = []

    async def detect(self, text, account_id, message_id=None):
        self.calls.append(text)
        return self.matches.get(text, FAQMatch(is_faq=False, confidence=0.1))


class FakePushService:
    def __init__(self):
        self.sent: list[dict] = []
        self.error: Exception | None = None

    async def send_multicast(self, endpoints, title, body, data):
        if self.error is not None:
            raise self.error
        self.sent.append({"endpoints": endpoints, "title": title, "body": body, "data": data})
        return DeliveryReport(success_count=len(endpoints), failure_count=0)


class FakeClock:
    """Monotonic clock that only moves when told to."""

    def __init__(self, start: float = 1000.0):
        self.value = start

    def __call__(self) -> float:
        return self.value

    def advance(self, seconds: float) -> None:
        self.value += seconds


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def fake_repository():
    return FakeWorkflowRepository()


@pytest.fixture
def fake_classifier():
    return FakeClassifier()


@pytest.fixture
def fake_opportunity_scorer():
    return FakeOpportunityScorer()


@pytest.fixture
def fake_faq_matcher():
    return FakeFAQMatcher()


@pytest.fixture
def fake_push_service():
    return FakePushService()


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture(autouse=True)
def no_retry_sleep(monkeypatch):
    async def _no_sleep(delay):
        return None

    monkeypatch.setattr("inbox_agent.services.infrastructure.retry._sleep", _no_sleep)
