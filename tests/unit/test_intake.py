from datetime import UTC, datetime, timedelta

import pytest

from inbox_agent.features.daily_agent.domain.config import AgentConfig
from inbox_agent.features.daily_agent.domain.errors import IntakeError
from inbox_agent.features.daily_agent.domain.models import RunContext
from inbox_agent.features.daily_agent.pipeline.intake.service import (
    MessageIntakeService,
    exceeds_escalation_threshold,
)

NOW = datetime(2026, 3, 10, 17, 0, tzinfo=UTC)
ACCOUNT = "creator-1"


def _build_context():
    return RunContext(
        account_id=ACCOUNT,
        execution_id="exec_test",
        started_at=NOW,
        config=AgentConfig(),
    )


@pytest.mark.parametrize(
    ("metadata", "expected"),
    [
        ({}, False),
        ({"sentiment": "negative"}, False),
        ({"sentiment": "negative", "sentiment_score": -0.8}, True),
        ({"sentiment": "negative", "sentiment_score": -0.2}, False),
        ({"sentiment_score": -0.9}, False),
    ],
)
def test_exceeds_escalation_threshold(metadata, expected):
    assert exceeds_escalation_threshold(metadata, 0.3) is expected


@pytest.mark.asyncio
async def test_fetch_filters_messages_automation_must_not_touch(fake_repository):
    repo = fake_repository
    repo.add_conversation(ACCOUNT, "c1", NOW - timedelta(days=2), NOW - timedelta(hours=3))
    two_hours_ago = NOW - timedelta(hours=2)
    repo.add_message("c1", "fresh", "fan-1", "hello!", two_hours_ago)
    repo.add_message("c1", "own", ACCOUNT, "my reply", two_hours_ago)
    repo.add_message("c1", "done", "fan-2", "old news", two_hours_ago, {"ai_processed": True})
    repo.add_message(
        "c1",
        "review",
        "fan-3",
        "still waiting",
        two_hours_ago,
        {"ai_processed": True, "pending_review": True, "priority_score": 55},
    )
    repo.add_message(
        "c1",
        "crisis",
        "fan-4",
        "help",
        two_hours_ago,
        {"sentiment": "negative", "sentiment_score": -0.8},
    )
    repo.add_message("c1", "stale", "fan-5", "yesterday", NOW - timedelta(hours=13))
    ctx = _build_context()

    candidates = await MessageIntakeService(repo).fetch(ctx, now=NOW)

    assert [c.message_id for c in candidates] == ["fresh", "review"]
    assert candidates[1].pending_review is True
    assert candidates[1].stored_priority_score == 55.0
    assert ctx.results.messages_fetched == 2


@pytest.mark.asyncio
async def test_fetch_skips_conversations_active_in_last_hour(fake_repository):
    repo = fake_repository
    repo.add_conversation(ACCOUNT, "busy", NOW - timedelta(days=5), NOW - timedelta(minutes=20))
    repo.add_message("busy", "m1", "fan-1", "are you there?", NOW - timedelta(minutes=20))
    ctx = _build_context()

    candidates = await MessageIntakeService(repo).fetch(ctx, now=NOW)

    assert candidates == []
    assert "busy" not in ctx.conversation_contexts


@pytest.mark.asyncio
async def test_fetch_caches_relationship_context(fake_repository):
    repo = fake_repository
    repo.add_conversation(
        ACCOUNT, "vip", NOW - timedelta(days=90), NOW - timedelta(days=1), message_count=25
    )
    repo.add_conversation(ACCOUNT, "new", NOW - timedelta(days=1), None, message_count=2)
    ctx = _build_context()

    await MessageIntakeService(repo).fetch(ctx, now=NOW)

    vip = ctx.conversation_contexts["vip"]
    assert vip.is_vip is True
    assert vip.age_days == pytest.approx(90)
    new = ctx.conversation_contexts["new"]
    assert new.is_vip is False
    assert new.last_interaction_at == NOW - timedelta(days=1)


@pytest.mark.asyncio
async def test_fetch_raises_intake_error_when_listing_fails(fake_repository):
    fake_repository.fail_on["list_conversations"] = RuntimeError("db down")

    with pytest.raises(IntakeError) as exc:
        await MessageIntakeService(fake_repository).fetch(_build_context(), now=NOW)

    assert exc.value.operation == "list_conversations"
    assert exc.value.execution_id == "exec_test"


@pytest.mark.asyncio
async def test_fetch_raises_intake_error_when_messages_fail(fake_repository):
    fake_repository.add_conversation(ACCOUNT, "c1", NOW - timedelta(days=2))
    fake_repository.fail_on["list_messages_since"] = RuntimeError("timeout")

    with pytest.raises(IntakeError) as exc:
        await MessageIntakeService(fake_repository).fetch(_build_context(), now=NOW)

    assert exc.value.operation == "list_messages_since"
