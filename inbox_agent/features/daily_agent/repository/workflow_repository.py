"""
Persistence boundary for the daily agent workflow.

The pipeline only talks to the WorkflowRepository protocol, so tests can
substitute an in-memory implementation. PostgresWorkflowRepository is the
production implementation on top of db.helpers. No operation here spans
more than one record atomically; the workflow tolerates partial writes.
"""

from datetime import datetime
from typing import Any, Protocol

from psycopg.types.json import Jsonb

from inbox_agent.db.helpers import (
    DatabaseError,
    execute_query,
    fetch_all,
    fetch_one,
    fetch_val,
    with_db_retry,
)
from inbox_agent.db.pool import db_pool
from inbox_agent.features.daily_agent.domain.models import (
    ConversationRecord,
    DeviceEndpoint,
    Digest,
    ExecutionRecord,
    PresenceStatus,
    SchedulerRunRecord,
    StepLogEntry,
    StoredMessage,
    UndoArchiveEntry,
)
from inbox_agent.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

ERROR_MESSAGE_MAX_LENGTH = 500


class WorkflowRepositoryError(DatabaseError):
    """More specific exception for workflow persistence failures."""


class WorkflowRepository(Protocol):
    async def get_agent_config_document(self, account_id: str) -> dict[str, Any] | None: ...

    async def get_display_name(self, account_id: str) -> str | None: ...

    async def get_presence(self, account_id: str) -> PresenceStatus: ...

    async def get_device_endpoints(self, account_id: str) -> list[DeviceEndpoint]: ...

    async def list_enrolled_accounts(self) -> list[tuple[str, dict[str, Any]]]: ...

    async def list_conversations(self, account_id: str) -> list[ConversationRecord]: ...

    async def get_conversation(self, conversation_id: str) -> ConversationRecord | None: ...

    async def list_messages_since(
        self, conversation_id: str, since: datetime
    ) -> list[StoredMessage]: ...

    async def has_owner_message_since(
        self, conversation_id: str, account_id: str, since: datetime
    ) -> bool: ...

    async def update_message_metadata(
        self, conversation_id: str, message_id: str, updates: dict[str, Any]
    ) -> None: ...

    async def create_message(
        self, conversation_id: str, sender_id: str, text: str, metadata: dict[str, Any]
    ) -> str: ...

    async def archive_conversation(self, conversation_id: str, account_id: str) -> None: ...

    async def unarchive_conversation(self, conversation_id: str, account_id: str) -> None: ...

    async def create_undo_entry(self, entry: UndoArchiveEntry) -> None: ...

    async def create_execution(self, record: ExecutionRecord) -> None: ...

    async def update_execution(self, record: ExecutionRecord) -> None: ...

    async def get_execution(self, account_id: str, execution_id: str) -> dict[str, Any] | None: ...

    async def append_step_log(self, execution_id: str, entry: StepLogEntry) -> None: ...

    async def save_digest(self, digest: Digest) -> None: ...

    async def get_digest(self, account_id: str, date_key: str) -> dict[str, Any] | None: ...

    async def record_scheduler_run(self, run: SchedulerRunRecord) -> None: ...


def execution_to_document(record: ExecutionRecord) -> dict[str, Any]:
    """Serializable view of an execution record, as stored and served."""
    return {
        "id": record.id,
        "account_id": record.account_id,
        "status": record.status.value,
        "started_at": record.started_at.isoformat(),
        "ended_at": record.ended_at.isoformat() if record.ended_at else None,
        "results": record.results.to_dict(),
        "costs_cents": record.costs.to_cents(),
        "step_durations": dict(record.step_durations),
        "warnings": list(record.warnings),
        "digest_summary": record.digest_summary,
        "error": record.error[:ERROR_MESSAGE_MAX_LENGTH] if record.error else None,
    }


class PostgresWorkflowRepository:
    """WorkflowRepository backed by the shared psycopg pool."""

    MESSAGE_COLUMNS = "id, conversation_id, sender_id, body, created_at, metadata"
    CONVERSATION_COLUMNS = "id, created_at, last_message_at, message_count"

    @staticmethod
    def _row_to_conversation(row: dict) -> ConversationRecord:
        return ConversationRecord(
            conversation_id=str(row["id"]),
            created_at=row["created_at"],
            last_message_at=row.get("last_message_at"),
            message_count=row.get("message_count") or 0,
        )

    @staticmethod
    def _row_to_message(row: dict) -> StoredMessage:
        return StoredMessage(
            message_id=str(row["id"]),
            conversation_id=str(row["conversation_id"]),
            sender_id=str(row["sender_id"]),
            text=row.get("body") or "",
            timestamp=row["created_at"],
            metadata=row.get("metadata") or {},
        )

    # ------------------------------------------------------------------
    # Account state
    # ------------------------------------------------------------------

    @with_db_retry(max_retries=3, base_delay=0.1)
    async def get_agent_config_document(self, account_id: str) -> dict[str, Any] | None:
        query = "SELECT config FROM agent_settings WHERE account_id = %s"
        return await fetch_val(query, (account_id,))

    async def get_display_name(self, account_id: str) -> str | None:
        query = "SELECT display_name FROM agent_settings WHERE account_id = %s"
        return await fetch_val(query, (account_id,))

    async def get_presence(self, account_id: str) -> PresenceStatus:
        query = "SELECT online, last_seen_at FROM account_presence WHERE account_id = %s"
        row = await fetch_one(query, (account_id,))
        if not row:
            return PresenceStatus()
        return PresenceStatus(online=bool(row["online"]), last_seen_at=row.get("last_seen_at"))

    async def get_device_endpoints(self, account_id: str) -> list[DeviceEndpoint]:
        query = "SELECT token, platform FROM device_tokens WHERE account_id = %s"
        rows = await fetch_all(query, (account_id,))
        return [DeviceEndpoint(token=row["token"], platform=row["platform"]) for row in rows]

    @with_db_retry(max_retries=3, base_delay=0.1)
    async def list_enrolled_accounts(self) -> list[tuple[str, dict[str, Any]]]:
        query = """
            SELECT account_id, config
            FROM agent_settings
            WHERE COALESCE((config->>'daily_workflow_enabled')::boolean, false)
        """
        rows = await fetch_all(query)
        return [(str(row["account_id"]), row["config"] or {}) for row in rows]

    # ------------------------------------------------------------------
    # Conversations and messages
    # ------------------------------------------------------------------

    @with_db_retry(max_retries=3, base_delay=0.1)
    async def list_conversations(self, account_id: str) -> list[ConversationRecord]:
        query = f"""
            SELECT {self.CONVERSATION_COLUMNS}
            FROM conversations
            WHERE %s = ANY(participant_ids)
        """
        rows = await fetch_all(query, (account_id,))
        return [self._row_to_conversation(row) for row in rows]

    async def get_conversation(self, conversation_id: str) -> ConversationRecord | None:
        query = f"SELECT {self.CONVERSATION_COLUMNS} FROM conversations WHERE id = %s"
        row = await fetch_one(query, (conversation_id,))
        return self._row_to_conversation(row) if row else None

    @with_db_retry(max_retries=3, base_delay=0.1)
    async def list_messages_since(self, conversation_id: str, since: datetime) -> list[StoredMessage]:
        query = f"""
            SELECT {self.MESSAGE_COLUMNS}
            FROM messages
            WHERE conversation_id = %s AND created_at >= %s
            ORDER BY created_at DESC
        """
        rows = await fetch_all(query, (conversation_id, since))
        return [self._row_to_message(row) for row in rows]

    async def has_owner_message_since(
        self, conversation_id: str, account_id: str, since: datetime
    ) -> bool:
        query = """
            SELECT EXISTS (
                SELECT 1 FROM messages
                WHERE conversation_id = %s AND sender_id = %s AND created_at > %s
            )
        """
        return bool(await fetch_val(query, (conversation_id, account_id, since)))

    async def update_message_metadata(
        self, conversation_id: str, message_id: str, updates: dict[str, Any]
    ) -> None:
        query = """
            UPDATE messages
            SET metadata = COALESCE(metadata, '{}'::jsonb) || %s
            WHERE id = %s AND conversation_id = %s
        """
        updated = await execute_query(query, (Jsonb(updates), message_id, conversation_id))
        if updated == 0:
            raise WorkflowRepositoryError(
                f"Message {message_id} not found", operation="update_message_metadata"
            )

    async def create_message(
        self, conversation_id: str, sender_id: str, text: str, metadata: dict[str, Any]
    ) -> str:
        insert_query = """
            INSERT INTO messages (conversation_id, sender_id, body, metadata)
            VALUES (%s, %s, %s, %s)
            RETURNING id
        """
        update_query = """
            UPDATE conversations
            SET last_message_at = NOW(), message_count = message_count + 1
            WHERE id = %s
        """

        async with db_pool.transaction() as conn:
            message_id = await fetch_val(
                insert_query,
                (conversation_id, sender_id, text, Jsonb(metadata)),
                connection=conn,
            )
            if message_id is None:
                raise WorkflowRepositoryError(
                    "Failed to create message", operation="create_message"
                )
            await execute_query(update_query, (conversation_id,), connection=conn)

        return str(message_id)

    async def archive_conversation(self, conversation_id: str, account_id: str) -> None:
        query = """
            UPDATE conversations
            SET archived_by = COALESCE(archived_by, '{}'::jsonb) || jsonb_build_object(%s::text, true)
            WHERE id = %s
        """
        await execute_query(query, (account_id, conversation_id))

    async def unarchive_conversation(self, conversation_id: str, account_id: str) -> None:
        query = """
            UPDATE conversations
            SET archived_by = COALESCE(archived_by, '{}'::jsonb) - %s::text
            WHERE id = %s
        """
        await execute_query(query, (account_id, conversation_id))

    async def create_undo_entry(self, entry: UndoArchiveEntry) -> None:
        query = """
            INSERT INTO undo_archives (
                account_id, conversation_id, message_id, archived_at,
                expires_at, boundary_message_sent, can_undo
            )
            VALUES (%s, %s, %s, %s, %s, %s, %s)
        """
        await execute_query(
            query,
            (
                entry.account_id,
                entry.conversation_id,
                entry.message_id,
                entry.archived_at,
                entry.expires_at,
                entry.boundary_message_sent,
                entry.can_undo,
            ),
        )

    # ------------------------------------------------------------------
    # Execution records
    # ------------------------------------------------------------------

    @with_db_retry(max_retries=3, base_delay=0.1)
    async def create_execution(self, record: ExecutionRecord) -> None:
        doc = execution_to_document(record)
        query = """
            INSERT INTO agent_executions (
                id, account_id, status, started_at, ended_at, results,
                costs_cents, step_durations, warnings, digest_summary, error
            )
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
        """
        await execute_query(
            query,
            (
                record.id,
                record.account_id,
                doc["status"],
                record.started_at,
                record.ended_at,
                Jsonb(doc["results"]),
                Jsonb(doc["costs_cents"]),
                Jsonb(doc["step_durations"]),
                Jsonb(doc["warnings"]),
                doc["digest_summary"],
                doc["error"],
            ),
        )
        logger.info("Execution record created", execution_id=record.id, status=doc["status"])

    @with_db_retry(max_retries=3, base_delay=0.1)
    async def update_execution(self, record: ExecutionRecord) -> None:
        doc = execution_to_document(record)
        query = """
            UPDATE agent_executions
            SET status = %s,
                ended_at = %s,
                results = %s,
                costs_cents = %s,
                step_durations = %s,
                warnings = %s,
                digest_summary = %s,
                error = %s
            WHERE id = %s
        """
        updated = await execute_query(
            query,
            (
                doc["status"],
                record.ended_at,
                Jsonb(doc["results"]),
                Jsonb(doc["costs_cents"]),
                Jsonb(doc["step_durations"]),
                Jsonb(doc["warnings"]),
                doc["digest_summary"],
                doc["error"],
                record.id,
            ),
        )
        if updated == 0:
            raise WorkflowRepositoryError(
                f"Execution {record.id} not found", operation="update_execution"
            )

    async def get_execution(self, account_id: str, execution_id: str) -> dict[str, Any] | None:
        query = """
            SELECT id, account_id, status, started_at, ended_at, results, costs_cents,
                   step_durations, warnings, digest_summary, error
            FROM agent_executions
            WHERE id = %s AND account_id = %s
        """
        row = await fetch_one(query, (execution_id, account_id))
        if not row:
            return None

        steps = await fetch_all(
            """
            SELECT step, status, level, message, created_at
            FROM agent_execution_steps
            WHERE execution_id = %s
            ORDER BY created_at
            """,
            (execution_id,),
        )
        return {**row, "step_log": steps}

    async def append_step_log(self, execution_id: str, entry: StepLogEntry) -> None:
        query = """
            INSERT INTO agent_execution_steps (execution_id, step, status, level, message, created_at)
            VALUES (%s, %s, %s, %s, %s, %s)
        """
        await execute_query(
            query,
            (
                execution_id,
                entry.step.value,
                entry.status.value,
                entry.level,
                entry.message,
                entry.created_at,
            ),
        )

    # ------------------------------------------------------------------
    # Digests and scheduler runs
    # ------------------------------------------------------------------

    @with_db_retry(max_retries=3, base_delay=0.1)
    async def save_digest(self, digest: Digest) -> None:
        query = """
            INSERT INTO daily_digests (account_id, date_key, payload, created_at)
            VALUES (%s, %s, %s, %s)
            ON CONFLICT (account_id, date_key)
            DO UPDATE SET payload = EXCLUDED.payload, created_at = EXCLUDED.created_at
        """
        await execute_query(
            query, (digest.account_id, digest.date_key, Jsonb(digest.to_dict()), digest.created_at)
        )

    async def get_digest(self, account_id: str, date_key: str) -> dict[str, Any] | None:
        query = "SELECT payload FROM daily_digests WHERE account_id = %s AND date_key = %s"
        return await fetch_val(query, (account_id, date_key))

    async def record_scheduler_run(self, run: SchedulerRunRecord) -> None:
        query = """
            INSERT INTO scheduler_runs (
                started_at, duration_ms, accounts_checked, triggered, skipped, errors
            )
            VALUES (%s, %s, %s, %s, %s, %s)
        """
        await execute_query(
            query,
            (
                run.started_at,
                run.duration_ms,
                run.accounts_checked,
                run.triggered,
                run.skipped,
                run.errors,
            ),
        )
