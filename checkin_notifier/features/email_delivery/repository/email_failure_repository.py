"""
Persistence layer for the email_failures (dead-letter) table.
"""

from datetime import UTC, datetime, timedelta

from checkin_notifier.db.helpers import DatabaseError, execute_query, fetch_all, fetch_one
from checkin_notifier.features.email_delivery.domain import EmailFailure, NewEmailFailure
from checkin_notifier.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

MAX_ERROR_LENGTH = 1000


class EmailFailureRepositoryError(DatabaseError):
    """More specific exception for dead-letter persistence failures."""


class EmailFailureRepository:
    """SQL for recording, querying and resolving email failures."""

    SELECT_COLUMNS = """
        id, email_type, provider, recipient, subject,
        error_message, retry_count, created_at, resolved_at, secret_id, send_key
    """

    @classmethod
    def _row_to_failure(cls, row: dict | None) -> EmailFailure | None:
        if not row:
            return None

        return EmailFailure(
            id=str(row["id"]),
            email_type=str(row["email_type"]),
            provider=row["provider"],
            recipient=row["recipient"],
            subject=row["subject"],
            error_message=row["error_message"],
            retry_count=row["retry_count"],
            created_at=row["created_at"],
            resolved_at=row.get("resolved_at"),
            secret_id=row.get("secret_id"),
            send_key=row.get("send_key"),
        )

    @classmethod
    async def upsert_unresolved(cls, failure: NewEmailFailure, retry_ceiling: int) -> EmailFailure:
        """
        Insert a failure, or bump retry_count on the open row for the same send.

        The increment is capped at the ceiling so retry_count never exceeds it.
        """
        query = f"""
            INSERT INTO email_failures (
                email_type, provider, recipient, subject, error_message, retry_count,
                secret_id, send_key
            )
            VALUES (%s, %s, %s, %s, %s, 0, %s, %s)
            ON CONFLICT (
                email_type, recipient, subject, COALESCE(secret_id, ''), COALESCE(send_key, '')
            ) WHERE resolved_at IS NULL
            DO UPDATE SET
                provider = EXCLUDED.provider,
                error_message = EXCLUDED.error_message,
                retry_count = LEAST(email_failures.retry_count + 1, %s)
            RETURNING {cls.SELECT_COLUMNS}
        """
        row = await fetch_one(
            query,
            (
                failure.email_type,
                failure.provider,
                failure.recipient,
                failure.subject,
                (failure.error_message or "")[:MAX_ERROR_LENGTH],
                failure.secret_id,
                failure.send_key,
                retry_ceiling,
            ),
        )
        if not row:
            raise EmailFailureRepositoryError(
                "Failed to record email failure", operation="upsert_unresolved"
            )
        return cls._row_to_failure(row)

    @classmethod
    async def get(cls, failure_id: str) -> EmailFailure | None:
        query = f"SELECT {cls.SELECT_COLUMNS} FROM email_failures WHERE id = %s"
        return cls._row_to_failure(await fetch_one(query, (failure_id,)))

    @classmethod
    async def find_unresolved(
        cls,
        email_type: str,
        recipient: str,
        subject: str,
        secret_id: str | None = None,
        send_key: str | None = None,
    ) -> EmailFailure | None:
        query = f"""
            SELECT {cls.SELECT_COLUMNS}
            FROM email_failures
            WHERE email_type = %s AND recipient = %s AND subject = %s
              AND secret_id IS NOT DISTINCT FROM %s
              AND send_key IS NOT DISTINCT FROM %s
              AND resolved_at IS NULL
        """
        return cls._row_to_failure(
            await fetch_one(query, (email_type, recipient, subject, secret_id, send_key))
        )

    @classmethod
    async def resolve_superseded(cls, email_type: str, secret_id: str, send_key: str) -> int:
        """Close open rows for the secret whose send_key differs from the current one."""
        query = """
            UPDATE email_failures
            SET resolved_at = NOW()
            WHERE email_type = %s AND secret_id = %s
              AND send_key IS DISTINCT FROM %s
              AND resolved_at IS NULL
        """
        return await execute_query(query, (email_type, secret_id, send_key))

    @classmethod
    async def query(
        cls,
        email_type: str | None = None,
        provider: str | None = None,
        recipient: str | None = None,
        unresolved_only: bool = False,
        limit: int = 100,
        offset: int = 0,
    ) -> list[EmailFailure]:
        conditions = []
        params: list = []

        if email_type:
            conditions.append("email_type = %s")
            params.append(email_type)
        if provider:
            conditions.append("provider = %s")
            params.append(provider)
        if recipient:
            conditions.append("recipient = %s")
            params.append(recipient)
        if unresolved_only:
            conditions.append("resolved_at IS NULL")

        where = f"WHERE {' AND '.join(conditions)}" if conditions else ""
        query = f"""
            SELECT {cls.SELECT_COLUMNS}
            FROM email_failures
            {where}
            ORDER BY created_at DESC
            LIMIT %s OFFSET %s
        """
        params.extend([limit, offset])

        rows = await fetch_all(query, tuple(params))
        return [cls._row_to_failure(row) for row in rows]

    @classmethod
    async def increment_retry(
        cls, failure_id: str, error_message: str, retry_ceiling: int
    ) -> EmailFailure | None:
        query = f"""
            UPDATE email_failures
            SET retry_count = LEAST(retry_count + 1, %s),
                error_message = %s
            WHERE id = %s AND resolved_at IS NULL
            RETURNING {cls.SELECT_COLUMNS}
        """
        row = await fetch_one(
            query, (retry_ceiling, (error_message or "")[:MAX_ERROR_LENGTH], failure_id)
        )
        return cls._row_to_failure(row)

    @classmethod
    async def mark_resolved(cls, failure_id: str) -> EmailFailure | None:
        """Set resolved_at once; an already-resolved row keeps its timestamp."""
        query = f"""
            UPDATE email_failures
            SET resolved_at = COALESCE(resolved_at, NOW())
            WHERE id = %s
            RETURNING {cls.SELECT_COLUMNS}
        """
        return cls._row_to_failure(await fetch_one(query, (failure_id,)))

    @classmethod
    async def delete_resolved_before(cls, retention_days: int) -> int:
        cutoff = datetime.now(UTC) - timedelta(days=retention_days)
        query = """
            DELETE FROM email_failures
            WHERE resolved_at IS NOT NULL
              AND created_at < %s
        """
        deleted = await execute_query(query, (cutoff,))
        logger.info("Resolved email failures deleted", count=deleted, retention_days=retention_days)
        return deleted

    @classmethod
    async def list_all(cls) -> list[EmailFailure]:
        query = f"SELECT {cls.SELECT_COLUMNS} FROM email_failures"
        rows = await fetch_all(query)
        return [cls._row_to_failure(row) for row in rows]
