"""
Dead-letter queue for work excluded from automatic retry.
"""

from datetime import datetime, timezone

import psycopg
from psycopg.types.json import Jsonb

from src.core.models import DeadLetterRecord
from src.observability.logger import get_logger
from src.warehouse.connection import DatabaseConnectionPool

logger = get_logger(__name__)

_DLQ_COLUMNS = """
    dlq_id, organization_id, file_id, run_id, operation, error_type, error_message,
    payload, retry_count, created_at, resolved_at, resolved_by, resolution_notes
"""


class DeadLetterQueue:
    """
    Stores permanent failures in ``etl_dead_letter`` until a reviewer closes them.
    """

    def __init__(self, pool: DatabaseConnectionPool, audit=None):
        """
        Initialize dead-letter queue.

        Args:
            pool: Database connection pool
            audit: Audit sink notified on resolution (optional)
        """
        self.pool = pool
        self.audit = audit

    def add(self, record: DeadLetterRecord) -> DeadLetterRecord:
        """
        Insert a dead-letter record.

        Returns:
            The record with its dlq_id

        Raises:
            psycopg.DatabaseError: If insert fails
        """
        query = f"""
            INSERT INTO etl_dead_letter (
                organization_id, file_id, run_id, operation, error_type, error_message,
                payload, retry_count, created_at
            )
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
            RETURNING {_DLQ_COLUMNS}
        """
        try:
            rows = self.pool.execute_query(
                query,
                (
                    record.organization_id,
                    record.file_id,
                    record.run_id,
                    record.operation,
                    record.error_type,
                    record.error_message,
                    Jsonb(record.payload),
                    record.retry_count,
                    record.created_at,
                ),
            )
        except psycopg.DatabaseError as e:
            logger.error(f"Failed to dead-letter {record.operation} for file {record.file_id}: {e}")
            raise

        stored = DeadLetterRecord(**rows[0])
        logger.warning(
            f"Dead-lettered {record.operation}: {record.error_message}",
            extra={"dlq_id": stored.dlq_id, "file_id": record.file_id, "error_type": record.error_type},
        )
        return stored

    def get(self, dlq_id: int) -> DeadLetterRecord | None:
        rows = self.pool.execute_query(f"SELECT {_DLQ_COLUMNS} FROM etl_dead_letter WHERE dlq_id = %s", (dlq_id,))
        return DeadLetterRecord(**rows[0]) if rows else None

    def list_unresolved(self, organization_id: str | None = None, limit: int = 100) -> list[DeadLetterRecord]:
        """
        Open dead-letter records, oldest first.

        Args:
            organization_id: Filter by organization (optional)
            limit: Maximum number of records
        """
        if organization_id is None:
            query = f"""
                SELECT {_DLQ_COLUMNS} FROM etl_dead_letter
                WHERE resolved_at IS NULL ORDER BY created_at, dlq_id LIMIT %s
            """
            params: tuple = (limit,)
        else:
            query = f"""
                SELECT {_DLQ_COLUMNS} FROM etl_dead_letter
                WHERE resolved_at IS NULL AND organization_id = %s ORDER BY created_at, dlq_id LIMIT %s
            """
            params = (organization_id, limit)
        return [DeadLetterRecord(**r) for r in self.pool.execute_query(query, params)]

    def resolve(self, dlq_id: int, resolved_by: str, notes: str | None = None) -> DeadLetterRecord:
        """
        Close a dead-letter record.

        Raises:
            KeyError: If the record does not exist or is already resolved
        """
        rows = self.pool.execute_query(
            f"""
            UPDATE etl_dead_letter
            SET resolved_at = %s, resolved_by = %s, resolution_notes = %s
            WHERE dlq_id = %s AND resolved_at IS NULL
            RETURNING {_DLQ_COLUMNS}
            """,
            (datetime.now(timezone.utc), resolved_by, notes, dlq_id),
        )
        if not rows:
            raise KeyError(f"No open dead-letter record {dlq_id}")

        record = DeadLetterRecord(**rows[0])
        if self.audit is not None:
            self.audit.log_event(
                "info",
                "dead_letter_resolved",
                f"Dead-letter record {dlq_id} resolved by {resolved_by}",
                details={"dlq_id": dlq_id, "operation": record.operation, "notes": notes},
                organization_id=record.organization_id,
                file_id=record.file_id,
                run_id=record.run_id,
            )
        return record
