"""
Audit trail of engine actions.

Every retry, staging cleanup, forced reprocess, dead-letter resolution and
pending-entry resolution writes one row to ``etl_audit_event``.
"""

from typing import Any, Protocol

import psycopg
from psycopg.types.json import Jsonb

from src.core.models import AuditEvent
from src.observability.logger import get_logger
from src.warehouse.connection import DatabaseConnectionPool

logger = get_logger(__name__)


class AuditSink(Protocol):
    """Anything that can record an audit event."""

    def log_event(
        self,
        level: str,
        action: str,
        message: str,
        details: dict[str, Any] | None = None,
        organization_id: str | None = None,
        file_id: str | None = None,
        run_id: str | None = None,
    ) -> AuditEvent:
        ...


class AuditTrail:
    """
    PostgreSQL-backed audit trail.
    """

    def __init__(self, pool: DatabaseConnectionPool):
        """
        Initialize audit trail.

        Args:
            pool: Database connection pool
        """
        self.pool = pool

    def log_event(
        self,
        level: str,
        action: str,
        message: str,
        details: dict[str, Any] | None = None,
        organization_id: str | None = None,
        file_id: str | None = None,
        run_id: str | None = None,
    ) -> AuditEvent:
        """
        Insert one audit event.

        Args:
            level: debug, info, warning or error
            action: Machine-readable action name
            message: Human-readable description
            details: Structured context (stored as JSONB)
            organization_id: Owning organization
            file_id: Related file
            run_id: Related run

        Returns:
            The stored AuditEvent with its event_id

        Raises:
            psycopg.DatabaseError: If insert fails
        """
        event = AuditEvent(
            level=level,
            action=action,
            message=message,
            details=details or {},
            organization_id=organization_id,
            file_id=file_id,
            run_id=run_id,
        )

        insert_sql = """
            INSERT INTO etl_audit_event (
                level, action, message, details, organization_id, file_id, run_id, created_at
            ) VALUES (
                %(level)s, %(action)s, %(message)s, %(details)s,
                %(organization_id)s, %(file_id)s, %(run_id)s, %(created_at)s
            ) RETURNING event_id;
        """

        try:
            with self.pool.get_connection() as conn:
                with conn.cursor() as cur:
                    cur.execute(
                        insert_sql,
                        {
                            "level": event.level,
                            "action": event.action,
                            "message": event.message,
                            "details": Jsonb(event.details),
                            "organization_id": event.organization_id,
                            "file_id": event.file_id,
                            "run_id": event.run_id,
                            "created_at": event.created_at,
                        },
                    )
                    result = cur.fetchone()
                conn.commit()
        except psycopg.DatabaseError as e:
            logger.error(f"Failed to insert audit event '{action}': {e}")
            raise

        event.event_id = result["event_id"] if result else None
        logger.debug(
            f"Audit event {event.action}: {event.message}",
            extra={"event_id": event.event_id, "file_id": file_id, "organization_id": organization_id},
        )
        return event

    def query_events(
        self,
        organization_id: str | None = None,
        file_id: str | None = None,
        action: str | None = None,
        level: str | None = None,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """
        Query audit events, newest first.

        Args:
            organization_id: Filter by organization (optional)
            file_id: Filter by file (optional)
            action: Filter by action name (optional)
            level: Filter by level (optional)
            limit: Maximum number of events

        Returns:
            Matching AuditEvent instances
        """
        conditions = []
        params: list[Any] = []
        for column, value in (
            ("organization_id", organization_id),
            ("file_id", file_id),
            ("action", action),
            ("level", level),
        ):
            if value is not None:
                conditions.append(f"{column} = %s")
                params.append(value)

        where = f"WHERE {' AND '.join(conditions)}" if conditions else ""
        query = f"""
            SELECT event_id, level, action, message, details, organization_id, file_id, run_id, created_at
            FROM etl_audit_event
            {where}
            ORDER BY created_at DESC, event_id DESC
            LIMIT %s
        """
        params.append(limit)

        try:
            rows = self.pool.execute_query(query, tuple(params))
        except psycopg.DatabaseError as e:
            logger.error(f"Failed to query audit events: {e}")
            raise

        return [AuditEvent(**row) for row in rows]
