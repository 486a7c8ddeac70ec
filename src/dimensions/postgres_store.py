"""
PostgreSQL-backed dimension store.

Tables (see docker/init-db.sql):
- dim_reference: (organization_id, dimension_type, code) -> dimension_id
- dim_pending_entry: one row per unknown (organization_id, dimension_type, code)
- dim_pending_entry_history: every status change of a pending entry
"""

import uuid
from typing import Any

import psycopg

from src.core.models import DimensionType, PendingEntry, PendingStatus
from src.observability.logger import get_logger
from src.warehouse.connection import DatabaseConnectionPool

from .store import PendingEntryClosed, normalize_code

logger = get_logger(__name__)

_PENDING_COLUMNS = """
    pending_id, organization_id, dimension_type, code, status, resolved_value,
    resolved_by, notes, first_seen_file_id, created_at, updated_at
"""


def _to_entry(row: dict[str, Any]) -> PendingEntry:
    return PendingEntry(**row)


class PostgresDimensionStore:
    """
    Dimension store on PostgreSQL.

    Pending-entry creation relies on the table's unique constraint
    (INSERT ... ON CONFLICT DO NOTHING, then read back), so concurrent
    batches or processes never create two entries for the same code.
    """

    def __init__(self, pool: DatabaseConnectionPool):
        """
        Initialize store.

        Args:
            pool: Database connection pool
        """
        self.pool = pool

    def lookup(self, organization_id: str, dimension_type: DimensionType, code: str) -> str | None:
        query = """
            SELECT dimension_id FROM dim_reference
            WHERE organization_id = %s AND dimension_type = %s AND code = %s
        """
        rows = self.pool.execute_query(
            query, (organization_id, DimensionType(dimension_type).value, normalize_code(code))
        )
        return rows[0]["dimension_id"] if rows else None

    def register(self, organization_id: str, dimension_type: DimensionType, code: str, dimension_id: str) -> None:
        query = """
            INSERT INTO dim_reference (organization_id, dimension_type, code, dimension_id)
            VALUES (%s, %s, %s, %s)
            ON CONFLICT (organization_id, dimension_type, code) DO UPDATE SET
                dimension_id = EXCLUDED.dimension_id,
                updated_at = now()
        """
        self.pool.execute_command(
            query, (organization_id, DimensionType(dimension_type).value, normalize_code(code), dimension_id)
        )

    def create_pending(
        self,
        organization_id: str,
        dimension_type: DimensionType,
        code: str,
        file_id: str | None = None,
    ) -> PendingEntry:
        dim_type = DimensionType(dimension_type).value
        normalized = normalize_code(code)

        insert_sql = f"""
            INSERT INTO dim_pending_entry (
                pending_id, organization_id, dimension_type, code, status, first_seen_file_id
            )
            VALUES (%s, %s, %s, %s, 'pending', %s)
            ON CONFLICT (organization_id, dimension_type, code) DO NOTHING
            RETURNING {_PENDING_COLUMNS}
        """
        select_sql = f"""
            SELECT {_PENDING_COLUMNS} FROM dim_pending_entry
            WHERE organization_id = %s AND dimension_type = %s AND code = %s
        """

        try:
            with self.pool.get_connection() as conn:
                with conn.cursor() as cur:
                    cur.execute(
                        insert_sql, (str(uuid.uuid4()), organization_id, dim_type, normalized, file_id)
                    )
                    row = cur.fetchone()
                    if row is not None:
                        self._write_history(cur, row["pending_id"], None, PendingStatus.PENDING.value, None, None, file_id)
                        logger.info(
                            f"Created pending {dim_type} entry for code {normalized}",
                            extra={"organization_id": organization_id, "file_id": file_id},
                        )
                    else:
                        cur.execute(select_sql, (organization_id, dim_type, normalized))
                        row = cur.fetchone()
                conn.commit()
        except psycopg.DatabaseError as e:
            logger.error(f"Failed to create pending entry for {dim_type} {normalized}: {e}")
            raise

        return _to_entry(row)

    def get_pending(self, pending_id: str) -> PendingEntry | None:
        rows = self.pool.execute_query(
            f"SELECT {_PENDING_COLUMNS} FROM dim_pending_entry WHERE pending_id = %s", (pending_id,)
        )
        return _to_entry(rows[0]) if rows else None

    def list_pending(
        self,
        organization_id: str | None = None,
        status: PendingStatus | None = PendingStatus.PENDING,
        dimension_type: DimensionType | None = None,
    ) -> list[PendingEntry]:
        conditions = []
        params: list[Any] = []
        if organization_id is not None:
            conditions.append("organization_id = %s")
            params.append(organization_id)
        if status is not None:
            conditions.append("status = %s")
            params.append(PendingStatus(status).value)
        if dimension_type is not None:
            conditions.append("dimension_type = %s")
            params.append(DimensionType(dimension_type).value)

        where = f"WHERE {' AND '.join(conditions)}" if conditions else ""
        rows = self.pool.execute_query(
            f"SELECT {_PENDING_COLUMNS} FROM dim_pending_entry {where} ORDER BY created_at, pending_id",
            tuple(params),
        )
        return [_to_entry(r) for r in rows]

    def _write_history(
        self,
        cur,
        pending_id: str,
        from_status: str | None,
        to_status: str,
        actor: str | None,
        notes: str | None,
        file_id: str | None,
    ) -> None:
        cur.execute(
            """
            INSERT INTO dim_pending_entry_history (
                pending_id, from_status, to_status, actor, notes, file_id
            )
            VALUES (%s, %s, %s, %s, %s, %s)
            """,
            (pending_id, from_status, to_status, actor, notes, file_id),
        )

    def _close(
        self,
        pending_id: str,
        status: PendingStatus,
        actor: str,
        notes: str | None,
        resolved_value: str | None = None,
    ) -> PendingEntry:
        try:
            with self.pool.get_connection() as conn:
                with conn.cursor() as cur:
                    cur.execute(
                        f"SELECT {_PENDING_COLUMNS} FROM dim_pending_entry WHERE pending_id = %s FOR UPDATE",
                        (pending_id,),
                    )
                    row = cur.fetchone()
                    if row is None:
                        raise KeyError(f"Pending entry not found: {pending_id}")
                    entry = _to_entry(row)
                    if not entry.is_open:
                        raise PendingEntryClosed(entry)

                    cur.execute(
                        f"""
                        UPDATE dim_pending_entry
                        SET status = %s, resolved_value = %s, resolved_by = %s, notes = %s, updated_at = now()
                        WHERE pending_id = %s
                        RETURNING {_PENDING_COLUMNS}
                        """,
                        (status.value, resolved_value, actor, notes, pending_id),
                    )
                    updated = _to_entry(cur.fetchone())

                    if resolved_value is not None:
                        cur.execute(
                            """
                            INSERT INTO dim_reference (organization_id, dimension_type, code, dimension_id)
                            VALUES (%s, %s, %s, %s)
                            ON CONFLICT (organization_id, dimension_type, code) DO UPDATE SET
                                dimension_id = EXCLUDED.dimension_id,
                                updated_at = now()
                            """,
                            (entry.organization_id, entry.dimension_type.value, entry.code, resolved_value),
                        )

                    self._write_history(cur, pending_id, entry.status.value, status.value, actor, notes, None)
                conn.commit()
        except psycopg.DatabaseError as e:
            logger.error(f"Failed to update pending entry {pending_id}: {e}")
            raise

        return updated

    def resolve_pending(
        self, pending_id: str, resolved_value: str, actor: str, notes: str | None = None
    ) -> PendingEntry:
        return self._close(pending_id, PendingStatus.RESOLVED, actor, notes, resolved_value=resolved_value)

    def reject_pending(self, pending_id: str, actor: str, notes: str | None = None) -> PendingEntry:
        return self._close(pending_id, PendingStatus.REJECTED, actor, notes)

    def pending_history(self, pending_id: str) -> list[dict[str, Any]]:
        return self.pool.execute_query(
            """
            SELECT from_status, to_status, actor, notes, file_id, created_at
            FROM dim_pending_entry_history
            WHERE pending_id = %s
            ORDER BY history_id
            """,
            (pending_id,),
        )
