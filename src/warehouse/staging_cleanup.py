"""
Removal of a file's staging rows before it is reprocessed.
"""

import time

import psycopg
from pydantic import BaseModel, Field

from src.observability.logger import get_logger
from src.warehouse.connection import DatabaseConnectionPool

logger = get_logger(__name__)


class CleanupResult(BaseModel):
    """
    Outcome of one cleanup.

    Attributes:
        tables_processed: Staging tables visited without error
        records_deleted: Table -> rows deleted
        errors: One message per table that failed
        duration_seconds: Wall-clock time of the cleanup
        dry_run: True when nothing was deleted
        dry_run_results: Table -> rows that would be deleted
    """

    tables_processed: list[str] = Field(default_factory=list)
    records_deleted: dict[str, int] = Field(default_factory=dict)
    errors: list[str] = Field(default_factory=list)
    duration_seconds: float = 0.0
    dry_run: bool = False
    dry_run_results: dict[str, int] = Field(default_factory=dict)

    @property
    def total_deleted(self) -> int:
        return sum(self.records_deleted.values())

    @property
    def success(self) -> bool:
        return not self.errors


class StagingCleanupService:
    """
    Deletes staging rows of one file from every configured staging table.

    Emits ``staging_cleanup_start``, ``staging_cleanup_complete`` and, per
    failing table, ``staging_cleanup_error`` audit events.
    """

    def __init__(self, pool: DatabaseConnectionPool, staging_tables: list[str], audit=None):
        """
        Initialize cleanup service.

        Args:
            pool: Database connection pool
            staging_tables: Staging tables of every pipeline
            audit: Audit sink (optional)
        """
        self.pool = pool
        self.staging_tables = list(dict.fromkeys(staging_tables))
        self.audit = audit

    def _event(self, level: str, action: str, message: str, details: dict, organization_id: str, file_id: str, run_id):
        if self.audit is not None:
            self.audit.log_event(
                level, action, message, details=details,
                organization_id=organization_id, file_id=file_id, run_id=run_id,
            )

    def cleanup(
        self,
        organization_id: str,
        file_id: str,
        run_id: str | None = None,
        dry_run: bool = False,
    ) -> CleanupResult:
        """
        Delete (or count) the staging rows of a file.

        A failing table is reported in ``errors``; the other tables are still
        processed.

        Args:
            organization_id: Owning organization
            file_id: File whose staging rows are removed
            run_id: Run requesting the cleanup (for audit)
            dry_run: Count rows instead of deleting them

        Returns:
            CleanupResult
        """
        started = time.perf_counter()
        result = CleanupResult(dry_run=dry_run)

        self._event(
            "info",
            "staging_cleanup_start",
            f"Staging cleanup started for file {file_id}",
            {"tables": self.staging_tables, "dry_run": dry_run},
            organization_id, file_id, run_id,
        )

        for table in self.staging_tables:
            try:
                with self.pool.get_connection() as conn:
                    with conn.cursor() as cur:
                        if dry_run:
                            cur.execute(
                                f"SELECT count(*) AS n FROM {table} WHERE organization_id = %s AND file_id = %s",
                                (organization_id, file_id),
                            )
                            result.dry_run_results[table] = cur.fetchone()["n"]
                        else:
                            cur.execute(
                                f"DELETE FROM {table} WHERE organization_id = %s AND file_id = %s",
                                (organization_id, file_id),
                            )
                            result.records_deleted[table] = cur.rowcount
                    conn.commit()
                result.tables_processed.append(table)
            except psycopg.DatabaseError as e:
                message = f"{table}: {e}"
                result.errors.append(message)
                logger.error(f"Staging cleanup failed for {table}: {e}", extra={"file_id": file_id})
                self._event(
                    "error",
                    "staging_cleanup_error",
                    f"Staging cleanup failed on {table}",
                    {"table": table, "error": str(e)},
                    organization_id, file_id, run_id,
                )

        result.duration_seconds = round(time.perf_counter() - started, 4)
        self._event(
            "info" if result.success else "warning",
            "staging_cleanup_complete",
            f"Staging cleanup finished for file {file_id}",
            {
                "tables_processed": result.tables_processed,
                "records_deleted": result.records_deleted,
                "dry_run_results": result.dry_run_results,
                "errors": result.errors,
                "duration_seconds": result.duration_seconds,
                "dry_run": dry_run,
            },
            organization_id, file_id, run_id,
        )
        logger.info(
            f"Staging cleanup for file {file_id}: {result.total_deleted} rows deleted",
            extra={"file_id": file_id, "dry_run": dry_run, "errors": len(result.errors)},
        )
        return result
