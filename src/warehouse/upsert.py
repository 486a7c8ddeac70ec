"""
Idempotent batch writes into staging and fact tables.

Records are written in chunks; each chunk is one transaction and each row
inside it runs under a savepoint, so a row the database refuses is recorded
without rolling back its siblings. Writes use
``INSERT ... ON CONFLICT ... DO UPDATE`` on the natural key, which makes a
re-run of the same file update rows instead of duplicating them.
"""

import time
from contextlib import nullcontext
from typing import Any, Callable, Iterator

import psycopg
from psycopg.types.json import Jsonb
from pydantic import BaseModel, Field

from src.core.errors import RetryExhaustedError, StorageError
from src.core.models import ProcessedRecord
from src.core.rules import PipelineDefinition
from src.core.settings import EngineSettings
from src.lifecycle.retry import ErrorType, RetryExecutor, RetryPolicy, classify_error
from src.observability.logger import get_logger
from src.observability.metrics import (
    increment_counter,
    observe_histogram,
    warehouse_write_duration_seconds,
    warehouse_writes_total,
)

from .connection import DatabaseConnectionPool

logger = get_logger(__name__)

# Columns every staging and fact table carries besides the pipeline's own
KEY_COLUMNS = ["organization_id", "natural_key", "file_id", "run_id"]
TRAILING_COLUMNS = ["enrichment_status", "low_confidence", "warnings"]


class WriteResult(BaseModel):
    """
    Counts of one write operation.

    Attributes:
        inserted: Rows newly created
        updated: Rows that already existed under the same natural key
        failed_rows: Rows refused by the database (row_number, natural_key, message, code)
        chunks: Transactions committed
    """

    inserted: int = 0
    updated: int = 0
    failed_rows: list[dict[str, Any]] = Field(default_factory=list)
    chunks: int = 0

    @property
    def written(self) -> int:
        return self.inserted + self.updated

    def merge(self, other: "WriteResult") -> None:
        self.inserted += other.inserted
        self.updated += other.updated
        self.failed_rows.extend(other.failed_rows)
        self.chunks += other.chunks


def chunked(items: list, size: int) -> Iterator[list]:
    """Consecutive slices of at most ``size`` items."""
    for start in range(0, len(items), size):
        yield items[start:start + size]


class BatchWriter:
    """
    Writes ProcessedRecords to staging and promotes staging rows to fact.

    Chunk-level failures are retried with a linear delay (transient errors
    only). When attempts run out the chunk goes to the dead-letter queue, if
    one is configured, and StorageError is raised.
    """

    def __init__(
        self,
        pool: DatabaseConnectionPool,
        settings: EngineSettings | None = None,
        audit=None,
        dead_letter=None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize batch writer.

        Args:
            pool: Database connection pool
            settings: Engine settings (chunk size, transactions, retries)
            audit: Audit sink notified of retries (optional)
            dead_letter: Dead-letter queue for exhausted chunks (optional)
            sleep: Sleep function, replaceable in tests
        """
        self.pool = pool
        self.settings = settings or EngineSettings()
        policy = RetryPolicy(
            max_attempts=max(1, self.settings.writer_max_retries),
            base_delay=self.settings.writer_retry_delay_seconds,
            strategy="linear",
        )
        self.executor = RetryExecutor(
            policy,
            audit=audit,
            dead_letter=dead_letter if self.settings.dead_letter_enabled else None,
            sleep=sleep,
        )

    @staticmethod
    def staging_columns(definition: PipelineDefinition) -> list[str]:
        """Column order of the pipeline's staging table."""
        storage = definition.storage
        return (
            KEY_COLUMNS
            + ["row_number"]
            + list(storage.columns)
            + list(storage.dimension_columns.values())
            + TRAILING_COLUMNS
        )

    @staticmethod
    def fact_columns(definition: PipelineDefinition) -> list[str]:
        """Column order of the pipeline's fact table."""
        storage = definition.storage
        return (
            KEY_COLUMNS
            + list(storage.columns)
            + list(storage.dimension_columns.values())
            + TRAILING_COLUMNS
        )

    @staticmethod
    def _row_params(
        definition: PipelineDefinition, record: ProcessedRecord, file_id: str, run_id: str
    ) -> tuple:
        storage = definition.storage
        params: list[Any] = [record.organization_id, record.natural_key, file_id, run_id, record.row_number]
        params.extend(record.values.get(column) for column in storage.columns)
        params.extend(record.dimension_id(dim_type.value) for dim_type in storage.dimension_columns)
        params.extend([record.enrichment_status.value, record.low_confidence, Jsonb(record.warnings)])
        return tuple(params)

    @staticmethod
    def _upsert_sql(table: str, columns: list[str], conflict: list[str], source: str) -> str:
        updates = ",\n                ".join(
            f"{c} = EXCLUDED.{c}" for c in columns if c not in conflict
        )
        return f"""
            INSERT INTO {table} ({', '.join(columns)})
            {source}
            ON CONFLICT ({', '.join(conflict)}) DO UPDATE SET
                {updates},
                updated_at = now()
            RETURNING natural_key, (xmax = 0) AS inserted
        """

    def _run(self, operation: str, table: str, fn: Callable[[], WriteResult], context: dict[str, Any]) -> WriteResult:
        started = time.perf_counter()
        try:
            result = self.executor.execute_with_retry(
                operation,
                fn,
                organization_id=context.get("organization_id"),
                file_id=context.get("file_id"),
                run_id=context.get("run_id"),
                payload=context.get("payload"),
            )
        except RetryExhaustedError as e:
            increment_counter(warehouse_writes_total, operation="failed", table=table)
            transient = classify_error(e.last_error) != ErrorType.PERMANENT
            raise StorageError(f"{operation} on {table} failed: {e.last_error}", transient=transient, cause=e.last_error) from e

        observe_histogram(warehouse_write_duration_seconds, time.perf_counter() - started, table=table)
        increment_counter(warehouse_writes_total, result.inserted, operation="insert", table=table)
        increment_counter(warehouse_writes_total, result.updated, operation="update", table=table)
        return result

    def write_staging(
        self,
        definition: PipelineDefinition,
        records: list[ProcessedRecord],
        file_id: str,
        run_id: str,
    ) -> WriteResult:
        """
        Upsert records into the pipeline's staging table.

        Args:
            definition: Pipeline definition (table and columns)
            records: Keyed records
            file_id: File the records came from
            run_id: Current run

        Returns:
            WriteResult over all chunks

        Raises:
            StorageError: If a chunk could not be written
        """
        table = definition.storage.staging_table
        columns = self.staging_columns(definition)
        sql = self._upsert_sql(
            table,
            columns,
            ["organization_id", "file_id", "natural_key"],
            f"VALUES ({', '.join(['%s'] * len(columns))})",
        )

        total = WriteResult()
        for chunk in chunked(records, self.settings.chunk_size):
            params = [self._row_params(definition, r, file_id, run_id) for r in chunk]
            context = {
                "organization_id": chunk[0].organization_id,
                "file_id": file_id,
                "run_id": run_id,
                "payload": {
                    "table": table,
                    "row_numbers": [r.row_number for r in chunk],
                    "natural_keys": [r.natural_key for r in chunk],
                },
            }
            total.merge(
                self._run(
                    "write_staging",
                    table,
                    lambda: self._write_rows(sql, params, [r.row_number for r in chunk], [r.natural_key for r in chunk]),
                    context,
                )
            )

        logger.debug(
            f"Wrote {total.written} rows to {table}",
            extra={"file_id": file_id, "inserted": total.inserted, "updated": total.updated},
        )
        return total

    def _write_rows(
        self,
        sql: str,
        params_list: list[tuple],
        row_numbers: list[int],
        natural_keys: list[str | None],
    ) -> WriteResult:
        result = WriteResult()
        with self.pool.get_connection() as conn:
            # Outer block makes the chunk atomic; inner blocks become savepoints
            outer = conn.transaction() if self.settings.use_transactions else nullcontext()
            with outer:
                with conn.cursor() as cur:
                    for params, row_number, natural_key in zip(params_list, row_numbers, natural_keys):
                        try:
                            with conn.transaction():
                                cur.execute(sql, params)
                                row = cur.fetchone()
                        except (psycopg.DataError, psycopg.IntegrityError) as e:
                            result.failed_rows.append(
                                {
                                    "row_number": row_number,
                                    "natural_key": natural_key,
                                    "message": str(e).strip(),
                                    "code": "STORAGE_REJECTED",
                                }
                            )
                            continue

                        if row["inserted"]:
                            result.inserted += 1
                        else:
                            result.updated += 1
        result.chunks = 1
        return result

    def promote_to_fact(
        self,
        definition: PipelineDefinition,
        organization_id: str,
        file_id: str,
        run_id: str,
    ) -> WriteResult:
        """
        Upsert a file's staging rows into the fact table.

        Staging is read in natural-key order with keyset pagination; each
        page is one INSERT ... SELECT ... ON CONFLICT transaction. Keys are
        compared byte-wise (C collation) so the page cursor taken with
        Python max() agrees with the database order.

        Returns:
            WriteResult over all pages

        Raises:
            StorageError: If a page could not be promoted
        """
        staging = definition.storage.staging_table
        fact = definition.storage.fact_table
        columns = self.fact_columns(definition)
        source = f"""
            SELECT {', '.join(columns)} FROM {staging}
            WHERE organization_id = %s AND file_id = %s AND natural_key COLLATE "C" > %s
            ORDER BY natural_key COLLATE "C"
            LIMIT %s
        """
        sql = self._upsert_sql(fact, columns, ["organization_id", "natural_key"], source)

        total = WriteResult()
        last_key = ""
        while True:
            params = (organization_id, file_id, last_key, self.settings.chunk_size)
            context = {
                "organization_id": organization_id,
                "file_id": file_id,
                "run_id": run_id,
                "payload": {"table": fact, "after_natural_key": last_key},
            }
            page, page_last_key = self._promote_page(sql, params, fact, context)
            if page_last_key is None:
                break
            total.merge(page)
            last_key = page_last_key

        logger.info(
            f"Promoted {total.written} rows from {staging} to {fact}",
            extra={"file_id": file_id, "inserted": total.inserted, "updated": total.updated},
        )
        return total

    def _promote_page(
        self, sql: str, params: tuple, table: str, context: dict[str, Any]
    ) -> tuple[WriteResult, str | None]:
        keys: list[str] = []

        def run() -> WriteResult:
            keys.clear()
            result = WriteResult()
            with self.pool.get_connection() as conn:
                with conn.cursor() as cur:
                    cur.execute(sql, params)
                    for row in cur.fetchall():
                        keys.append(row["natural_key"])
                        if row["inserted"]:
                            result.inserted += 1
                        else:
                            result.updated += 1
                conn.commit()
            result.chunks = 1 if keys else 0
            return result

        result = self._run("promote_to_fact", table, run, context)
        return result, (max(keys) if keys else None)
