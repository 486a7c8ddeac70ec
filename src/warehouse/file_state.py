"""
File processing state repository with optimistic locking.

Every write to ``etl_file`` is ``UPDATE ... WHERE file_id = %s AND version = %s``
and bumps ``version``. A write that matches no row lost a race: the caller
gets ConcurrencyConflict and must re-read before trying again.
"""

import time
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

import psycopg
from psycopg.types.json import Jsonb

from src.core.errors import ConcurrencyConflict
from src.core.models import FileProcessingState, FileState, ReprocessingRecord
from src.lifecycle.state_machine import PROCESSING_STATES, validate_transition
from src.observability.logger import get_logger
from src.observability.metrics import concurrency_conflicts_total, increment_counter, state_transitions_total
from src.warehouse.connection import DatabaseConnectionPool

logger = get_logger(__name__)

_FILE_COLUMNS = """
    file_id, organization_id, file_name, pipeline_type, checksum, state, retry_count,
    version, error_message, next_retry_at, retries_exhausted, last_run_id, last_report,
    reprocess_of, created_at, updated_at
"""

LOCK_MAX_ATTEMPTS = 3
LOCK_BASE_DELAY_SECONDS = 0.1


class FileStateRepository:
    """
    Reads and writes FileProcessingState rows plus run and reprocessing records.
    """

    def __init__(self, pool: DatabaseConnectionPool):
        """
        Initialize repository.

        Args:
            pool: Database connection pool
        """
        self.pool = pool

    def create(self, state: FileProcessingState) -> FileProcessingState:
        """
        Insert a new file record.

        Raises:
            psycopg.DatabaseError: If insert fails (e.g. duplicate file_id)
        """
        query = f"""
            INSERT INTO etl_file (
                file_id, organization_id, file_name, pipeline_type, checksum, state,
                retry_count, version, reprocess_of, created_at, updated_at
            )
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
            RETURNING {_FILE_COLUMNS}
        """
        try:
            rows = self.pool.execute_query(
                query,
                (
                    state.file_id,
                    state.organization_id,
                    state.file_name,
                    state.pipeline_type,
                    state.checksum,
                    state.state.value,
                    state.retry_count,
                    state.version,
                    state.reprocess_of,
                    state.created_at,
                    state.updated_at,
                ),
            )
        except psycopg.DatabaseError as e:
            logger.error(f"Failed to create file record {state.file_id}: {e}")
            raise

        logger.info(
            f"Registered file {state.file_name}",
            extra={"file_id": state.file_id, "organization_id": state.organization_id},
        )
        return FileProcessingState(**rows[0])

    def get(self, file_id: str) -> FileProcessingState | None:
        """Current state of a file, or None."""
        rows = self.pool.execute_query(f"SELECT {_FILE_COLUMNS} FROM etl_file WHERE file_id = %s", (file_id,))
        return FileProcessingState(**rows[0]) if rows else None

    def find_by_checksum(self, organization_id: str, checksum: str) -> list[FileProcessingState]:
        """Files of an organization with the given content checksum, newest first."""
        rows = self.pool.execute_query(
            f"""
            SELECT {_FILE_COLUMNS} FROM etl_file
            WHERE organization_id = %s AND checksum = %s
            ORDER BY created_at DESC
            """,
            (organization_id, checksum),
        )
        return [FileProcessingState(**r) for r in rows]

    def find_stale(self, timeout_minutes: int, now: datetime | None = None) -> list[FileProcessingState]:
        """Files stuck in a processing state longer than ``timeout_minutes``."""
        cutoff = (now or datetime.now(timezone.utc)) - timedelta(minutes=timeout_minutes)
        rows = self.pool.execute_query(
            f"""
            SELECT {_FILE_COLUMNS} FROM etl_file
            WHERE state = ANY(%s) AND updated_at < %s
            ORDER BY updated_at
            """,
            ([s.value for s in PROCESSING_STATES], cutoff),
        )
        return [FileProcessingState(**r) for r in rows]

    def find_due_for_retry(self, max_retries: int, now: datetime | None = None) -> list[FileProcessingState]:
        """Failed files whose next retry time has passed and whose budget remains."""
        rows = self.pool.execute_query(
            f"""
            SELECT {_FILE_COLUMNS} FROM etl_file
            WHERE state = %s
              AND NOT retries_exhausted
              AND retry_count < %s
              AND next_retry_at IS NOT NULL
              AND next_retry_at <= %s
            ORDER BY next_retry_at
            """,
            (FileState.FAILED.value, max_retries, now or datetime.now(timezone.utc)),
        )
        return [FileProcessingState(**r) for r in rows]

    def list_files(
        self,
        organization_id: str | None = None,
        state: FileState | None = None,
        limit: int = 50,
    ) -> list[FileProcessingState]:
        """Most recent files, optionally filtered."""
        conditions = []
        params: list[Any] = []
        if organization_id is not None:
            conditions.append("organization_id = %s")
            params.append(organization_id)
        if state is not None:
            conditions.append("state = %s")
            params.append(FileState(state).value)
        where = f"WHERE {' AND '.join(conditions)}" if conditions else ""
        params.append(limit)
        rows = self.pool.execute_query(
            f"SELECT {_FILE_COLUMNS} FROM etl_file {where} ORDER BY created_at DESC LIMIT %s",
            tuple(params),
        )
        return [FileProcessingState(**r) for r in rows]

    def transition(
        self,
        file_id: str,
        expected_version: int,
        to_state: FileState,
        **changes: Any,
    ) -> FileProcessingState:
        """
        Move a file to ``to_state`` if nobody else wrote it first.

        Args:
            file_id: File to update
            expected_version: Version the caller read
            to_state: Target state (validated against the transition table)
            **changes: Other columns to set in the same write
                (retry_count, error_message, next_retry_at, retries_exhausted,
                last_run_id, last_report)

        Returns:
            The updated state

        Raises:
            InvalidTransitionError: If the table forbids the transition
            ConcurrencyConflict: If the stored version differs from ``expected_version``
            KeyError: If the file does not exist
        """
        current = self.get(file_id)
        if current is None:
            raise KeyError(f"File not found: {file_id}")
        if current.version != expected_version:
            self._conflict(file_id, expected_version, current.version)

        to_state = FileState(to_state)
        validate_transition(current.state, to_state)
        updated = self._update(file_id, expected_version, {"state": to_state.value, **changes})

        increment_counter(state_transitions_total, from_state=current.state.value, to_state=to_state.value)
        logger.info(
            f"File {file_id} {current.state.value} -> {to_state.value}",
            extra={"file_id": file_id, "version": updated.version, "organization_id": current.organization_id},
        )
        return updated

    def update_fields(self, file_id: str, expected_version: int, **changes: Any) -> FileProcessingState:
        """
        Version-checked update of non-state columns.

        Raises:
            ConcurrencyConflict: If the stored version differs from ``expected_version``
        """
        return self._update(file_id, expected_version, changes)

    _UPDATABLE = frozenset(
        {
            "state",
            "retry_count",
            "error_message",
            "next_retry_at",
            "retries_exhausted",
            "last_run_id",
            "last_report",
            "pipeline_type",
            "file_name",
        }
    )

    def _update(self, file_id: str, expected_version: int, changes: dict[str, Any]) -> FileProcessingState:
        unknown = set(changes) - self._UPDATABLE
        if unknown:
            raise ValueError(f"Cannot update columns: {sorted(unknown)}")

        assignments = []
        params: list[Any] = []
        for column, value in changes.items():
            assignments.append(f"{column} = %s")
            params.append(Jsonb(value) if column == "last_report" and value is not None else value)
        assignments.append("version = version + 1")
        assignments.append("updated_at = now()")

        query = f"""
            UPDATE etl_file SET {', '.join(assignments)}
            WHERE file_id = %s AND version = %s
            RETURNING {_FILE_COLUMNS}
        """
        params.extend([file_id, expected_version])

        try:
            rows = self.pool.execute_query(query, tuple(params))
        except psycopg.DatabaseError as e:
            logger.error(f"Failed to update file {file_id}: {e}")
            raise

        if not rows:
            current = self.get(file_id)
            self._conflict(file_id, expected_version, current.version if current else None)
        return FileProcessingState(**rows[0])

    def _conflict(self, file_id: str, expected_version: int, actual_version: int | None) -> None:
        increment_counter(concurrency_conflicts_total, operation="file_state_update")
        logger.warning(
            f"Version conflict on file {file_id}: expected {expected_version}, found {actual_version}",
            extra={"file_id": file_id},
        )
        raise ConcurrencyConflict(file_id, expected_version, actual_version)

    def update_with_lock(
        self,
        file_id: str,
        mutate: Callable[[FileProcessingState], FileProcessingState],
        max_attempts: int = LOCK_MAX_ATTEMPTS,
        base_delay: float = LOCK_BASE_DELAY_SECONDS,
        sleep: Callable[[float], None] = time.sleep,
    ) -> FileProcessingState:
        """
        Read-modify-write with retries on version conflicts.

        ``mutate`` receives a fresh read every attempt and performs its
        version-checked write (usually ``transition``) against it.

        Args:
            file_id: File to update
            mutate: Function of the current state returning the updated state
            max_attempts: Attempts before giving up
            base_delay: Backoff unit, doubled after each conflict

        Raises:
            ConcurrencyConflict: If every attempt lost the race
            KeyError: If the file does not exist
        """
        for attempt in range(max_attempts):
            current = self.get(file_id)
            if current is None:
                raise KeyError(f"File not found: {file_id}")
            try:
                return mutate(current)
            except ConcurrencyConflict:
                if attempt == max_attempts - 1:
                    raise
                sleep(base_delay * (2 ** attempt))
        raise ConcurrencyConflict(file_id, -1)

    def release_stale(
        self,
        timeout_minutes: int,
        audit=None,
        state_machine=None,
        now: datetime | None = None,
    ) -> list[FileProcessingState]:
        """
        Fail files stuck in a processing state (their worker died).

        Each release goes through the optimistic-lock transition, so a worker
        that is in fact still alive wins the race and keeps the file. With a
        state machine, the release counts as a failed attempt and schedules
        the next retry (or exhausts the budget).

        Returns:
            Files moved to ``failed``
        """
        released = []
        for stale in self.find_stale(timeout_minutes, now=now):
            message = (
                f"Released after {timeout_minutes} minutes without progress in state '{stale.state.value}'"
            )
            changes: dict[str, Any] = {"error_message": message}
            if state_machine is not None:
                changes["retry_count"] = stale.retry_count + 1
                if state_machine.can_retry(stale.retry_count + 1):
                    changes["next_retry_at"] = state_machine.next_retry_time(stale.retry_count, now=now)
                else:
                    changes["retries_exhausted"] = True
                    changes["next_retry_at"] = None
            try:
                updated = self.transition(stale.file_id, stale.version, FileState.FAILED, **changes)
            except ConcurrencyConflict:
                logger.info(f"File {stale.file_id} progressed while being released, skipping")
                continue

            released.append(updated)
            if audit is not None:
                audit.log_event(
                    "warning",
                    "stale_file_released",
                    message,
                    details={"previous_state": stale.state.value, "timeout_minutes": timeout_minutes},
                    organization_id=stale.organization_id,
                    file_id=stale.file_id,
                )
        return released

    # Run records

    def start_run(self, run_id: str, file_id: str, attempt: int) -> None:
        """Insert a run row for a processing attempt."""
        self.pool.execute_command(
            """
            INSERT INTO etl_run (run_id, file_id, attempt, status, started_at)
            VALUES (%s, %s, %s, 'running', now())
            """,
            (run_id, file_id, attempt),
        )

    def finish_run(self, run_id: str, status: str, report: dict[str, Any] | None, error_message: str | None = None) -> None:
        """Close a run row with its final status and report."""
        self.pool.execute_command(
            """
            UPDATE etl_run
            SET status = %s, report = %s, error_message = %s, finished_at = now()
            WHERE run_id = %s
            """,
            (status, Jsonb(report) if report is not None else None, error_message, run_id),
        )

    def get_runs(self, file_id: str) -> list[dict[str, Any]]:
        """Runs of a file, oldest first."""
        return self.pool.execute_query(
            """
            SELECT run_id, file_id, attempt, status, report, error_message, started_at, finished_at
            FROM etl_run WHERE file_id = %s ORDER BY started_at, run_id
            """,
            (file_id,),
        )

    # Reprocessing log

    def log_reprocessing(self, record: ReprocessingRecord) -> None:
        """Insert a reprocessing record."""
        self.pool.execute_command(
            """
            INSERT INTO etl_reprocessing_log (
                file_id, original_file_id, organization_id, reason, requested_by, forced, created_at
            )
            VALUES (%s, %s, %s, %s, %s, %s, %s)
            """,
            (
                record.file_id,
                record.original_file_id,
                record.organization_id,
                record.reason,
                record.requested_by,
                record.forced,
                record.created_at,
            ),
        )

    def get_reprocessing_log(self, file_id: str) -> list[ReprocessingRecord]:
        """Reprocessing records of a file."""
        rows = self.pool.execute_query(
            """
            SELECT file_id, original_file_id, organization_id, reason, requested_by, forced, created_at
            FROM etl_reprocessing_log WHERE file_id = %s ORDER BY created_at
            """,
            (file_id,),
        )
        return [ReprocessingRecord(**r) for r in rows]
