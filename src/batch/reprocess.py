"""
Automatic retry of failed files.

Failed files whose ``next_retry_at`` has passed are run through the
pipeline again; stuck files are released first so they join the queue.
"""

from datetime import datetime
from typing import Any, BinaryIO, Callable

from src.core.errors import ConcurrencyConflict, DuplicateFileError
from src.core.models import FileProcessingState
from src.core.settings import EngineSettings
from src.lifecycle import compute_checksum
from src.observability.logger import get_logger
from src.warehouse.file_state import FileStateRepository

from .pipeline import AUTO_PIPELINE, EtlPipeline

logger = get_logger(__name__)

ContentProvider = Callable[[FileProcessingState], "bytes | BinaryIO | None"]


class FileReprocessor:
    """
    Re-runs failed files that are due for a retry.

    The engine does not keep uploads; the caller supplies the content of a
    file through ``content_provider`` (object storage, local archive, ...).
    """

    def __init__(
        self,
        pipeline: EtlPipeline,
        file_states: FileStateRepository,
        settings: EngineSettings | None = None,
    ):
        """
        Initialize reprocessor.

        Args:
            pipeline: Pipeline used for the retries
            file_states: File state repository
            settings: Engine settings (retry budget, stale timeout)
        """
        self.pipeline = pipeline
        self.file_states = file_states
        self.settings = settings or pipeline.settings

    def release_stale(self, now: datetime | None = None) -> list[FileProcessingState]:
        """Fail files stuck in a processing state so they can be retried."""
        return self.file_states.release_stale(
            self.settings.stale_processing_timeout_minutes,
            audit=self.pipeline.audit,
            state_machine=self.pipeline.state_machine,
            now=now,
        )

    def retry_due_files(
        self,
        content_provider: ContentProvider,
        now: datetime | None = None,
        limit: int | None = None,
    ) -> dict[str, Any]:
        """
        Reprocess every failed file whose retry time has come.

        Files whose content cannot be provided, or whose content no longer
        matches the stored checksum, are skipped and stay scheduled.

        Args:
            content_provider: Returns the upload content for a file (None if unavailable)
            now: Reference time (defaults to the current time)
            limit: Maximum number of files to retry

        Returns:
            Dictionary with counts (attempted, loaded, failed, skipped) and
            the reports of the runs keyed by file_id
        """
        due = self.file_states.find_due_for_retry(self.settings.max_retries, now=now)
        if limit is not None:
            due = due[:limit]

        result: dict[str, Any] = {"attempted": 0, "loaded": 0, "failed": 0, "skipped": 0, "reports": {}}
        if not due:
            logger.info("No files due for retry")
            return result

        logger.info(f"Retrying {len(due)} failed files")
        for state in due:
            content = content_provider(state)
            if content is None:
                logger.warning(f"No content available for file {state.file_id}, skipping retry")
                result["skipped"] += 1
                continue

            if isinstance(content, bytes) and compute_checksum(content) != state.checksum:
                logger.error(
                    f"Content of file {state.file_id} does not match its checksum, skipping retry",
                    extra={"organization_id": state.organization_id},
                )
                result["skipped"] += 1
                continue

            result["attempted"] += 1
            try:
                report = self.pipeline.process_file(
                    content,
                    state.file_name,
                    state.organization_id,
                    pipeline_type=None if state.pipeline_type == AUTO_PIPELINE else state.pipeline_type,
                )
            except (ConcurrencyConflict, DuplicateFileError) as e:
                # Another worker picked the file up first
                logger.info(f"File {state.file_id} not retried: {e}")
                result["attempted"] -= 1
                result["skipped"] += 1
                continue

            result["reports"][state.file_id] = report.to_dict()
            if report.final_state == "loaded":
                result["loaded"] += 1
            else:
                result["failed"] += 1

        logger.info(
            f"Retry pass finished: {result['loaded']} loaded, {result['failed']} failed, "
            f"{result['skipped']} skipped",
        )
        return result
