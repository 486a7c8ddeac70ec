"""
Content fingerprinting and the duplicate-upload gate.
"""

import hashlib
from typing import TYPE_CHECKING

from pydantic import BaseModel

from src.core.errors import DuplicateFileError
from src.core.models import FileProcessingState, FileState, ReprocessingRecord
from src.observability.logger import get_logger
from src.observability.metrics import files_processed_total, increment_counter

if TYPE_CHECKING:
    from src.warehouse.file_state import FileStateRepository

logger = get_logger(__name__)

# An earlier upload in one of these states may be reprocessed without force
REPROCESSABLE_STATES = frozenset({FileState.FAILED, FileState.CANCELLED})


def compute_checksum(content: bytes) -> str:
    """SHA-256 hex digest of the raw file bytes."""
    return hashlib.sha256(content).hexdigest()


class ChecksumDecision(BaseModel):
    """
    Outcome of the duplicate gate.

    Attributes:
        checksum: Content checksum
        original: Most recent earlier file with the same checksum, if any
        is_reprocess: True when processing is allowed over an earlier upload
        forced: True when the caller overrode the gate
        reason: Reason given for the reprocess
        actor: Who asked for it
    """

    checksum: str
    original: FileProcessingState | None = None
    is_reprocess: bool = False
    forced: bool = False
    reason: str | None = None
    actor: str | None = None


class ChecksumService:
    """
    Decides whether an upload may be processed.

    New content always passes. Content already uploaded by the organization
    passes when the earlier file failed (with retry budget left) or was
    cancelled, or when the caller forces it with a reason and an actor.
    Everything else is a DuplicateFileError.
    """

    def __init__(self, repository: "FileStateRepository", audit=None):
        """
        Initialize checksum service.

        Args:
            repository: File state repository
            audit: Audit sink for reprocess events (optional)
        """
        self.repository = repository
        self.audit = audit

    def check(
        self,
        organization_id: str,
        checksum: str,
        force: bool = False,
        reason: str | None = None,
        actor: str | None = None,
    ) -> ChecksumDecision:
        """
        Apply the duplicate gate.

        Args:
            organization_id: Owning organization
            checksum: SHA-256 of the upload
            force: Override the gate
            reason: Why the reprocess is needed (required with force)
            actor: Who asks (required with force)

        Returns:
            ChecksumDecision

        Raises:
            ValueError: If force is set without reason or actor
            DuplicateFileError: If the upload is a blocked duplicate
        """
        if force and (not reason or not actor):
            raise ValueError("Forced reprocessing requires both a reason and an actor")

        matches = self.repository.find_by_checksum(organization_id, checksum)
        if not matches:
            return ChecksumDecision(checksum=checksum)

        original = matches[0]
        if original.state in REPROCESSABLE_STATES and not original.retries_exhausted:
            return ChecksumDecision(
                checksum=checksum, original=original, is_reprocess=True, reason=reason, actor=actor
            )
        if force:
            return ChecksumDecision(
                checksum=checksum, original=original, is_reprocess=True, forced=True, reason=reason, actor=actor
            )

        increment_counter(files_processed_total, pipeline_type=original.pipeline_type, status="duplicate")
        logger.warning(
            f"Duplicate upload of file {original.file_id} rejected",
            extra={"organization_id": organization_id, "original_state": original.state.value},
        )
        raise DuplicateFileError(checksum, original.file_id, original.state.value)

    def record_reprocess(self, decision: ChecksumDecision, file_id: str, run_id: str | None = None) -> ReprocessingRecord:
        """
        Write the reprocessing record and audit event for an allowed duplicate.

        Args:
            decision: Result of ``check`` with ``is_reprocess`` set
            file_id: File record being processed
            run_id: Current run
        """
        if not decision.is_reprocess or decision.original is None:
            raise ValueError("Only reprocess decisions can be recorded")

        record = ReprocessingRecord(
            file_id=file_id,
            original_file_id=decision.original.file_id,
            organization_id=decision.original.organization_id,
            reason=decision.reason,
            requested_by=decision.actor,
            forced=decision.forced,
        )
        self.repository.log_reprocessing(record)

        if self.audit is not None:
            action = "forced_reprocess" if decision.forced else "reprocess"
            self.audit.log_event(
                "warning" if decision.forced else "info",
                action,
                f"Reprocessing file {decision.original.file_id} (previous state: {decision.original.state.value})",
                details={
                    "original_file_id": decision.original.file_id,
                    "original_state": decision.original.state.value,
                    "reason": decision.reason,
                    "actor": decision.actor,
                    "forced": decision.forced,
                },
                organization_id=decision.original.organization_id,
                file_id=file_id,
                run_id=run_id,
            )
        logger.info(
            f"Reprocess recorded for file {file_id}",
            extra={"original_file_id": decision.original.file_id, "forced": decision.forced},
        )
        return record
