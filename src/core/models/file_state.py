"""
FileProcessingState model: lifecycle record of one uploaded file.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class FileState(str, Enum):
    """Lifecycle states of an uploaded file."""

    UPLOADED = "uploaded"
    PARSING = "parsing"
    PARSED = "parsed"
    VALIDATING = "validating"
    VALIDATED = "validated"
    LOADING = "loading"
    LOADED = "loaded"
    FAILED = "failed"
    CANCELLED = "cancelled"


class FileProcessingState(BaseModel):
    """
    One row per uploaded file; never deleted.

    Mutated only through validated state-machine transitions guarded by
    ``version`` (optimistic locking).

    Attributes:
        file_id: File identifier
        organization_id: Owning organization
        file_name: Name the file was uploaded with
        pipeline_type: Pipeline definition used to process the file
        checksum: SHA-256 of the file content
        state: Current lifecycle state
        retry_count: Failed attempts so far
        version: Optimistic-lock counter, incremented on every write
        error_message: Last file-level error
        next_retry_at: When an automatic retry becomes due
        retries_exhausted: True once the retry budget is spent (terminal)
        last_run_id: Latest processing run
        last_report: Summary of the latest run
        reprocess_of: Original file when this upload is a forced reprocess
        created_at: Upload time
        updated_at: Last write
    """

    file_id: str
    organization_id: str
    file_name: str
    pipeline_type: str
    checksum: str = Field(..., min_length=64, max_length=64)
    state: FileState = FileState.UPLOADED
    retry_count: int = Field(0, ge=0)
    version: int = Field(1, ge=1)
    error_message: str | None = None
    next_retry_at: datetime | None = None
    retries_exhausted: bool = False
    last_run_id: str | None = None
    last_report: dict[str, Any] | None = None
    reprocess_of: str | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    class Config:
        json_schema_extra = {
            "example": {
                "file_id": "0f3c8a52-4a5e-4c1c-a3c6-9c2f6a3f1b20",
                "organization_id": "org-001",
                "file_name": "desvio_carregamento_2025-01-15.csv",
                "pipeline_type": "loading_deviation",
                "checksum": "9f86d081884c7d659a2feaa0c55ad015a3bf4f1b2b0b822cd15d6c15b0f00a08",
                "state": "loaded",
                "retry_count": 0,
                "version": 7,
            }
        }


class ReprocessingRecord(BaseModel):
    """
    Audit row written whenever a duplicate upload is allowed through.

    Attributes:
        file_id: File being (re)processed
        original_file_id: Earlier file with the same checksum
        organization_id: Owning organization
        reason: Why reprocessing was requested
        requested_by: Actor identity
        forced: True when the caller overrode the duplicate gate
        created_at: When the request was recorded
    """

    file_id: str
    original_file_id: str
    organization_id: str
    reason: str | None = None
    requested_by: str | None = None
    forced: bool = False
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
