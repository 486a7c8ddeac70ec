"""
DeadLetterRecord model representing work excluded from automatic retry.
"""

from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, Field


class DeadLetterRecord(BaseModel):
    """
    Permanent-failure record with enough context for manual review.

    Attributes:
        dlq_id: Auto-increment primary key
        organization_id: Owning organization
        file_id: Related file
        run_id: Run during which the failure happened
        operation: What was being attempted (e.g. "process_file", "write_staging")
        error_type: transient, permanent, rate_limited or resource
        error_message: Last error message
        payload: Context needed to replay (row keys, row numbers, etc.)
        retry_count: Attempts made before giving up
        created_at: When dead-lettered
        resolved_at: When a reviewer closed it
        resolved_by: Reviewer identity
        resolution_notes: Free text
    """

    dlq_id: int | None = None
    organization_id: str
    file_id: str | None = None
    run_id: str | None = None
    operation: str
    error_type: str
    error_message: str
    payload: dict[str, Any] = Field(default_factory=dict)
    retry_count: int = Field(0, ge=0)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    resolved_at: datetime | None = None
    resolved_by: str | None = None
    resolution_notes: str | None = None

    class Config:
        json_schema_extra = {
            "example": {
                "dlq_id": 1,
                "organization_id": "org-001",
                "file_id": "0f3c8a52-4a5e-4c1c-a3c6-9c2f6a3f1b20",
                "operation": "process_file",
                "error_type": "transient",
                "error_message": "connection refused",
                "retry_count": 3,
            }
        }
