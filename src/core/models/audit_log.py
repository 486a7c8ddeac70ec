"""
AuditEvent model representing one entry of the engine's audit trail.
"""

from datetime import datetime, timezone
from typing import Any, Literal

from pydantic import BaseModel, Field


class AuditEvent(BaseModel):
    """
    Audit trail entry.

    Every retry, staging cleanup, forced reprocess and pending-entry
    resolution emits one of these.

    Attributes:
        event_id: Auto-increment primary key
        level: info, warning or error
        action: Machine-readable action name (e.g. "staging_cleanup_complete")
        message: Human-readable description
        details: Structured context
        organization_id: Owning organization, when known
        file_id: Related file, when known
        run_id: Related run, when known
        created_at: When the event occurred
    """

    event_id: int | None = None
    level: Literal["debug", "info", "warning", "error"] = "info"
    action: str = Field(..., min_length=1)
    message: str
    details: dict[str, Any] = Field(default_factory=dict)
    organization_id: str | None = None
    file_id: str | None = None
    run_id: str | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    class Config:
        json_schema_extra = {
            "example": {
                "event_id": 1,
                "level": "info",
                "action": "forced_reprocess",
                "message": "Forced reprocessing of loaded file",
                "details": {"reason": "corrected planned weights", "actor": "ana@farm"},
                "organization_id": "org-001",
                "file_id": "0f3c8a52-4a5e-4c1c-a3c6-9c2f6a3f1b20",
            }
        }
