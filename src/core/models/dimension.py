"""
Dimension references and pending entries for unresolved business codes.
"""

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, Field


class DimensionType(str, Enum):
    """Kinds of business codes resolved against dimension tables."""

    PEN = "pen"
    DIET = "diet"
    EQUIPMENT = "equipment"
    HANDLER = "handler"


class PendingStatus(str, Enum):
    """Review status of a pending entry."""

    PENDING = "pending"
    RESOLVED = "resolved"
    REJECTED = "rejected"


class EnrichmentStatus(str, Enum):
    """How many of a row's dimension references resolved."""

    SUCCESS = "SUCCESS"
    PARTIAL = "PARTIAL"
    NO_MATCH = "NO_MATCH"


class PendingEntry(BaseModel):
    """
    Placeholder for an unknown dimension code awaiting human review.

    Unique per (organization_id, dimension_type, code). Only a reviewer moves
    it out of ``pending``; the pipeline never does.

    Attributes:
        pending_id: Identifier of the entry
        organization_id: Owning organization
        dimension_type: pen, diet, equipment or handler
        code: Raw code as seen in the file
        status: pending, resolved or rejected
        resolved_value: Dimension identifier chosen by the reviewer
        resolved_by: Reviewer identity
        notes: Reviewer notes
        first_seen_file_id: File in which the code first appeared
        created_at: When the entry was created
        updated_at: Last status change
    """

    pending_id: str
    organization_id: str
    dimension_type: DimensionType
    code: str
    status: PendingStatus = PendingStatus.PENDING
    resolved_value: str | None = None
    resolved_by: str | None = None
    notes: str | None = None
    first_seen_file_id: str | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime | None = None

    @property
    def is_open(self) -> bool:
        return self.status == PendingStatus.PENDING

    class Config:
        json_schema_extra = {
            "example": {
                "pending_id": "5b8f7a1e-7d0c-4c55-9b1e-0f4c1d2a9e11",
                "organization_id": "org-001",
                "dimension_type": "pen",
                "code": "CUR-099",
                "status": "pending",
            }
        }


class DimensionReference(BaseModel):
    """
    Result of resolving one business code.

    Either ``dimension_id`` is set, or it is None and ``pending_id`` points at
    the PendingEntry created for the code.
    """

    dimension_type: DimensionType
    code: str | None = None
    dimension_id: str | None = None
    pending_id: str | None = None

    @property
    def resolved(self) -> bool:
        return self.dimension_id is not None
