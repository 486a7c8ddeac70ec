"""
ProcessedRecord model: a fully typed, cleansed and validated row.
"""

from datetime import date
from typing import Any

from pydantic import BaseModel, Field

from .dimension import DimensionReference, EnrichmentStatus


class ProcessedRecord(BaseModel):
    """
    Typed row ready for staging and fact upsert.

    Attributes:
        organization_id: Owning organization
        pipeline_type: Pipeline definition that produced the row
        row_number: Source line number (for error reporting)
        data_ref: Reference date of the fact
        values: Typed business values keyed by canonical field name
            (includes computed deviation fields where the pipeline has them)
        natural_key: Deterministic idempotency key within the organization
        low_confidence: True when a post-key check flagged the row as suspicious
        warnings: Warning codes attached to the row
        dimensions: Resolved (or pending) dimension references by dimension type
        enrichment_status: SUCCESS, PARTIAL or NO_MATCH
    """

    organization_id: str
    pipeline_type: str
    row_number: int
    data_ref: date
    values: dict[str, Any] = Field(default_factory=dict)
    natural_key: str | None = None
    low_confidence: bool = False
    warnings: list[str] = Field(default_factory=list)
    dimensions: dict[str, DimensionReference] = Field(default_factory=dict)
    enrichment_status: EnrichmentStatus = EnrichmentStatus.SUCCESS

    def dimension_id(self, dimension_type: str) -> str | None:
        ref = self.dimensions.get(dimension_type)
        return ref.dimension_id if ref else None

    class Config:
        json_schema_extra = {
            "example": {
                "organization_id": "org-001",
                "pipeline_type": "loading_deviation",
                "row_number": 2,
                "data_ref": "2025-01-15",
                "values": {
                    "turno": "MANHA",
                    "equipamento": "BAHMAN",
                    "curral_codigo": "CUR-001",
                    "kg_planejado": 1200.5,
                    "kg_real": 1180.0,
                    "desvio_kg": -20.5,
                    "desvio_pct": -1.71,
                },
                "natural_key": "ORG-001|2025-01-15|BAHMAN|CUR-001|MANHA",
                "low_confidence": False,
                "warnings": [],
                "enrichment_status": "SUCCESS",
            }
        }
