"""
ProcessingReport model: the structured summary of one processing run.
"""

from typing import Any

from pydantic import BaseModel, Field


class ProcessingReport(BaseModel):
    """
    Summary returned to the caller and stored on the run record.

    Serialised with camelCase keys (``to_dict``) for external consumers.
    """

    file_id: str | None = Field(None, alias="fileId")
    run_id: str | None = Field(None, alias="runId")
    pipeline_type: str | None = Field(None, alias="pipelineType")
    total_rows: int = Field(0, alias="totalRows")
    valid_rows: int = Field(0, alias="validRows")
    invalid_rows: int = Field(0, alias="invalidRows")
    staging_inserts: int = Field(0, alias="stagingInserts")
    fact_upserts: int = Field(0, alias="factUpserts")
    errors: list[dict[str, Any]] = Field(default_factory=list)
    warnings: list[dict[str, Any]] = Field(default_factory=list)
    cleansing_warnings: int = Field(0, alias="cleansingWarnings")
    pending_entries: list[dict[str, Any]] = Field(default_factory=list, alias="pendingEntries")
    separator: str | None = None
    separator_confidence: float | None = Field(None, alias="separatorConfidence")
    mapping_confidence: float | None = Field(None, alias="mappingConfidence")
    final_state: str | None = Field(None, alias="finalState")
    duration_ms: int = Field(0, alias="durationMs")

    class Config:
        populate_by_name = True

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")
