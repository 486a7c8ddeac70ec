"""
Core data models for the feedlot ETL engine.

All models use Pydantic for runtime validation and type safety.
"""

from .audit_log import AuditEvent
from .dead_letter import DeadLetterRecord
from .dimension import (
    DimensionReference,
    DimensionType,
    EnrichmentStatus,
    PendingEntry,
    PendingStatus,
)
from .file_state import FileProcessingState, FileState, ReprocessingRecord
from .processed_record import ProcessedRecord
from .processing_report import ProcessingReport
from .rows import MappedRow, RawRow
from .validation_result import BusinessRuleWarning, CleansingWarning, RowValidationResult

__all__ = [
    "RawRow",
    "MappedRow",
    "ProcessedRecord",
    "DimensionType",
    "DimensionReference",
    "EnrichmentStatus",
    "PendingEntry",
    "PendingStatus",
    "FileState",
    "FileProcessingState",
    "ReprocessingRecord",
    "AuditEvent",
    "DeadLetterRecord",
    "CleansingWarning",
    "BusinessRuleWarning",
    "RowValidationResult",
    "ProcessingReport",
]
