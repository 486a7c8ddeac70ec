"""
Batch processing of uploaded CSV files.
"""

from .pipeline import CancellationToken, EtlPipeline
from .readers import CSVReader, FileReader, SeparatorDetector
from .reprocess import FileReprocessor

__all__ = [
    "EtlPipeline",
    "CancellationToken",
    "FileReprocessor",
    "CSVReader",
    "FileReader",
    "SeparatorDetector",
]
