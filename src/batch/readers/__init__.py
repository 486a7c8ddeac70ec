"""
Upload readers: decoding, separator detection and streaming CSV batches.
"""

from .csv_reader import CSVReader, CsvDocument
from .file_reader import FileReader
from .separator_detector import (
    SeparatorDetectionResult,
    SeparatorDetector,
    detect_separator,
    separator_name,
)

__all__ = [
    "CSVReader",
    "CsvDocument",
    "FileReader",
    "SeparatorDetector",
    "SeparatorDetectionResult",
    "detect_separator",
    "separator_name",
]
