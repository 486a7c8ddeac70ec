"""
Header mapping: canonical field specs, header normalization and suggestions.
"""

from .field_spec import FieldSpec, HeaderMappingConfig
from .header_mapper import (
    HeaderMapper,
    HeaderSuggestion,
    MappingAnalysis,
    levenshtein_distance,
    similarity,
)

__all__ = [
    "FieldSpec",
    "HeaderMappingConfig",
    "HeaderMapper",
    "HeaderSuggestion",
    "MappingAnalysis",
    "levenshtein_distance",
    "similarity",
]
