"""
Data cleansing: locale-aware numbers, multi-format dates and controlled vocabularies.
"""

from .cleanser import DataCleanser, FieldCleansingRule, fold_accents, vocabulary_key
from .vocabularies import DEFAULT_VOCABULARIES

__all__ = [
    "DataCleanser",
    "FieldCleansingRule",
    "DEFAULT_VOCABULARIES",
    "fold_accents",
    "vocabulary_key",
]
