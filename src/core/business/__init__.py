"""
Business validation, cross-field rule sets and natural key generation.
"""

from .natural_key import KEY_SEPARATOR, NaturalKeyGenerator, normalize_key_part
from .rule_sets import (
    RULE_SETS,
    BusinessRuleSet,
    FeedingTreatmentRules,
    LoadingDeviationRules,
    build_rule_set,
    compute_deviation,
)
from .validator import BusinessValidator

__all__ = [
    "BusinessValidator",
    "BusinessRuleSet",
    "LoadingDeviationRules",
    "FeedingTreatmentRules",
    "RULE_SETS",
    "build_rule_set",
    "compute_deviation",
    "NaturalKeyGenerator",
    "normalize_key_part",
    "KEY_SEPARATOR",
]
