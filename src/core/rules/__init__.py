"""
Validation rule engine, rule configuration and pipeline definitions.
"""

from .pipeline_config import (
    DimensionFieldConfig,
    NaturalKeyConfig,
    PipelineConfigLoader,
    PipelineDefinition,
    StorageConfig,
)
from .rule_config import RuleConfigBuilder, parse_rule_section
from .rule_engine import RuleEngine, RuleEvaluation

__all__ = [
    "RuleEngine",
    "RuleEvaluation",
    "RuleConfigBuilder",
    "parse_rule_section",
    "PipelineDefinition",
    "PipelineConfigLoader",
    "NaturalKeyConfig",
    "DimensionFieldConfig",
    "StorageConfig",
]
