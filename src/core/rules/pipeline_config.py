"""
Pipeline definitions.

Each pipeline type (one kind of equipment export) has its own header
mapping, cleansing plan, validation rules, business policy, natural key,
dimension fields and target tables, all declared in one YAML file under
``config/pipelines/``.
"""

from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator

from src.core.cleansing import FieldCleansingRule
from src.core.mapping import FieldSpec, HeaderMappingConfig
from src.core.models import DimensionType
from src.observability.logger import get_logger

from .rule_config import parse_rule_section

logger = get_logger(__name__)


class NaturalKeyConfig(BaseModel):
    """
    Fields forming the natural key, in order, after organization and date.

    Attributes:
        date_field: Field holding the reference date
        fields: Distinguishing business fields
        hashed: Replace the joined key with a fixed-length digest
        hash_length: Hex characters kept from the digest
    """

    date_field: str = "data_ref"
    fields: list[str] = Field(..., min_length=1)
    hashed: bool = False
    hash_length: int = Field(40, ge=16, le=64)


class DimensionFieldConfig(BaseModel):
    """
    A field whose value is a business code resolved against a dimension.

    Attributes:
        field: Canonical field holding the code
        type: Dimension type
        critical: Report as critical in enrichment (still never fails the row)
    """

    field: str
    type: DimensionType
    critical: bool = False


class StorageConfig(BaseModel):
    """
    Target tables and the record values copied into them.

    Attributes:
        staging_table: Per-file staging table
        fact_table: Consolidated fact table
        columns: Canonical fields written as columns
        dimension_columns: Dimension type -> id column name
    """

    staging_table: str
    fact_table: str
    columns: list[str] = Field(..., min_length=1)
    dimension_columns: dict[DimensionType, str] = Field(default_factory=dict)

    @field_validator("staging_table", "fact_table")
    @classmethod
    def check_identifier(cls, v):
        """Table names are interpolated into SQL, so only plain identifiers are allowed."""
        if not v.replace("_", "").isalnum() or v[0].isdigit():
            raise ValueError(f"Invalid table name: {v!r}")
        return v


class PipelineDefinition(BaseModel):
    """
    Complete configuration of one pipeline type.
    """

    pipeline_type: str = Field(..., min_length=1)
    description: str | None = None
    rule_set: str
    header: HeaderMappingConfig
    cleansing: dict[str, FieldCleansingRule] = Field(default_factory=dict)
    vocabularies: dict[str, dict[str, list[str]]] = Field(default_factory=dict)
    rules: list[dict[str, Any]] = Field(default_factory=list)
    policy: dict[str, Any] = Field(default_factory=dict)
    natural_key: NaturalKeyConfig
    dimensions: list[DimensionFieldConfig] = Field(default_factory=list)
    storage: StorageConfig

    @model_validator(mode="after")
    def check_field_references(self):
        """Every referenced field must be declared in the header config."""
        declared = set(self.header.fields)
        computed = set(self.policy.get("computed_fields", []))
        referenced = (
            set(self.cleansing)
            | {self.natural_key.date_field}
            | set(self.natural_key.fields)
            | {d.field for d in self.dimensions}
        )
        unknown = referenced - declared
        if unknown:
            raise ValueError(f"Pipeline '{self.pipeline_type}' references undeclared fields: {sorted(unknown)}")
        unknown_columns = set(self.storage.columns) - declared - computed
        if unknown_columns:
            raise ValueError(
                f"Pipeline '{self.pipeline_type}' stores undeclared columns: {sorted(unknown_columns)}"
            )
        return self

    @classmethod
    def from_dict(cls, config: dict[str, Any]) -> "PipelineDefinition":
        """
        Build a definition from parsed YAML.

        Raises:
            ValueError: If required sections are missing
        """
        if not config:
            raise ValueError("Pipeline configuration is empty")
        for section in ("pipeline_type", "header", "natural_key", "storage"):
            if section not in config:
                raise ValueError(f"Pipeline configuration must contain '{section}' section")

        header = dict(config["header"])
        header["fields"] = {
            name: FieldSpec(name=name, **(spec or {}))
            for name, spec in (header.get("fields") or {}).items()
        }

        data = dict(config)
        data["header"] = header
        data["rules"] = parse_rule_section(config.get("rules") or {})
        data.setdefault("rule_set", config["pipeline_type"])
        return cls(**data)


class PipelineConfigLoader:
    """
    Loads pipeline definitions from YAML files.
    """

    def __init__(self, config_dir: str | Path):
        """
        Initialize the loader.

        Args:
            config_dir: Directory containing ``<pipeline_type>.yaml`` files
        """
        self.config_dir = Path(config_dir)
        if not self.config_dir.is_dir():
            raise FileNotFoundError(f"Pipeline configuration directory not found: {config_dir}")

    def load(self, path: str | Path) -> PipelineDefinition:
        """
        Load one pipeline definition file.

        Raises:
            ValueError: If the YAML is invalid or incomplete
        """
        with open(path) as f:
            config = yaml.safe_load(f)
        try:
            return PipelineDefinition.from_dict(config)
        except ValueError as e:
            raise ValueError(f"Invalid pipeline configuration {path}: {e}") from e

    def load_all(self) -> dict[str, PipelineDefinition]:
        """
        Load every ``*.yaml`` file in the directory.

        Returns:
            Pipeline type -> definition
        """
        definitions: dict[str, PipelineDefinition] = {}
        for path in sorted(self.config_dir.glob("*.yaml")):
            definition = self.load(path)
            if definition.pipeline_type in definitions:
                raise ValueError(f"Duplicate pipeline type '{definition.pipeline_type}' in {path}")
            definitions[definition.pipeline_type] = definition
            logger.debug(f"Loaded pipeline definition '{definition.pipeline_type}' from {path}")
        return definitions
