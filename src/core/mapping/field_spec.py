"""
Canonical field specifications used by the header mapper.
"""

from typing import Any, Callable, Literal

from pydantic import BaseModel, Field, field_validator

FieldType = Literal["string", "number", "integer", "date", "time", "boolean"]

TRANSFORMS: dict[str, Callable[[str], str]] = {
    "upper": str.upper,
    "lower": str.lower,
    "title": str.title,
    "strip": str.strip,
}


class FieldSpec(BaseModel):
    """
    One canonical field of a pipeline.

    Attributes:
        name: Canonical field name
        required: Row is rejected when the value is empty and no default exists
        aliases: Alternative header spellings
        type: Expected value type after cleansing
        default: Value used when the cell is empty
        transform: Name of a text transform applied to the raw value
        description: Free text for documentation
    """

    name: str = Field(..., min_length=1)
    required: bool = False
    aliases: list[str] = Field(default_factory=list)
    type: FieldType = "string"
    default: Any = None
    transform: str | None = None
    description: str | None = None

    @field_validator("transform")
    @classmethod
    def check_transform(cls, v):
        """Transform must be registered."""
        if v is not None and v not in TRANSFORMS:
            raise ValueError(f"Unknown transform '{v}'. Expected one of: {', '.join(TRANSFORMS)}")
        return v

    def apply_transform(self, value: str) -> str:
        if self.transform is None:
            return value
        return TRANSFORMS[self.transform](value)


class HeaderMappingConfig(BaseModel):
    """
    Header mapping configuration of a pipeline.

    Attributes:
        fields: Canonical field specs keyed by name
        case_sensitive: Compare headers without case folding
        strict: Treat unmapped headers as a mapping failure
        remove_prefix: Prefix stripped from every header before matching
        remove_suffix: Suffix stripped from every header before matching
        suggestion_threshold: Minimum similarity for a suggestion
    """

    fields: dict[str, FieldSpec]
    case_sensitive: bool = False
    strict: bool = False
    remove_prefix: str | None = None
    remove_suffix: str | None = None
    suggestion_threshold: float = Field(0.6, ge=0.0, le=1.0)

    @property
    def required_fields(self) -> list[str]:
        return [name for name, spec in self.fields.items() if spec.required]
