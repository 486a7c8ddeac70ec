"""
RawRow and MappedRow models representing a CSV row before typing (ephemeral).
"""

from typing import Any

from pydantic import BaseModel, Field


class RawRow(BaseModel):
    """
    Ordered cells of one CSV data line (ephemeral, produced by the reader).

    Attributes:
        row_number: 1-based line number counting the header line (first data row is 2)
        cells: Cell values in file order, trimmed
        headers: Original header list of the file
    """

    row_number: int = Field(..., ge=1)
    cells: list[str]
    headers: list[str]

    def as_dict(self) -> dict[str, str]:
        """Pair headers with cells; surplus cells are dropped, missing cells are empty."""
        return {
            header: self.cells[idx] if idx < len(self.cells) else ""
            for idx, header in enumerate(self.headers)
        }

    class Config:
        json_schema_extra = {
            "example": {
                "row_number": 2,
                "cells": ["15/01/2025", "MANHÃ", "BAHMAN", "CUR-001", "1.200,50", "1.180,00"],
                "headers": ["Data", "Turno", "Equipamento", "Curral", "Planejado", "Real"],
            }
        }


class MappedRow(BaseModel):
    """
    Raw row with values keyed by canonical field name.

    Created once per row by the header mapper. Only ``errors`` grows afterwards.

    Attributes:
        raw: The source RawRow
        values: Canonical field name -> raw (string) value, defaults applied
        missing_fields: Required canonical fields empty on this row
        unmapped_headers: File headers with no canonical field
        errors: Field-level error dictionaries (row_number, field, value, message, code)
    """

    raw: RawRow
    values: dict[str, Any] = Field(default_factory=dict)
    missing_fields: list[str] = Field(default_factory=list)
    unmapped_headers: list[str] = Field(default_factory=list)
    errors: list[dict[str, Any]] = Field(default_factory=list)

    @property
    def row_number(self) -> int:
        return self.raw.row_number

    @property
    def has_errors(self) -> bool:
        return bool(self.errors)

    def add_error(self, error: dict[str, Any]) -> None:
        self.errors.append(error)
