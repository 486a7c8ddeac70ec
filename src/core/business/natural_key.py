"""
Natural key generation.

The natural key identifies one logical fact within an organization. It is
built only from the organization, the reference date and the pipeline's
distinguishing business fields, so re-uploading a file (or reordering its
rows, or correcting a measured value) regenerates the same key and the
writer updates instead of duplicating.
"""

import hashlib
import re
from datetime import date, datetime
from typing import Any

from src.core.cleansing import fold_accents
from src.core.rules import NaturalKeyConfig

KEY_SEPARATOR = "|"
NULL_TOKEN = "NULL"

_WHITESPACE_RE = re.compile(r"\s+")


def normalize_key_part(value: Any) -> str:
    """
    Canonical text for one key component.

    Dates become ISO strings, numbers drop trailing zeros, text is
    accent-folded, upper-cased and whitespace-collapsed. The separator
    character never survives inside a component.
    """
    if value is None:
        return NULL_TOKEN
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    if isinstance(value, float):
        return format(value, "g")

    text = fold_accents(str(value)).upper()
    text = _WHITESPACE_RE.sub(" ", text).strip()
    text = text.replace(KEY_SEPARATOR, "/")
    return text or NULL_TOKEN


class NaturalKeyGenerator:
    """
    Builds deterministic natural keys for a pipeline.
    """

    def __init__(self, config: NaturalKeyConfig):
        """
        Initialize generator.

        Args:
            config: Natural key fields and hashing options of the pipeline
        """
        self.config = config

    def generate(self, organization_id: str, ref_date: date, parts: list[Any]) -> str:
        """
        Join organization, date and business parts into a key.

        Args:
            organization_id: Owning organization
            ref_date: Reference date of the fact
            parts: Distinguishing business values, in configured order

        Returns:
            ``ORG|YYYY-MM-DD|PART|...`` or its fixed-length SHA-256 prefix

        Raises:
            ValueError: If organization or date is missing
        """
        if not organization_id:
            raise ValueError("organization_id is required for natural keys")
        if ref_date is None:
            raise ValueError("reference date is required for natural keys")

        components = [normalize_key_part(organization_id), normalize_key_part(ref_date)]
        components.extend(normalize_key_part(p) for p in parts)
        key = KEY_SEPARATOR.join(components)

        if self.config.hashed:
            return hashlib.sha256(key.encode("utf-8")).hexdigest()[: self.config.hash_length]
        return key

    def generate_for(self, organization_id: str, values: dict[str, Any]) -> str:
        """
        Build the key from a cleansed row.

        Only the configured fields are read; every other value is ignored.
        """
        parts = [values.get(name) for name in self.config.fields]
        return self.generate(organization_id, values.get(self.config.date_field), parts)
