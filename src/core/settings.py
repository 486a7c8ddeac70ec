"""
Engine configuration.

Policy parameters live in ``config/engine.yaml`` and can be overridden with
``ETL_<FIELD_NAME>`` environment variables (e.g. ``ETL_BATCH_SIZE=500``).
Database connection settings stay in the ``DB_*`` variables read by
``DatabaseConnectionPool``.
"""

import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, field_validator

DEFAULT_ENGINE_CONFIG = Path("config/engine.yaml")

ENV_PREFIX = "ETL_"


class EngineSettings(BaseModel):
    """
    Tunable policy of the ETL engine.

    Attributes:
        batch_size: Rows per parsed batch
        chunk_size: Rows per write transaction
        use_transactions: Wrap each chunk in its own transaction
        writer_max_retries: Attempts for a failing chunk before dead-lettering
        writer_retry_delay_seconds: Linear delay unit between chunk attempts
        separator_sample_lines: Lines sampled for separator detection
        separator_min_confidence: Below this, detection is not trusted
        fallback_separator: Separator used on low confidence; None fails the file
        max_retries: File-level retry budget
        retry_base_delay_seconds: Base of the exponential file retry backoff
        retry_multiplier: Growth factor of the backoff
        retry_jitter_ratio: Random spread applied to each backoff delay
        auto_retry: Whether failed files are retried automatically
        stale_processing_timeout_minutes: Age after which an in-progress file is released
        run_timeout_seconds: Wall-clock budget of one run
        validation_workers: Threads validating rows of a batch
        dead_letter_enabled: Record exhausted work in the dead-letter queue
        pipelines_dir: Directory holding pipeline definition YAML files
    """

    batch_size: int = Field(1000, ge=1)
    chunk_size: int = Field(1000, ge=1)
    use_transactions: bool = True
    writer_max_retries: int = Field(3, ge=0)
    writer_retry_delay_seconds: float = Field(1.0, ge=0.0)
    separator_sample_lines: int = Field(5, ge=1)
    separator_min_confidence: float = Field(0.7, ge=0.0, le=1.0)
    fallback_separator: str | None = None
    max_retries: int = Field(3, ge=0)
    retry_base_delay_seconds: float = Field(5.0, ge=0.0)
    retry_multiplier: float = Field(2.0, ge=1.0)
    retry_jitter_ratio: float = Field(0.1, ge=0.0, lt=0.5)
    auto_retry: bool = True
    stale_processing_timeout_minutes: int = Field(10, ge=1)
    run_timeout_seconds: float = Field(1800.0, gt=0.0)
    validation_workers: int = Field(4, ge=1)
    dead_letter_enabled: bool = True
    pipelines_dir: str = "config/pipelines"

    @field_validator("fallback_separator")
    @classmethod
    def check_fallback_separator(cls, v):
        """Fallback must be one of the supported separators."""
        if v is not None and v not in (",", ";", "\t", "|"):
            raise ValueError(f"Unsupported fallback separator: {v!r}")
        return v

    @classmethod
    def load(cls, config_path: str | Path | None = None) -> "EngineSettings":
        """
        Build settings from YAML defaults and environment overrides.

        Args:
            config_path: YAML file (defaults to config/engine.yaml if it exists)

        Returns:
            EngineSettings instance

        Raises:
            ValueError: If the YAML file is not a mapping
        """
        data: dict[str, Any] = {}

        path = Path(config_path) if config_path else DEFAULT_ENGINE_CONFIG
        if path.exists():
            with open(path) as f:
                loaded = yaml.safe_load(f) or {}
            if not isinstance(loaded, dict):
                raise ValueError(f"Engine configuration must be a mapping: {path}")
            data.update(loaded.get("engine", loaded))
        elif config_path:
            raise FileNotFoundError(f"Engine configuration file not found: {config_path}")

        for name in cls.model_fields:
            env_value = os.getenv(f"{ENV_PREFIX}{name.upper()}")
            if env_value is not None:
                data[name] = None if env_value.lower() in ("", "none", "null") else env_value

        return cls(**data)
