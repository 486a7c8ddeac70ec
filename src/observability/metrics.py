"""
Prometheus metrics for the feedlot ETL engine.

All collectors live on a private registry. The batch CLI exposes it over
HTTP when ``--metrics-port`` (or METRICS_PORT) is given.
"""
import os

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram

REGISTRY = CollectorRegistry()


# =======================
# FILES AND ROWS
# =======================

files_processed_total = Counter(
    "etl_files_processed_total",
    "Files that ended a run, by final state (loaded, failed, cancelled, duplicate)",
    ["pipeline_type", "status"],
    registry=REGISTRY,
)

rows_processed_total = Counter(
    "etl_rows_processed_total",
    "Data rows processed, by outcome (valid, invalid)",
    ["pipeline_type", "status"],
    registry=REGISTRY,
)

file_processing_duration_seconds = Histogram(
    "etl_file_processing_duration_seconds",
    "Wall-clock duration of a processing run",
    ["pipeline_type"],
    buckets=[0.1, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0, 60.0, 120.0, 600.0],
    registry=REGISTRY,
)

batch_size_rows = Histogram(
    "etl_batch_size_rows",
    "Rows per parsed file",
    ["pipeline_type"],
    buckets=[10, 50, 100, 500, 1000, 5000, 10000],
    registry=REGISTRY,
)

files_in_progress = Gauge(
    "etl_files_in_progress",
    "Files currently being processed by this process",
    ["pipeline_type"],
    registry=REGISTRY,
)


# =======================
# DATA QUALITY
# =======================

validation_failures_total = Counter(
    "etl_validation_failures_total",
    "Row-level validation errors",
    ["pipeline_type", "code", "field_name"],
    registry=REGISTRY,
)

validation_warnings_total = Counter(
    "etl_validation_warnings_total",
    "Business rule warnings on retained rows",
    ["pipeline_type", "code"],
    registry=REGISTRY,
)

cleansing_warnings_total = Counter(
    "etl_cleansing_warnings_total",
    "Values altered by cleansing",
    ["pipeline_type", "field_name"],
    registry=REGISTRY,
)

pending_entries_created_total = Counter(
    "etl_pending_entries_created_total",
    "Pending dimension entries created for unknown codes",
    ["dimension_type"],
    registry=REGISTRY,
)


# =======================
# LIFECYCLE
# =======================

state_transitions_total = Counter(
    "etl_state_transitions_total",
    "File lifecycle transitions",
    ["from_state", "to_state"],
    registry=REGISTRY,
)

concurrency_conflicts_total = Counter(
    "etl_concurrency_conflicts_total",
    "Optimistic-lock version mismatches",
    ["operation"],
    registry=REGISTRY,
)

retries_total = Counter(
    "etl_retries_total",
    "Retry attempts, by outcome (retrying, recovered, exhausted)",
    ["operation", "status"],
    registry=REGISTRY,
)

dead_letter_total = Counter(
    "etl_dead_letter_total",
    "Dead-letter records written",
    ["error_type"],
    registry=REGISTRY,
)


# =======================
# WAREHOUSE
# =======================

warehouse_writes_total = Counter(
    "etl_warehouse_writes_total",
    "Rows written to staging and fact tables (insert, update, failed)",
    ["table", "operation"],
    registry=REGISTRY,
)

warehouse_write_duration_seconds = Histogram(
    "etl_warehouse_write_duration_seconds",
    "Time spent writing one chunk",
    ["table"],
    buckets=[0.01, 0.05, 0.1, 0.5, 1.0, 5.0, 10.0],
    registry=REGISTRY,
)


def start_metrics_server(port: int | None = None) -> int:
    """Serve REGISTRY over HTTP; returns the port used."""
    from prometheus_client import start_http_server

    metrics_port = port or int(os.getenv("METRICS_PORT", "8000"))
    start_http_server(metrics_port, registry=REGISTRY)
    return metrics_port


def increment_counter(counter: Counter, value: float = 1.0, **labels) -> None:
    """Increment ``counter``; zero and negative amounts are ignored."""
    if value <= 0:
        return
    counter.labels(**labels).inc(value)


def observe_histogram(histogram: Histogram, value: float, **labels) -> None:
    histogram.labels(**labels).observe(value)


def record_file_run(
    pipeline_type: str,
    final_state: str,
    valid_rows: int,
    invalid_rows: int,
    duration_seconds: float,
) -> None:
    """Record the outcome of one processing run."""
    increment_counter(files_processed_total, 1, pipeline_type=pipeline_type, status=final_state)
    increment_counter(rows_processed_total, valid_rows, pipeline_type=pipeline_type, status="valid")
    increment_counter(rows_processed_total, invalid_rows, pipeline_type=pipeline_type, status="invalid")
    observe_histogram(file_processing_duration_seconds, duration_seconds, pipeline_type=pipeline_type)


def record_row_issues(pipeline_type: str, errors: list[dict], warnings: list[dict]) -> None:
    """
    Count row errors by code and field, and warnings by code.

    Args:
        pipeline_type: Pipeline definition used
        errors: Report error dictionaries (``code``, ``field``)
        warnings: Report warning dictionaries (``code``)
    """
    for err in errors:
        increment_counter(
            validation_failures_total,
            pipeline_type=pipeline_type,
            code=err.get("code") or "UNKNOWN",
            field_name=err.get("field") or "-",
        )
    for warn in warnings:
        increment_counter(validation_warnings_total, pipeline_type=pipeline_type, code=warn.get("code") or "UNKNOWN")
