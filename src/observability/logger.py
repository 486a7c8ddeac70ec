"""
Structured JSON logging for the feedlot ETL engine

Every module logs through ``get_logger(__name__)``. Lines are JSON objects
(python-json-logger) so aggregation can filter on organization, file and run.
Those three ids are bound once per operation with ``log_operation``; any line
logged on the same thread while the operation is open carries them without
passing ``extra`` by hand.
"""
import logging
import os
import sys
import time
from contextvars import ContextVar
from typing import Any

from pythonjsonlogger import jsonlogger

SERVICE_NAME = "feedlot-etl"

CONTEXT_FIELDS = ("organization_id", "file_id", "run_id", "pipeline_type")

_run_context: ContextVar[dict[str, Any]] = ContextVar("etl_run_context", default={})


def current_context() -> dict[str, Any]:
    return dict(_run_context.get())


class EtlJsonFormatter(jsonlogger.JsonFormatter):
    """JSON formatter adding service, call-site, thread and run context fields."""

    def add_fields(self, log_record: dict, record: logging.LogRecord, message_dict: dict) -> None:
        super().add_fields(log_record, record, message_dict)

        if not log_record.get("timestamp"):
            log_record["timestamp"] = self.formatTime(record, self.datefmt)
        log_record["level"] = record.levelname
        log_record["logger"] = record.name
        log_record["service"] = SERVICE_NAME
        log_record["module"] = record.module
        log_record["function"] = record.funcName
        # Validation workers are threads of one process
        log_record["thread_name"] = record.threadName

        for key, value in _run_context.get().items():
            if value is not None and key not in log_record:
                log_record[key] = value


def _build_handler(level: int, format_type: str) -> logging.Handler:
    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    if format_type == "json":
        handler.setFormatter(
            EtlJsonFormatter(
                fmt="%(timestamp)s %(level)s %(logger)s %(message)s",
                datefmt="%Y-%m-%dT%H:%M:%S",
            )
        )
    else:
        # Plain text for a terminal
        handler.setFormatter(
            logging.Formatter(
                fmt="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
                datefmt="%H:%M:%S",
            )
        )
    return handler


def configure_logger(
    name: str = SERVICE_NAME,
    level: str | None = None,
    format_type: str | None = None,
) -> logging.Logger:
    """
    Attach a single stdout handler to ``name``.

    Args:
        name: Logger name
        level: Level name (defaults to env var LOG_LEVEL, then INFO)
        format_type: "json" or "text" (defaults to env var LOG_FORMAT, then json)

    Returns:
        The configured logger
    """
    level_name = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    log_level = logging.getLevelName(level_name)
    if not isinstance(log_level, int):
        log_level = logging.INFO

    logger = logging.getLogger(name)
    logger.setLevel(log_level)
    logger.handlers.clear()
    logger.addHandler(_build_handler(log_level, format_type or os.getenv("LOG_FORMAT", "json")))
    logger.propagate = False
    return logger


def get_logger(name: str = SERVICE_NAME) -> logging.Logger:
    """Logger for ``name``, configured from the environment on first use."""
    logger = logging.getLogger(name)
    if not logger.handlers:
        return configure_logger(name)
    return logger


class log_operation:
    """
    Context manager that logs start, end and duration of an operation.

    Keyword fields named in CONTEXT_FIELDS are also bound to the run context
    until the block exits.

    Usage:
        with log_operation("process_file", logger=logger, file_id=file_id, run_id=run_id):
            ...
    """

    def __init__(self, operation_name: str, logger: logging.Logger | None = None, **extra_fields):
        self.operation_name = operation_name
        self.logger = logger or get_logger()
        self.extra_fields = extra_fields
        self.start_time: float | None = None
        self._token = None

    @property
    def elapsed_seconds(self) -> float:
        if self.start_time is None:
            return 0.0
        return time.perf_counter() - self.start_time

    def __enter__(self):
        bound = {k: v for k, v in self.extra_fields.items() if k in CONTEXT_FIELDS}
        self._token = _run_context.set({**_run_context.get(), **bound})
        self.start_time = time.perf_counter()
        self.logger.info(
            f"Starting: {self.operation_name}",
            extra={"operation": self.operation_name, **self.extra_fields},
        )
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        fields = {
            "operation": self.operation_name,
            "duration_seconds": round(self.elapsed_seconds, 3),
            **self.extra_fields,
        }
        try:
            if exc_type is None:
                self.logger.info(f"Completed: {self.operation_name}", extra={**fields, "status": "success"})
            else:
                self.logger.error(
                    f"Failed: {self.operation_name}: {exc_val}",
                    extra={**fields, "status": "error", "error_type": exc_type.__name__},
                    exc_info=(exc_type, exc_val, exc_tb),
                )
        finally:
            _run_context.reset(self._token)
        return False
