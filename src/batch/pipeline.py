"""
ETL pipeline orchestration for one uploaded file.

Flow: checksum gate -> parsing -> parsed -> validating -> validated ->
loading -> loaded, every step recorded on the file's state row through
optimistic-lock transitions.

Rows are read in sequential batches. Inside a batch, rows are mapped,
cleansed, validated, keyed and enriched in parallel, then written to
staging in one call. Staging rows are promoted to the fact table once
every batch is in.
"""

import threading
import time
import uuid
from concurrent.futures import ThreadPoolExecutor
from typing import Any, BinaryIO

import psycopg

from src.batch.readers import CSVReader, FileReader, SeparatorDetector
from src.core.business import BusinessValidator, NaturalKeyGenerator
from src.core.errors import (
    ConcurrencyConflict,
    EtlError,
    MappingError,
    ParseError,
    RunCancelledError,
    RunTimeoutError,
    StorageError,
)
from src.core.mapping import HeaderMapper, MappingAnalysis
from src.core.models import (
    DeadLetterRecord,
    FileProcessingState,
    FileState,
    ProcessedRecord,
    ProcessingReport,
    RawRow,
    RowValidationResult,
)
from src.core.rules import PipelineConfigLoader, PipelineDefinition
from src.core.settings import EngineSettings
from src.dimensions import (
    DimensionResolution,
    DimensionResolver,
    DimensionStore,
    PostgresDimensionStore,
)
from src.lifecycle import (
    ChecksumDecision,
    ChecksumService,
    ErrorType,
    FileStateMachine,
    classify_error,
    compute_checksum,
    is_valid_transition,
)
from src.lifecycle.checksum import REPROCESSABLE_STATES
from src.observability.logger import get_logger, log_operation
from src.observability.metrics import (
    batch_size_rows,
    cleansing_warnings_total,
    dead_letter_total,
    files_in_progress,
    increment_counter,
    observe_histogram,
    record_file_run,
    record_row_issues,
)
from src.warehouse.audit import AuditSink, AuditTrail
from src.warehouse.connection import DatabaseConnectionPool
from src.warehouse.dead_letter import DeadLetterQueue
from src.warehouse.file_state import FileStateRepository
from src.warehouse.staging_cleanup import StagingCleanupService
from src.warehouse.upsert import BatchWriter

logger = get_logger(__name__)

# Placeholder pipeline type until header matching picks one
AUTO_PIPELINE = "auto"

CANCELLED_MESSAGE = "Cancelled by request"

_ERROR_CODES: list[tuple[type, str]] = [
    (MappingError, "MAPPING_ERROR"),
    (ParseError, "PARSE_ERROR"),
    (RunTimeoutError, "RUN_TIMEOUT"),
    (RunCancelledError, "CANCELLED"),
    (StorageError, "STORAGE_ERROR"),
    (psycopg.Error, "STORAGE_ERROR"),
]


def file_error_code(error: BaseException) -> str:
    """Report code for a file-level failure."""
    for error_class, code in _ERROR_CODES:
        if isinstance(error, error_class):
            return code
    return "PROCESSING_ERROR"


class CancellationToken:
    """
    Cooperative cancellation flag.

    The pipeline checks it between batches; a batch already being written
    always completes or fully aborts.
    """

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


class _RunContext:
    """Mutable state of one run."""

    def __init__(self, organization_id: str, run_id: str, cancel_token: CancellationToken):
        self.organization_id = organization_id
        self.run_id = run_id
        self.cancel_token = cancel_token
        self.started = time.monotonic()
        self.state: FileProcessingState | None = None
        self.pipeline_type: str | None = None
        self.report = ProcessingReport(runId=run_id)
        self.pending: dict[str, dict[str, Any]] = {}
        self.resolver: DimensionResolver | None = None

    @property
    def file_id(self) -> str:
        return self.state.file_id

    @property
    def elapsed_seconds(self) -> float:
        return time.monotonic() - self.started

    def log_context(self) -> dict[str, Any]:
        return {
            "file_id": self.state.file_id if self.state else None,
            "run_id": self.run_id,
            "organization_id": self.organization_id,
            "pipeline_type": self.pipeline_type,
        }


class EtlPipeline:
    """
    Processes uploaded CSV files end to end.

    All collaborators are injected; ``from_pool`` wires the PostgreSQL-backed
    ones. One instance may process several files concurrently: per-file
    state lives in a run context, including the dimension resolver and its
    code cache.
    """

    def __init__(
        self,
        definitions: dict[str, PipelineDefinition],
        file_states: FileStateRepository,
        writer: BatchWriter,
        dimension_store: DimensionStore,
        audit: AuditSink,
        staging_cleanup: StagingCleanupService,
        dead_letter: DeadLetterQueue | None = None,
        settings: EngineSettings | None = None,
        file_reader: FileReader | None = None,
    ):
        """
        Initialize pipeline.

        Args:
            definitions: Pipeline type -> definition
            file_states: File state repository
            writer: Batch writer
            dimension_store: Dimension store
            audit: Audit sink
            staging_cleanup: Staging cleanup service
            dead_letter: Dead-letter queue (optional)
            settings: Engine settings
            file_reader: Upload reader (optional)
        """
        if not definitions:
            raise ValueError("At least one pipeline definition is required")

        self.definitions = definitions
        self.file_states = file_states
        self.writer = writer
        self.dimension_store = dimension_store
        self.audit = audit
        self.staging_cleanup = staging_cleanup
        self.settings = settings or EngineSettings()
        self.dead_letter = dead_letter if self.settings.dead_letter_enabled else None
        self.file_reader = file_reader or FileReader()

        self.checksum_service = ChecksumService(file_states, audit)
        self.state_machine = FileStateMachine.from_settings(self.settings)
        self.separator_detector = SeparatorDetector(
            sample_lines=self.settings.separator_sample_lines,
            min_confidence=self.settings.separator_min_confidence,
            fallback_separator=self.settings.fallback_separator,
        )
        self.csv_reader = CSVReader(batch_size=self.settings.batch_size)

        self.mappers = {name: HeaderMapper(d.header) for name, d in definitions.items()}
        self.validators = {name: BusinessValidator(d) for name, d in definitions.items()}
        self.key_generators = {name: NaturalKeyGenerator(d.natural_key) for name, d in definitions.items()}

    def resolver_for(self, pipeline_type: str) -> DimensionResolver:
        """Fresh resolver for one run; its cache dies with the run."""
        return DimensionResolver(self.dimension_store, self.definitions[pipeline_type].dimensions)

    @classmethod
    def from_pool(
        cls,
        pool: DatabaseConnectionPool,
        settings: EngineSettings | None = None,
        definitions: dict[str, PipelineDefinition] | None = None,
    ) -> "EtlPipeline":
        """
        Build a pipeline on PostgreSQL-backed collaborators.

        Args:
            pool: Open connection pool
            settings: Engine settings (defaults to EngineSettings.load())
            definitions: Pipeline definitions (defaults to settings.pipelines_dir)
        """
        settings = settings or EngineSettings.load()
        if definitions is None:
            definitions = PipelineConfigLoader(settings.pipelines_dir).load_all()

        audit = AuditTrail(pool)
        dead_letter = DeadLetterQueue(pool, audit=audit)
        staging_tables = [d.storage.staging_table for d in definitions.values()]
        return cls(
            definitions=definitions,
            file_states=FileStateRepository(pool),
            writer=BatchWriter(pool, settings, audit=audit, dead_letter=dead_letter),
            dimension_store=PostgresDimensionStore(pool),
            audit=audit,
            staging_cleanup=StagingCleanupService(pool, staging_tables, audit=audit),
            dead_letter=dead_letter,
            settings=settings,
        )

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    def process_file(
        self,
        stream: BinaryIO | bytes,
        file_name: str,
        organization_id: str,
        pipeline_type: str | None = None,
        force: bool = False,
        reason: str | None = None,
        actor: str | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> ProcessingReport:
        """
        Run one uploaded file through the lifecycle.

        Row-level problems end up in the report; file-level failures move
        the file to ``failed`` (scheduling a retry when the error is
        transient and budget remains) and are reported too.

        Args:
            stream: File content (binary stream or bytes)
            file_name: Upload name
            organization_id: Owning organization
            pipeline_type: Pipeline to use; None selects by header match
            force: Reprocess content that was already loaded
            reason: Why a forced reprocess is needed
            actor: Who requested a forced reprocess
            cancel_token: Cooperative cancellation flag

        Returns:
            ProcessingReport

        Raises:
            DuplicateFileError: If the content was already processed and force is off
            ConcurrencyConflict: If another worker took the file concurrently
            ValueError: If the pipeline type is unknown or force lacks reason/actor
        """
        if pipeline_type is not None and pipeline_type not in self.definitions:
            raise ValueError(f"Unknown pipeline type: {pipeline_type}")

        content = self.file_reader.read(stream)
        checksum = compute_checksum(content)
        decision = self.checksum_service.check(organization_id, checksum, force, reason, actor)

        ctx = _RunContext(organization_id, str(uuid.uuid4()), cancel_token or CancellationToken())
        ctx.pipeline_type = pipeline_type
        ctx.report.pipeline_type = pipeline_type
        ctx.state = self._register_file(decision, file_name, organization_id, pipeline_type)
        ctx.report.file_id = ctx.file_id

        self.file_states.start_run(ctx.run_id, ctx.file_id, ctx.state.retry_count + 1)
        gauge_label = pipeline_type or AUTO_PIPELINE
        files_in_progress.labels(pipeline_type=gauge_label).inc()

        error: BaseException | None = None
        try:
            with log_operation("process_file", logger=logger, **ctx.log_context()):
                self._run(ctx, content, decision, file_name)
        except ConcurrencyConflict as e:
            error = e
            raise
        except (EtlError, psycopg.Error, OSError) as e:
            error = e
            self._fail(ctx, e)
        finally:
            files_in_progress.labels(pipeline_type=gauge_label).dec()
            self._finish(ctx, error)

        return ctx.report

    def _register_file(
        self,
        decision: ChecksumDecision,
        file_name: str,
        organization_id: str,
        pipeline_type: str | None,
    ) -> FileProcessingState:
        """
        Pick the file record the run works on.

        A reprocess of a failed or cancelled upload reuses that record;
        anything else (new content, forced reprocess of a loaded file) gets
        a new one.
        """
        original = decision.original
        if original is not None and original.state in REPROCESSABLE_STATES:
            logger.info(
                f"Reprocessing file {original.file_id} from state {original.state.value}",
                extra={"organization_id": organization_id, "forced": decision.forced},
            )
            return original

        state = FileProcessingState(
            file_id=str(uuid.uuid4()),
            organization_id=organization_id,
            file_name=file_name,
            pipeline_type=pipeline_type or AUTO_PIPELINE,
            checksum=decision.checksum,
            reprocess_of=original.file_id if original is not None else None,
        )
        return self.file_states.create(state)

    # ------------------------------------------------------------------
    # Lifecycle steps
    # ------------------------------------------------------------------

    def _transition(self, ctx: _RunContext, to_state: FileState, **changes: Any) -> None:
        ctx.state = self.file_states.transition(ctx.file_id, ctx.state.version, to_state, **changes)

    def _check_cancel(self, ctx: _RunContext) -> None:
        """Honour a cancel request at a batch or state boundary."""
        if not ctx.cancel_token.cancelled:
            return
        if is_valid_transition(ctx.state.state, FileState.CANCELLED):
            self._transition(ctx, FileState.CANCELLED, error_message=CANCELLED_MESSAGE, next_retry_at=None)
            self.audit.log_event(
                "info",
                "file_cancelled",
                f"File {ctx.file_id} cancelled",
                organization_id=ctx.organization_id,
                file_id=ctx.file_id,
                run_id=ctx.run_id,
            )
        raise RunCancelledError(CANCELLED_MESSAGE)

    def _check_timeout(self, ctx: _RunContext) -> None:
        elapsed = ctx.elapsed_seconds
        if elapsed > self.settings.run_timeout_seconds:
            raise RunTimeoutError(elapsed, self.settings.run_timeout_seconds)

    def _run(self, ctx: _RunContext, content: bytes, decision: ChecksumDecision, file_name: str) -> None:
        if ctx.state.state == FileState.UPLOADED:
            self._check_cancel(ctx)

        start_changes: dict[str, Any] = {
            "last_run_id": ctx.run_id,
            "error_message": None,
            "next_retry_at": None,
            "file_name": file_name,
        }
        if decision.forced and ctx.state.state in REPROCESSABLE_STATES:
            start_changes.update(retry_count=0, retries_exhausted=False)
        self._transition(ctx, FileState.PARSING, **start_changes)

        if decision.is_reprocess:
            self._prepare_reprocess(ctx, decision)

        definition, analysis, document = self._parse(ctx, content)
        self._transition(ctx, FileState.PARSED, pipeline_type=definition.pipeline_type)
        self._check_cancel(ctx)

        self._transition(ctx, FileState.VALIDATING)
        self._validate(ctx, definition, analysis, document)
        self._transition(ctx, FileState.VALIDATED)
        self._check_cancel(ctx)

        self._transition(ctx, FileState.LOADING)
        promoted = self.writer.promote_to_fact(definition, ctx.organization_id, ctx.file_id, ctx.run_id)
        ctx.report.fact_upserts = promoted.written

        ctx.report.final_state = FileState.LOADED.value
        ctx.report.duration_ms = int(ctx.elapsed_seconds * 1000)
        self._transition(ctx, FileState.LOADED, last_report=ctx.report.to_dict())

    def _prepare_reprocess(self, ctx: _RunContext, decision: ChecksumDecision) -> None:
        """Record the reprocess and clear staging rows left by the earlier upload."""
        self.checksum_service.record_reprocess(decision, ctx.file_id, ctx.run_id)
        cleanup = self.staging_cleanup.cleanup(ctx.organization_id, decision.original.file_id, run_id=ctx.run_id)
        if not cleanup.success:
            raise StorageError(f"Staging cleanup failed: {'; '.join(cleanup.errors)}", transient=True)

    def _parse(self, ctx: _RunContext, content: bytes):
        text = self.file_reader.decode(content)
        detection = self.separator_detector.choose(text, context=ctx.log_context())
        ctx.report.separator = detection.separator
        ctx.report.separator_confidence = detection.confidence

        document = self.csv_reader.open(text, detection.separator)
        definition, analysis = self._select_definition(ctx, document.headers)
        ctx.report.mapping_confidence = analysis.confidence
        ctx.resolver = self.resolver_for(definition.pipeline_type)
        return definition, analysis, document

    def _select_definition(
        self, ctx: _RunContext, headers: list[str]
    ) -> tuple[PipelineDefinition, MappingAnalysis]:
        """
        Map headers with the requested pipeline, or pick the best one.

        Without a requested type every definition is tried; the complete
        mapping with the highest confidence wins. When none is complete the
        closest candidate's MappingError is raised.
        """
        if ctx.pipeline_type is not None:
            mapper = self.mappers[ctx.pipeline_type]
            analysis = mapper.analyze(headers)
            mapper.require_complete(analysis)
            return self.definitions[ctx.pipeline_type], analysis

        candidates = []
        for name, mapper in self.mappers.items():
            candidates.append((mapper.analyze(headers), name))
        candidates.sort(key=lambda c: (c[0].is_complete, c[0].confidence), reverse=True)
        analysis, name = candidates[0]
        self.mappers[name].require_complete(analysis)

        ctx.pipeline_type = name
        ctx.report.pipeline_type = name
        logger.info(
            f"Selected pipeline {name} (mapping confidence {analysis.confidence:.2f})",
            extra=ctx.log_context(),
        )
        return self.definitions[name], analysis

    def _validate(
        self,
        ctx: _RunContext,
        definition: PipelineDefinition,
        analysis: MappingAnalysis,
        document,
    ) -> None:
        name = definition.pipeline_type
        with ThreadPoolExecutor(max_workers=self.settings.validation_workers) as executor:
            for batch in self.csv_reader.read_batches(document):
                self._check_timeout(ctx)
                self._check_cancel(ctx)
                observe_histogram(batch_size_rows, len(batch), pipeline_type=name)

                outcomes = list(executor.map(lambda row: self._process_row(ctx, name, analysis, row), batch))
                records = self._collect(ctx, name, outcomes)
                if records:
                    written = self.writer.write_staging(definition, records, ctx.file_id, ctx.run_id)
                    ctx.report.staging_inserts += written.written
                    self._reject_stored(ctx, name, written.failed_rows)

        logger.info(
            f"Validated {ctx.report.total_rows} rows ({ctx.report.invalid_rows} rejected)",
            extra=ctx.log_context(),
        )

    def _process_row(
        self,
        ctx: _RunContext,
        name: str,
        analysis: MappingAnalysis,
        row: RawRow,
    ) -> tuple[RowValidationResult, DimensionResolution | None, list]:
        mapped = self.mappers[name].map_row(row, analysis)
        validator = self.validators[name]
        result = validator.validate(mapped, ctx.organization_id)
        if not result.passed:
            return result, None, []

        record = result.record
        record.natural_key = self.key_generators[name].generate_for(ctx.organization_id, record.values)
        post_warnings = validator.post_key_checks(record)

        resolution = ctx.resolver.resolve(ctx.organization_id, record.values, file_id=ctx.file_id)
        record.dimensions = resolution.references
        record.enrichment_status = resolution.status
        if resolution.unresolved and "DIMENSION_UNRESOLVED" not in record.warnings:
            record.warnings.append("DIMENSION_UNRESOLVED")
        if resolution.critical_unresolved:
            record.low_confidence = True
            if "CRITICAL_DIMENSION_UNRESOLVED" not in record.warnings:
                record.warnings.append("CRITICAL_DIMENSION_UNRESOLVED")
        return result, resolution, post_warnings

    def _collect(self, ctx: _RunContext, name: str, outcomes: list) -> list[ProcessedRecord]:
        """Fold row outcomes into the report; return the records to write."""
        report = ctx.report
        records: list[ProcessedRecord] = []
        batch_errors: list[dict[str, Any]] = []
        batch_warnings: list[dict[str, Any]] = []

        for result, resolution, post_warnings in outcomes:
            report.total_rows += 1
            report.cleansing_warnings += len(result.cleansing_warnings)
            for warning in result.cleansing_warnings:
                increment_counter(cleansing_warnings_total, pipeline_type=name, field_name=warning.field)

            if not result.passed:
                report.invalid_rows += 1
                batch_errors.extend(result.errors)
                continue

            record = result.record
            records.append(record)
            batch_warnings.extend(w.to_dict() for w in result.warnings)
            batch_warnings.extend(w.to_dict() for w in post_warnings)
            for unresolved in resolution.unresolved:
                critical = unresolved.dimension_type in resolution.critical_unresolved
                batch_warnings.append(
                    {
                        "row_number": record.row_number,
                        "field": unresolved.dimension_type,
                        "value": unresolved.code,
                        "message": str(unresolved),
                        "code": "CRITICAL_DIMENSION_UNRESOLVED" if critical else "DIMENSION_UNRESOLVED",
                    }
                )
                if unresolved.pending_id and unresolved.pending_id not in ctx.pending:
                    ctx.pending[unresolved.pending_id] = {
                        "pendingId": unresolved.pending_id,
                        "dimensionType": unresolved.dimension_type,
                        "code": unresolved.code,
                    }

        report.valid_rows += len(records)
        report.errors.extend(batch_errors)
        report.warnings.extend(batch_warnings)
        report.pending_entries = list(ctx.pending.values())
        record_row_issues(name, batch_errors, batch_warnings)
        return records

    def _reject_stored(self, ctx: _RunContext, name: str, failed_rows: list[dict[str, Any]]) -> None:
        """Rows the database refused count as invalid."""
        if not failed_rows:
            return
        errors = [
            {
                "row_number": failed["row_number"],
                "field": "*",
                "value": failed.get("natural_key"),
                "message": failed["message"],
                "code": failed["code"],
            }
            for failed in failed_rows
        ]
        ctx.report.valid_rows -= len(errors)
        ctx.report.invalid_rows += len(errors)
        ctx.report.errors.extend(errors)
        record_row_issues(name, errors, [])

    # ------------------------------------------------------------------
    # Failure handling
    # ------------------------------------------------------------------

    def _fail(self, ctx: _RunContext, error: BaseException) -> None:
        """
        Move the file to ``failed`` and schedule what happens next.

        Transient failures with budget left get a ``next_retry_at``;
        permanent failures and exhausted budgets are dead-lettered. A cancel
        seen mid-validation fails the file without scheduling a retry.
        """
        report = ctx.report
        message = str(error)
        detail: dict[str, Any] = {
            "row_number": None,
            "field": "*",
            "value": None,
            "message": message,
            "code": file_error_code(error),
        }
        if isinstance(error, MappingError):
            detail["value"] = ", ".join(error.missing_fields)
            detail["suggestions"] = error.suggestions
        report.errors.append(detail)

        if ctx.state.state in (FileState.CANCELLED, FileState.FAILED, FileState.LOADED):
            report.final_state = ctx.state.state.value
            return
        if not is_valid_transition(ctx.state.state, FileState.FAILED):
            logger.error(f"File {ctx.file_id} cannot fail from {ctx.state.state.value}", extra=ctx.log_context())
            return

        changes: dict[str, Any] = {"error_message": message}
        error_type = classify_error(error)
        dead_letter = False
        if isinstance(error, RunCancelledError):
            changes["next_retry_at"] = None
        else:
            retry_count = ctx.state.retry_count + 1
            changes["retry_count"] = retry_count
            if error_type != ErrorType.PERMANENT and self.state_machine.can_retry(retry_count):
                changes["next_retry_at"] = self.state_machine.next_retry_time(ctx.state.retry_count)
            else:
                changes["next_retry_at"] = None
                changes["retries_exhausted"] = True
                dead_letter = True

        report.final_state = FileState.FAILED.value
        report.duration_ms = int(ctx.elapsed_seconds * 1000)
        changes["last_report"] = report.to_dict()
        try:
            self._transition(ctx, FileState.FAILED, **changes)
        except ConcurrencyConflict:
            logger.warning(f"File {ctx.file_id} changed while failing; leaving it to the other writer")
            return

        logger.error(
            f"File {ctx.file_id} failed: {message}",
            extra={**ctx.log_context(), "error_type": error_type.value, "retry_count": ctx.state.retry_count},
        )
        if dead_letter:
            self._dead_letter(ctx, error, error_type)

    def _dead_letter(self, ctx: _RunContext, error: BaseException, error_type: ErrorType) -> None:
        increment_counter(dead_letter_total, error_type=error_type.value)
        if self.dead_letter is None:
            return
        try:
            self.dead_letter.add(
                DeadLetterRecord(
                    organization_id=ctx.organization_id,
                    file_id=ctx.file_id,
                    run_id=ctx.run_id,
                    operation="process_file",
                    error_type=error_type.value,
                    error_message=str(error),
                    payload={"file_name": ctx.state.file_name, "pipeline_type": ctx.pipeline_type},
                    retry_count=ctx.state.retry_count,
                )
            )
        except psycopg.DatabaseError as e:
            logger.error(f"Could not dead-letter file {ctx.file_id}: {e}", extra=ctx.log_context())

    def _finish(self, ctx: _RunContext, error: BaseException | None) -> None:
        """Close the run row and publish metrics and the completion event."""
        report = ctx.report
        if report.final_state is None:
            report.final_state = ctx.state.state.value
        report.duration_ms = int(ctx.elapsed_seconds * 1000)
        status = "conflict" if isinstance(error, ConcurrencyConflict) else report.final_state

        try:
            self.file_states.finish_run(
                ctx.run_id, status, report.to_dict(), error_message=str(error) if error else None
            )
        except psycopg.DatabaseError as e:
            logger.error(f"Could not close run {ctx.run_id}: {e}", extra=ctx.log_context())

        record_file_run(
            ctx.pipeline_type or AUTO_PIPELINE,
            status,
            report.valid_rows,
            report.invalid_rows,
            ctx.elapsed_seconds,
        )
        self.audit.log_event(
            "info" if report.final_state == FileState.LOADED.value else "warning",
            "file_processed",
            f"File {ctx.file_id} finished in state {report.final_state}",
            details={
                "total_rows": report.total_rows,
                "valid_rows": report.valid_rows,
                "invalid_rows": report.invalid_rows,
                "pending_entries": len(report.pending_entries),
                "duration_ms": report.duration_ms,
            },
            organization_id=ctx.organization_id,
            file_id=ctx.file_id,
            run_id=ctx.run_id,
        )
