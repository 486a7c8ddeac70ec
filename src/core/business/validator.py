"""
Row validation in two phases.

Phase (a) is the schema check: required fields and declared types, built
from the pipeline's header field specs. Phase (b) runs only on rows that
pass it: the pipeline's configured field rules followed by its cross-field
rule set. Errors reject the row; warnings are attached to the record.
"""

from typing import Any

from src.core.cleansing import DataCleanser, FieldCleansingRule
from src.core.errors import FieldError
from src.core.models import BusinessRuleWarning, MappedRow, ProcessedRecord, RowValidationResult
from src.core.rules import PipelineDefinition, RuleConfigBuilder, RuleEngine
from src.observability.logger import get_logger

from .rule_sets import BusinessRuleSet, build_rule_set

logger = get_logger(__name__)

_KIND_BY_TYPE = {
    "number": "number",
    "integer": "integer",
    "date": "date",
    "time": "time",
    "boolean": "boolean",
    "string": "text",
}


class BusinessValidator:
    """
    Cleanses and validates mapped rows for one pipeline.

    Instances hold no per-row state and may be shared across worker threads.
    """

    def __init__(
        self,
        definition: PipelineDefinition,
        cleanser: DataCleanser | None = None,
        rule_set: BusinessRuleSet | None = None,
    ):
        """
        Initialize validator.

        Args:
            definition: Pipeline definition
            cleanser: Cleanser to use (defaults to one built from the
                definition's vocabularies)
            rule_set: Cross-field rules (defaults to the definition's rule set)
        """
        self.definition = definition
        self.cleanser = cleanser or DataCleanser(definition.vocabularies or None)
        self.rule_set = rule_set or build_rule_set(definition.rule_set, definition.policy)
        self.cleansing_plan = self._build_cleansing_plan()
        self.schema_engine = RuleEngine(self._build_schema_rules())
        self.rule_engine = RuleEngine(definition.rules)

    def _build_cleansing_plan(self) -> dict[str, FieldCleansingRule]:
        plan = dict(self.definition.cleansing)
        for name, spec in self.definition.header.fields.items():
            if name not in plan:
                plan[name] = FieldCleansingRule(kind=_KIND_BY_TYPE.get(spec.type, "text"))
        return plan

    def _build_schema_rules(self) -> list[dict[str, Any]]:
        builder = RuleConfigBuilder()
        for name, spec in self.definition.header.fields.items():
            if spec.required:
                builder.add_required_field(name)
            builder.add_type_check(name, spec.type)
        return builder.build()

    @staticmethod
    def _merge_errors(target: list[dict[str, Any]], errors: list[FieldError], seen: set[str]) -> None:
        # One error per field; later findings on an already-failed field are noise
        for error in errors:
            if error.field in seen:
                continue
            seen.add(error.field)
            target.append(error.to_dict())

    def validate(self, mapped_row: MappedRow, organization_id: str) -> RowValidationResult:
        """
        Cleanse and validate one mapped row.

        Args:
            mapped_row: Output of the header mapper
            organization_id: Owning organization

        Returns:
            RowValidationResult; ``record`` is set (without natural key) when
            the row passed
        """
        row_number = mapped_row.row_number
        errors: list[dict[str, Any]] = list(mapped_row.errors)
        failed_fields = {e["field"] for e in errors}

        values, cleansing_warnings, cleansing_errors = self.cleanser.cleanse(
            mapped_row.values, self.cleansing_plan, row_number
        )
        self._merge_errors(errors, cleansing_errors, failed_fields)

        schema = self.schema_engine.evaluate(values, row_number)
        self._merge_errors(errors, schema.errors, failed_fields)

        if errors:
            return RowValidationResult(
                row_number=row_number,
                passed=False,
                errors=errors,
                cleansing_warnings=cleansing_warnings,
            )

        evaluation = self.rule_engine.evaluate(values, row_number)
        warnings: list[BusinessRuleWarning] = list(evaluation.warnings)
        self._merge_errors(errors, evaluation.errors, failed_fields)

        rule_errors, rule_warnings = self.rule_set.apply(values, row_number)
        self._merge_errors(errors, rule_errors, failed_fields)
        warnings.extend(rule_warnings)

        if errors:
            return RowValidationResult(
                row_number=row_number,
                passed=False,
                errors=errors,
                warnings=warnings,
                cleansing_warnings=cleansing_warnings,
            )

        record = ProcessedRecord(
            organization_id=organization_id,
            pipeline_type=self.definition.pipeline_type,
            row_number=row_number,
            data_ref=values[self.definition.natural_key.date_field],
            values=values,
            warnings=[w.code for w in warnings],
        )
        return RowValidationResult(
            row_number=row_number,
            passed=True,
            record=record,
            warnings=warnings,
            cleansing_warnings=cleansing_warnings,
        )

    def post_key_checks(self, record: ProcessedRecord) -> list[BusinessRuleWarning]:
        """
        Plausibility checks that run after the natural key is assigned.

        Findings never reject the row. Any finding marks the record as
        low-confidence and appends its code to ``record.warnings``.

        Args:
            record: Keyed record (mutated in place)

        Returns:
            Warnings raised
        """
        warnings = self.rule_set.post_key_checks(record)
        if warnings:
            record.low_confidence = True
            for warning in warnings:
                if warning.code not in record.warnings:
                    record.warnings.append(warning.code)
            logger.debug(
                f"Row {record.row_number} flagged low-confidence",
                extra={"natural_key": record.natural_key, "codes": [w.code for w in warnings]},
            )
        return warnings
