"""Structural validation of decoded workbooks against a document schema.

``validate`` is a pure function of the raw sheets and the schema: it never
touches storage and never raises for data problems. Every missing sheet,
missing column and empty required cell is collected so that a caller gets
the complete report in one pass.
"""

from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any, Collection, Dict, List, Optional, Sequence, Tuple
import logging

from prism_ingest.core.errors import ProcessingError
from prism_ingest.core.models import ParsedSheet
from prism_ingest.core.reader import RawSheet, is_blank_row
from prism_ingest.schemas.registry import (
    VALIDATION_MESSAGES,
    ColumnSchema,
    DocumentSchema,
    SheetSchema,
    get_schema,
    normalize_name,
)
from prism_ingest.schemas.rules import CoercionError, coerce_value, first_failed_rule, is_empty

logger = logging.getLogger(__name__)

MISSING_SHEET = "missing_sheet"
MISSING_COLUMN = "missing_column"
INVALID_DATA = "invalid_data"

MAX_ROWS_IN_MESSAGE = 10


@dataclass(frozen=True)
class ValidationError:
    """A fatal structural problem."""

    kind: str
    message: str
    sheet: Optional[str] = None
    column: Optional[str] = None
    rows: Tuple[int, ...] = ()


@dataclass
class ValidationOptions:
    """Switches mirroring the processor options."""

    validate_columns: bool = True
    validate_data: bool = True
    skip_empty_rows: bool = True
    trim_whitespace: bool = True


@dataclass
class ValidationResult:
    """Outcome of validating a workbook against one document schema.

    Attributes:
        document_type: Type the workbook was validated against
        errors: Fatal problems; any error makes the result invalid
        warnings: Informational messages that never affect validity
        sheets_found: Workbook sheet names that matched a schema sheet
        rows_processed: Data rows emitted across all matched sheets
        sheets: Parsed sheets in schema order
        missing_mandatory_sheets: Canonical names of absent non-optional sheets
        error: File-level failure (size, format, parsing, timeout) or the
            summary error when no document type was satisfied
    """

    document_type: Optional[str]
    errors: List[ValidationError] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    sheets_found: List[str] = field(default_factory=list)
    rows_processed: int = 0
    sheets: List[ParsedSheet] = field(default_factory=list)
    missing_mandatory_sheets: List[str] = field(default_factory=list)
    error: Optional[ProcessingError] = None

    @property
    def is_valid(self) -> bool:
        return not self.errors and self.error is None

    @property
    def sheet_set_found(self) -> bool:
        """True if every non-optional sheet of the schema was found."""
        return bool(self.sheets_found) and not self.missing_mandatory_sheets

    def errors_of_kind(self, kind: str) -> List[ValidationError]:
        return [error for error in self.errors if error.kind == kind]


def format_rows(rows: Sequence[int]) -> str:
    shown = ", ".join(str(row) for row in rows[:MAX_ROWS_IN_MESSAGE])
    if len(rows) > MAX_ROWS_IN_MESSAGE:
        shown += ", ..."
    return shown


def match_sheets(
    raw_sheets: Sequence[RawSheet], schema: DocumentSchema
) -> Tuple["OrderedDict[SheetSchema, RawSheet]", List[RawSheet]]:
    """Pair schema sheets with workbook sheets.

    Returns:
        Tuple of (schema sheet -> raw sheet mapping in schema order,
        raw sheets that matched nothing)
    """
    matched: "OrderedDict[SheetSchema, RawSheet]" = OrderedDict()
    unmatched = []
    for raw in raw_sheets:
        sheet_schema = schema.find_sheet(raw.name)
        if sheet_schema is not None and sheet_schema not in matched:
            matched[sheet_schema] = raw
        else:
            unmatched.append(raw)
    ordered = OrderedDict(
        (sheet, matched[sheet]) for sheet in schema.sheets if sheet in matched
    )
    return ordered, unmatched


def map_columns(
    headers: Sequence[Any], sheet_schema: SheetSchema
) -> Tuple[Dict[ColumnSchema, int], List[str]]:
    """Resolve header cells to column schemas.

    Returns:
        Tuple of (column schema -> header index, extra header names)
    """
    mapping: Dict[ColumnSchema, int] = {}
    extras = []
    for index, header in enumerate(headers):
        if normalize_name(header) == "":
            continue
        column = sheet_schema.find_column(header)
        if column is not None and column not in mapping:
            mapping[column] = index
        else:
            extras.append(str(header).strip())
    return mapping, extras


def validate_sheet(
    raw: RawSheet,
    sheet_schema: SheetSchema,
    options: ValidationOptions,
) -> Tuple[ParsedSheet, List[ValidationError]]:
    """Validate one matched sheet and build its ParsedSheet."""
    errors: List[ValidationError] = []
    warnings: List[str] = []
    header_index = raw.header_index()

    if header_index is None:
        warnings.append(f'Sheet "{raw.name}" contains no data')
        headers: Sequence[Any] = ()
        data_rows: Sequence[Tuple[Any, ...]] = ()
    else:
        headers = raw.cells[header_index]
        data_rows = raw.cells[header_index + 1:]

    mapping, extras = map_columns(headers, sheet_schema)

    for column in sheet_schema.required_columns:
        if column in mapping:
            continue
        if column.required and options.validate_columns:
            errors.append(ValidationError(
                kind=MISSING_COLUMN,
                message=VALIDATION_MESSAGES["REQUIRED_COLUMN_MISSING"].format(
                    column_name=column.canonical_name, sheet_name=raw.name
                ),
                sheet=raw.name,
                column=column.canonical_name,
            ))
        else:
            warnings.append(VALIDATION_MESSAGES["OPTIONAL_COLUMN_MISSING"].format(
                column_name=column.canonical_name, sheet_name=raw.name
            ))

    if extras:
        warnings.append(VALIDATION_MESSAGES["EXTRA_COLUMNS_IGNORED"].format(
            sheet_name=raw.name, column_names=", ".join(extras)
        ))

    present = [column for column in sheet_schema.required_columns if column in mapping]
    empty_required: "OrderedDict[str, List[int]]" = OrderedDict()
    type_failures: "OrderedDict[Tuple[str, str], List[int]]" = OrderedDict()
    rule_failures: "OrderedDict[Tuple[str, str], List[int]]" = OrderedDict()
    rows = []

    first_row_number = (header_index or 0) + 2
    for offset, row in enumerate(data_rows):
        row_number = first_row_number + offset
        if options.skip_empty_rows and is_blank_row(row):
            continue

        record: Dict[str, Any] = {}
        for column in present:
            index = mapping[column]
            value = row[index] if index < len(row) else None
            if options.trim_whitespace and isinstance(value, str):
                value = value.strip()

            if is_empty(value):
                if column.required and options.validate_data:
                    empty_required.setdefault(column.canonical_name, []).append(row_number)
                record[column.canonical_name] = None
                continue

            if options.validate_data:
                try:
                    value = coerce_value(value, column.value_type)
                except CoercionError:
                    type_failures.setdefault(
                        (column.canonical_name, column.value_type), []
                    ).append(row_number)
                    record[column.canonical_name] = None
                    continue
                failed = first_failed_rule(value, column.validation_rules)
                if failed is not None:
                    rule_failures.setdefault(
                        (column.canonical_name, failed.message), []
                    ).append(row_number)

            record[column.canonical_name] = value
        rows.append(record)

    for column_name, row_numbers in empty_required.items():
        errors.append(ValidationError(
            kind=INVALID_DATA,
            message=VALIDATION_MESSAGES["REQUIRED_VALUE_MISSING"].format(
                column_name=column_name,
                sheet_name=raw.name,
                count=len(row_numbers),
                rows=format_rows(row_numbers),
            ),
            sheet=raw.name,
            column=column_name,
            rows=tuple(row_numbers),
        ))

    for (column_name, value_type), row_numbers in type_failures.items():
        warnings.append(VALIDATION_MESSAGES["INVALID_DATA_TYPE"].format(
            column_name=column_name,
            sheet_name=raw.name,
            value_type=value_type,
            count=len(row_numbers),
            rows=format_rows(row_numbers),
        ))

    for (column_name, message), row_numbers in rule_failures.items():
        warnings.append(VALIDATION_MESSAGES["VALIDATION_RULE_FAILED"].format(
            column_name=column_name,
            sheet_name=raw.name,
            message=message,
            count=len(row_numbers),
            rows=format_rows(row_numbers),
        ))

    columns = tuple(column.canonical_name for column in present)
    parsed = ParsedSheet(
        name=raw.name,
        document_type=sheet_schema.document_type,
        row_count=len(rows),
        column_count=len(columns),
        columns=columns,
        rows=tuple(rows),
        warnings=tuple(warnings),
    )
    logger.debug(
        f"Validated sheet '{raw.name}' as '{sheet_schema.canonical_name}': "
        f"{len(rows)} row(s), {len(errors)} error(s), {len(warnings)} warning(s)"
    )
    return parsed, errors


def validate_workbook(
    raw_sheets: Sequence[RawSheet],
    schema: DocumentSchema,
    options: Optional[ValidationOptions] = None,
    ignore_sheets: Collection[str] = (),
) -> ValidationResult:
    """Validate decoded sheets against a document schema.

    Args:
        raw_sheets: Sheets decoded from the workbook
        schema: Schema of the target document type
        options: Validation switches (defaults enable every check)
        ignore_sheets: Workbook sheet names claimed elsewhere; they are neither
            matched nor reported as extra

    Returns:
        ValidationResult with all errors and warnings accumulated
    """
    options = options or ValidationOptions()
    result = ValidationResult(document_type=schema.document_type)
    ignored = set(ignore_sheets)
    candidates = [raw for raw in raw_sheets if raw.name not in ignored]

    matched, unmatched = match_sheets(candidates, schema)

    for sheet_schema in schema.sheets:
        if sheet_schema in matched:
            continue
        if sheet_schema.optional:
            result.warnings.append(VALIDATION_MESSAGES["OPTIONAL_SHEET_MISSING"].format(
                sheet_name=sheet_schema.canonical_name
            ))
            continue
        result.missing_mandatory_sheets.append(sheet_schema.canonical_name)
        available = ", ".join(raw.name for raw in raw_sheets) or "none"
        result.errors.append(ValidationError(
            kind=MISSING_SHEET,
            message=VALIDATION_MESSAGES["REQUIRED_SHEET_MISSING"].format(
                sheet_name=sheet_schema.canonical_name
            ) + f". Available sheets: {available}",
            sheet=sheet_schema.canonical_name,
        ))

    if unmatched:
        result.warnings.append(VALIDATION_MESSAGES["EXTRA_SHEETS_IGNORED"].format(
            sheet_names=", ".join(raw.name for raw in unmatched)
        ))

    for sheet_schema, raw in matched.items():
        parsed, errors = validate_sheet(raw, sheet_schema, options)
        result.sheets_found.append(raw.name)
        result.sheets.append(parsed)
        result.errors.extend(errors)
        result.warnings.extend(parsed.warnings)
        result.rows_processed += parsed.row_count

    logger.info(
        f"Validation for '{schema.document_type}': "
        f"{'PASS' if result.is_valid else 'FAIL'} - "
        f"{len(result.sheets_found)} sheet(s), {result.rows_processed} row(s), "
        f"{len(result.errors)} error(s), {len(result.warnings)} warning(s)"
    )
    return result


def validate(
    raw_sheets: Sequence[RawSheet],
    document_type: str,
    options: Optional[ValidationOptions] = None,
) -> ValidationResult:
    """Validate decoded sheets against the registered schema of a document type.

    Raises:
        UnknownDocumentType: If no schema is registered for ``document_type``
    """
    return validate_workbook(raw_sheets, get_schema(document_type), options)
