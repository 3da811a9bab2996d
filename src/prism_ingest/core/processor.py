"""Processing orchestrator: the public entry point for file ingestion."""

from dataclasses import asdict
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, Tuple, Union
import logging
import time

from prism_ingest.core.errors import ErrorKind, PipelineAbort, ProcessingError
from prism_ingest.core.models import ProcessingProgress, ProcessingResult, ProcessingState, ProcessingStats
from prism_ingest.core.pipeline import ParsingPipeline, ProgressCallback
from prism_ingest.core.reader import ExcelReader, UploadedFile
from prism_ingest.core.validation import (
    INVALID_DATA,
    MISSING_COLUMN,
    MISSING_SHEET,
    ValidationOptions,
    ValidationResult,
)
from prism_ingest.core.versioning import compute_content_hash
from prism_ingest.schemas.registry import (
    COMBINED_FILE_CONFIG,
    VALIDATION_MESSAGES,
    FileProcessingConfig,
    UnknownDocumentType,
    create_custom_config,
)

logger = logging.getLogger(__name__)

FileInput = Union[UploadedFile, Path, str]


class FileProcessor:
    """Coordinates the parsing pipeline and validation for uploaded workbooks.

    One instance processes one file at a time; callers that need parallel
    processing create one processor per file. Progress and the outcome of the
    latest run are exposed through ``state``.

    Args:
        config: Limits and schemas (default: every registered document type)
        options: Validation switches
        reader: Workbook decoder
        clock: Monotonic clock in seconds, used for the processing timeout

    Example:
        >>> processor = FileProcessor()
        >>> result = processor.process_file(Path("stock.xlsx"), on_progress=print)
        >>> result.data.detected_document_types
        ['inventory']
    """

    def __init__(
        self,
        config: Optional[FileProcessingConfig] = None,
        options: Optional[ValidationOptions] = None,
        reader: Optional[ExcelReader] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config or COMBINED_FILE_CONFIG
        self.options = options or ValidationOptions()
        self.reader = reader or ExcelReader(data_only=True, read_only=True)
        self.clock = clock
        self.state = ProcessingState()

    def process_file(
        self,
        file: FileInput,
        on_progress: Optional[ProgressCallback] = None,
        document_type: Optional[str] = None,
    ) -> ProcessingResult:
        """Parse, validate and assemble a workbook.

        Args:
            file: UploadedFile or a path to a workbook on disk
            on_progress: Observer receiving a ProcessingProgress per phase
            document_type: Restrict detection to one document type

        Returns:
            ProcessingResult; failures are reported in ``error``, never raised

        Raises:
            UnknownDocumentType: If ``document_type`` is not configured
        """
        document_types = self._document_types(document_type)
        pipeline = self._start(file, on_progress)
        result = None
        validations: Dict[str, ValidationResult] = {}
        try:
            upload = self._load(file)
            content = pipeline.read(upload)
            raw_sheets = pipeline.decode(content, upload.name)
            validations = pipeline.validate(raw_sheets, document_types)
            detected, error = self.select_document_types(
                validations, sheet_names=[s.name for s in raw_sheets]
            )
            if error is not None:
                raise PipelineAbort(error)

            document = pipeline.process(upload, validations, detected)
            warnings = _merge_warnings(validations, detected)
            if not any(sheet.row_count for sheet in document.sheets):
                warnings.append(VALIDATION_MESSAGES["NO_DATA_FOUND"])
            stats = ProcessingStats.from_document(document, processing_time=pipeline.elapsed)
            pipeline.complete()
            result = ProcessingResult(
                success=True,
                data=document,
                warnings=warnings,
                stats=stats,
                content_hash=compute_content_hash(content),
            )
            logger.info(
                f"Processed {upload.name}: {stats.sheets_processed} sheet(s), "
                f"{stats.total_rows} row(s), types={document.detected_document_types}"
            )
        except PipelineAbort as abort:
            pipeline.fail(abort.error)
            logger.error(f"Processing failed ({abort.error.type}): {abort.error.message}")
            result = ProcessingResult(
                success=False,
                error=abort.error,
                warnings=_merge_warnings(validations, list(validations)),
            )
        finally:
            self._finish(result)
        return result

    def validate_file_only(
        self,
        file: FileInput,
        on_progress: Optional[ProgressCallback] = None,
        document_type: Optional[str] = None,
    ) -> ValidationResult:
        """Run the pipeline up to validation without assembling a document.

        Returns:
            ValidationResult for the detected document type(s); file-level
            failures (size, format, parsing, timeout) are reported in ``error``
        """
        document_types = self._document_types(document_type)
        pipeline = self._start(file, on_progress)
        validations: Dict[str, ValidationResult] = {}
        try:
            upload = self._load(file)
            content = pipeline.read(upload)
            raw_sheets = pipeline.decode(content, upload.name)
            validations = pipeline.validate(raw_sheets, document_types)
            detected, error = self.select_document_types(
                validations, sheet_names=[s.name for s in raw_sheets]
            )
            result = _merge_results(validations, detected or list(validations))
            result.error = error
            if error is None:
                pipeline.complete("File validation complete")
            else:
                pipeline.fail(error)
        except PipelineAbort as abort:
            pipeline.fail(abort.error)
            result = _merge_results(validations, list(validations))
            result.error = abort.error
        finally:
            self._finish(None)
        return result

    def select_document_types(
        self,
        validations: Dict[str, ValidationResult],
        sheet_names: Sequence[str] = (),
    ) -> Tuple[List[str], Optional[ProcessingError]]:
        """Decide which document types a workbook satisfies.

        A type is detected when all of its non-optional sheets were found.
        Detection is independent per type, so a workbook holding sheets of
        several types is detected as all of them.

        Returns:
            Tuple of (detected types, error or None)
        """
        detected = [t for t, v in validations.items() if v.sheet_set_found]
        if not detected:
            return [], _no_schema_error(validations, sheet_names)

        failing = [t for t in detected if not validations[t].is_valid]
        if failing:
            return detected, _structural_error([validations[t] for t in failing])
        return detected, None

    def cancel(self) -> None:
        """Request cancellation; honoured at the next phase boundary."""
        if self.state.is_processing:
            logger.info(f"Cancellation requested for {self.state.file_name}")
            self.state.cancel_requested = True

    def reset(self) -> None:
        """Clear the state of the previous run."""
        self.state = ProcessingState()

    def update_config(self, **changes) -> None:
        self.config = create_custom_config(self.config, **changes)

    def get_config(self) -> FileProcessingConfig:
        return self.config

    def get_expected_sheet_names(self) -> List[str]:
        return [sheet.canonical_name for sheet in self.config.required_sheets]

    def get_expected_columns_for_sheet(self, document_type: str) -> List[str]:
        """Canonical column names expected across the sheets of a type."""
        columns: List[str] = []
        for sheet in self.config.required_sheets:
            if sheet.document_type != document_type:
                continue
            for column in sheet.required_columns:
                if column.canonical_name not in columns:
                    columns.append(column.canonical_name)
        return columns

    def _document_types(self, document_type: Optional[str]) -> List[str]:
        configured = self.config.document_types
        if document_type is None:
            return configured
        if document_type not in configured:
            raise UnknownDocumentType(f"Unknown document type: {document_type}")
        return [document_type]

    def _load(self, file: FileInput) -> UploadedFile:
        if isinstance(file, UploadedFile):
            return file
        try:
            return UploadedFile.from_path(file)
        except OSError as e:
            raise PipelineAbort.of(
                ErrorKind.PARSING,
                VALIDATION_MESSAGES["PARSING_FAILED"].format(reason=e),
                details={"file_name": str(file)},
            ) from e

    def _start(self, file: FileInput, on_progress: Optional[ProgressCallback]) -> ParsingPipeline:
        file_name = file.name if isinstance(file, (UploadedFile, Path)) else Path(str(file)).name
        self.state = ProcessingState(is_processing=True, file_name=file_name)
        state = self.state

        def observe(event: ProcessingProgress) -> None:
            state.phase = event.phase
            state.progress = event.progress
            state.message = event.message
            state.history.append(event)
            if on_progress is not None:
                on_progress(event)

        return ParsingPipeline(
            self.config,
            options=self.options,
            reader=self.reader,
            on_progress=observe,
            should_cancel=lambda: state.cancel_requested,
            clock=self.clock,
        )

    def _finish(self, result: Optional[ProcessingResult]) -> None:
        self.state.is_processing = False
        self.state.last_result = result


def _merge_warnings(validations: Dict[str, ValidationResult], document_types: Sequence[str]) -> List[str]:
    warnings: List[str] = []
    for document_type in document_types:
        for warning in validations[document_type].warnings:
            if warning not in warnings:
                warnings.append(warning)
    return warnings


def _merge_results(validations: Dict[str, ValidationResult], document_types: Sequence[str]) -> ValidationResult:
    merged = ValidationResult(
        document_type=document_types[0] if len(document_types) == 1 else None
    )
    for document_type in document_types:
        result = validations[document_type]
        merged.errors.extend(result.errors)
        merged.sheets_found.extend(result.sheets_found)
        merged.rows_processed += result.rows_processed
        merged.sheets.extend(result.sheets)
        merged.missing_mandatory_sheets.extend(result.missing_mandatory_sheets)
    merged.warnings = _merge_warnings(validations, document_types)
    return merged


def _error_details(results: Sequence[ValidationResult]) -> Dict[str, object]:
    return {
        "errors": [
            dict(asdict(error), document_type=result.document_type)
            for result in results
            for error in result.errors
        ]
    }


def _structural_error(results: Sequence[ValidationResult]) -> ProcessingError:
    """Summarise fatal validation errors as one typed error."""
    errors = [error for result in results for error in result.errors]
    for kind, error_kind in (
        (MISSING_SHEET, ErrorKind.SHEETS),
        (MISSING_COLUMN, ErrorKind.COLUMNS),
        (INVALID_DATA, ErrorKind.VALIDATION),
    ):
        matching = [error for error in errors if error.kind == kind]
        if matching:
            first = matching[0]
            message = first.message
            if len(errors) > 1:
                message += f" (and {len(errors) - 1} more problem(s))"
            return ProcessingError(
                kind=error_kind,
                message=message,
                sheet=first.sheet,
                column=first.column,
                details=_error_details(results),
            )
    return ProcessingError(kind=ErrorKind.VALIDATION, message="Validation failed",
                           details=_error_details(results))


def _no_schema_error(validations: Dict[str, ValidationResult], sheet_names: Sequence[str]) -> ProcessingError:
    """Error for a workbook that satisfies no document type."""
    partial = [v for v in validations.values() if v.sheets_found]
    if partial:
        closest = max(partial, key=lambda v: len(v.sheets_found))
        error = _structural_error([closest])
        error.details["available_sheets"] = list(sheet_names)
        return error
    return ProcessingError(
        kind=ErrorKind.SHEETS,
        message=VALIDATION_MESSAGES["NO_SCHEMA_MATCHED"].format(
            sheet_names=", ".join(sheet_names) or "none"
        ),
        details=dict(_error_details(list(validations.values())), available_sheets=list(sheet_names)),
    )
