"""Phase-driven parsing pipeline with progress reporting.

Phases run in order ``reading -> parsing -> validating -> processing ->
complete``; any phase may end in ``error``. Every transition is reported to
the observer as a ProcessingProgress whose ``progress`` never decreases within
one run. Deadline and cancellation checks happen at phase boundaries and
between sheets; a workbook decode in flight is never interrupted.
"""

from datetime import datetime
from typing import Callable, Dict, List, Optional, Sequence
import logging
import time

from prism_ingest.core.errors import ErrorKind, PipelineAbort, ProcessingError
from prism_ingest.core.models import ParsedSheet, ProcessedDocument, ProcessingProgress
from prism_ingest.core.reader import ExcelReader, RawSheet, UploadedFile, WorkbookDecodeError
from prism_ingest.core.validation import ValidationOptions, ValidationResult, validate_workbook
from prism_ingest.schemas.registry import (
    VALIDATION_MESSAGES,
    FileProcessingConfig,
    validate_file_extension,
    validate_file_size,
)

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[ProcessingProgress], None]

READING_PROGRESS = 10
PARSING_PROGRESS = 25
VALIDATING_PROGRESS = 40
PROCESSING_PROGRESS = 60
PROCESSING_SPAN = 30
COMPLETE_PROGRESS = 100


class ParsingPipeline:
    """Runs one file through the processing phases.

    A pipeline instance is bound to a single run; create a new one per file.

    Args:
        config: Limits and schemas to apply
        options: Validation switches
        reader: Workbook decoder
        on_progress: Observer receiving progress events
        should_cancel: Polled at phase boundaries; returning True aborts the run
        clock: Monotonic clock in seconds
    """

    def __init__(
        self,
        config: FileProcessingConfig,
        options: Optional[ValidationOptions] = None,
        reader: Optional[ExcelReader] = None,
        on_progress: Optional[ProgressCallback] = None,
        should_cancel: Optional[Callable[[], bool]] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config
        self.options = options or ValidationOptions()
        self.reader = reader or ExcelReader(data_only=True, read_only=True)
        self.on_progress = on_progress
        self.should_cancel = should_cancel
        self.clock = clock
        self.phase: Optional[str] = None
        self.progress: float = 0
        self.started_at = clock()

    @property
    def elapsed(self) -> float:
        return self.clock() - self.started_at

    def emit(self, phase: str, progress: float, message: str, **extra) -> ProcessingProgress:
        """Report a phase transition to the observer."""
        self.phase = phase
        self.progress = max(self.progress, progress)
        event = ProcessingProgress(phase=phase, progress=self.progress, message=message, **extra)
        logger.debug(f"[{phase}] {self.progress:.0f}% {message}")
        if self.on_progress is not None:
            self.on_progress(event)
        return event

    def checkpoint(self) -> None:
        """Abort if the run was cancelled or ran past its time budget."""
        if self.should_cancel is not None and self.should_cancel():
            raise PipelineAbort.of(
                ErrorKind.PARSING,
                VALIDATION_MESSAGES["PROCESSING_CANCELLED"],
                details={"cancelled": True, "phase": self.phase},
            )
        if self.elapsed > self.config.processing_timeout:
            raise PipelineAbort.of(
                ErrorKind.TIMEOUT,
                VALIDATION_MESSAGES["FILE_PROCESSING_TIMEOUT"],
                details={
                    "elapsed": round(self.elapsed, 3),
                    "timeout": self.config.processing_timeout,
                    "phase": self.phase,
                },
            )

    def fail(self, error: ProcessingError) -> None:
        """Move to the terminal error phase without retracting progress."""
        self.emit("error", self.progress, error.message)

    def check_file(self, file: UploadedFile) -> None:
        """Reject files that are too large or of an unsupported type."""
        if not validate_file_size(file.size, self.config.max_file_size):
            raise PipelineAbort.of(
                ErrorKind.SIZE,
                VALIDATION_MESSAGES["FILE_SIZE_EXCEEDED"],
                details={"file_size": file.size, "max_size": self.config.max_file_size},
            )
        if not validate_file_extension(file.name, self.config.allowed_extensions):
            raise PipelineAbort.of(
                ErrorKind.FORMAT,
                VALIDATION_MESSAGES["INVALID_FILE_TYPE"].format(
                    extensions=", ".join(self.config.allowed_extensions)
                ),
                details={
                    "file_name": file.name,
                    "allowed_extensions": list(self.config.allowed_extensions),
                },
            )

    def read(self, file: UploadedFile) -> bytes:
        self.emit("reading", READING_PROGRESS, f"Reading {file.name}...")
        self.check_file(file)
        self.checkpoint()
        return file.content

    def decode(self, content: bytes, file_name: str) -> List[RawSheet]:
        self.emit("parsing", PARSING_PROGRESS, "Parsing Excel workbook...")
        try:
            raw_sheets = self.reader.decode(content, file_name)
        except WorkbookDecodeError as e:
            raise PipelineAbort.of(
                ErrorKind.PARSING,
                VALIDATION_MESSAGES["PARSING_FAILED"].format(reason=e),
                details={"file_name": file_name},
            ) from e
        self.checkpoint()
        return raw_sheets

    def validate(
        self, raw_sheets: Sequence[RawSheet], document_types: Optional[Sequence[str]] = None
    ) -> Dict[str, ValidationResult]:
        """Validate the workbook independently against each document type."""
        self.emit(
            "validating", VALIDATING_PROGRESS, "Validating file structure...",
            total_sheets=len(raw_sheets),
        )
        document_types = list(document_types or self.config.document_types)
        results = {}
        for document_type in document_types:
            schema = self.config.schema_for(document_type)
            claimed_elsewhere = [
                raw.name for raw in raw_sheets
                if schema.find_sheet(raw.name) is None and any(
                    sheet.matches(raw.name) for sheet in self.config.required_sheets
                )
            ]
            results[document_type] = validate_workbook(
                raw_sheets, schema, self.options, ignore_sheets=claimed_elsewhere
            )
            self.checkpoint()
        return results

    def process(
        self,
        file: UploadedFile,
        validations: Dict[str, ValidationResult],
        document_types: Sequence[str],
    ) -> ProcessedDocument:
        """Assemble the ProcessedDocument from the validated sheets."""
        sheets: List[ParsedSheet] = [
            sheet
            for document_type in document_types
            for sheet in validations[document_type].sheets
        ]
        total = len(sheets)
        self.emit(
            "processing", PROCESSING_PROGRESS, "Processing sheet data...",
            total_sheets=total, processed_sheets=0,
        )
        for count, sheet in enumerate(sheets):
            self.checkpoint()
            self.emit(
                "processing",
                PROCESSING_PROGRESS + (count / total) * PROCESSING_SPAN,
                f"Processing sheet: {sheet.name}...",
                current_sheet=sheet.name,
                total_sheets=total,
                processed_sheets=count,
            )
        self.checkpoint()
        return ProcessedDocument(
            file_name=file.name,
            file_size=file.size,
            processed_at=datetime.now(),
            sheets=sheets,
            detected_document_types=list(document_types),
        )

    def complete(self, message: str = "File processing complete") -> None:
        self.emit("complete", COMPLETE_PROGRESS, message)
