"""In-memory result structures produced by file processing."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple
import logging

import pandas as pd

from prism_ingest.core.errors import ProcessingError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ParsedSheet:
    """One matched sheet, with rows keyed by canonical column name.

    Produced once per matched sheet and never mutated afterwards.
    """

    name: str
    document_type: str
    row_count: int
    column_count: int
    columns: Tuple[str, ...]
    rows: Tuple[Dict[str, Any], ...]
    warnings: Tuple[str, ...] = ()

    def to_dataframe(self) -> pd.DataFrame:
        """Return the sheet rows as a DataFrame in column order."""
        return pd.DataFrame(list(self.rows), columns=list(self.columns))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "type": self.document_type,
            "rowCount": self.row_count,
            "columnCount": self.column_count,
            "columns": list(self.columns),
            "data": [dict(row) for row in self.rows],
            "warnings": list(self.warnings),
        }


@dataclass
class ProcessedDocument:
    """A fully processed workbook ready to be persisted."""

    file_name: str
    file_size: int
    processed_at: datetime
    sheets: List[ParsedSheet]
    detected_document_types: List[str]

    def sheets_of_type(self, document_type: str) -> List[ParsedSheet]:
        return [sheet for sheet in self.sheets if sheet.document_type == document_type]

    def for_document_type(self, document_type: str) -> "ProcessedDocument":
        """Return a copy restricted to the sheets of one document type."""
        return ProcessedDocument(
            file_name=self.file_name,
            file_size=self.file_size,
            processed_at=self.processed_at,
            sheets=self.sheets_of_type(document_type),
            detected_document_types=[document_type],
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "fileName": self.file_name,
            "fileSize": self.file_size,
            "processedAt": self.processed_at.isoformat(),
            "sheets": [sheet.to_dict() for sheet in self.sheets],
            "detectedDocumentTypes": list(self.detected_document_types),
        }


@dataclass(frozen=True)
class ProcessingProgress:
    """Progress event emitted at each pipeline phase transition."""

    phase: str
    progress: float
    message: str
    current_sheet: Optional[str] = None
    total_sheets: Optional[int] = None
    processed_sheets: Optional[int] = None


@dataclass
class ProcessingStats:
    """Summary figures for one processed file."""

    total_rows: int = 0
    total_columns: int = 0
    processing_time: float = 0.0
    sheets_processed: int = 0
    validation_errors: int = 0
    warnings: int = 0

    @classmethod
    def from_document(cls, document: ProcessedDocument, processing_time: float = 0.0) -> "ProcessingStats":
        return cls(
            total_rows=sum(sheet.row_count for sheet in document.sheets),
            total_columns=sum(sheet.column_count for sheet in document.sheets),
            processing_time=processing_time,
            sheets_processed=len(document.sheets),
            validation_errors=0,
            warnings=sum(len(sheet.warnings) for sheet in document.sheets),
        )


@dataclass
class ProcessingResult:
    """Outcome of processing one file."""

    success: bool
    data: Optional[ProcessedDocument] = None
    error: Optional[ProcessingError] = None
    warnings: List[str] = field(default_factory=list)
    stats: Optional[ProcessingStats] = None
    content_hash: Optional[str] = None


@dataclass
class ProcessingState:
    """Per-processor state observed by the owning caller."""

    is_processing: bool = False
    file_name: Optional[str] = None
    phase: Optional[str] = None
    progress: float = 0.0
    message: str = ""
    cancel_requested: bool = False
    last_result: Optional[ProcessingResult] = None
    history: List[ProcessingProgress] = field(default_factory=list)
