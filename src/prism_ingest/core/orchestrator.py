"""Ingestion service coordinating processing, storage and preferences.

This module is the single entry point for presentation code:
1. Workbook processing with progress reporting
2. Persistence of one active file per document type
3. Queries over stored files and their history
4. User preferences
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional
import logging

from sqlalchemy.exc import SQLAlchemyError

from prism_ingest.core.config import Settings
from prism_ingest.core.database_manager import DatabaseManager
from prism_ingest.core.db import FileRecord
from prism_ingest.core.errors import ErrorKind, ProcessingError
from prism_ingest.core.models import ParsedSheet, ProcessedDocument, ProcessingResult, ProcessingStats
from prism_ingest.core.pipeline import ProgressCallback
from prism_ingest.core.preferences import PreferenceStore
from prism_ingest.core.processor import FileInput, FileProcessor
from prism_ingest.core.validation import ValidationResult
from prism_ingest.schemas.registry import DOCUMENT_TYPES

logger = logging.getLogger(__name__)


@dataclass
class IngestionResult:
    """Processing outcome plus the ids of the records it was stored as.

    ``file_ids`` maps each detected document type to its file record id and
    is empty when processing failed.
    """

    processing: ProcessingResult
    file_ids: Dict[str, int] = field(default_factory=dict)
    storage_error: Optional[ProcessingError] = None

    @property
    def success(self) -> bool:
        return self.processing.success and self.storage_error is None

    @property
    def error(self) -> Optional[ProcessingError]:
        return self.storage_error or self.processing.error


class IngestionService:
    """Processes uploaded workbooks and keeps the stored files current.

    Each instance owns one FileProcessor and therefore handles one file at a
    time. The DatabaseManager may be shared between services.

    Args:
        db_manager: Storage for processed files
        processor: Workbook processor (default: every registered document type)
        preferences: Preference store (default: one on ``db_manager``)

    Example:
        >>> service = IngestionService(DatabaseManager("sqlite://"))
        >>> outcome = service.ingest_file(Path("stock.xlsx"))
        >>> service.get_active_file_data("inventory").sheets[0].row_count
        3
    """

    def __init__(
        self,
        db_manager: DatabaseManager,
        processor: Optional[FileProcessor] = None,
        preferences: Optional[PreferenceStore] = None,
    ):
        self.db_manager = db_manager
        self.processor = processor or FileProcessor()
        self.preferences = preferences or PreferenceStore(db_manager)
        self.session_stats = {
            "files_ingested": 0,
            "files_failed": 0,
            "records_saved": 0,
            "start_time": datetime.now(),
        }
        logger.info("Initialized ingestion service")

    @classmethod
    def from_settings(cls, settings: Settings) -> "IngestionService":
        db_manager = DatabaseManager(settings.db_url)
        return cls(db_manager, processor=FileProcessor(config=settings.file_config()))

    def ingest_file(
        self,
        file: FileInput,
        document_type: Optional[str] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> IngestionResult:
        """Process a workbook and, on success, store it per detected type.

        Nothing is written when processing fails. All detected types are
        stored in one transaction, so a storage failure leaves no record
        behind and is reported as a ``storage`` error.

        Args:
            file: UploadedFile or path of the workbook
            document_type: Restrict detection to one document type
            on_progress: Observer receiving progress events

        Returns:
            IngestionResult with the stored record id per document type
        """
        result = self.processor.process_file(file, on_progress=on_progress, document_type=document_type)
        if not result.success:
            self.session_stats["files_failed"] += 1
            logger.warning(f"Nothing stored for {self.processor.state.file_name}: {result.error.message}")
            return IngestionResult(processing=result)

        document = result.data
        stats = {
            detected_type: ProcessingStats.from_document(
                document.for_document_type(detected_type),
                processing_time=result.stats.processing_time,
            )
            for detected_type in document.detected_document_types
        }
        try:
            file_ids = self.db_manager.save_files(
                document, result.content_hash, document.detected_document_types, stats=stats
            )
        except SQLAlchemyError as e:
            logger.error(f"Failed to store {document.file_name}: {e}", exc_info=True)
            self.session_stats["files_failed"] += 1
            return IngestionResult(
                processing=result,
                storage_error=ProcessingError(
                    kind=ErrorKind.STORAGE,
                    message=f"Processed file could not be stored: {e}",
                    details={"document_types": list(document.detected_document_types)},
                ),
            )

        self.session_stats["files_ingested"] += 1
        self.session_stats["records_saved"] += len(file_ids)
        logger.info(f"Ingested {document.file_name} as {', '.join(file_ids)}")
        return IngestionResult(processing=result, file_ids=file_ids)

    def validate_file(self, file: FileInput, document_type: Optional[str] = None) -> ValidationResult:
        """Validate a workbook without storing anything."""
        return self.processor.validate_file_only(file, document_type=document_type)

    def cancel(self) -> None:
        self.processor.cancel()

    def get_active_file_data(self, document_type: Optional[str] = None) -> Optional[ProcessedDocument]:
        return self.db_manager.get_active_file_data(document_type)

    def get_file_history(self, document_type: Optional[str] = None) -> List[FileRecord]:
        return self.db_manager.get_file_history(document_type)

    def switch_active_file(self, file_id: int) -> bool:
        return self.db_manager.switch_active_file(file_id)

    def delete_file(self, file_id: int) -> bool:
        return self.db_manager.delete_file(file_id)

    def has_data(self, document_type: Optional[str] = None) -> bool:
        """True if an active file exists for the type (or for any type)."""
        return self.db_manager.get_active_file(document_type) is not None

    def get_detected_document_types(self) -> List[str]:
        """Document types that currently have an active file."""
        return [t for t in DOCUMENT_TYPES if self.has_data(t)]

    def get_sheets_by_type(self, document_type: str) -> List[ParsedSheet]:
        document = self.get_active_file_data(document_type)
        return document.sheets_of_type(document_type) if document else []

    def get_preference(self, key: str, default: Any = None) -> Any:
        return self.preferences.get_preference(key, default)

    def set_preference(self, key: str, value: Any) -> None:
        self.preferences.set_preference(key, value)

    def generate_summary(self) -> Dict[str, Any]:
        """Session counters combined with the database statistics."""
        return {
            **self.session_stats,
            "active_document_types": self.get_detected_document_types(),
            "database": self.db_manager.get_database_stats(),
        }

    def close(self):
        """Close database connections and clean up resources."""
        logger.info("Closing ingestion service and database connections")
        self.db_manager.close()
