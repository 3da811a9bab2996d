"""PRISM Ingest - validation and storage of inventory and OSR workbooks.

This package turns uploaded Excel workbooks into typed, validated sheet data
and keeps one active file per document type in a local store.

Main components:
- schemas: Sheet and column schemas, aliases and validation rules
- core: Reader, validation, pipeline, processor, storage and preferences
"""

__version__ = "0.1.0"

from prism_ingest.core.processor import FileProcessor
from prism_ingest.core.database_manager import DatabaseManager
from prism_ingest.core.orchestrator import IngestionResult, IngestionService
from prism_ingest.core.preferences import PreferenceStore
from prism_ingest.core.reader import ExcelReader, UploadedFile
from prism_ingest.core.versioning import generate_file_hash

__all__ = [
    "FileProcessor",
    "DatabaseManager",
    "IngestionResult",
    "IngestionService",
    "PreferenceStore",
    "ExcelReader",
    "UploadedFile",
    "generate_file_hash",
]
