"""Processing, storage and session components."""

from prism_ingest.core.errors import ErrorKind, ProcessingError
from prism_ingest.core.models import (
    ParsedSheet,
    ProcessedDocument,
    ProcessingProgress,
    ProcessingResult,
    ProcessingStats,
)

__all__ = [
    "ErrorKind",
    "ProcessingError",
    "ParsedSheet",
    "ProcessedDocument",
    "ProcessingProgress",
    "ProcessingResult",
    "ProcessingStats",
]
