"""Error taxonomy for file processing."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional


class ErrorKind(str, Enum):
    """Kinds of processing failure reported to callers."""

    VALIDATION = "validation"
    PARSING = "parsing"
    TIMEOUT = "timeout"
    SIZE = "size"
    FORMAT = "format"
    SHEETS = "sheets"
    COLUMNS = "columns"
    # Reported by IngestionService when a processed file cannot be persisted
    STORAGE = "storage"


@dataclass
class ProcessingError:
    """A typed processing failure.

    Attributes:
        kind: Failure category
        message: Human-readable description
        sheet: Sheet the failure relates to, if any
        column: Column the failure relates to, if any
        details: Additional context (sizes, accumulated validation errors, ...)
    """

    kind: ErrorKind
    message: str
    sheet: Optional[str] = None
    column: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)

    @property
    def type(self) -> str:
        return self.kind.value

    def to_dict(self) -> Dict[str, Any]:
        data = {"type": self.kind.value, "message": self.message}
        if self.sheet is not None:
            data["sheet"] = self.sheet
        if self.column is not None:
            data["column"] = self.column
        if self.details:
            data["details"] = self.details
        return data


class PipelineAbort(Exception):
    """Raised inside the pipeline to stop processing with a typed error."""

    def __init__(self, error: ProcessingError):
        super().__init__(error.message)
        self.error = error

    @classmethod
    def of(cls, kind: ErrorKind, message: str, **kwargs) -> "PipelineAbort":
        return cls(ProcessingError(kind=kind, message=message, **kwargs))
