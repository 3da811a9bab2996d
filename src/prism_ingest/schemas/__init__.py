"""Schema registry and cell validation rules."""

from prism_ingest.schemas.registry import (
    INVENTORY,
    OSR,
    DOCUMENT_TYPES,
    ColumnSchema,
    DocumentSchema,
    FileProcessingConfig,
    SheetSchema,
    UnknownDocumentType,
    ValidationRule,
    get_config_for_file_type,
    get_schema,
)

__all__ = [
    "INVENTORY",
    "OSR",
    "DOCUMENT_TYPES",
    "ColumnSchema",
    "DocumentSchema",
    "FileProcessingConfig",
    "SheetSchema",
    "UnknownDocumentType",
    "ValidationRule",
    "get_config_for_file_type",
    "get_schema",
]
