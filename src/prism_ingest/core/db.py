"""Persisted record structures and the table layout backing them."""

from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional
import json
import logging

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    true,
)

logger = logging.getLogger(__name__)

metadata = MetaData()

file_metadata = Table(
    "file_metadata",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("file_name", String(255), nullable=False),
    Column("file_size", Integer, nullable=False),
    Column("uploaded_at", DateTime, nullable=False),
    Column("processed_at", DateTime, nullable=False),
    Column("content_hash", String(64), nullable=False, index=True),
    Column("is_active", Boolean, nullable=False, default=False, index=True),
    Column("document_type", String(32), nullable=False, index=True),
    Column("version", Integer, nullable=False, default=1),
    Column("description", String(500)),
    Index("ix_file_metadata_hash_type", "content_hash", "document_type", unique=True),
)

# At most one active file per document type, enforced by the database too.
Index(
    "uq_file_metadata_active_per_type",
    file_metadata.c.document_type,
    unique=True,
    sqlite_where=file_metadata.c.is_active == true(),
    postgresql_where=file_metadata.c.is_active == true(),
)

processed_files = Table(
    "processed_files",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("file_metadata_id", Integer, ForeignKey("file_metadata.id"), nullable=False, index=True),
    Column("file_name", String(255), nullable=False),
    Column("file_size", Integer, nullable=False),
    Column("processed_at", DateTime, nullable=False),
    Column("detected_document_types", JSON, nullable=False),
    Column("version", Integer, nullable=False, default=1),
)

processed_sheets = Table(
    "processed_sheets",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("file_record_id", Integer, ForeignKey("processed_files.id"), nullable=False, index=True),
    Column("position", Integer, nullable=False, default=0),
    Column("name", String(255), nullable=False),
    Column("document_type", String(32), nullable=False),
    Column("row_count", Integer, nullable=False),
    Column("column_count", Integer, nullable=False),
    Column("columns", JSON, nullable=False),
    Column("rows", JSON, nullable=False),
    Column("warnings", JSON, nullable=False),
    Column("processed_at", DateTime, nullable=False),
)

processing_stats = Table(
    "processing_stats",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("file_record_id", Integer, ForeignKey("processed_files.id"), nullable=False, index=True),
    Column("total_rows", Integer, nullable=False, default=0),
    Column("total_columns", Integer, nullable=False, default=0),
    Column("processing_time", Float, nullable=False, default=0.0),
    Column("sheets_processed", Integer, nullable=False, default=0),
    Column("validation_errors", Integer, nullable=False, default=0),
    Column("warnings", Integer, nullable=False, default=0),
)

user_preferences = Table(
    "user_preferences",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("key", String(255), nullable=False, unique=True),
    Column("value", JSON),
    Column("updated_at", DateTime, nullable=False),
    Column("version", Integer, nullable=False, default=1),
)

data_versions = Table(
    "data_versions",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("file_metadata_id", Integer, ForeignKey("file_metadata.id"), nullable=False, index=True),
    Column("version", Integer, nullable=False),
    Column("created_at", DateTime, nullable=False),
    Column("description", String(500)),
    Column("changes", JSON, nullable=False),
    Column("is_active", Boolean, nullable=False, default=True),
    Index("ix_data_versions_file_version", "file_metadata_id", "version", unique=True),
)

application_state = Table(
    "application_state",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("active_file_id", Integer),
    Column("last_active_at", DateTime, nullable=False),
    Column("preferences", JSON, nullable=False),
    Column("version", Integer, nullable=False, default=1),
)

# Children before parents; the order cascading deletes must follow.
TABLES_IN_DELETE_ORDER = (
    processed_sheets,
    processing_stats,
    processed_files,
    data_versions,
    file_metadata,
    user_preferences,
    application_state,
)


def json_default(value: Any) -> Any:
    """Serialise values the json module does not handle natively."""
    if isinstance(value, datetime):
        return value.isoformat()
    if hasattr(value, "isoformat"):
        return value.isoformat()
    if hasattr(value, "item"):
        return value.item()
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def json_serializer(value: Any) -> str:
    return json.dumps(value, default=json_default)


@dataclass
class FileRecord:
    """Metadata of one stored file for one document type.

    This corresponds to one row in the file_metadata table.
    """

    id: int
    file_name: str
    file_size: int
    uploaded_at: datetime
    processed_at: datetime
    content_hash: str
    is_active: bool
    document_type: str
    version: int = 1
    description: Optional[str] = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "FileRecord":
        return cls(
            id=row["id"],
            file_name=row["file_name"],
            file_size=row["file_size"],
            uploaded_at=row["uploaded_at"],
            processed_at=row["processed_at"],
            content_hash=row["content_hash"],
            is_active=bool(row["is_active"]),
            document_type=row["document_type"],
            version=row["version"],
            description=row["description"],
        )

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["uploaded_at"] = self.uploaded_at.isoformat()
        data["processed_at"] = self.processed_at.isoformat()
        return data


@dataclass
class ProcessingStatsRecord:
    """Processing statistics stored alongside a file."""

    id: int
    file_record_id: int
    total_rows: int
    total_columns: int
    processing_time: float
    sheets_processed: int
    validation_errors: int
    warnings: int

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "ProcessingStatsRecord":
        return cls(**{name: row[name] for name in cls.__dataclass_fields__})

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class DataVersion:
    """One entry of a file's version history."""

    id: int
    file_record_id: int
    version: int
    created_at: datetime
    description: Optional[str]
    changes: List[str]
    is_active: bool

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "DataVersion":
        return cls(
            id=row["id"],
            file_record_id=row["file_metadata_id"],
            version=row["version"],
            created_at=row["created_at"],
            description=row["description"],
            changes=list(row["changes"] or []),
            is_active=bool(row["is_active"]),
        )


@dataclass
class Preference:
    """A user preference; keys are unique."""

    key: str
    value: Any
    updated_at: datetime
    version: int

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Preference":
        return cls(
            key=row["key"],
            value=row["value"],
            updated_at=row["updated_at"],
            version=row["version"],
        )


@dataclass
class ApplicationState:
    """Singleton record describing the current application session."""

    last_active_at: datetime
    active_file_id: Optional[int] = None
    preferences: Dict[str, Any] = field(default_factory=dict)
    version: int = 1

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "ApplicationState":
        return cls(
            last_active_at=row["last_active_at"],
            active_file_id=row["active_file_id"],
            preferences=dict(row["preferences"] or {}),
            version=row["version"],
        )


@dataclass
class ExportOptions:
    """Options for ``DatabaseManager.export_data``.

    Attributes:
        include_metadata: Export the full file record instead of name and type
        include_processing_stats: Add the stored processing statistics
        format: 'json' or 'csv'
        date_range: Optional (start, end) bounds on upload time, inclusive
    """

    include_metadata: bool = True
    include_processing_stats: bool = True
    format: str = "json"
    date_range: Optional[tuple] = None
