"""Content-addressed storage for processed files, backed by SQLAlchemy."""

from datetime import datetime
from typing import Any, Dict, List, Optional
import json
import logging
import threading

import pandas as pd
from sqlalchemy import create_engine, delete, false, func, insert, select, true, update
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.pool import StaticPool

from prism_ingest.core.db import (
    TABLES_IN_DELETE_ORDER,
    DataVersion,
    ExportOptions,
    FileRecord,
    ProcessingStatsRecord,
    data_versions,
    file_metadata,
    json_default,
    json_serializer,
    metadata,
    processed_files,
    processed_sheets,
    processing_stats,
)
from prism_ingest.core.models import ParsedSheet, ProcessedDocument, ProcessingStats
from prism_ingest.core.preferences import ensure_application_state, write_application_state

logger = logging.getLogger(__name__)

DEFAULT_DB_URL = "sqlite:///prism_ingest.db"
EXPORT_FORMATS = ("json", "csv")
IN_MEMORY_URLS = ("sqlite://", "sqlite:///:memory:")


class DatabaseManager:
    """Storage layer for processed files, versions and application state.

    Files are de-duplicated by ``(content_hash, document_type)``. For every
    document type at most one file is active; activation and deactivation of
    siblings happen in one transaction, serialised by an in-process lock.

    Unknown ids are reported through ``False``/``None`` return values.
    Database errors are logged and re-raised.

    Args:
        db_url: SQLAlchemy database URL (``sqlite://`` for an in-memory store)
        echo: Log every SQL statement

    Example:
        >>> db = DatabaseManager("sqlite://")
        >>> file_id = db.save_file(document, content_hash, "inventory")
        >>> db.get_active_file("inventory").id == file_id
        True
    """

    def __init__(self, db_url: str = DEFAULT_DB_URL, echo: bool = False):
        self.db_url = db_url
        self.echo = echo
        self._lock = threading.RLock()
        self.engine = self._create_engine()
        metadata.create_all(self.engine)
        with self.engine.begin() as conn:
            ensure_application_state(conn)
        logger.info(f"Database manager initialized for {self._safe_url()}")

    def _create_engine(self) -> Engine:
        kwargs: Dict[str, Any] = {"echo": self.echo, "json_serializer": json_serializer}
        if self.db_url.startswith("sqlite"):
            kwargs["connect_args"] = {"check_same_thread": False}
            if self.db_url in IN_MEMORY_URLS:
                # One shared connection, otherwise each checkout sees an empty database
                kwargs["poolclass"] = StaticPool
        logger.debug(f"Creating engine for {self._safe_url()}")
        return create_engine(self.db_url, **kwargs)

    def _safe_url(self) -> str:
        if "@" not in self.db_url:
            return self.db_url
        scheme, _, rest = self.db_url.partition("://")
        return f"{scheme}://***@{rest.split('@', 1)[1]}"

    # Files

    def save_file(
        self,
        document: ProcessedDocument,
        content_hash: str,
        document_type: str,
        stats: Optional[ProcessingStats] = None,
        description: Optional[str] = None,
    ) -> int:
        """Persist a processed document as the active file of its type.

        Only the sheets of ``document_type`` are stored. Re-saving content that
        is already stored for the type reactivates the existing record.

        Args:
            document: Processed workbook
            content_hash: Digest of the workbook bytes
            document_type: Type the record is stored under
            stats: Processing statistics (derived from the sheets if omitted)
            description: Free text stored with the record

        Returns:
            Id of the new or reactivated file record
        """
        try:
            with self._lock, self.engine.begin() as conn:
                return self._insert_file(conn, document, content_hash, document_type, stats, description)
        except Exception as e:
            logger.error(f"Failed to save {document.file_name} as {document_type}: {e}")
            raise

    def save_files(
        self,
        document: ProcessedDocument,
        content_hash: str,
        document_types: List[str],
        stats: Optional[Dict[str, ProcessingStats]] = None,
    ) -> Dict[str, int]:
        """Persist one record per document type in a single transaction.

        Either every type is stored or, if any insert fails, none is.

        Args:
            document: Processed workbook holding the sheets of every type
            content_hash: Digest of the workbook bytes
            document_types: Types to store the document under
            stats: Processing statistics per type (derived if missing)

        Returns:
            Mapping of document type to file record id
        """
        stats = stats or {}
        try:
            with self._lock, self.engine.begin() as conn:
                return {
                    document_type: self._insert_file(
                        conn, document, content_hash, document_type, stats.get(document_type)
                    )
                    for document_type in document_types
                }
        except Exception as e:
            logger.error(
                f"Failed to save {document.file_name} as {', '.join(document_types)}; nothing stored: {e}"
            )
            raise

    def _insert_file(
        self,
        conn: Connection,
        document: ProcessedDocument,
        content_hash: str,
        document_type: str,
        stats: Optional[ProcessingStats] = None,
        description: Optional[str] = None,
    ) -> int:
        sheets = document.sheets_of_type(document_type)
        stats = stats or ProcessingStats.from_document(document.for_document_type(document_type))
        existing = conn.execute(
            select(file_metadata.c.id).where(
                file_metadata.c.content_hash == content_hash,
                file_metadata.c.document_type == document_type,
            )
        ).scalar()
        if existing is not None:
            self._activate(conn, existing, document_type)
            logger.info(
                f"File {document.file_name} already stored as {document_type} "
                f"record {existing}; reactivated"
            )
            return existing

        now = datetime.now()
        conn.execute(
            update(file_metadata)
            .where(file_metadata.c.document_type == document_type)
            .values(is_active=False)
        )
        file_id = conn.execute(
            insert(file_metadata).values(
                file_name=document.file_name,
                file_size=document.file_size,
                uploaded_at=now,
                processed_at=document.processed_at,
                content_hash=content_hash,
                is_active=True,
                document_type=document_type,
                version=1,
                description=description,
            )
        ).inserted_primary_key[0]

        record_id = conn.execute(
            insert(processed_files).values(
                file_metadata_id=file_id,
                file_name=document.file_name,
                file_size=document.file_size,
                processed_at=document.processed_at,
                detected_document_types=[document_type],
                version=1,
            )
        ).inserted_primary_key[0]

        if sheets:
            conn.execute(insert(processed_sheets), [
                {
                    "file_record_id": record_id,
                    "position": position,
                    "name": sheet.name,
                    "document_type": sheet.document_type,
                    "row_count": sheet.row_count,
                    "column_count": sheet.column_count,
                    "columns": list(sheet.columns),
                    "rows": [dict(row) for row in sheet.rows],
                    "warnings": list(sheet.warnings),
                    "processed_at": document.processed_at,
                }
                for position, sheet in enumerate(sheets)
            ])

        conn.execute(insert(processing_stats).values(
            file_record_id=record_id,
            total_rows=stats.total_rows,
            total_columns=stats.total_columns,
            processing_time=stats.processing_time,
            sheets_processed=stats.sheets_processed,
            validation_errors=stats.validation_errors,
            warnings=stats.warnings,
        ))

        conn.execute(insert(data_versions).values(
            file_metadata_id=file_id,
            version=1,
            created_at=now,
            description=f"Initial version of {document.file_name}",
            changes=["File uploaded and processed"],
            is_active=True,
        ))

        write_application_state(conn, active_file_id=file_id)
        logger.info(
            f"Saved {document.file_name} as active {document_type} file {file_id} "
            f"({len(sheets)} sheet(s), {stats.total_rows} row(s))"
        )
        return file_id

    def _activate(self, conn: Connection, file_id: int, document_type: str) -> None:
        conn.execute(
            update(file_metadata)
            .where(file_metadata.c.document_type == document_type)
            .values(is_active=False)
        )
        conn.execute(
            update(file_metadata).where(file_metadata.c.id == file_id).values(is_active=True)
        )
        write_application_state(conn, active_file_id=file_id)

    def switch_active_file(self, file_id: int) -> bool:
        """Make a stored file the active one of its document type.

        Returns:
            False if no file with ``file_id`` exists
        """
        with self._lock, self.engine.begin() as conn:
            document_type = conn.execute(
                select(file_metadata.c.document_type).where(file_metadata.c.id == file_id)
            ).scalar()
            if document_type is None:
                logger.warning(f"Cannot switch to unknown file id {file_id}")
                return False
            self._activate(conn, file_id, document_type)
        logger.info(f"Switched active {document_type} file to {file_id}")
        return True

    def get_file(self, file_id: int) -> Optional[FileRecord]:
        with self.engine.connect() as conn:
            row = conn.execute(
                select(file_metadata).where(file_metadata.c.id == file_id)
            ).mappings().first()
        return FileRecord.from_row(row) if row else None

    def get_active_file(self, document_type: Optional[str] = None) -> Optional[FileRecord]:
        """Active file record of a type, or the first active record of any type."""
        query = select(file_metadata).where(file_metadata.c.is_active == true())
        if document_type is not None:
            query = query.where(file_metadata.c.document_type == document_type)
        with self.engine.connect() as conn:
            row = conn.execute(query.order_by(file_metadata.c.id)).mappings().first()
        return FileRecord.from_row(row) if row else None

    def get_active_file_data(self, document_type: Optional[str] = None) -> Optional[ProcessedDocument]:
        """Load the stored document of the active file.

        Returns:
            ProcessedDocument, or None if the type has no active file
        """
        record = self.get_active_file(document_type)
        if record is None:
            logger.debug(f"No active file for document type {document_type or 'any'}")
            return None
        return self.get_file_data(record.id)

    def get_file_data(self, file_id: int) -> Optional[ProcessedDocument]:
        with self.engine.connect() as conn:
            processed = conn.execute(
                select(processed_files).where(processed_files.c.file_metadata_id == file_id)
            ).mappings().first()
            if processed is None:
                return None
            sheet_rows = conn.execute(
                select(processed_sheets)
                .where(processed_sheets.c.file_record_id == processed["id"])
                .order_by(processed_sheets.c.position, processed_sheets.c.id)
            ).mappings().all()

        sheets = [
            ParsedSheet(
                name=row["name"],
                document_type=row["document_type"],
                row_count=row["row_count"],
                column_count=row["column_count"],
                columns=tuple(row["columns"]),
                rows=tuple(row["rows"]),
                warnings=tuple(row["warnings"]),
            )
            for row in sheet_rows
        ]
        return ProcessedDocument(
            file_name=processed["file_name"],
            file_size=processed["file_size"],
            processed_at=processed["processed_at"],
            sheets=sheets,
            detected_document_types=list(processed["detected_document_types"]),
        )

    def get_processing_stats(self, file_id: int) -> Optional[ProcessingStatsRecord]:
        with self.engine.connect() as conn:
            row = conn.execute(
                select(processing_stats)
                .join(processed_files, processing_stats.c.file_record_id == processed_files.c.id)
                .where(processed_files.c.file_metadata_id == file_id)
            ).mappings().first()
        return ProcessingStatsRecord.from_row(row) if row else None

    def get_file_history(self, document_type: Optional[str] = None) -> List[FileRecord]:
        """All stored file records, newest first."""
        query = select(file_metadata).order_by(
            file_metadata.c.uploaded_at.desc(), file_metadata.c.id.desc()
        )
        if document_type is not None:
            query = query.where(file_metadata.c.document_type == document_type)
        with self.engine.connect() as conn:
            rows = conn.execute(query).mappings().all()
        return [FileRecord.from_row(row) for row in rows]

    def delete_file(self, file_id: int) -> bool:
        """Delete a file with its sheets, statistics and version history.

        No other file is activated in place of a deleted active file.

        Returns:
            False if no file with ``file_id`` exists
        """
        with self._lock, self.engine.begin() as conn:
            if not self._delete_file_rows(conn, file_id):
                logger.warning(f"Cannot delete unknown file id {file_id}")
                return False
        logger.info(f"Deleted file {file_id}")
        return True

    def _delete_file_rows(self, conn: Connection, file_id: int) -> bool:
        exists = conn.execute(
            select(file_metadata.c.id).where(file_metadata.c.id == file_id)
        ).scalar()
        if exists is None:
            return False

        record_ids = select(processed_files.c.id).where(processed_files.c.file_metadata_id == file_id)
        conn.execute(delete(processed_sheets).where(processed_sheets.c.file_record_id.in_(record_ids)))
        conn.execute(delete(processing_stats).where(processing_stats.c.file_record_id.in_(record_ids)))
        conn.execute(delete(processed_files).where(processed_files.c.file_metadata_id == file_id))
        conn.execute(delete(data_versions).where(data_versions.c.file_metadata_id == file_id))
        conn.execute(delete(file_metadata).where(file_metadata.c.id == file_id))

        state = ensure_application_state(conn)
        if state.active_file_id == file_id:
            write_application_state(conn, active_file_id=None)
        return True

    def delete_inactive_files(self, document_type: Optional[str] = None) -> int:
        """Delete every inactive file, optionally restricted to one type.

        Returns:
            Number of files deleted
        """
        query = select(file_metadata.c.id).where(file_metadata.c.is_active == false())
        if document_type is not None:
            query = query.where(file_metadata.c.document_type == document_type)
        with self._lock, self.engine.begin() as conn:
            file_ids = list(conn.execute(query).scalars())
            for file_id in file_ids:
                self._delete_file_rows(conn, file_id)
        logger.info(f"Deleted {len(file_ids)} inactive file(s)")
        return len(file_ids)

    # Versions

    def create_data_version(
        self, file_id: int, description: str, changes: Optional[List[str]] = None
    ) -> Optional[int]:
        """Append a new version to a file's history and make it the active one.

        Returns:
            Id of the new version, or None if the file does not exist
        """
        with self._lock, self.engine.begin() as conn:
            exists = conn.execute(
                select(file_metadata.c.id).where(file_metadata.c.id == file_id)
            ).scalar()
            if exists is None:
                logger.warning(f"Cannot create a version for unknown file id {file_id}")
                return None
            latest = conn.execute(
                select(func.max(data_versions.c.version)).where(data_versions.c.file_metadata_id == file_id)
            ).scalar() or 0
            conn.execute(
                update(data_versions)
                .where(data_versions.c.file_metadata_id == file_id)
                .values(is_active=False)
            )
            version_id = conn.execute(insert(data_versions).values(
                file_metadata_id=file_id,
                version=latest + 1,
                created_at=datetime.now(),
                description=description,
                changes=list(changes or []),
                is_active=True,
            )).inserted_primary_key[0]
            conn.execute(
                update(file_metadata).where(file_metadata.c.id == file_id).values(version=latest + 1)
            )
        logger.info(f"Created version {latest + 1} for file {file_id}")
        return version_id

    def get_data_versions(self, file_id: int) -> List[DataVersion]:
        """Version history of a file, newest first."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                select(data_versions)
                .where(data_versions.c.file_metadata_id == file_id)
                .order_by(data_versions.c.version.desc())
            ).mappings().all()
        return [DataVersion.from_row(row) for row in rows]

    # Export and maintenance

    def export_data(self, options: Optional[ExportOptions] = None) -> str:
        """Serialise every stored file.

        JSON exports hold ``{"exportDate", "files": [{"metadata", "sheets",
        "processingStats"}]}``; CSV exports hold one line per data row with the
        file and sheet it came from.

        Raises:
            ValueError: If ``options.format`` is not supported
        """
        options = options or ExportOptions()
        if options.format not in EXPORT_FORMATS:
            raise ValueError(
                f"Unsupported export format: {options.format} (expected one of {', '.join(EXPORT_FORMATS)})"
            )

        records = self.get_file_history()
        if options.date_range is not None:
            start, end = options.date_range
            records = [
                record for record in records
                if (start is None or record.uploaded_at >= start)
                and (end is None or record.uploaded_at <= end)
            ]
        records.sort(key=lambda record: record.id)

        if options.format == "csv":
            return self._export_csv(records, options)

        files = []
        for record in records:
            document = self.get_file_data(record.id)
            entry: Dict[str, Any] = {
                "metadata": record.to_dict() if options.include_metadata else {
                    "file_name": record.file_name,
                    "document_type": record.document_type,
                },
                "sheets": [sheet.to_dict() for sheet in document.sheets] if document else [],
            }
            if options.include_processing_stats:
                stats = self.get_processing_stats(record.id)
                entry["processingStats"] = stats.to_dict() if stats else None
            files.append(entry)

        logger.info(f"Exported {len(files)} file(s) as json")
        return json.dumps(
            {"exportDate": datetime.now().isoformat(), "files": files},
            indent=2,
            default=json_default,
        )

    def _export_csv(self, records: List[FileRecord], options: ExportOptions) -> str:
        frames = []
        for record in records:
            document = self.get_file_data(record.id)
            if document is None:
                continue
            stats = self.get_processing_stats(record.id) if options.include_processing_stats else None
            for sheet in document.sheets:
                df = sheet.to_dataframe()
                df.insert(0, "sheet", sheet.name)
                df.insert(0, "document_type", record.document_type)
                df.insert(0, "file_name", record.file_name)
                if options.include_metadata:
                    df.insert(0, "file_id", record.id)
                    df["content_hash"] = record.content_hash
                    df["uploaded_at"] = record.uploaded_at.isoformat()
                    df["is_active"] = record.is_active
                if stats is not None:
                    df["total_rows"] = stats.total_rows
                    df["processing_time"] = stats.processing_time
                frames.append(df)

        if not frames:
            return ""
        logger.info(f"Exported {len(records)} file(s) as csv")
        return pd.concat(frames, ignore_index=True, sort=False).to_csv(index=False)

    def clear_all_data(self) -> None:
        """Delete every stored row, preferences and application state included."""
        with self._lock, self.engine.begin() as conn:
            for table in TABLES_IN_DELETE_ORDER:
                conn.execute(delete(table))
            ensure_application_state(conn)
        logger.info("Cleared all stored data")

    def get_database_stats(self) -> Dict[str, Any]:
        with self.engine.connect() as conn:
            total_files = conn.execute(select(func.count()).select_from(file_metadata)).scalar()
            total_sheets = conn.execute(select(func.count()).select_from(processed_sheets)).scalar()
            total_rows = conn.execute(select(func.sum(processed_sheets.c.row_count))).scalar()
            total_size = conn.execute(select(func.sum(file_metadata.c.file_size))).scalar()
            state = ensure_application_state(conn)
        return {
            "total_files": total_files,
            "total_sheets": total_sheets,
            "total_data_rows": total_rows or 0,
            "total_storage_size": total_size or 0,
            "last_activity": state.last_active_at,
        }

    def cleanup_orphans(self) -> Dict[str, int]:
        """Remove rows whose parent record no longer exists.

        Returns:
            Number of rows removed per table
        """
        removed = {}
        with self._lock, self.engine.begin() as conn:
            file_ids = select(file_metadata.c.id)
            removed["processed_files"] = conn.execute(
                delete(processed_files).where(processed_files.c.file_metadata_id.not_in(file_ids))
            ).rowcount
            removed["data_versions"] = conn.execute(
                delete(data_versions).where(data_versions.c.file_metadata_id.not_in(file_ids))
            ).rowcount
            record_ids = select(processed_files.c.id)
            removed["processed_sheets"] = conn.execute(
                delete(processed_sheets).where(processed_sheets.c.file_record_id.not_in(record_ids))
            ).rowcount
            removed["processing_stats"] = conn.execute(
                delete(processing_stats).where(processing_stats.c.file_record_id.not_in(record_ids))
            ).rowcount

            state = ensure_application_state(conn)
            if state.active_file_id is not None and conn.execute(
                select(file_metadata.c.id).where(file_metadata.c.id == state.active_file_id)
            ).scalar() is None:
                write_application_state(conn, active_file_id=None)

        if any(removed.values()):
            logger.warning(f"Removed orphaned rows: {removed}")
        return removed

    def close(self) -> None:
        """Close database connection."""
        if self.engine:
            self.engine.dispose()
