"""Main entry point for the workbook ingestion tool.

This module can be run directly as:
    python -m prism_ingest

Or via the installed command:
    prism-ingest

Quick Start:
    Validate a workbook without storing it:

        prism-ingest validate stock.xlsx

    Ingest it and make it the active inventory file:

        prism-ingest ingest stock.xlsx

    Settings are read from the environment, optionally from a .env file
    passed with --env-file (see prism_ingest.core.config).
"""

import argparse
import logging
import sys
from dataclasses import replace
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from prism_ingest.core.config import load_settings
from prism_ingest.core.db import ExportOptions
from prism_ingest.core.models import ProcessingProgress
from prism_ingest.core.orchestrator import IngestionService
from prism_ingest.schemas.registry import DOCUMENT_TYPES

logger = logging.getLogger(__name__)


def setup_logging(verbose: bool = False, level: str = "INFO") -> None:
    """Configure logging for the application.

    Args:
        verbose: If True, set log level to DEBUG, otherwise ``level``
        level: Log level name used when not verbose
    """
    log_level = logging.DEBUG if verbose else getattr(logging, level, logging.INFO)
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def log_progress(event: ProcessingProgress) -> None:
    logger.info(f"[{event.progress:5.1f}%] {event.phase}: {event.message}")


def ingest(service: IngestionService, args: argparse.Namespace) -> int:
    outcome = service.ingest_file(Path(args.file), document_type=args.type, on_progress=log_progress)
    result = outcome.processing

    for warning in result.warnings:
        logger.warning(warning)
    if not outcome.success:
        logger.error(f"Ingestion failed ({outcome.error.type}): {outcome.error.message}")
        return 1

    logger.info("=" * 60)
    logger.info("INGESTION SUMMARY")
    logger.info("=" * 60)
    logger.info(f"File: {result.data.file_name}")
    logger.info(f"Document types: {', '.join(result.data.detected_document_types)}")
    for sheet in result.data.sheets:
        logger.info(f"Sheet {sheet.name}: {sheet.row_count} rows, {sheet.column_count} columns")
    for document_type, file_id in outcome.file_ids.items():
        logger.info(f"Stored as {document_type} file {file_id}")
    logger.info(f"Processing time: {result.stats.processing_time:.2f}s")
    logger.info("=" * 60)
    return 0


def validate(service: IngestionService, args: argparse.Namespace) -> int:
    result = service.validate_file(Path(args.file), document_type=args.type)
    for warning in result.warnings:
        logger.warning(warning)
    for error in result.errors:
        logger.error(f"{error.kind}: {error.message}")
    if result.error is not None:
        logger.error(f"Validation failed ({result.error.type}): {result.error.message}")
        return 1
    logger.info(
        f"Validation passed: {len(result.sheets_found)} sheet(s), {result.rows_processed} row(s)"
    )
    return 0


def history(service: IngestionService, args: argparse.Namespace) -> int:
    records = service.get_file_history(args.type)
    if not records:
        logger.info("No files stored")
        return 0
    for record in records:
        marker = "*" if record.is_active else " "
        print(
            f"{marker} {record.id:>5}  {record.document_type:<10} v{record.version:<3} "
            f"{record.uploaded_at:%Y-%m-%d %H:%M:%S}  {record.file_name}"
        )
    return 0


def switch(service: IngestionService, args: argparse.Namespace) -> int:
    if not service.switch_active_file(args.file_id):
        logger.error(f"No file with id {args.file_id}")
        return 1
    logger.info(f"File {args.file_id} is now active")
    return 0


def delete(service: IngestionService, args: argparse.Namespace) -> int:
    if not service.delete_file(args.file_id):
        logger.error(f"No file with id {args.file_id}")
        return 1
    logger.info(f"Deleted file {args.file_id}")
    return 0


def versions(service: IngestionService, args: argparse.Namespace) -> int:
    db_manager = service.db_manager
    if args.create:
        version_id = db_manager.create_data_version(args.file_id, args.create, args.change or [])
        if version_id is None:
            logger.error(f"No file with id {args.file_id}")
            return 1
    for version in db_manager.get_data_versions(args.file_id):
        marker = "*" if version.is_active else " "
        print(
            f"{marker} v{version.version:<3} {version.created_at:%Y-%m-%d %H:%M:%S}  "
            f"{version.description or ''}"
        )
    return 0


def export(service: IngestionService, args: argparse.Namespace) -> int:
    options = ExportOptions(
        include_metadata=not args.no_metadata,
        include_processing_stats=not args.no_stats,
        format=args.format,
    )
    if args.since or args.until:
        options = replace(options, date_range=(args.since, args.until))
    content = service.db_manager.export_data(options)
    if args.output:
        Path(args.output).write_text(content, encoding="utf-8")
        logger.info(f"Exported data to {args.output}")
    else:
        print(content)
    return 0


def reset(service: IngestionService, args: argparse.Namespace) -> int:
    if not args.yes:
        logger.error("Refusing to delete all data without --yes")
        return 1
    service.db_manager.clear_all_data()
    logger.info("All stored data deleted")
    return 0


def _parse_date(value: str) -> datetime:
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"Invalid ISO date: {value}") from None


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="prism-ingest",
        description="PRISM Ingest - Validate and store inventory and OSR workbooks",
    )
    parser.add_argument("--db", default=None, help="Database URL (overrides PRISM_DB_URL)")
    parser.add_argument("--env-file", default=".env", help="Path to .env file (default: .env)")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable verbose logging")

    subparsers = parser.add_subparsers(dest="command", required=True)

    for name, handler, help_text in (
        ("ingest", ingest, "Process a workbook and store it as the active file"),
        ("validate", validate, "Validate a workbook without storing it"),
    ):
        sub = subparsers.add_parser(name, help=help_text)
        sub.add_argument("file", help="Path to the workbook")
        sub.add_argument("--type", "-t", choices=DOCUMENT_TYPES, help="Restrict to one document type")
        sub.set_defaults(handler=handler)

    sub = subparsers.add_parser("history", help="List stored files, newest first")
    sub.add_argument("--type", "-t", choices=DOCUMENT_TYPES, help="Only files of this document type")
    sub.set_defaults(handler=history)

    for name, handler, help_text in (
        ("switch", switch, "Make a stored file the active one of its type"),
        ("delete", delete, "Delete a stored file and its history"),
    ):
        sub = subparsers.add_parser(name, help=help_text)
        sub.add_argument("file_id", type=int)
        sub.set_defaults(handler=handler)

    sub = subparsers.add_parser("versions", help="Show or extend the version history of a file")
    sub.add_argument("file_id", type=int)
    sub.add_argument("--create", metavar="DESCRIPTION", help="Append a version with this description")
    sub.add_argument("--change", action="append", help="Change entry for --create (repeatable)")
    sub.set_defaults(handler=versions)

    sub = subparsers.add_parser("export", help="Export stored data")
    sub.add_argument("--format", "-f", choices=("json", "csv"), default="json")
    sub.add_argument("--output", "-o", help="Output file (default: stdout)")
    sub.add_argument("--no-metadata", action="store_true", help="Only file name and type as metadata")
    sub.add_argument("--no-stats", action="store_true", help="Omit processing statistics")
    sub.add_argument("--since", type=_parse_date, help="Only files uploaded at or after this ISO date")
    sub.add_argument("--until", type=_parse_date, help="Only files uploaded at or before this ISO date")
    sub.set_defaults(handler=export)

    sub = subparsers.add_parser("reset", help="Delete all stored data")
    sub.add_argument("--yes", action="store_true", help="Confirm deletion")
    sub.set_defaults(handler=reset)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Command-line interface entry point."""
    args = build_parser().parse_args(argv)

    try:
        settings = load_settings(args.env_file)
    except ValueError as e:
        setup_logging(args.verbose)
        logger.error(f"Invalid settings: {e}")
        return 2
    if args.db:
        settings = replace(settings, db_url=args.db)
    setup_logging(args.verbose, settings.log_level)

    service = IngestionService.from_settings(settings)
    try:
        return args.handler(service, args)
    except Exception as e:
        logger.error(f"{args.command} failed: {e}", exc_info=True)
        return 1
    finally:
        service.close()


if __name__ == "__main__":
    sys.exit(main())
