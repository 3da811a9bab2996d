"""Shared fixtures: workbooks built in memory with openpyxl."""

from io import BytesIO
from typing import Dict, List, Sequence, Tuple
from zipfile import ZIP_DEFLATED, ZipFile

import pytest
from openpyxl import Workbook

from prism_ingest.core.database_manager import DatabaseManager
from prism_ingest.core.reader import RawSheet, UploadedFile

INVENTORY_HEADERS = [
    "Material", "Material Description", "Plant", "Storage Location", "Batch",
    "Stock", "Base Unit of Measure", "Currency", "Total Stock Value",
]
INVENTORY_ROWS = [
    ["MAT-001", "Steel Rod 10mm", "P100", "SL01", "B001", 120, "EA", "PKR", 36000],
    ["MAT-002", "Copper Wire", "P100", "SL02", "B002", 45, "M", "PKR", 13500],
    ["MAT-003", "Plastic Housing", "P200", "SL01", "B003", 300, "EA", "PKR", 90000],
]

OSR_MAIN_HEADERS = [
    "Material", "Material Description", "Status", "Avg Unit Price (Rs)",
    "Total OSR (Qty)", "Total OSR Value PKR", "Residual (Qnty) >26 weeks",
]
OSR_MAIN_ROWS = [
    ["MAT-001", "Steel Rod 10mm", "Active", 300, 20, 6000, 5],
    ["MAT-004", "Rubber Gasket", "Obsolete", 50, 100, 5000, 80],
]
OSR_SUMMARY_HEADERS = ["Total Book Stock", "Over Stock", "Excess Stock %", "Summary Category"]
OSR_SUMMARY_ROWS = [[1000000, 11000, 1.1, "Total"]]

SheetSpec = Tuple[Sequence[object], Sequence[Sequence[object]]]


def build_workbook(sheets: Dict[str, SheetSpec]) -> bytes:
    """Serialise {sheet name: (headers, rows)} to xlsx bytes."""
    wb = Workbook()
    wb.remove(wb.active)
    for name, (headers, rows) in sheets.items():
        ws = wb.create_sheet(name)
        ws.append(list(headers))
        for row in rows:
            ws.append(list(row))
    buffer = BytesIO()
    wb.save(buffer)
    return buffer.getvalue()


def damage_part(content: bytes, part_name: str) -> bytes:
    """Return the xlsx with one archive member replaced by truncated XML."""
    source = ZipFile(BytesIO(content))
    buffer = BytesIO()
    with ZipFile(buffer, "w", ZIP_DEFLATED) as target:
        for item in source.infolist():
            data = source.read(item.filename)
            if item.filename == part_name:
                data = data[: len(data) // 2]
            target.writestr(item, data)
    return buffer.getvalue()


def build_raw_sheet(name: str, headers: Sequence[object], rows: Sequence[Sequence[object]]) -> RawSheet:
    cells: List[Tuple[object, ...]] = [tuple(headers)] + [tuple(row) for row in rows]
    return RawSheet(name=name, cells=tuple(cells))


@pytest.fixture
def make_workbook():
    return build_workbook


@pytest.fixture
def damage_workbook_part():
    return damage_part


@pytest.fixture
def make_raw_sheet():
    return build_raw_sheet


@pytest.fixture
def inventory_table():
    """Headers and rows of a three-row inventory sheet (fresh copies)."""
    return list(INVENTORY_HEADERS), [list(row) for row in INVENTORY_ROWS]


@pytest.fixture
def osr_tables():
    return {
        "OSR Main Sheet HC": (list(OSR_MAIN_HEADERS), [list(row) for row in OSR_MAIN_ROWS]),
        "OSR Summary": (list(OSR_SUMMARY_HEADERS), [list(row) for row in OSR_SUMMARY_ROWS]),
    }


@pytest.fixture
def inventory_file(inventory_table):
    return UploadedFile("inventory.xlsx", build_workbook({"Inventory": inventory_table}))


@pytest.fixture
def osr_file(osr_tables):
    return UploadedFile("osr.xlsx", build_workbook(osr_tables))


@pytest.fixture
def db_manager():
    """In-memory storage, disposed after the test."""
    db = DatabaseManager("sqlite://")
    yield db
    db.close()
