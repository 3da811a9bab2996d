"""Unit tests for the reader module."""

import pytest
from pathlib import Path

from openpyxl import Workbook

from prism_ingest.core.reader import ExcelReader, RawSheet, UploadedFile, WorkbookDecodeError, is_blank_row


@pytest.fixture
def sample_excel_file(tmp_path):
    """Create a sample Excel file for testing."""
    file_path = tmp_path / "test_file.xlsx"
    wb = Workbook()
    ws = wb.active
    ws.title = "TestSheet"
    ws["A1"] = "Header1"
    ws["B1"] = "Header2"
    ws["A2"] = "Data1"
    ws["B2"] = "Data2"
    wb.save(file_path)
    return file_path


class TestUploadedFile:
    """Test cases for UploadedFile."""

    def test_from_path(self, sample_excel_file):
        upload = UploadedFile.from_path(sample_excel_file)
        assert upload.name == "test_file.xlsx"
        assert upload.size == sample_excel_file.stat().st_size
        assert upload.extension == ".xlsx"

    def test_from_path_not_found(self):
        with pytest.raises(FileNotFoundError):
            UploadedFile.from_path(Path("/nonexistent/file.xlsx"))

    def test_extension_is_lower_case(self):
        assert UploadedFile("STOCK.XLSM", b"").extension == ".xlsm"


class TestRawSheet:
    """Test cases for header detection."""

    def test_header_is_first_non_blank_row(self):
        sheet = RawSheet("S", cells=((None, None), ("", "  "), ("A", "B"), (1, 2)))
        assert sheet.header_index() == 2
        assert sheet.headers == ("A", "B")
        assert sheet.data_rows == ((1, 2),)

    def test_empty_sheet(self):
        sheet = RawSheet("S", cells=())
        assert sheet.header_index() is None
        assert sheet.headers == ()
        assert sheet.data_rows == ()

    def test_is_blank_row(self):
        assert is_blank_row((None, " ", ""))
        assert not is_blank_row((None, 0))


class TestExcelReader:
    """Test cases for ExcelReader class."""

    def test_initialization_default(self):
        reader = ExcelReader()
        assert reader.data_only is True
        assert reader.read_only is True

    def test_initialization_custom(self):
        reader = ExcelReader(data_only=False, read_only=False)
        assert reader.data_only is False
        assert reader.read_only is False

    def test_decode(self, sample_excel_file):
        sheets = ExcelReader().decode(sample_excel_file.read_bytes(), "test_file.xlsx")

        assert len(sheets) == 1
        assert sheets[0].name == "TestSheet"
        assert sheets[0].cells[0] == ("Header1", "Header2")
        assert sheets[0].cells[1] == ("Data1", "Data2")

    def test_decode_multiple_sheets(self, make_workbook):
        content = make_workbook({
            "First": (["A"], [[1]]),
            "Second": (["B"], [[2], [3]]),
        })
        sheets = ExcelReader().decode(content)

        assert [sheet.name for sheet in sheets] == ["First", "Second"]
        assert len(sheets[1].data_rows) == 2

    def test_load_bytes_and_sheet_names(self, sample_excel_file):
        reader = ExcelReader()
        workbook = reader.load_bytes(sample_excel_file.read_bytes())

        assert reader.get_sheet_names(workbook) == ["TestSheet"]
        reader.close_workbook(workbook)

    def test_decode_invalid_bytes(self):
        with pytest.raises(WorkbookDecodeError):
            ExcelReader().decode(b"this is not a workbook", "broken.xlsx")

    def test_decode_empty_bytes(self):
        with pytest.raises(WorkbookDecodeError):
            ExcelReader().decode(b"", "empty.xlsx")

    @pytest.mark.parametrize("part_name", [
        "[Content_Types].xml",
        "xl/workbook.xml",
        "xl/worksheets/sheet1.xml",
    ])
    def test_decode_truncated_xml_part(self, make_workbook, damage_workbook_part, part_name):
        content = damage_workbook_part(make_workbook({"Data": (["A"], [[1], [2]])}), part_name)

        with pytest.raises(WorkbookDecodeError):
            ExcelReader().decode(content, "damaged.xlsx")
