"""Excel workbook decoding using openpyxl."""

from dataclasses import dataclass
from io import BytesIO
from pathlib import Path
from typing import Any, List, Optional, Tuple, Union
import logging

from openpyxl import load_workbook
from openpyxl.workbook.workbook import Workbook

logger = logging.getLogger(__name__)

Row = Tuple[Any, ...]


@dataclass(frozen=True)
class UploadedFile:
    """A workbook handed over by the embedding application."""

    name: str
    content: bytes

    @property
    def size(self) -> int:
        return len(self.content)

    @property
    def extension(self) -> str:
        return Path(self.name).suffix.lower()

    @classmethod
    def from_path(cls, file_path: Union[str, Path]) -> "UploadedFile":
        """Read a file from disk.

        Raises:
            FileNotFoundError: If the file does not exist
        """
        file_path = Path(file_path)
        if not file_path.exists():
            raise FileNotFoundError(f"File not found: {file_path}")
        return cls(name=file_path.name, content=file_path.read_bytes())


@dataclass(frozen=True)
class RawSheet:
    """Undecorated sheet contents: a name and its 2-D cell grid."""

    name: str
    cells: Tuple[Row, ...]

    def header_index(self) -> Optional[int]:
        """Index of the first non-empty row, treated as the header row."""
        for index, row in enumerate(self.cells):
            if not is_blank_row(row):
                return index
        return None

    @property
    def headers(self) -> Row:
        index = self.header_index()
        return () if index is None else self.cells[index]

    @property
    def data_rows(self) -> Tuple[Row, ...]:
        index = self.header_index()
        return () if index is None else self.cells[index + 1:]


def is_blank_row(row: Row) -> bool:
    return all(cell is None or (isinstance(cell, str) and not cell.strip()) for cell in row)


class WorkbookDecodeError(Exception):
    """Raised when workbook bytes cannot be decoded."""


class ExcelReader:
    """Handles reading Excel workbooks using openpyxl."""

    def __init__(self, data_only: bool = True, read_only: bool = True):
        """Initialize the Excel reader.

        Args:
            data_only: If True, cell values are read instead of formulas
            read_only: If True, the workbook is opened in read-only (streaming) mode
        """
        self.data_only = data_only
        self.read_only = read_only

    def load_bytes(self, content: bytes, file_name: str = "<memory>") -> Workbook:
        """Decode workbook bytes into an openpyxl Workbook.

        Args:
            content: Raw workbook bytes
            file_name: Name used in log messages

        Returns:
            Loaded Workbook

        Raises:
            WorkbookDecodeError: If the bytes are not a readable workbook
        """
        try:
            workbook = load_workbook(
                filename=BytesIO(content),
                data_only=self.data_only,
                read_only=self.read_only,
            )
        except Exception as e:
            logger.error(f"Failed to load {file_name}: {e}")
            raise WorkbookDecodeError(str(e) or e.__class__.__name__) from e
        logger.info(f"Successfully loaded workbook: {file_name}")
        return workbook

    def get_sheet_names(self, workbook: Workbook) -> List[str]:
        return list(workbook.sheetnames)

    def read_sheets(self, workbook: Workbook) -> List[RawSheet]:
        """Extract every worksheet as a RawSheet.

        Trailing empty cells are kept; blank rows are preserved so that row
        numbers in messages match the workbook.
        """
        sheets = []
        for worksheet in workbook.worksheets:
            cells = tuple(tuple(row) for row in worksheet.iter_rows(values_only=True))
            sheets.append(RawSheet(name=worksheet.title, cells=cells))
            logger.debug(f"Read sheet '{worksheet.title}' with {len(cells)} row(s)")
        return sheets

    def decode(self, content: bytes, file_name: str = "<memory>") -> List[RawSheet]:
        """Decode workbook bytes straight into raw sheets."""
        workbook = self.load_bytes(content, file_name)
        try:
            return self.read_sheets(workbook)
        except Exception as e:
            logger.error(f"Failed to read sheets of {file_name}: {e}")
            raise WorkbookDecodeError(str(e) or e.__class__.__name__) from e
        finally:
            self.close_workbook(workbook)

    def close_workbook(self, workbook: Workbook) -> None:
        if workbook:
            workbook.close()
