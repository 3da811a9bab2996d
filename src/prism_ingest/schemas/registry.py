"""Schema registry for inventory and OSR workbooks.

Each document type declares the sheets it expects, the columns expected in
those sheets and the validation rules applied to every cell. Sheet and column
names are matched against alias lists, ignoring case and surrounding
whitespace, so "FG Value", " fg value " and "Finished Goods" all resolve to the
same sheet.
"""

from dataclasses import dataclass, field, replace
from typing import Dict, Iterable, List, Optional, Tuple, Union
import logging

logger = logging.getLogger(__name__)

INVENTORY = "inventory"
OSR = "osr"
DOCUMENT_TYPES: Tuple[str, ...] = (INVENTORY, OSR)

RULE_KINDS = ("minLength", "maxLength", "min", "max", "regex", "oneOf")
VALUE_TYPES = ("string", "number", "date")


class UnknownDocumentType(ValueError):
    """Raised when a document type has no registered schema."""


def normalize_name(name: object) -> str:
    """Normalize a sheet or column name for alias comparison.

    Args:
        name: Raw header or sheet name (may be a non-string cell value)

    Returns:
        Lower-cased name with surrounding and repeated inner whitespace collapsed
    """
    if name is None:
        return ""
    return " ".join(str(name).split()).casefold()


@dataclass(frozen=True)
class ValidationRule:
    """A single cell-level rule with the message reported on violation."""

    kind: str
    value: Union[int, float, str, Tuple[str, ...]]
    message: str

    def __post_init__(self):
        if self.kind not in RULE_KINDS:
            raise ValueError(f"Unknown validation rule kind: {self.kind}")


@dataclass(frozen=True)
class ColumnSchema:
    """Expected column of a sheet."""

    canonical_name: str
    aliases: frozenset
    value_type: str = "string"
    required: bool = True
    validation_rules: Tuple[ValidationRule, ...] = ()

    def __post_init__(self):
        if self.value_type not in VALUE_TYPES:
            raise ValueError(f"Unknown value type: {self.value_type}")
        object.__setattr__(
            self, "aliases", _alias_set(self.canonical_name, self.aliases)
        )

    def matches(self, header: object) -> bool:
        return normalize_name(header) in self.aliases


@dataclass(frozen=True)
class SheetSchema:
    """Expected sheet of a document type."""

    canonical_name: str
    aliases: frozenset
    document_type: str
    required_columns: Tuple[ColumnSchema, ...]
    optional: bool = False

    def __post_init__(self):
        if self.document_type not in DOCUMENT_TYPES:
            raise UnknownDocumentType(self.document_type)
        object.__setattr__(
            self, "aliases", _alias_set(self.canonical_name, self.aliases)
        )

    def matches(self, sheet_name: object) -> bool:
        return normalize_name(sheet_name) in self.aliases

    def find_column(self, header: object) -> Optional[ColumnSchema]:
        """Return the column schema a header resolves to, if any."""
        for column in self.required_columns:
            if column.matches(header):
                return column
        return None


@dataclass(frozen=True)
class DocumentSchema:
    """All sheets expected for one document type."""

    document_type: str
    sheets: Tuple[SheetSchema, ...]

    @property
    def mandatory_sheets(self) -> Tuple[SheetSchema, ...]:
        return tuple(sheet for sheet in self.sheets if not sheet.optional)

    def find_sheet(self, sheet_name: object) -> Optional[SheetSchema]:
        for sheet in self.sheets:
            if sheet.matches(sheet_name):
                return sheet
        return None


@dataclass(frozen=True)
class FileProcessingConfig:
    """Limits and schemas used when processing an uploaded workbook.

    Attributes:
        max_file_size: Maximum accepted file size in bytes
        allowed_extensions: Accepted file name suffixes (lower case, with dot)
        required_sheets: Sheet schemas, possibly spanning several document types
        processing_timeout: Wall-clock budget for one file, in seconds
    """

    max_file_size: int
    allowed_extensions: Tuple[str, ...]
    required_sheets: Tuple[SheetSchema, ...]
    processing_timeout: float

    @property
    def document_types(self) -> List[str]:
        """Document types covered by this config, in declaration order."""
        seen = []
        for sheet in self.required_sheets:
            if sheet.document_type not in seen:
                seen.append(sheet.document_type)
        return seen

    def schema_for(self, document_type: str) -> DocumentSchema:
        sheets = tuple(
            sheet for sheet in self.required_sheets
            if sheet.document_type == document_type
        )
        if not sheets:
            raise UnknownDocumentType(
                f"No sheets configured for document type '{document_type}'"
            )
        return DocumentSchema(document_type=document_type, sheets=sheets)


def _alias_set(canonical_name: str, aliases: Iterable[str]) -> frozenset:
    normalized = {normalize_name(alias) for alias in aliases}
    normalized.add(normalize_name(canonical_name))
    normalized.discard("")
    return frozenset(normalized)


def _text(name: str, aliases: Iterable[str], message: str, required: bool = True) -> ColumnSchema:
    return ColumnSchema(
        canonical_name=name,
        aliases=frozenset(aliases),
        value_type="string",
        required=required,
        validation_rules=(ValidationRule("minLength", 1, message),),
    )


def _amount(name: str, aliases: Iterable[str], message: str, required: bool = True) -> ColumnSchema:
    return ColumnSchema(
        canonical_name=name,
        aliases=frozenset(aliases),
        value_type="number",
        required=required,
        validation_rules=(ValidationRule("min", 0, message),),
    )


MATERIAL_ALIASES = ("Material", "Material Code", "MaterialCode", "Code", "Item Code", "SKU")
DESCRIPTION_ALIASES = (
    "Description", "Material Description", "Item Description",
    "Product Description", "Desc",
)
QUANTITY_ALIASES = ("Closing Stock Quantity", "Stock Quantity", "Quantity", "Qty", "Stock Qty", "Stock")
TOTAL_VALUE_ALIASES = ("Total Value", "Total Amount", "Final Value", "Grand Total", "Total Stock Value")


FG_VALUE_SHEET = SheetSchema(
    canonical_name="FG value",
    aliases=frozenset({
        "FG value", "FG", "Finished Goods", "FinishedGoods",
        "Inventory", "Inventory Main", "Stock Report",
    }),
    document_type=INVENTORY,
    required_columns=(
        _text("Material", MATERIAL_ALIASES, "Material code cannot be empty"),
        _text("Description", DESCRIPTION_ALIASES, "Description cannot be empty"),
        _text("Plant", ("Plant", "Plant Code", "Site", "Facility", "Manufacturing Plant"),
              "Plant cannot be empty"),
        _text("location", ("Location", "Storage Location", "Distribution Center", "DC", "Warehouse", "Storage"),
              "Location cannot be empty"),
        _amount("Closing Stock Quantity", QUANTITY_ALIASES, "Quantity must be non-negative"),
        _amount("Total Value", TOTAL_VALUE_ALIASES, "Total value must be positive"),
        _text("Pack Size(m.d.)", ("Pack Size", "PackSize", "Pack"), "Pack size cannot be empty",
              required=False),
        _amount("Closing Stock Value", ("Stock Value", "Closing Value"), "Value must be positive",
                required=False),
        _amount("Per Unit Value Moti", ("Unit Value", "Per Unit Value", "Unit Price"),
                "Unit value must be positive", required=False),
        _text("Batch", ("Batch", "Batch Number", "Lot"), "Batch cannot be empty", required=False),
        _text("Unit of Measure", ("Base Unit of Measure", "UoM", "Unit", "Measurement Unit"),
              "Unit of measure cannot be empty", required=False),
        _text("Currency", ("Currency", "Curr"), "Currency cannot be empty", required=False),
    ),
)

RPM_SHEET = SheetSchema(
    canonical_name="RPM",
    aliases=frozenset({
        "RPM", "Raw Materials", "RawMaterials",
        "Raw Materials & Production Materials",
    }),
    document_type=INVENTORY,
    optional=True,
    required_columns=(
        _text("Material", MATERIAL_ALIASES, "Material code cannot be empty"),
        _text("Description", DESCRIPTION_ALIASES, "Description cannot be empty"),
        _text("CAT", ("CAT", "Category", "Material Category"), "Category cannot be empty"),
        _text("Plant", ("Plant", "Plant Code", "Site", "Facility", "Manufacturing Plant"),
              "Plant cannot be empty"),
        _text("Material Type", ("Material Type", "MaterialType", "Raw/Semi", "Classification"),
              "Material type cannot be empty"),
        _amount("Closing Stock Quantity", QUANTITY_ALIASES, "Quantity must be non-negative"),
        _amount("Closing Stock Value", ("Closing Stock Value", "Stock Value", "Value", "Amount"),
                "Value must be positive"),
        _text("Unit of Measure", ("Unit of Measure", "UoM", "Unit", "Measure", "Measurement Unit"),
              "Unit of measure cannot be empty"),
        _amount("Unit Price", ("Unit Price", "Price", "Cost per Unit", "Per Unit Cost"),
                "Unit price must be positive"),
        _amount("Total Value", TOTAL_VALUE_ALIASES, "Total value must be positive"),
    ),
)

OSR_MAIN_SHEET = SheetSchema(
    canonical_name="OSR Main Sheet HC",
    aliases=frozenset({"OSR Main Sheet", "Main Sheet HC", "OSR Sheet", "Main OSR"}),
    document_type=OSR,
    required_columns=(
        _text("Material", MATERIAL_ALIASES, "Material code cannot be empty"),
        _text("Material Description", DESCRIPTION_ALIASES, "Material description cannot be empty"),
        ColumnSchema(
            canonical_name="Status",
            aliases=frozenset({"Material Status", "Active Status", "State"}),
            value_type="string",
            validation_rules=(ValidationRule("minLength", 1, "Status cannot be empty"),),
        ),
        _amount("Avg Unit Price (Rs)", ("Unit Price", "Average Price", "Price", "Cost"),
                "Price must be positive"),
        _amount("Total OSR (Qty)", ("OSR Qty", "Total OSR", "OSR Quantity", "Overstock Qty"),
                "OSR quantity must be non-negative"),
        _amount("Total OSR Value PKR", ("OSR Value", "Total OSR Value", "Overstock Value"),
                "OSR value must be positive"),
        _amount("Residual (Qnty) >26 weeks", ("Residual >26 weeks", "Long Term Residual", "Old Stock"),
                "Residual quantity must be non-negative"),
    ),
)

OSR_SUMMARY_SHEET = SheetSchema(
    canonical_name="OSR Summary",
    aliases=frozenset({"Summary", "Executive Summary", "Dashboard"}),
    document_type=OSR,
    required_columns=(
        _amount("Total Book Stock", ("Book Stock", "Total Stock", "Inventory Value"),
                "Stock value must be positive"),
        _amount("Over Stock", ("Overstock", "Excess Stock", "Surplus"),
                "Overstock must be non-negative"),
        _amount("Excess Stock %", ("Overstock %", "Excess %", "OSR %"),
                "Percentage must be non-negative"),
    ),
)

DEFAULT_MAX_FILE_SIZE = 100 * 1024 * 1024
DEFAULT_ALLOWED_EXTENSIONS = (".xlsx", ".xlsm")
DEFAULT_PROCESSING_TIMEOUT = 300.0

INVENTORY_FILE_CONFIG = FileProcessingConfig(
    max_file_size=DEFAULT_MAX_FILE_SIZE,
    allowed_extensions=DEFAULT_ALLOWED_EXTENSIONS,
    required_sheets=(FG_VALUE_SHEET, RPM_SHEET),
    processing_timeout=DEFAULT_PROCESSING_TIMEOUT,
)

OSR_FILE_CONFIG = FileProcessingConfig(
    max_file_size=DEFAULT_MAX_FILE_SIZE,
    allowed_extensions=DEFAULT_ALLOWED_EXTENSIONS,
    required_sheets=(OSR_MAIN_SHEET, OSR_SUMMARY_SHEET),
    processing_timeout=DEFAULT_PROCESSING_TIMEOUT,
)

# Covers every document type; used when the caller does not name one.
COMBINED_FILE_CONFIG = replace(
    INVENTORY_FILE_CONFIG,
    required_sheets=INVENTORY_FILE_CONFIG.required_sheets + OSR_FILE_CONFIG.required_sheets,
)

DEFAULT_FILE_PROCESSING_CONFIG = INVENTORY_FILE_CONFIG

_CONFIGS: Dict[str, FileProcessingConfig] = {
    INVENTORY: INVENTORY_FILE_CONFIG,
    OSR: OSR_FILE_CONFIG,
}

VALIDATION_MESSAGES = {
    "FILE_SIZE_EXCEEDED": "File size exceeds maximum allowed size",
    "INVALID_FILE_TYPE": "File type not supported. Please upload an Excel file ({extensions})",
    "FILE_PROCESSING_TIMEOUT": "File processing timed out. Please try with a smaller file",
    "REQUIRED_SHEET_MISSING": 'Required sheet "{sheet_name}" not found in file',
    "REQUIRED_COLUMN_MISSING": 'Required column "{column_name}" not found in sheet "{sheet_name}"',
    "REQUIRED_VALUE_MISSING": 'Required column "{column_name}" in sheet "{sheet_name}" is empty in {count} row(s): {rows}',
    "INVALID_DATA_TYPE": 'Invalid data type in column "{column_name}" in sheet "{sheet_name}": expected {value_type} ({count} row(s): {rows})',
    "VALIDATION_RULE_FAILED": 'Validation failed for column "{column_name}" in sheet "{sheet_name}": {message} ({count} row(s): {rows})',
    "OPTIONAL_SHEET_MISSING": 'Optional sheet "{sheet_name}" not found',
    "OPTIONAL_COLUMN_MISSING": 'Optional column "{column_name}" not found in sheet "{sheet_name}"',
    "EXTRA_SHEETS_IGNORED": "Extra sheets ignored: {sheet_names}",
    "EXTRA_COLUMNS_IGNORED": 'Extra columns ignored in sheet "{sheet_name}": {column_names}',
    "NO_DATA_FOUND": "No valid data found in any sheets",
    "NO_SCHEMA_MATCHED": "Could not detect valid sheets in the uploaded file. Available sheets: {sheet_names}",
    "PROCESSING_CANCELLED": "File processing was cancelled",
    "PARSING_FAILED": "Could not read workbook: {reason}",
}


def get_schema(document_type: str) -> DocumentSchema:
    """Return the schema registered for a document type.

    Args:
        document_type: 'inventory' or 'osr'

    Returns:
        DocumentSchema for the type

    Raises:
        UnknownDocumentType: If the type has no registered schema
    """
    config = _CONFIGS.get(document_type)
    if config is None:
        raise UnknownDocumentType(f"Unknown document type: {document_type}")
    return config.schema_for(document_type)


def get_config_for_file_type(document_type: str) -> FileProcessingConfig:
    """Return the processing config for a single document type."""
    try:
        return _CONFIGS[document_type]
    except KeyError:
        raise UnknownDocumentType(f"Unknown document type: {document_type}") from None


def create_custom_config(base: Optional[FileProcessingConfig] = None, **overrides) -> FileProcessingConfig:
    """Derive a config from ``base`` (default: inventory), replacing named fields."""
    base = base or DEFAULT_FILE_PROCESSING_CONFIG
    if "allowed_extensions" in overrides:
        overrides["allowed_extensions"] = tuple(
            ext.lower() for ext in overrides["allowed_extensions"]
        )
    if "required_sheets" in overrides:
        overrides["required_sheets"] = tuple(overrides["required_sheets"])
    return replace(base, **overrides)


def validate_file_size(file_size: int, max_size: int) -> bool:
    return file_size <= max_size


def validate_file_extension(file_name: str, allowed_extensions: Iterable[str]) -> bool:
    dot = file_name.rfind(".")
    if dot == -1:
        return False
    return file_name[dot:].lower() in {ext.lower() for ext in allowed_extensions}


def get_sheet_config_by_name(name: str, config: FileProcessingConfig) -> Optional[SheetSchema]:
    """Find the sheet schema a workbook sheet name resolves to."""
    for sheet in config.required_sheets:
        if sheet.matches(name):
            return sheet
    return None


def get_column_config_by_name(column_name: str, sheet: SheetSchema) -> Optional[ColumnSchema]:
    return sheet.find_column(column_name)
