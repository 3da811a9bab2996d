"""Unit tests for the validation engine."""

import pytest

from prism_ingest.core.validation import (
    INVALID_DATA,
    MISSING_COLUMN,
    MISSING_SHEET,
    ValidationOptions,
    format_rows,
    validate,
)
from prism_ingest.schemas.registry import INVENTORY, OSR, UnknownDocumentType


@pytest.fixture
def inventory_sheet(make_raw_sheet, inventory_table):
    headers, rows = inventory_table
    return make_raw_sheet("Inventory", headers, rows)


class TestValidateInventory:
    """Test cases for inventory validation."""

    def test_exact_schema_is_valid(self, inventory_sheet):
        result = validate([inventory_sheet], INVENTORY)

        assert result.is_valid
        assert result.errors == []
        assert result.sheets_found == ["Inventory"]
        assert result.rows_processed == 3
        sheet = result.sheets[0]
        assert sheet.row_count == 3
        assert sheet.document_type == INVENTORY

    def test_rows_keyed_by_canonical_names_in_schema_order(self, inventory_sheet):
        sheet = validate([inventory_sheet], INVENTORY).sheets[0]

        assert sheet.columns == (
            "Material", "Description", "Plant", "location", "Closing Stock Quantity",
            "Total Value", "Batch", "Unit of Measure", "Currency",
        )
        assert sheet.column_count == 9
        assert sheet.rows[0]["Material"] == "MAT-001"
        assert sheet.rows[0]["Closing Stock Quantity"] == 120
        assert sheet.rows[2]["Total Value"] == 90000

    def test_column_order_and_case_do_not_matter(self, make_raw_sheet, inventory_table):
        headers, rows = inventory_table
        shuffled = list(reversed(range(len(headers))))
        raw = make_raw_sheet(
            "  INVENTORY ",
            [headers[i].upper() for i in shuffled],
            [[row[i] for i in shuffled] for row in rows],
        )
        result = validate([raw], INVENTORY)

        assert result.is_valid
        assert result.sheets[0].rows[1]["Description"] == "Copper Wire"

    @pytest.mark.parametrize("header", [
        "Material", "Material Description", "Plant", "Storage Location", "Stock", "Total Stock Value",
    ])
    def test_removing_required_column(self, make_raw_sheet, inventory_table, header):
        headers, rows = inventory_table
        index = headers.index(header)
        raw = make_raw_sheet(
            "Inventory",
            [h for i, h in enumerate(headers) if i != index],
            [[v for i, v in enumerate(row) if i != index] for row in rows],
        )
        result = validate([raw], INVENTORY)

        assert not result.is_valid
        errors = result.errors_of_kind(MISSING_COLUMN)
        assert len(errors) == 1
        assert errors[0].sheet == "Inventory"

    def test_missing_columns_accumulate(self, make_raw_sheet):
        raw = make_raw_sheet("Inventory", ["Item", "Quantity", "Price"], [["A", 1, 2]])
        result = validate([raw], INVENTORY)

        missing = {error.column for error in result.errors_of_kind(MISSING_COLUMN)}
        assert missing == {"Material", "Description", "Plant", "location", "Total Value"}

    def test_missing_required_sheet(self, make_raw_sheet):
        raw = make_raw_sheet("Invalid Data", ["Item", "Quantity", "Price"], [["A", 1, 2]])
        result = validate([raw], INVENTORY)

        assert not result.is_valid
        assert [error.kind for error in result.errors] == [MISSING_SHEET]
        assert result.errors[0].sheet == "FG value"
        assert "Invalid Data" in result.errors[0].message
        assert result.missing_mandatory_sheets == ["FG value"]
        assert not result.sheet_set_found

    def test_empty_required_cells_are_invalid_data(self, make_raw_sheet, inventory_table):
        headers, rows = inventory_table
        rows[0][headers.index("Plant")] = None
        rows[2][headers.index("Plant")] = "   "
        result = validate([make_raw_sheet("Inventory", headers, rows)], INVENTORY)

        assert not result.is_valid
        errors = result.errors_of_kind(INVALID_DATA)
        assert len(errors) == 1
        assert errors[0].column == "Plant"
        assert errors[0].rows == (2, 4)
        assert result.sheets[0].rows[0]["Plant"] is None

    def test_empty_optional_cells_are_allowed(self, make_raw_sheet, inventory_table):
        headers, rows = inventory_table
        rows[1][headers.index("Batch")] = None
        result = validate([make_raw_sheet("Inventory", headers, rows)], INVENTORY)

        assert result.is_valid
        assert result.sheets[0].rows[1]["Batch"] is None


class TestWarnings:
    """Test cases for non-fatal findings."""

    def test_extra_sheets_one_warning(self, inventory_sheet, make_raw_sheet):
        extras = [make_raw_sheet(name, ["X"], [[1]]) for name in ("Notes", "Pivot")]
        result = validate([inventory_sheet] + extras, INVENTORY)

        assert result.is_valid
        extra_warnings = [w for w in result.warnings if w.startswith("Extra sheets ignored")]
        assert extra_warnings == ["Extra sheets ignored: Notes, Pivot"]

    def test_extra_columns_one_warning_per_sheet(self, make_raw_sheet, inventory_table):
        headers, rows = inventory_table
        raw = make_raw_sheet("Inventory", headers + ["Remarks", "Owner"], [row + ["x", "y"] for row in rows])
        result = validate([raw], INVENTORY)

        assert result.is_valid
        extra_warnings = [w for w in result.warnings if w.startswith("Extra columns ignored")]
        assert len(extra_warnings) == 1
        assert "Remarks, Owner" in extra_warnings[0]
        assert "Remarks" not in result.sheets[0].columns

    def test_optional_sheet_and_columns_missing(self, inventory_sheet):
        result = validate([inventory_sheet], INVENTORY)

        assert 'Optional sheet "RPM" not found' in result.warnings
        assert any('Optional column "Pack Size(m.d.)"' in w for w in result.warnings)

    def test_rule_violation_is_warning(self, make_raw_sheet, inventory_table):
        headers, rows = inventory_table
        rows[0][headers.index("Stock")] = -5
        rows[1][headers.index("Stock")] = -1
        result = validate([make_raw_sheet("Inventory", headers, rows)], INVENTORY)

        assert result.is_valid
        rule_warnings = [w for w in result.warnings if "Quantity must be non-negative" in w]
        assert len(rule_warnings) == 1
        assert "2 row(s): 2, 3" in rule_warnings[0]

    def test_type_failure_is_warning_and_clears_cell(self, make_raw_sheet, inventory_table):
        headers, rows = inventory_table
        rows[2][headers.index("Total Stock Value")] = "lots"
        result = validate([make_raw_sheet("Inventory", headers, rows)], INVENTORY)

        assert result.is_valid
        assert any("expected number" in w for w in result.warnings)
        assert result.sheets[0].rows[2]["Total Value"] is None

    def test_numeric_strings_are_coerced(self, make_raw_sheet, inventory_table):
        headers, rows = inventory_table
        rows[0][headers.index("Total Stock Value")] = "36,000"
        result = validate([make_raw_sheet("Inventory", headers, rows)], INVENTORY)

        assert result.sheets[0].rows[0]["Total Value"] == 36000.0


class TestOptions:
    """Test cases for validation switches."""

    def test_blank_rows_skipped_but_counted_in_row_numbers(self, make_raw_sheet, inventory_table):
        headers, rows = inventory_table
        rows.insert(1, [None] * len(headers))
        rows[2][headers.index("Material")] = None
        result = validate([make_raw_sheet("Inventory", headers, rows)], INVENTORY)

        assert result.sheets[0].row_count == 3
        assert result.errors_of_kind(INVALID_DATA)[0].rows == (4,)

    def test_keep_blank_rows(self, make_raw_sheet, inventory_table):
        headers, rows = inventory_table
        rows.append([None] * len(headers))
        options = ValidationOptions(skip_empty_rows=False, validate_data=False)
        result = validate([make_raw_sheet("Inventory", headers, rows)], INVENTORY, options)

        assert result.is_valid
        assert result.sheets[0].row_count == 4

    def test_without_column_validation(self, make_raw_sheet):
        raw = make_raw_sheet("Inventory", ["Material"], [["MAT-001"]])
        result = validate([raw], INVENTORY, ValidationOptions(validate_columns=False))

        assert result.is_valid
        assert result.sheets[0].columns == ("Material",)

    def test_trim_whitespace(self, make_raw_sheet, inventory_table):
        headers, rows = inventory_table
        rows[0][0] = "  MAT-001  "
        trimmed = validate([make_raw_sheet("Inventory", headers, rows)], INVENTORY)
        untrimmed = validate(
            [make_raw_sheet("Inventory", headers, rows)], INVENTORY, ValidationOptions(trim_whitespace=False)
        )

        assert trimmed.sheets[0].rows[0]["Material"] == "MAT-001"
        assert untrimmed.sheets[0].rows[0]["Material"] == "  MAT-001  "


class TestValidateOsr:
    """Test cases for OSR validation."""

    def test_osr_workbook(self, make_raw_sheet, osr_tables):
        raws = [make_raw_sheet(name, *table) for name, table in osr_tables.items()]
        result = validate(raws, OSR)

        assert result.is_valid
        assert [sheet.name for sheet in result.sheets] == ["OSR Main Sheet HC", "OSR Summary"]
        assert any("Summary Category" in w for w in result.warnings)

    def test_sheets_reported_in_schema_order(self, make_raw_sheet, osr_tables):
        raws = [make_raw_sheet(name, *table) for name, table in reversed(list(osr_tables.items()))]
        result = validate(raws, OSR)

        assert [sheet.name for sheet in result.sheets] == ["OSR Main Sheet HC", "OSR Summary"]

    def test_missing_summary_sheet(self, make_raw_sheet, osr_tables):
        raw = make_raw_sheet("OSR Main Sheet HC", *osr_tables["OSR Main Sheet HC"])
        result = validate([raw], OSR)

        assert not result.is_valid
        assert result.missing_mandatory_sheets == ["OSR Summary"]
        assert result.sheets_found == ["OSR Main Sheet HC"]


def test_unknown_document_type(inventory_sheet):
    with pytest.raises(UnknownDocumentType):
        validate([inventory_sheet], "invoice")


def test_format_rows_truncates():
    assert format_rows(list(range(1, 4))) == "1, 2, 3"
    assert format_rows(list(range(1, 20))).endswith(", ...")
