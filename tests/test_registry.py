"""Unit tests for the schema registry."""

import pytest
from dataclasses import FrozenInstanceError

from prism_ingest.schemas.registry import (
    COMBINED_FILE_CONFIG,
    DEFAULT_FILE_PROCESSING_CONFIG,
    INVENTORY,
    INVENTORY_FILE_CONFIG,
    OSR,
    OSR_FILE_CONFIG,
    ColumnSchema,
    SheetSchema,
    UnknownDocumentType,
    ValidationRule,
    create_custom_config,
    get_column_config_by_name,
    get_config_for_file_type,
    get_schema,
    get_sheet_config_by_name,
    normalize_name,
    validate_file_extension,
    validate_file_size,
)


class TestNormalizeName:
    """Test cases for alias normalisation."""

    def test_case_and_whitespace(self):
        assert normalize_name("  Storage   Location ") == "storage location"
        assert normalize_name("FG VALUE") == normalize_name("fg value")

    def test_non_string_and_none(self):
        assert normalize_name(None) == ""
        assert normalize_name(2024) == "2024"


class TestSchemas:
    """Test cases for sheet and column schemas."""

    def test_aliases_always_contain_canonical_name(self):
        for document_type in (INVENTORY, OSR):
            for sheet in get_schema(document_type).sheets:
                assert normalize_name(sheet.canonical_name) in sheet.aliases
                for column in sheet.required_columns:
                    assert normalize_name(column.canonical_name) in column.aliases

    def test_sheet_matching_ignores_case_and_spacing(self):
        sheet = get_schema(OSR).find_sheet("osr  main sheet hc")
        assert sheet is not None
        assert sheet.canonical_name == "OSR Main Sheet HC"

    def test_inventory_sheet_aliases(self):
        schema = get_schema(INVENTORY)
        assert schema.find_sheet("Inventory").canonical_name == "FG value"
        assert schema.find_sheet("raw materials").canonical_name == "RPM"
        assert schema.find_sheet("Something else") is None

    def test_mandatory_sheets_exclude_optional(self):
        mandatory = [sheet.canonical_name for sheet in get_schema(INVENTORY).mandatory_sheets]
        assert mandatory == ["FG value"]

    def test_column_alias_resolution(self):
        sheet = get_schema(INVENTORY).find_sheet("FG value")
        assert get_column_config_by_name("Stock", sheet).canonical_name == "Closing Stock Quantity"
        assert get_column_config_by_name("TOTAL STOCK VALUE", sheet).canonical_name == "Total Value"
        assert get_column_config_by_name("Price Tag", sheet) is None

    def test_schemas_are_immutable(self):
        sheet = get_schema(OSR).sheets[0]
        with pytest.raises(FrozenInstanceError):
            sheet.canonical_name = "Other"

    def test_invalid_rule_kind(self):
        with pytest.raises(ValueError, match="Unknown validation rule kind"):
            ValidationRule("between", 1, "nope")

    def test_invalid_value_type(self):
        with pytest.raises(ValueError, match="Unknown value type"):
            ColumnSchema("Amount", frozenset(), value_type="currency")

    def test_invalid_document_type(self):
        with pytest.raises(UnknownDocumentType):
            SheetSchema("X", frozenset(), document_type="invoice", required_columns=())


class TestConfigs:
    """Test cases for processing configs."""

    def test_get_schema_unknown_type(self):
        with pytest.raises(UnknownDocumentType):
            get_schema("invoice")

    def test_unknown_type_is_value_error(self):
        with pytest.raises(ValueError):
            get_config_for_file_type("invoice")

    def test_per_type_configs(self):
        assert get_config_for_file_type(INVENTORY) is INVENTORY_FILE_CONFIG
        assert get_config_for_file_type(OSR) is OSR_FILE_CONFIG
        assert OSR_FILE_CONFIG.document_types == [OSR]

    def test_combined_config_covers_all_types(self):
        assert COMBINED_FILE_CONFIG.document_types == [INVENTORY, OSR]

    def test_default_limits(self):
        assert DEFAULT_FILE_PROCESSING_CONFIG.max_file_size == 100 * 1024 * 1024
        assert DEFAULT_FILE_PROCESSING_CONFIG.allowed_extensions == (".xlsx", ".xlsm")
        assert DEFAULT_FILE_PROCESSING_CONFIG.processing_timeout == 300.0

    def test_create_custom_config_replaces_named_fields_only(self):
        config = create_custom_config(max_file_size=10, allowed_extensions=[".XLSX"])
        assert config.max_file_size == 10
        assert config.allowed_extensions == (".xlsx",)
        assert config.required_sheets == DEFAULT_FILE_PROCESSING_CONFIG.required_sheets
        assert DEFAULT_FILE_PROCESSING_CONFIG.max_file_size == 100 * 1024 * 1024

    def test_create_custom_config_unknown_field(self):
        with pytest.raises(TypeError):
            create_custom_config(colour="blue")

    def test_get_sheet_config_by_name(self):
        assert get_sheet_config_by_name("Summary", COMBINED_FILE_CONFIG).canonical_name == "OSR Summary"
        assert get_sheet_config_by_name("Summary", INVENTORY_FILE_CONFIG) is None


class TestFileGuards:
    """Test cases for size and extension checks."""

    def test_validate_file_size(self):
        assert validate_file_size(100, 100) is True
        assert validate_file_size(101, 100) is False

    @pytest.mark.parametrize("name,expected", [
        ("stock.xlsx", True),
        ("STOCK.XLSM", True),
        ("stock.csv", False),
        ("stock", False),
        ("archive.xlsx.zip", False),
    ])
    def test_validate_file_extension(self, name, expected):
        assert validate_file_extension(name, (".xlsx", ".xlsm")) is expected
