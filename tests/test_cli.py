"""Tests for the command-line interface."""

import json

import pytest

from prism_ingest.__main__ import build_parser, main
from prism_ingest.core.config import ENV_DB_URL, ENV_LOG_LEVEL, ENV_MAX_FILE_SIZE


@pytest.fixture
def cli(tmp_path, monkeypatch):
    """Run the CLI against a database file in tmp_path."""
    for name in (ENV_DB_URL, ENV_LOG_LEVEL, ENV_MAX_FILE_SIZE):
        monkeypatch.delenv(name, raising=False)
    db_url = f"sqlite:///{tmp_path / 'cli.db'}"
    env_file = str(tmp_path / "missing.env")

    def run(*args):
        return main(["--db", db_url, "--env-file", env_file, *args])

    return run


@pytest.fixture
def inventory_path(tmp_path, inventory_file):
    path = tmp_path / "inventory.xlsx"
    path.write_bytes(inventory_file.content)
    return path


class TestCommands:
    """Test cases for each subcommand."""

    def test_ingest(self, cli, inventory_path, capsys):
        assert cli("ingest", str(inventory_path)) == 0

        assert cli("history") == 0
        assert "inventory.xlsx" in capsys.readouterr().out

    def test_ingest_invalid_file(self, cli, tmp_path):
        path = tmp_path / "notes.txt"
        path.write_text("not a workbook")

        assert cli("ingest", str(path)) == 1

    def test_validate(self, cli, inventory_path, capsys):
        assert cli("validate", str(inventory_path)) == 0
        assert cli("history") == 0
        assert "inventory.xlsx" not in capsys.readouterr().out

    def test_validate_missing_file(self, cli, tmp_path):
        assert cli("validate", str(tmp_path / "absent.xlsx")) == 1

    def test_switch_and_delete(self, cli, inventory_path):
        cli("ingest", str(inventory_path))

        assert cli("switch", "1") == 0
        assert cli("switch", "99") == 1
        assert cli("delete", "1") == 0
        assert cli("delete", "1") == 1

    def test_versions(self, cli, inventory_path, capsys):
        cli("ingest", str(inventory_path))
        capsys.readouterr()

        assert cli("versions", "1", "--create", "Corrected plant codes", "--change", "Plant") == 0
        out = capsys.readouterr().out
        assert "v2" in out and "Corrected plant codes" in out
        assert cli("versions", "7", "--create", "nothing") == 1

    def test_export_json(self, cli, inventory_path, tmp_path):
        cli("ingest", str(inventory_path))
        output = tmp_path / "export.json"

        assert cli("export", "--output", str(output)) == 0
        exported = json.loads(output.read_text(encoding="utf-8"))
        assert exported["files"][0]["metadata"]["file_name"] == "inventory.xlsx"

    def test_export_csv_to_stdout(self, cli, inventory_path, capsys):
        cli("ingest", str(inventory_path))
        capsys.readouterr()

        assert cli("export", "--format", "csv", "--no-metadata", "--no-stats") == 0
        lines = capsys.readouterr().out.strip().splitlines()
        assert lines[0].startswith("file_name,document_type,sheet,")
        assert len(lines) == 4

    def test_reset_requires_confirmation(self, cli, inventory_path, capsys):
        cli("ingest", str(inventory_path))

        assert cli("reset") == 1
        assert cli("reset", "--yes") == 0
        capsys.readouterr()
        cli("history")
        assert "inventory.xlsx" not in capsys.readouterr().out


class TestSettingsErrors:
    """Test cases for invalid settings."""

    def test_invalid_environment(self, cli, monkeypatch):
        monkeypatch.setenv(ENV_MAX_FILE_SIZE, "huge")
        assert cli("history") == 2


class TestParser:
    """Test cases for argument parsing."""

    def test_command_required(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args([])

    def test_unknown_type_rejected(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["ingest", "x.xlsx", "--type", "ledger"])

    def test_invalid_date_rejected(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["export", "--since", "yesterday"])

    def test_export_dates_parsed(self):
        args = build_parser().parse_args(["export", "--since", "2024-01-01"])
        assert args.since.year == 2024
