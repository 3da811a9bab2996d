"""Unit tests for the parsing pipeline."""

import pytest

from prism_ingest.core.errors import ErrorKind, PipelineAbort
from prism_ingest.core.pipeline import ParsingPipeline
from prism_ingest.core.reader import UploadedFile
from prism_ingest.schemas.registry import COMBINED_FILE_CONFIG, INVENTORY, OSR, create_custom_config


class FakeClock:
    """Monotonic clock advanced by hand."""

    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


@pytest.fixture
def events():
    return []


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def pipeline(events, clock):
    return ParsingPipeline(COMBINED_FILE_CONFIG, on_progress=events.append, clock=clock)


class TestFileChecks:
    """Test cases for size and format guards."""

    def test_size_checked_before_format(self, events, clock):
        config = create_custom_config(COMBINED_FILE_CONFIG, max_file_size=5)
        pipeline = ParsingPipeline(config, on_progress=events.append, clock=clock)

        with pytest.raises(PipelineAbort) as exc_info:
            pipeline.read(UploadedFile("notes.txt", b"0123456789"))

        error = exc_info.value.error
        assert error.kind == ErrorKind.SIZE
        assert error.details == {"file_size": 10, "max_size": 5}

    def test_unsupported_extension(self, pipeline):
        with pytest.raises(PipelineAbort) as exc_info:
            pipeline.read(UploadedFile("notes.csv", b"a,b"))

        assert exc_info.value.error.kind == ErrorKind.FORMAT
        assert ".xlsx" in exc_info.value.error.message

    def test_corrupt_workbook_is_parsing_error(self, pipeline):
        with pytest.raises(PipelineAbort) as exc_info:
            pipeline.decode(b"garbage", "broken.xlsx")

        assert exc_info.value.error.kind == ErrorKind.PARSING


class TestPhases:
    """Test cases for phase progression and progress events."""

    def test_full_run_emits_phases_in_order(self, pipeline, events, inventory_file):
        content = pipeline.read(inventory_file)
        raw_sheets = pipeline.decode(content, inventory_file.name)
        validations = pipeline.validate(raw_sheets)
        document = pipeline.process(inventory_file, validations, [INVENTORY])
        pipeline.complete()

        phases = [event.phase for event in events]
        assert phases[:3] == ["reading", "parsing", "validating"]
        assert set(phases[3:-1]) == {"processing"}
        assert phases[-1] == "complete"
        assert events[-1].progress == 100
        progress = [event.progress for event in events]
        assert progress == sorted(progress)
        assert document.detected_document_types == [INVENTORY]
        assert document.file_size == inventory_file.size

    def test_processing_progress_per_sheet(self, pipeline, events, osr_file):
        raw_sheets = pipeline.decode(pipeline.read(osr_file), osr_file.name)
        validations = pipeline.validate(raw_sheets)
        pipeline.process(osr_file, validations, [OSR])

        per_sheet = [event for event in events if event.current_sheet]
        assert [event.current_sheet for event in per_sheet] == ["OSR Main Sheet HC", "OSR Summary"]
        assert [event.progress for event in per_sheet] == [60, 75]
        assert per_sheet[0].total_sheets == 2

    def test_error_phase_keeps_progress(self, pipeline, events):
        pipeline.emit("validating", 40, "Validating")
        pipeline.fail(PipelineAbort.of(ErrorKind.SHEETS, "no sheets").error)

        assert events[-1].phase == "error"
        assert events[-1].progress == 40

    def test_progress_never_decreases(self, pipeline, events):
        pipeline.emit("processing", 70, "later")
        pipeline.emit("processing", 60, "earlier")

        assert events[-1].progress == 70

    def test_validate_ignores_sheets_of_other_types(self, pipeline, make_workbook, inventory_table, osr_tables):
        content = make_workbook(dict(osr_tables, Inventory=inventory_table))
        validations = pipeline.validate(pipeline.decode(content, "mixed.xlsx"))

        assert validations[INVENTORY].is_valid
        assert validations[OSR].is_valid
        assert not any(w.startswith("Extra sheets") for w in validations[INVENTORY].warnings)
        assert not any(w.startswith("Extra sheets") for w in validations[OSR].warnings)


class TestCheckpoints:
    """Test cases for cancellation and timeout."""

    def test_timeout(self, events, clock, inventory_file):
        config = create_custom_config(COMBINED_FILE_CONFIG, processing_timeout=1.0)
        pipeline = ParsingPipeline(config, on_progress=events.append, clock=clock)
        content = pipeline.read(inventory_file)
        clock.now = 5.0

        with pytest.raises(PipelineAbort) as exc_info:
            pipeline.decode(content, inventory_file.name)

        error = exc_info.value.error
        assert error.kind == ErrorKind.TIMEOUT
        assert error.details["timeout"] == 1.0

    def test_cancel(self, events, clock, inventory_file):
        cancelled = []
        pipeline = ParsingPipeline(
            COMBINED_FILE_CONFIG,
            on_progress=events.append,
            should_cancel=lambda: bool(cancelled),
            clock=clock,
        )
        content = pipeline.read(inventory_file)
        cancelled.append(True)

        with pytest.raises(PipelineAbort) as exc_info:
            pipeline.decode(content, inventory_file.name)

        error = exc_info.value.error
        assert error.kind == ErrorKind.PARSING
        assert error.details["cancelled"] is True
