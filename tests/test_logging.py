"""Tests for the measgrid structured event logging system."""

from __future__ import annotations

import json
import math
from pathlib import Path

import pytest


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def project_dir(tmp_path: Path) -> Path:
    """Create a minimal project directory."""
    (tmp_path / "logs").mkdir()
    return tmp_path


@pytest.fixture
def sink(project_dir: Path):
    from measgrid.logging.sink import EventSink

    return EventSink(project_dir)


def _event(event_type, level="info", **context):
    from measgrid.logging.events import EventLevel, GridEvent

    return GridEvent(level=EventLevel(level), event_type=event_type, context=context, message="m")


def _read_lines(project_dir: Path) -> list[dict]:
    path = project_dir / "logs" / "events.ndjson"
    return [json.loads(line) for line in path.read_text().splitlines() if line.strip()]


# ---------------------------------------------------------------------------
# A) Event schema
# ---------------------------------------------------------------------------


class TestGridEvent:
    def test_event_defaults(self):
        from measgrid.logging.events import EventLevel, EventType, GridEvent

        evt = GridEvent(
            level=EventLevel.info,
            event_type=EventType.column_added,
            message="hello",
        )
        assert evt.schema_version == 1
        assert evt.ts.endswith("Z")
        assert evt.level == "info"
        assert evt.event_type == "column_added"
        assert evt.context == {}
        assert evt.error_code is None

    def test_event_serialization(self):
        from measgrid.logging.events import EventType

        d = _event(EventType.structural_reject, "warning", operation="remove_column").model_dump(mode="json")
        assert d["level"] == "warning"
        assert d["event_type"] == "structural_reject"
        assert d["context"] == {"operation": "remove_column"}

    def test_all_event_types_exist(self):
        from measgrid.logging.events import EventType

        expected = {
            "document_loaded",
            "document_saved",
            "column_added",
            "column_removed",
            "column_renamed",
            "formula_changed",
            "formula_invalid",
            "structural_reject",
            "row_recomputed",
            "grid_recomputed",
            "sample_budget_exceeded",
        }
        assert {e.value for e in EventType} == expected


class TestSanitizeContext:
    def test_non_finite_floats_become_strings(self):
        from measgrid.logging.events import sanitize_context

        out = sanitize_context({"a": math.nan, "b": math.inf, "c": 1.5})
        assert out == {"a": "nan", "b": "inf", "c": 1.5}

    def test_long_strings_truncated(self):
        from measgrid.logging.events import sanitize_context

        out = sanitize_context({"formula": "x" * 1000})
        assert len(out["formula"]) < 300
        assert out["formula"].endswith("...[truncated]")

    def test_nested(self):
        from measgrid.logging.events import sanitize_context

        out = sanitize_context({"inner": {"v": math.nan}, "list": [math.inf, 1]})
        assert out == {"inner": {"v": "nan"}, "list": ["inf", 1]}


# ---------------------------------------------------------------------------
# B) Sink
# ---------------------------------------------------------------------------


class TestEventSink:
    def test_write_creates_log(self, sink, project_dir):
        from measgrid.logging.events import EventType

        sink.write(_event(EventType.column_added, column="z"))
        lines = _read_lines(project_dir)
        assert len(lines) == 1
        assert lines[0]["event_type"] == "column_added"
        assert lines[0]["context"]["column"] == "z"

    def test_json_sort_keys(self, sink, project_dir):
        from measgrid.logging.events import EventType

        sink.write(_event(EventType.row_recomputed, row=0))
        raw = (project_dir / "logs" / "events.ndjson").read_text().strip()
        keys = list(json.loads(raw).keys())
        assert keys == sorted(keys)

    def test_append_mode(self, sink, project_dir):
        from measgrid.logging.events import EventType

        for i in range(3):
            sink.write(_event(EventType.row_recomputed, row=i))
        assert len(_read_lines(project_dir)) == 3

    def test_read_most_recent_first(self, sink):
        from measgrid.logging.events import EventType

        for i in range(3):
            sink.write(_event(EventType.row_recomputed, row=i))
        events = sink.read_events()
        assert [e["context"]["row"] for e in events] == [2, 1, 0]

    def test_read_filters(self, sink):
        from measgrid.logging.events import EventType

        sink.write(_event(EventType.row_recomputed, row=0))
        sink.write(_event(EventType.structural_reject, "warning", operation="rename_column"))
        assert len(sink.read_events(level="warning")) == 1
        assert len(sink.read_events(event_type="row_recomputed")) == 1

    def test_read_limit(self, sink):
        from measgrid.logging.events import EventType

        for i in range(10):
            sink.write(_event(EventType.row_recomputed, row=i))
        assert len(sink.read_events(limit=4)) == 4

    def test_read_missing_log_returns_empty(self, sink):
        assert sink.read_events() == []

    def test_tail_read_drops_partial_line(self, project_dir):
        from measgrid.logging.events import EventType
        from measgrid.logging.sink import EventSink

        small = EventSink(project_dir, tail_bytes=300)
        for i in range(20):
            small.write(_event(EventType.row_recomputed, row=i))
        events = small.read_events()
        assert events
        assert events[0]["context"]["row"] == 19
        assert len(events) < 20


# ---------------------------------------------------------------------------
# C) Emit helpers
# ---------------------------------------------------------------------------


class TestEmitHelpers:
    def test_emit_without_project_dir_is_noop(self, project_dir):
        from measgrid.logging.events import EventType, emit_info

        emit_info(EventType.column_added, "ignored", {"column": "z"})
        assert not (project_dir / "logs" / "events.ndjson").exists()

    def test_set_project_dir_enables_logging(self, project_dir):
        from measgrid.logging.events import EventType, emit_info, set_project_dir

        set_project_dir(project_dir)
        emit_info(EventType.column_added, "added", {"column": "z"})
        lines = _read_lines(project_dir)
        assert lines[-1]["message"] == "added"
        assert lines[-1]["level"] == "info"

    def test_emit_warning_sets_error_code(self, project_dir):
        from measgrid.logging.events import EventType, emit_warning, set_project_dir

        set_project_dir(project_dir)
        emit_warning(
            EventType.structural_reject,
            "nope",
            {"operation": "remove_column"},
            error_code="privileged_column",
        )
        assert _read_lines(project_dir)[-1]["error_code"] == "privileged_column"

    def test_emit_error(self, project_dir):
        from measgrid.logging.events import EventType, emit_error, set_project_dir

        set_project_dir(project_dir)
        emit_error(EventType.document_loaded, "broken", {"path": "grid.yaml"}, error_code="x")
        assert _read_lines(project_dir)[-1]["level"] == "error"

    def test_missing_attribution_downgrades(self, project_dir):
        from measgrid.logging.events import EventType, emit_info, set_project_dir

        set_project_dir(project_dir)
        emit_info(EventType.row_recomputed, "no row key")
        last = _read_lines(project_dir)[-1]
        assert last["level"] == "warning"
        assert last["context"]["_missing_attribution"] == ["row"]

    def test_nan_context_is_strict_json(self, project_dir):
        from measgrid.logging.events import EventType, emit_info, set_project_dir

        set_project_dir(project_dir)
        emit_info(EventType.row_recomputed, "nan", {"row": 0, "value": math.nan})
        raw = (project_dir / "logs" / "events.ndjson").read_text()
        assert "NaN" not in raw
        assert json.loads(raw.splitlines()[-1])["context"]["value"] == "nan"

    def test_invalid_config_still_logs(self, project_dir):
        from measgrid.logging.events import EventType, emit_info, set_project_dir

        (project_dir / "measgrid.yaml").write_text("sample_half_width: 0\n")
        set_project_dir(project_dir)
        emit_info(EventType.column_added, "added", {"column": "z"})
        assert _read_lines(project_dir)


# ---------------------------------------------------------------------------
# D) Document events
# ---------------------------------------------------------------------------


class TestDocumentEvents:
    def test_privileged_removal_logged(self, project_dir):
        from measgrid.document import GridDocument
        from measgrid.logging.events import set_project_dir

        set_project_dir(project_dir)
        doc = GridDocument.new()
        assert doc.remove_column(0) is False

        rejects = [e for e in _read_lines(project_dir) if e["event_type"] == "structural_reject"]
        assert len(rejects) == 1
        assert rejects[0]["level"] == "warning"
        assert rejects[0]["error_code"] == "privileged_column"
        assert rejects[0]["context"]["operation"] == "remove_column"

    def test_invalid_formula_logged(self, project_dir):
        from measgrid.document import GridDocument
        from measgrid.logging.events import set_project_dir

        set_project_dir(project_dir)
        doc = GridDocument.new()
        doc.set_formula(0, "q + 1")

        invalid = [e for e in _read_lines(project_dir) if e["event_type"] == "formula_invalid"]
        assert invalid[0]["error_code"] == "formula_ref_error"
        assert invalid[0]["context"]["column"] == "y"

    def test_sample_budget_warning(self, project_dir):
        from measgrid.document import GridDocument
        from measgrid.logging.events import set_project_dir
        from measgrid.project import GridConfig

        set_project_dir(project_dir)
        doc = GridDocument.new(GridConfig(sample_warning_threshold=1))
        doc.set_raw_value(0, 1, "1")

        budget = [e for e in _read_lines(project_dir) if e["event_type"] == "sample_budget_exceeded"]
        assert budget
        assert budget[-1]["context"]["combinations"] == 9
        assert budget[-1]["level"] == "warning"
