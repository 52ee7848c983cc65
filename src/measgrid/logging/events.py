"""Unified event schema and module-level emit helpers.

All timestamps use UTC ISO-8601 with ``Z`` suffix.  The ``emit()``
family of functions is safe to call from any context -- failures are
swallowed and printed to stderr.
"""

from __future__ import annotations

import math
import sys
import time
import traceback
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class EventLevel(str, Enum):
    info = "info"
    warning = "warning"
    error = "error"


class EventType(str, Enum):
    # Document lifecycle
    document_loaded = "document_loaded"
    document_saved = "document_saved"

    # Structure
    column_added = "column_added"
    column_removed = "column_removed"
    column_renamed = "column_renamed"
    formula_changed = "formula_changed"
    formula_invalid = "formula_invalid"
    structural_reject = "structural_reject"

    # Recomputation
    row_recomputed = "row_recomputed"
    grid_recomputed = "grid_recomputed"
    sample_budget_exceeded = "sample_budget_exceeded"


# ---------------------------------------------------------------------------
# Error codes
# ---------------------------------------------------------------------------

PRIVILEGED_COLUMN = "privileged_column"
INDEX_OUT_OF_RANGE = "index_out_of_range"
DERIVED_CELL_EDIT = "derived_cell_edit"
DUPLICATE_COLUMN_NAME = "duplicate_column_name"
EMPTY_COLUMN_NAME = "empty_column_name"
FORMULA_PARSE_ERROR = "formula_parse_error"
FORMULA_REF_ERROR = "formula_ref_error"
FORMULA_FUNCTION_ERROR = "formula_function_error"


# ---------------------------------------------------------------------------
# Context sanitising
# ---------------------------------------------------------------------------

_MAX_VALUE_LEN = 256


def sanitize_context(context: dict[str, Any]) -> dict[str, Any]:
    """Return a JSON-safe copy of *context*.

    Rules:
    - Non-finite floats (NaN, +/-inf) become their string names, since
      NDJSON lines must stay strict JSON.
    - String values longer than 256 chars are truncated.
    - Nested dicts and lists are sanitised recursively.
    """
    return {k: _sanitize_value(v) for k, v in context.items()}


def _sanitize_value(v: Any) -> Any:
    if isinstance(v, dict):
        return sanitize_context(v)
    if isinstance(v, (list, tuple)):
        return [_sanitize_value(item) for item in v]
    if isinstance(v, float) and not math.isfinite(v):
        return str(v)
    if isinstance(v, str) and len(v) > _MAX_VALUE_LEN:
        return v[:_MAX_VALUE_LEN] + "...[truncated]"
    return v


# ---------------------------------------------------------------------------
# Attribution invariants
# ---------------------------------------------------------------------------

_COLUMN_EVENT_REQUIRED = {"column"}

_EVENT_REQUIRED_KEYS: dict[str, set[str]] = {
    EventType.document_loaded.value: {"path"},
    EventType.document_saved.value: {"path"},
    EventType.column_added.value: _COLUMN_EVENT_REQUIRED,
    EventType.column_removed.value: _COLUMN_EVENT_REQUIRED,
    EventType.column_renamed.value: _COLUMN_EVENT_REQUIRED,
    EventType.formula_changed.value: _COLUMN_EVENT_REQUIRED,
    EventType.formula_invalid.value: _COLUMN_EVENT_REQUIRED,
    EventType.structural_reject.value: {"operation"},
    EventType.row_recomputed.value: {"row"},
    EventType.grid_recomputed.value: {"rows"},
    EventType.sample_budget_exceeded.value: {"combinations"},
}


def _validate_attribution(event: GridEvent) -> GridEvent:
    """Check required context keys; downgrade to warning if missing."""
    required = _EVENT_REQUIRED_KEYS.get(event.event_type.value, set())
    if not required:
        return event
    missing = required - set(event.context.keys())
    if missing:
        ctx = dict(event.context)
        ctx["_missing_attribution"] = sorted(missing)
        return event.model_copy(update={"level": EventLevel.warning, "context": ctx})
    return event


# ---------------------------------------------------------------------------
# Event model
# ---------------------------------------------------------------------------


def _utc_now() -> str:
    """Return current UTC timestamp in ISO-8601 with Z suffix."""
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


class GridEvent(BaseModel):
    """A single structured log event."""

    schema_version: int = 1
    ts: str = Field(default_factory=_utc_now)
    level: EventLevel
    event_type: EventType
    context: dict[str, Any] = Field(default_factory=dict)
    message: str = ""
    error_code: str | None = None


# ---------------------------------------------------------------------------
# Module-level sink reference
# ---------------------------------------------------------------------------

# Lazily initialised when ``set_project_dir`` is called.
_sink: Any = None  # EventSink | None
_project_dir: Any = None


def set_project_dir(project_dir: Any) -> None:
    """Configure the module-level event sink for a project directory.

    This should be called early in a CLI command.  If it is never called,
    ``emit()`` silently discards events.

    Reads ``logging_fsync`` and ``logging_tail_bytes`` from the project
    config (``measgrid.yaml``) to configure the sink.
    """
    global _sink, _project_dir
    from pathlib import Path

    from measgrid.logging.sink import EventSink
    from measgrid.project import ConfigError, load_project_config

    _project_dir = project_dir

    fsync = False
    tail_bytes = None
    try:
        cfg = load_project_config(Path(project_dir))
        fsync = cfg.logging_fsync
        tail_bytes = cfg.logging_tail_bytes
    except ConfigError:
        _stderr_warning("invalid project config; logging with defaults")

    _sink = EventSink(Path(project_dir), fsync=fsync, tail_bytes=tail_bytes)


def reset_sink() -> None:
    """Detach the module-level sink so later events are discarded."""
    global _sink, _project_dir
    _sink = None
    _project_dir = None


def _get_sink() -> Any:
    """Return the module-level sink, or None."""
    return _sink


# ---------------------------------------------------------------------------
# Rate-limited stderr warnings
# ---------------------------------------------------------------------------

_last_stderr_ts: float = 0.0
_STDERR_INTERVAL_SECS = 60.0


def _stderr_warning(msg: str) -> None:
    """Print a warning to stderr, rate-limited to one per 60 seconds."""
    global _last_stderr_ts
    now = time.monotonic()
    if _last_stderr_ts and now - _last_stderr_ts < _STDERR_INTERVAL_SECS:
        return
    _last_stderr_ts = now
    try:
        print(f"[measgrid] {msg}", file=sys.stderr)
    except Exception:
        pass


# ---------------------------------------------------------------------------
# Safe emit helpers
# ---------------------------------------------------------------------------


def emit(event: GridEvent) -> None:
    """Write an event to the project event log.

    **Never raises.**  On failure, prints a rate-limited warning to stderr.

    Sanitises the context and validates attribution before writing.
    """
    try:
        sink = _get_sink()
        if sink is None:
            return
        event = event.model_copy(update={"context": sanitize_context(event.context)})
        event = _validate_attribution(event)
        sink.write(event)
    except Exception:
        _stderr_warning(f"logging failed: {traceback.format_exc()}")


def emit_info(
    event_type: EventType,
    message: str,
    context: dict[str, Any] | None = None,
) -> None:
    """Convenience: emit an info-level event."""
    emit(
        GridEvent(
            level=EventLevel.info,
            event_type=event_type,
            message=message,
            context=context or {},
        )
    )


def emit_warning(
    event_type: EventType,
    message: str,
    context: dict[str, Any] | None = None,
    *,
    error_code: str | None = None,
) -> None:
    """Convenience: emit a warning-level event."""
    emit(
        GridEvent(
            level=EventLevel.warning,
            event_type=event_type,
            message=message,
            context=context or {},
            error_code=error_code,
        )
    )


def emit_error(
    event_type: EventType,
    message: str,
    context: dict[str, Any] | None = None,
    *,
    error_code: str | None = None,
) -> None:
    """Convenience: emit an error-level event."""
    emit(
        GridEvent(
            level=EventLevel.error,
            event_type=event_type,
            message=message,
            context=context or {},
            error_code=error_code,
        )
    )
