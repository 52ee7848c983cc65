"""Document persistence as flat string key/value pairs.

Only authoritative state is stored: per-column name, formula and precision,
and per-cell raw value and uncertainty text.  Numeric caches are rebuilt on
load by replaying the column and row additions and recomputing the grid.

Keys::

    column_count                 line_count
    column_name_<c>              column_expression_<c>     column_precision_<c>
    grid_value_<r>_<c>           grid_uncertainty_<r>_<c>

On disk the pairs are a single YAML mapping.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Mapping

import yaml

from measgrid.document import GridDocument
from measgrid.formulas.evaluator import ExpressionEvaluator
from measgrid.logging.events import EventType, emit_info
from measgrid.project import GridConfig

COLUMN_COUNT_KEY = "column_count"
LINE_COUNT_KEY = "line_count"
COLUMN_NAME_KEY = "column_name"
COLUMN_EXPRESSION_KEY = "column_expression"
COLUMN_PRECISION_KEY = "column_precision"
GRID_VALUE_KEY = "grid_value"
GRID_UNCERTAINTY_KEY = "grid_uncertainty"


class StorageError(Exception):
    """Raised when a stored document cannot be read."""


def dump_pairs(document: GridDocument) -> dict[str, str]:
    """Flatten *document* into string key/value pairs."""
    pairs: dict[str, str] = {
        COLUMN_COUNT_KEY: str(len(document.columns)),
        LINE_COUNT_KEY: str(len(document.rows)),
    }
    for c, column in enumerate(document.columns):
        pairs[f"{COLUMN_NAME_KEY}_{c}"] = column.name
        pairs[f"{COLUMN_EXPRESSION_KEY}_{c}"] = column.formula
        pairs[f"{COLUMN_PRECISION_KEY}_{c}"] = str(column.precision)
    for r, row in enumerate(document.rows):
        for c, cell in enumerate(row):
            pairs[f"{GRID_VALUE_KEY}_{r}_{c}"] = cell.raw_value
            pairs[f"{GRID_UNCERTAINTY_KEY}_{r}_{c}"] = cell.raw_uncertainty
    return pairs


def load_pairs(
    pairs: Mapping[str, Any],
    config: GridConfig | None = None,
    evaluator: ExpressionEvaluator | None = None,
) -> GridDocument:
    """Rebuild a document from key/value pairs.

    Fewer than two stored columns (or none at all) yields the default
    ``y``/``x`` document.  Missing or malformed entries fall back to empty
    text and the default precision.
    """
    column_count = _int_or_none(pairs.get(COLUMN_COUNT_KEY))
    if column_count is None or column_count < 2:
        return GridDocument.new(config, evaluator)

    document = GridDocument(config, evaluator)
    for c in range(column_count):
        index = document.add_column(_text(pairs.get(f"{COLUMN_NAME_KEY}_{c}")))
        column = document.columns[index]
        column.formula = _text(pairs.get(f"{COLUMN_EXPRESSION_KEY}_{c}"))
        precision = _int_or_none(pairs.get(f"{COLUMN_PRECISION_KEY}_{c}"))
        if precision is not None:
            column.precision = document.config.clamp_precision(precision)

    line_count = _int_or_none(pairs.get(LINE_COUNT_KEY)) or 0
    for r in range(max(line_count, 0)):
        row = document.add_row()
        for c, cell in enumerate(row):
            cell.raw_value = _text(pairs.get(f"{GRID_VALUE_KEY}_{r}_{c}"))
            cell.raw_uncertainty = _text(pairs.get(f"{GRID_UNCERTAINTY_KEY}_{r}_{c}"))

    document.ensure_trailing_blank_row()
    document.reparse_and_recompute_all()
    return document


def save_document(document: GridDocument, path: Path) -> None:
    """Write *document* to *path* as a YAML mapping."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(yaml.safe_dump(dump_pairs(document), sort_keys=False, allow_unicode=True))
    emit_info(
        EventType.document_saved,
        f"Saved document to {path.name}",
        {"path": str(path), "rows": len(document.data_rows), "columns": len(document.columns)},
    )


def load_document(
    path: Path,
    config: GridConfig | None = None,
    evaluator: ExpressionEvaluator | None = None,
) -> GridDocument:
    """Read a document from *path*; a missing file gives the default document.

    Raises:
        StorageError: If the file is not valid YAML or not a mapping.
    """
    if not path.exists():
        return GridDocument.new(config, evaluator)

    try:
        pairs = yaml.safe_load(path.read_text()) or {}
    except yaml.YAMLError as exc:
        raise StorageError(f"Invalid YAML in {path}: {exc}") from exc
    if not isinstance(pairs, dict):
        raise StorageError(f"{path} must contain a mapping of keys to strings")

    document = load_pairs(pairs, config, evaluator)
    emit_info(
        EventType.document_loaded,
        f"Loaded document from {path.name}",
        {"path": str(path), "rows": len(document.data_rows), "columns": len(document.columns)},
    )
    return document


def _text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def _int_or_none(value: Any) -> int | None:
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        return None
