"""Read-only views of a document for display, charting and export."""

from __future__ import annotations

import math
from typing import NamedTuple

import polars as pl

from measgrid.document import GridDocument


class CellView(NamedTuple):
    """Everything a table needs to draw one cell."""

    raw_value: str
    raw_uncertainty: str
    value: float
    uncertainty: float
    precision: int
    valid: bool
    editable: bool

    def format_value(self) -> str:
        return f"{self.value:.{self.precision}f}"

    def format_uncertainty(self) -> str:
        return f"{self.uncertainty:.{self.precision}f}"


class ChartPoint(NamedTuple):
    x: float
    y: float
    x_uncertainty: float
    y_uncertainty: float


def cell_view(document: GridDocument, row: int, column: int) -> CellView:
    """Build the display view of one cell.

    Raises:
        IndexError: If the cell does not exist.
    """
    cell = document.rows[row][column]
    col = document.columns[column]
    return CellView(
        raw_value=cell.raw_value,
        raw_uncertainty=cell.raw_uncertainty,
        value=cell.value,
        uncertainty=cell.uncertainty,
        precision=col.precision,
        valid=not math.isnan(cell.value),
        editable=col.is_input,
    )


def row_labels(document: GridDocument) -> list[str]:
    """1-based labels for every row but the trailing blank one."""
    return [str(i + 1) for i in range(len(document.data_rows))]


def chart_points(document: GridDocument) -> list[ChartPoint]:
    """(x, y) pairs from columns 1 and 0, skipping rows where either is NaN."""
    points: list[ChartPoint] = []
    for row in document.data_rows:
        y, x = row[0], row[1]
        if math.isnan(x.value) or math.isnan(y.value):
            continue
        points.append(ChartPoint(x.value, y.value, x.uncertainty, y.uncertainty))
    return points


def frame_column_names(document: GridDocument) -> list[str]:
    """Value/uncertainty header pairs (``name``, ``Δname``), made unique."""
    names: list[str] = []
    seen: set[str] = set()
    for i, column in enumerate(document.columns):
        name = column.name
        suffix = 0
        # Both headers of the pair must be free, e.g. "Δx" next to "x"
        while name in seen or f"Δ{name}" in seen:
            name = f"{column.name}_{i}" if not suffix else f"{column.name}_{i}_{suffix}"
            suffix += 1
        seen.update((name, f"Δ{name}"))
        names.extend([name, f"Δ{name}"])
    return names


def to_frame(document: GridDocument) -> pl.DataFrame:
    """Values and uncertainties of every data row as a polars DataFrame."""
    names = frame_column_names(document)
    data: dict[str, list[float]] = {name: [] for name in names}
    for row in document.data_rows:
        for c, cell in enumerate(row):
            data[names[2 * c]].append(cell.value)
            data[names[2 * c + 1]].append(cell.uncertainty)
    return pl.DataFrame(data, schema={name: pl.Float64 for name in names})
