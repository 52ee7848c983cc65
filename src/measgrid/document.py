"""GridDocument: the single owned aggregate of columns and rows.

Every edit goes through the document, which keeps three invariants:

1. every row has exactly one cell per column;
2. the last row is blank and it is the only blank row;
3. derived cells are written only by the engine.

Editing an input cell recomputes that row.  Adding, removing or renaming a
column, or changing a formula, recomputes every row.  Misuse such as
removing one of the first two columns is rejected with a ``False`` return
and a warning event rather than an exception.
"""

from __future__ import annotations

import math

from measgrid.columns import Column, ColumnRegistry
from measgrid.engine import propagate, sample_count
from measgrid.formulas import (
    FormulaError,
    FormulaEvalError,
    FormulaFunctionError,
    FormulaParseError,
    FormulaRefError,
)
from measgrid.formulas.evaluator import ExpressionEvaluator, default_evaluator
from measgrid.grid import Cell, Row, is_blank_row, new_row, parse_uncertainty, parse_value
from measgrid.logging.events import (
    DERIVED_CELL_EDIT,
    DUPLICATE_COLUMN_NAME,
    EMPTY_COLUMN_NAME,
    FORMULA_FUNCTION_ERROR,
    FORMULA_PARSE_ERROR,
    FORMULA_REF_ERROR,
    INDEX_OUT_OF_RANGE,
    PRIVILEGED_COLUMN,
    EventType,
    emit_info,
    emit_warning,
)
from measgrid.project import GridConfig

DEFAULT_COLUMNS = ("y", "x")
NEW_COLUMN_NAME = "a"

_FORMULA_ERROR_CODES: dict[type[FormulaError], str] = {
    FormulaParseError: FORMULA_PARSE_ERROR,
    FormulaRefError: FORMULA_REF_ERROR,
    FormulaFunctionError: FORMULA_FUNCTION_ERROR,
}


class GridDocument:
    """Columns plus rows, edited in place by one writer.

    Usage::

        doc = GridDocument.new()
        doc.set_formula(0, "x * 2")
        doc.set_raw_value(0, 1, "10")
        doc.set_raw_uncertainty(0, 1, "1")
        doc.rows[0][0].uncertainty  # 2.0
    """

    def __init__(
        self,
        config: GridConfig | None = None,
        evaluator: ExpressionEvaluator | None = None,
    ) -> None:
        self.config = config or GridConfig()
        self.evaluator = evaluator or default_evaluator()
        self.columns = ColumnRegistry()
        self.rows: list[Row] = []

    @classmethod
    def new(
        cls,
        config: GridConfig | None = None,
        evaluator: ExpressionEvaluator | None = None,
    ) -> GridDocument:
        """Return a document with the default ``y``/``x`` columns and one blank row."""
        doc = cls(config, evaluator)
        for name in DEFAULT_COLUMNS:
            doc.add_column(name)
        doc.ensure_trailing_blank_row()
        return doc

    # ------------------------------------------------------------------
    # Shape
    # ------------------------------------------------------------------

    @property
    def data_rows(self) -> list[Row]:
        """All rows except the trailing blank one."""
        return self.rows[:-1]

    def _column_in_range(self, index: int) -> bool:
        return 0 <= index < len(self.columns)

    def _row_in_range(self, index: int) -> bool:
        return 0 <= index < len(self.rows)

    def _reject(self, operation: str, message: str, error_code: str, **context) -> bool:
        emit_warning(
            EventType.structural_reject,
            message,
            {"operation": operation, **context},
            error_code=error_code,
        )
        return False

    # ------------------------------------------------------------------
    # Columns
    # ------------------------------------------------------------------

    def add_column(self, name: str) -> int:
        """Append an input column and one fresh cell to every row.

        A blank *name* falls back to ``"a"``.

        Returns:
            Index of the new column.
        """
        name = name.strip() or NEW_COLUMN_NAME
        index = self.columns.append(Column(name=name, precision=self.config.default_precision))
        for row in self.rows:
            row.append(Cell())
        emit_info(EventType.column_added, f"Added column {name!r}", {"column": name, "index": index})
        self.recompute_all()
        return index

    def remove_column(self, index: int) -> bool:
        """Remove a column and its cell from every row.

        Returns:
            ``False`` (and nothing changes) for the first two columns or an
            index out of range.
        """
        if self.columns.is_privileged(index):
            return self._reject(
                "remove_column",
                f"Column {index} cannot be removed",
                PRIVILEGED_COLUMN,
                index=index,
            )
        if not self._column_in_range(index):
            return self._reject(
                "remove_column", f"No column at index {index}", INDEX_OUT_OF_RANGE, index=index
            )

        column = self.columns.pop(index)
        for row in self.rows:
            del row[index]
        emit_info(
            EventType.column_removed,
            f"Removed column {column.name!r}",
            {"column": column.name, "index": index},
        )
        self.reparse_and_recompute_all()
        self.ensure_trailing_blank_row()
        return True

    def rename_column(self, index: int, name: str) -> bool:
        """Rename a column and recompute the grid.

        Returns:
            ``False`` for column 0, an index out of range, a blank name or a
            name another column already uses.
        """
        name = name.strip()
        if index == 0:
            return self._reject(
                "rename_column", "Column 0 cannot be renamed", PRIVILEGED_COLUMN, index=index
            )
        if not self._column_in_range(index):
            return self._reject(
                "rename_column", f"No column at index {index}", INDEX_OUT_OF_RANGE, index=index
            )
        if not name:
            return self._reject(
                "rename_column", "Column name cannot be empty", EMPTY_COLUMN_NAME, index=index
            )
        if any(c.name == name for i, c in enumerate(self.columns) if i != index):
            return self._reject(
                "rename_column",
                f"Column name {name!r} is already used",
                DUPLICATE_COLUMN_NAME,
                index=index,
                name=name,
            )

        old_name = self.columns[index].name
        self.columns.rename(index, name)
        emit_info(
            EventType.column_renamed,
            f"Renamed column {old_name!r} to {name!r}",
            {"column": name, "previous": old_name, "index": index},
        )
        self.recompute_all()
        return True

    def set_formula(self, index: int, formula: str) -> bool:
        """Set a column's formula and recompute the grid.

        An empty formula turns the column back into an input column whose
        values come from its raw text again.  Formulas that do not check
        out are stored anyway (their cells become NaN) and logged.
        """
        if not self._column_in_range(index):
            return self._reject(
                "set_formula", f"No column at index {index}", INDEX_OUT_OF_RANGE, index=index
            )

        column = self.columns[index]
        column.formula = formula.strip()
        emit_info(
            EventType.formula_changed,
            f"Formula of {column.name!r} set",
            {"column": column.name, "formula": column.formula},
        )

        error = self.check_formula(index)
        if error is not None:
            emit_warning(
                EventType.formula_invalid,
                str(error),
                {"column": column.name, "formula": column.formula},
                error_code=_FORMULA_ERROR_CODES.get(type(error)),
            )

        self.reparse_and_recompute_all()
        self.ensure_trailing_blank_row()
        return True

    def set_precision(self, index: int, precision: int) -> bool:
        """Set a column's display precision, clamped to the configured range."""
        if not self._column_in_range(index):
            return self._reject(
                "set_precision", f"No column at index {index}", INDEX_OUT_OF_RANGE, index=index
            )
        self.columns[index].precision = self.config.clamp_precision(precision)
        return True

    def check_formula(self, index: int) -> FormulaError | None:
        """Return the error a column's formula would raise, if any.

        The formula is evaluated against the names it may reference, all
        bound to NaN.  Only parse, reference and function errors are
        reported; runtime failures depend on the data and are not.
        """
        column = self.columns[index]
        if not column.formula:
            return None
        context = {name: math.nan for name in self.columns.names_after(index)}
        try:
            self.evaluator.evaluate(column.formula, context)
        except FormulaEvalError:
            return None
        except FormulaError as exc:
            return exc
        return None

    # ------------------------------------------------------------------
    # Rows
    # ------------------------------------------------------------------

    def add_row(self) -> Row:
        """Append a row of fresh cells and return it."""
        row = new_row(len(self.columns))
        self.rows.append(row)
        return row

    def ensure_trailing_blank_row(self) -> None:
        """Leave exactly one blank row, at the bottom of the grid.

        The last row with raw text in any input column marks the boundary.
        Blank rows past the one right after it are dropped; if there is no
        row after it, a blank one is appended.  Blank rows above the
        boundary (a data row whose text was cleared) are dropped as well,
        so later rows move up.
        """
        keep = 0
        for i in range(len(self.rows) - 1, -1, -1):
            if not is_blank_row(self.rows[i], self.columns):
                keep = i + 1
                break

        if keep >= len(self.rows):
            self.add_row()
        else:
            del self.rows[keep + 1:]

        self.rows[:keep] = [row for row in self.rows[:keep] if not is_blank_row(row, self.columns)]

    # ------------------------------------------------------------------
    # Cell edits
    # ------------------------------------------------------------------

    def set_raw_value(self, row: int, column: int, text: str) -> bool:
        """Store the raw value text of an input cell and recompute its row."""
        return self._edit_cell("set_raw_value", row, column, value=text)

    def set_raw_uncertainty(self, row: int, column: int, text: str) -> bool:
        """Store the raw uncertainty text of an input cell and recompute its row."""
        return self._edit_cell("set_raw_uncertainty", row, column, uncertainty=text)

    def set_raw_cell(
        self, row: int, column: int, value: str | None = None, uncertainty: str | None = None
    ) -> bool:
        """Store both raw texts of an input cell as one edit.

        The row is recomputed and blank rows are trimmed once, after both
        texts are in place, so clearing the value while setting the
        uncertainty cannot shift the edit onto another row.  ``None`` leaves
        that text unchanged.
        """
        return self._edit_cell("set_raw_cell", row, column, value=value, uncertainty=uncertainty)

    def _edit_cell(
        self,
        operation: str,
        row: int,
        column: int,
        *,
        value: str | None = None,
        uncertainty: str | None = None,
    ) -> bool:
        if not self._row_in_range(row) or not self._column_in_range(column):
            return self._reject(
                operation,
                f"No cell at row {row}, column {column}",
                INDEX_OUT_OF_RANGE,
                row=row,
                index=column,
            )
        if self.columns[column].is_derived:
            return self._reject(
                operation,
                f"Column {self.columns[column].name!r} is computed and cannot be edited",
                DERIVED_CELL_EDIT,
                row=row,
                index=column,
            )

        cell = self.rows[row][column]
        if value is not None:
            cell.raw_value = value.strip()
            cell.value = parse_value(cell.raw_value)
        if uncertainty is not None:
            cell.raw_uncertainty = uncertainty.strip()
            cell.uncertainty = parse_uncertainty(cell.raw_uncertainty)

        self.recompute_row(row)
        self.ensure_trailing_blank_row()
        return True

    # ------------------------------------------------------------------
    # Recomputation
    # ------------------------------------------------------------------

    def recompute_row(self, index: int) -> None:
        """Recompute nominal values and uncertainties of one row."""
        self._check_sample_budget()
        propagate(
            self.rows[index],
            self.columns,
            self.evaluator,
            half_width=self.config.sample_half_width,
        )
        emit_info(EventType.row_recomputed, f"Recomputed row {index}", {"row": index})

    def recompute_all(self) -> None:
        """Recompute every row except the trailing blank one."""
        self._check_sample_budget()
        for row in self.data_rows:
            propagate(row, self.columns, self.evaluator, half_width=self.config.sample_half_width)
        emit_info(
            EventType.grid_recomputed,
            f"Recomputed {len(self.data_rows)} row(s)",
            {"rows": len(self.data_rows)},
        )

    def reparse_and_recompute_all(self) -> None:
        """Reparse every input cell's raw text, then recompute every row."""
        for i, column in enumerate(self.columns):
            if column.is_input:
                for row in self.rows:
                    row[i].reparse()
        self.recompute_all()

    def _check_sample_budget(self) -> None:
        combinations = sample_count(len(self.columns.input_indices()), self.config.sample_half_width)
        if combinations > self.config.sample_warning_threshold:
            emit_warning(
                EventType.sample_budget_exceeded,
                f"{combinations} sample combinations per row",
                {
                    "combinations": combinations,
                    "threshold": self.config.sample_warning_threshold,
                },
            )
