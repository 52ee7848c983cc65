"""Row evaluation and grid-search uncertainty propagation.

Nominal values come from evaluating each derived column once, from the last
column to the first, so every referenced column is final before it is read.

Uncertainties come from an exhaustive worst-case search: each input column
is assumed to lie anywhere in ``[value - uncertainty, value + uncertainty]``.
The interval is sampled at ``2 * S + 1`` evenly spaced points, every
combination of samples across all input columns is evaluated, and each
derived column reports half of the range it covered.  The number of
evaluator calls per row is ``(2 * S + 1) ** inputs * derived``, so the
search is only practical for a handful of input columns.  Linear formulas
come out exact for any ``S``.
"""

from __future__ import annotations

import itertools
import logging
import math
from typing import Sequence

from measgrid.columns import Column
from measgrid.formulas import FormulaError
from measgrid.formulas.evaluator import ExpressionEvaluator, default_evaluator
from measgrid.grid import Row

logger = logging.getLogger(__name__)

# Samples per side of each input interval.  The shipped default; projects
# override it with ``sample_half_width`` in measgrid.yaml.
SAMPLE_HALF_WIDTH = 1

_EVAL_FAILURES = (FormulaError, ArithmeticError, ValueError, TypeError)


def sample_count(n_inputs: int, half_width: int = SAMPLE_HALF_WIDTH) -> int:
    """Number of sample combinations visited for *n_inputs* input columns."""
    return (2 * half_width + 1) ** n_inputs


def evaluate_nominal(
    row: Row,
    columns: Sequence[Column],
    evaluator: ExpressionEvaluator | None = None,
) -> Row:
    """Recompute the value of every derived cell of *row* in place.

    Input cells are left untouched.  A formula that fails to parse, names
    an unknown or out-of-order column, or fails at runtime sets its cell to
    NaN; the rest of the row is still evaluated.

    Returns:
        The same *row*, for chaining.
    """
    evaluator = evaluator or default_evaluator()
    context: dict[str, float] = {}

    for i in range(len(columns) - 1, -1, -1):
        column = columns[i]
        if column.formula:
            try:
                row[i].value = float(evaluator.evaluate(column.formula, context))
            except _EVAL_FAILURES as exc:
                logger.debug("column %r evaluated to NaN: %s", column.name, exc)
                row[i].value = math.nan
        # The highest-indexed column of a given name shadows lower ones
        context.setdefault(column.name, row[i].value)

    return row


def propagate(
    row: Row,
    columns: Sequence[Column],
    evaluator: ExpressionEvaluator | None = None,
    half_width: int = SAMPLE_HALF_WIDTH,
) -> Row:
    """Recompute nominal values and propagated uncertainties of *row*.

    Every derived cell's ``uncertainty`` becomes half the spread of its
    value over all sampled input combinations.  Input cells keep their
    ``value`` and ``uncertainty``.  A row without input columns has
    nothing to vary: its nominal values are refreshed and its derived
    uncertainties are left as they were.

    Raises:
        ValueError: If *half_width* is not a positive integer.

    Returns:
        The same *row*, for chaining.
    """
    if isinstance(half_width, bool) or not isinstance(half_width, int) or half_width < 1:
        raise ValueError(f"half_width must be a positive integer, got {half_width!r}")

    evaluator = evaluator or default_evaluator()
    evaluate_nominal(row, columns, evaluator)

    inputs = [i for i, column in enumerate(columns) if not column.formula]
    derived = [i for i, column in enumerate(columns) if column.formula]
    if not inputs:
        logger.debug("row has no input columns; derived uncertainties unchanged")
        return row

    reference_values = [(row[i].value, row[i].uncertainty) for i in inputs]
    maxs = [math.nan] * len(derived)
    mins = [math.nan] * len(derived)

    offsets = range(-half_width, half_width + 1)
    # product() advances the last input fastest, like an odometer
    for combination in itertools.product(offsets, repeat=len(inputs)):
        for i, (value, uncertainty), offset in zip(inputs, reference_values, combination):
            row[i].value = value + offset * uncertainty / half_width

        evaluate_nominal(row, columns, evaluator)

        for k, i in enumerate(derived):
            sample = row[i].value
            maxs[k] = _fmax(maxs[k], sample)
            mins[k] = _fmin(mins[k], sample)

    for i, (value, _uncertainty) in zip(inputs, reference_values):
        row[i].value = value
    for k, i in enumerate(derived):
        row[i].uncertainty = (maxs[k] - mins[k]) / 2

    return evaluate_nominal(row, columns, evaluator)


def _fmax(a: float, b: float) -> float:
    """IEEE maxNum: NaN only when both operands are NaN."""
    if math.isnan(a):
        return b
    if math.isnan(b):
        return a
    return max(a, b)


def _fmin(a: float, b: float) -> float:
    """IEEE minNum: NaN only when both operands are NaN."""
    if math.isnan(a):
        return b
    if math.isnan(b):
        return a
    return min(a, b)
