"""Tests for nominal row evaluation and uncertainty propagation."""

from __future__ import annotations

import math
from typing import Mapping

import pytest

from measgrid.columns import Column
from measgrid.engine import evaluate_nominal, propagate, sample_count
from measgrid.formulas import LarkEvaluator
from measgrid.grid import Cell


def _columns(*pairs: tuple[str, str]) -> list[Column]:
    return [Column(name=name, formula=formula) for name, formula in pairs]


def _input(value: float, uncertainty: float = 0.0) -> Cell:
    return Cell(raw_value=str(value), raw_uncertainty=str(uncertainty), value=value, uncertainty=uncertainty)


class CountingEvaluator(LarkEvaluator):
    """Counts evaluator calls."""

    def __init__(self) -> None:
        self.calls = 0

    def evaluate(self, expression: str, context: Mapping[str, float]) -> float:
        self.calls += 1
        return super().evaluate(expression, context)


# ────────────────────────────────────────────────────────────────
# Nominal evaluation
# ────────────────────────────────────────────────────────────────


class TestEvaluateNominal:
    """Tests for evaluate_nominal."""

    def test_dependency_order(self) -> None:
        """[y = x*2+z, x, z] with x=3, z=4 gives y=10."""
        columns = _columns(("y", "x*2+z"), ("x", ""), ("z", ""))
        row = [Cell(), _input(3.0), _input(4.0)]
        evaluate_nominal(row, columns)
        assert row[0].value == 10.0

    def test_chain_of_derived_columns(self) -> None:
        """A derived column may depend on another derived column further right."""
        columns = _columns(("y", "a + 1"), ("x", ""), ("a", "b * 2"), ("b", ""))
        row = [Cell(), _input(0.0), Cell(), _input(5.0)]
        evaluate_nominal(row, columns)
        assert row[2].value == 10.0
        assert row[0].value == 11.0

    def test_unparseable_input_gives_nan(self) -> None:
        columns = _columns(("y", "x*2+z"), ("x", ""), ("z", ""))
        x = Cell(raw_value="abc")
        x.reparse()
        row = [Cell(), x, _input(4.0)]
        evaluate_nominal(row, columns)
        assert math.isnan(row[0].value)

    def test_reference_to_lower_index_gives_nan(self) -> None:
        """A formula may not look left: the name is not in its context."""
        columns = _columns(("x", ""), ("y", "x * 2"))
        row = [_input(3.0), Cell()]
        evaluate_nominal(row, columns)
        assert math.isnan(row[1].value)

    def test_self_reference_gives_nan(self) -> None:
        columns = _columns(("y", "y + 1"), ("x", ""))
        row = [Cell(value=1.0), _input(1.0)]
        evaluate_nominal(row, columns)
        assert math.isnan(row[0].value)

    def test_failure_degrades_one_cell(self) -> None:
        columns = _columns(("y", "x + 1"), ("bad", "1 / (x - 3)"), ("x", ""))
        row = [Cell(), Cell(), _input(3.0)]
        evaluate_nominal(row, columns)
        assert math.isnan(row[1].value)
        assert row[0].value == 4.0

    def test_inputs_untouched(self) -> None:
        columns = _columns(("y", "x"), ("x", ""))
        x = _input(3.0, 0.5)
        row = [Cell(), x]
        evaluate_nominal(row, columns)
        assert (x.value, x.uncertainty, x.raw_value) == (3.0, 0.5, "3.0")

    def test_duplicate_names_resolve_to_highest_index(self) -> None:
        columns = _columns(("y", "a"), ("a", ""), ("a", ""))
        row = [Cell(), _input(1.0), _input(2.0)]
        evaluate_nominal(row, columns)
        assert row[0].value == 2.0

    def test_substitute_evaluator(self) -> None:
        """Any object with evaluate(expression, context) can drive the engine."""

        class SumEvaluator:
            def evaluate(self, expression: str, context: Mapping[str, float]) -> float:
                return sum(context.values())

        columns = _columns(("y", "anything"), ("x", ""), ("z", ""))
        row = [Cell(), _input(3.0), _input(4.0)]
        evaluate_nominal(row, columns, SumEvaluator())
        assert row[0].value == 7.0


# ────────────────────────────────────────────────────────────────
# Propagation
# ────────────────────────────────────────────────────────────────


class TestPropagate:
    """Tests for the grid-search uncertainty propagator."""

    @pytest.mark.parametrize("uncertainty", [1.0, 2.0])
    def test_identity_formula(self, uncertainty: float) -> None:
        """y = x with x = 5 +/- u gives y uncertainty u."""
        columns = _columns(("y", "x"), ("x", ""))
        row = [Cell(), _input(5.0, uncertainty)]
        propagate(row, columns)
        assert row[0].value == 5.0
        assert row[0].uncertainty == uncertainty

    def test_monotonic_in_uncertainty(self) -> None:
        columns = _columns(("y", "x^3 + x"), ("x", ""))
        spreads = []
        for u in (0.5, 1.0, 2.0):
            row = [Cell(), _input(5.0, u)]
            propagate(row, columns)
            spreads.append(row[0].uncertainty)
        assert spreads == sorted(spreads)

    @pytest.mark.parametrize("half_width", [1, 2, 5, 10])
    def test_linear_formula_exact_for_any_half_width(self, half_width: int) -> None:
        """y = 2*x with x = 10 +/- 1 gives exactly 2 regardless of sampling."""
        columns = _columns(("y", "2*x"), ("x", ""))
        row = [Cell(), _input(10.0, 1.0)]
        propagate(row, columns, half_width=half_width)
        assert row[0].uncertainty == 2.0
        assert row[0].value == 20.0

    def test_nominal_and_inputs_restored(self) -> None:
        columns = _columns(("y", "x*z"), ("x", ""), ("z", ""))
        row = [Cell(), _input(2.0, 1.0), _input(3.0, 1.0)]
        propagate(row, columns)
        assert row[1].value == 2.0
        assert row[2].value == 3.0
        assert row[1].uncertainty == 1.0
        assert row[2].uncertainty == 1.0
        assert row[0].value == 6.0

    def test_two_inputs_worst_case(self) -> None:
        """x in {1,2,3}, z in {2,3,4}: products span 2..12, half-range 5."""
        columns = _columns(("y", "x*z"), ("x", ""), ("z", ""))
        row = [Cell(), _input(2.0, 1.0), _input(3.0, 1.0)]
        propagate(row, columns)
        assert row[0].uncertainty == 5.0

    def test_non_monotonic_formula(self) -> None:
        """y = x*x with x = 0 +/- 1 spans 0..1."""
        columns = _columns(("y", "x*x"), ("x", ""))
        row = [Cell(), _input(0.0, 1.0)]
        propagate(row, columns)
        assert row[0].uncertainty == 0.5

    def test_sampling_density_changes_result(self) -> None:
        """A finer grid finds the minimum of abs(x - 0.3) closer to zero."""
        columns = _columns(("y", "abs(x - 0.3)"), ("x", ""))
        coarse = [Cell(), _input(0.0, 1.0)]
        fine = [Cell(), _input(0.0, 1.0)]
        propagate(coarse, columns, half_width=1)
        propagate(fine, columns, half_width=10)
        assert coarse[0].uncertainty == pytest.approx(0.5)
        assert fine[0].uncertainty == pytest.approx(0.65)

    def test_zero_uncertainty_gives_zero(self) -> None:
        columns = _columns(("y", "x * 3"), ("x", ""))
        row = [Cell(), _input(4.0)]
        propagate(row, columns)
        assert row[0].uncertainty == 0.0

    def test_nan_uncertainty_propagates(self) -> None:
        columns = _columns(("y", "x"), ("x", ""))
        row = [Cell(), _input(5.0, math.nan)]
        propagate(row, columns)
        assert math.isnan(row[0].uncertainty)
        assert row[0].value == 5.0

    def test_nan_samples_ignored_by_range(self) -> None:
        """1/(x-5) is undefined at the nominal point but not at the edges."""
        columns = _columns(("a", "1 / (x - 5)"), ("b", "x + 1"), ("x", ""))
        row = [Cell(), Cell(), _input(5.0, 1.0)]
        propagate(row, columns)
        assert math.isnan(row[0].value)
        assert row[0].uncertainty == 1.0
        assert row[1].value == 6.0
        assert row[1].uncertainty == 1.0

    def test_no_inputs_leaves_uncertainty(self) -> None:
        """With nothing to vary, derived uncertainties keep their cached value."""
        columns = _columns(("y", "x * 2"), ("x", "1 + 2"))
        row = [Cell(uncertainty=0.7), Cell(uncertainty=0.25)]
        propagate(row, columns)
        assert row[1].value == 3.0
        assert row[0].value == 6.0
        assert row[0].uncertainty == 0.7
        assert row[1].uncertainty == 0.25

    def test_idempotent(self) -> None:
        columns = _columns(("y", "sqrt(x) * z + x / z"), ("x", ""), ("z", ""))
        row = [Cell(), _input(2.0, 0.1), _input(3.0, 0.2)]
        propagate(row, columns)
        first = [(c.value, c.uncertainty) for c in row]
        propagate(row, columns)
        second = [(c.value, c.uncertainty) for c in row]
        assert first == second

    def test_evaluator_call_count(self) -> None:
        """(2S+1)^inputs samples per derived column, plus two nominal passes."""
        evaluator = CountingEvaluator()
        columns = _columns(("y", "x*z"), ("x", ""), ("z", ""))
        row = [Cell(), _input(2.0, 1.0), _input(3.0, 1.0)]
        propagate(row, columns, evaluator, half_width=2)
        assert evaluator.calls == sample_count(2, 2) * 1 + 2

    @pytest.mark.parametrize("half_width", [0, -1, True, 1.5])
    def test_invalid_half_width(self, half_width) -> None:
        columns = _columns(("y", "x"), ("x", ""))
        with pytest.raises(ValueError):
            propagate([Cell(), _input(1.0)], columns, half_width=half_width)


class TestSampleCount:
    def test_counts(self) -> None:
        assert sample_count(2) == 9
        assert sample_count(2, 10) == 441
        assert sample_count(0) == 1
