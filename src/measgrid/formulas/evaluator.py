"""Tree-walking evaluator for parsed column formulas.

Formulas evaluate to floats.  Every value in the context is a float, and
comparison operators yield ``1.0`` or ``0.0``.  NaN operands propagate:
arithmetic does this on its own, comparisons and the built-in functions
check for it explicitly.

The engine talks to expressions only through the ``ExpressionEvaluator``
protocol, so another expression language can be plugged in without touching
the propagation code.
"""

from __future__ import annotations

import math
from typing import Mapping, Protocol

from lark import Token, Tree

from measgrid.formulas.errors import (
    FormulaError,
    FormulaEvalError,
    FormulaFunctionError,
    FormulaRefError,
)
from measgrid.formulas.parser import parse_formula
from measgrid.functions.registry import get_function

# Names resolved when no column of the same name is in scope.
CONSTANTS: dict[str, float] = {
    "pi": math.pi,
    "e": math.e,
}


class ExpressionEvaluator(Protocol):
    """Capability for evaluating an expression against named values."""

    def evaluate(self, expression: str, context: Mapping[str, float]) -> float:
        """Evaluate *expression* with *context* bound.

        Raises:
            FormulaError: On parse failure, unknown names or runtime failure.
        """
        ...


class LarkEvaluator:
    """Default ``ExpressionEvaluator`` backed by the lark formula grammar."""

    def evaluate(self, expression: str, context: Mapping[str, float]) -> float:
        tree = parse_formula(expression)
        return evaluate_formula(tree, context)


_default = LarkEvaluator()


def default_evaluator() -> LarkEvaluator:
    """Return the shared default evaluator."""
    return _default


def evaluate_formula(tree: Tree, context: Mapping[str, float]) -> float:
    """Evaluate a parsed formula tree against a column context.

    Args:
        tree: Parse tree from ``parse_formula()``.
        context: Mapping of column names to their current values.

    Returns:
        The computed value.

    Raises:
        FormulaRefError: If the formula names something not in *context*.
        FormulaFunctionError: For unknown functions or bad arity.
        FormulaEvalError: For runtime failures such as division by zero.
    """
    try:
        result = _eval(tree, context)
    except FormulaError:
        raise
    except ZeroDivisionError as exc:
        raise FormulaEvalError("Division by zero in formula") from exc
    except (ArithmeticError, ValueError, TypeError) as exc:
        raise FormulaEvalError(f"Evaluation failed: {exc}") from exc
    if not isinstance(result, float):
        raise FormulaEvalError(f"Formula result is not a real number: {result!r}")
    return result


def _eval(node: Tree | Token, ctx: Mapping[str, float]) -> float:
    """Recursively evaluate a tree node."""
    if isinstance(node, Token):
        return float(node)

    rule = node.data

    # Start rule just wraps expr
    if rule == "start":
        return _eval(node.children[0], ctx)

    # Arithmetic
    if rule == "add":
        return _eval(node.children[0], ctx) + _eval(node.children[1], ctx)
    if rule == "sub":
        return _eval(node.children[0], ctx) - _eval(node.children[1], ctx)
    if rule == "mul":
        return _eval(node.children[0], ctx) * _eval(node.children[1], ctx)
    if rule == "div":
        left = _eval(node.children[0], ctx)
        right = _eval(node.children[1], ctx)
        if right == 0:
            raise ZeroDivisionError("Division by zero in formula")
        return left / right
    if rule == "mod":
        # Remainder keeps the sign of the dividend
        return math.fmod(_eval(node.children[0], ctx), _eval(node.children[1], ctx))
    if rule == "neg":
        return -_eval(node.children[0], ctx)
    if rule == "pos":
        return _eval(node.children[0], ctx)
    if rule == "pow":
        base = _eval(node.children[0], ctx)
        exp = _eval(node.children[1], ctx)
        # math.pow never returns a complex number, unlike **
        return math.pow(base, exp)

    # Comparison
    if rule in _COMPARISONS:
        left = _eval(node.children[0], ctx)
        right = _eval(node.children[1], ctx)
        if math.isnan(left) or math.isnan(right):
            return math.nan
        return 1.0 if _COMPARISONS[rule](left, right) else 0.0

    # Literals
    if rule == "number":
        return float(node.children[0])

    # Column reference, then constants
    if rule == "ref":
        name = str(node.children[0])
        if name in ctx:
            return float(ctx[name])
        if name in CONSTANTS:
            return CONSTANTS[name]
        raise FormulaRefError(name, available=sorted(ctx.keys()))

    # Function call
    if rule == "func_call":
        return _eval_func(node, ctx)

    raise FormulaError(f"Unknown node type: {rule}")


_COMPARISONS = {
    "gt": lambda a, b: a > b,
    "lt": lambda a, b: a < b,
    "gte": lambda a, b: a >= b,
    "lte": lambda a, b: a <= b,
    "eq": lambda a, b: a == b,
    "neq": lambda a, b: a != b,
}


def _eval_func(node: Tree, ctx: Mapping[str, float]) -> float:
    """Evaluate a function call node."""
    func_name = str(node.children[0])
    args_node = node.children[1]
    raw_args = args_node.children if args_node.children else []

    try:
        fn = get_function(func_name)
    except KeyError:
        raise FormulaFunctionError(func_name) from None

    args = [_eval(arg, ctx) for arg in raw_args]
    return float(fn(*args))
