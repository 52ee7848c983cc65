"""Column formula parsing and evaluation.

Public API::

    from measgrid.formulas import default_evaluator, parse_formula, extract_refs
"""

from measgrid.formulas.errors import (
    FormulaError,
    FormulaEvalError,
    FormulaFunctionError,
    FormulaParseError,
    FormulaRefError,
)
from measgrid.formulas.evaluator import (
    CONSTANTS,
    ExpressionEvaluator,
    LarkEvaluator,
    default_evaluator,
    evaluate_formula,
)
from measgrid.formulas.parser import extract_refs, parse_formula

__all__ = [
    "CONSTANTS",
    "ExpressionEvaluator",
    "FormulaError",
    "FormulaEvalError",
    "FormulaFunctionError",
    "FormulaParseError",
    "FormulaRefError",
    "LarkEvaluator",
    "default_evaluator",
    "evaluate_formula",
    "extract_refs",
    "parse_formula",
]
