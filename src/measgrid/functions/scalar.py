"""Built-in math functions callable from column formulas.

Every function receives already-evaluated float arguments.  Domain errors
(``ValueError``) and overflow (``OverflowError``) propagate to the
evaluator, which reports them as evaluation failures.  NaN arguments yield
NaN so that an invalid input cell invalidates everything derived from it.
"""

from __future__ import annotations

import math

from measgrid.formulas.errors import FormulaFunctionError
from measgrid.functions.registry import register_function


def _expect(name: str, args: tuple[float, ...], count: int) -> None:
    if len(args) != count:
        plural = "argument" if count == 1 else "arguments"
        raise FormulaFunctionError(name, f"{name} requires exactly {count} {plural}")


def _unary(name: str, fn) -> None:
    def wrapper(*args: float) -> float:
        _expect(name, args, 1)
        return fn(args[0])

    wrapper.__name__ = f"fn_{name}"
    wrapper.__doc__ = f"{name}(x)"
    register_function(name)(wrapper)


for _name, _fn in (
    ("sqrt", math.sqrt),
    ("exp", math.exp),
    ("ln", math.log),
    ("log10", math.log10),
    ("log2", math.log2),
    ("sin", math.sin),
    ("cos", math.cos),
    ("tan", math.tan),
    ("asin", math.asin),
    ("acos", math.acos),
    ("atan", math.atan),
    ("sinh", math.sinh),
    ("cosh", math.cosh),
    ("tanh", math.tanh),
    ("abs", abs),
):
    _unary(_name, _fn)


@register_function("log")
def fn_log(*args: float) -> float:
    """log(x) is the natural logarithm; log(x, base) uses the given base."""
    if len(args) not in (1, 2):
        raise FormulaFunctionError("log", "log requires 1-2 arguments")
    return math.log(*args)


@register_function("atan2")
def fn_atan2(*args: float) -> float:
    _expect("atan2", args, 2)
    return math.atan2(args[0], args[1])


@register_function("pow")
def fn_pow(*args: float) -> float:
    _expect("pow", args, 2)
    return math.pow(args[0], args[1])


@register_function("hypot")
def fn_hypot(*args: float) -> float:
    if not args:
        raise FormulaFunctionError("hypot", "hypot requires at least 1 argument")
    return math.hypot(*args)


@register_function("floor")
def fn_floor(*args: float) -> float:
    _expect("floor", args, 1)
    if math.isnan(args[0]):
        return math.nan
    return float(math.floor(args[0]))


@register_function("ceil")
def fn_ceil(*args: float) -> float:
    _expect("ceil", args, 1)
    if math.isnan(args[0]):
        return math.nan
    return float(math.ceil(args[0]))


@register_function("round")
def fn_round(*args: float) -> float:
    """round(x) or round(x, digits)."""
    if len(args) not in (1, 2):
        raise FormulaFunctionError("round", "round requires 1-2 arguments")
    digits = int(args[1]) if len(args) == 2 else 0
    return float(round(args[0], digits))


@register_function("min")
def fn_min(*args: float) -> float:
    if not args:
        raise FormulaFunctionError("min", "min requires at least 1 argument")
    if any(math.isnan(a) for a in args):
        return math.nan
    return min(args)


@register_function("max")
def fn_max(*args: float) -> float:
    if not args:
        raise FormulaFunctionError("max", "max requires at least 1 argument")
    if any(math.isnan(a) for a in args):
        return math.nan
    return max(args)
