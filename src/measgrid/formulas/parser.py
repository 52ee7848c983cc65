"""Lark-based parser for column formulas.

Supports:
- Column references by bare name: ``x``, ``temp_2``
- Standard arithmetic, remainder, exponentiation and comparisons
- Function calls from the formula function registry: ``sqrt(x)``, ``max(a, b)``
- Numbers with optional exponent: ``1.5e-3``
"""

from __future__ import annotations

from functools import lru_cache

from lark import Lark, Token, Tree, Visitor

from measgrid.formulas.errors import FormulaParseError

# LALR(1) grammar for column formulas.
# Operator precedence (lowest to highest):
#   1. Comparison: < > <= >= == !=
#   2. Addition/subtraction: + -
#   3. Multiplication/division/remainder: * / %
#   4. Unary plus/minus: + -
#   5. Exponentiation: ^ (right-associative)
#   6. Atoms: number, function call, reference, parenthesized expr
GRAMMAR = r"""
start: expr

?expr: comparison

?comparison: addition
    | comparison ">" addition   -> gt
    | comparison "<" addition   -> lt
    | comparison ">=" addition  -> gte
    | comparison "<=" addition  -> lte
    | comparison "==" addition  -> eq
    | comparison "!=" addition  -> neq

?addition: multiplication
    | addition "+" multiplication  -> add
    | addition "-" multiplication  -> sub

?multiplication: unary
    | multiplication "*" unary  -> mul
    | multiplication "/" unary  -> div
    | multiplication "%" unary  -> mod

?unary: exponentiation
    | "-" unary  -> neg
    | "+" unary  -> pos

?exponentiation: atom
    | atom "^" unary  -> pow

?atom: NUMBER                   -> number
    | NAME "(" args ")"         -> func_call
    | NAME                      -> ref
    | "(" expr ")"

args: expr ("," expr)*
    |

NAME: /[A-Za-z_][A-Za-z0-9_]*/

%import common.NUMBER
%import common.WS
%ignore WS
"""

_parser = Lark(GRAMMAR, parser="lalr", start="start")


def parse_formula(text: str) -> Tree:
    """Parse a column formula into a Lark Tree.

    Parse trees are cached per formula text, so re-evaluating the same
    formula at every sample point parses it only once.

    Args:
        text: The formula text, e.g. ``"x * 2 + z"``.

    Returns:
        A Lark parse tree.

    Raises:
        FormulaParseError: If the formula is empty or has invalid syntax.
    """
    result = _parse_cached(text.strip())
    if isinstance(result, FormulaParseError):
        raise result.with_traceback(None)
    return result


@lru_cache(maxsize=1024)
def _parse_cached(text: str) -> Tree | FormulaParseError:
    # Failures are cached too, so a broken formula is parsed once per text
    if not text:
        return FormulaParseError("Formula is empty", position=0)
    try:
        return _parser.parse(text)
    except Exception as exc:
        # Extract position info from Lark exception if available
        pos = getattr(exc, "column", None)
        error = FormulaParseError(str(exc), position=pos)
        error.__cause__ = exc
        return error


class _RefCollector(Visitor):
    """Visitor that collects column references from a parse tree."""

    def __init__(self) -> None:
        self.refs: set[str] = set()

    def ref(self, tree: Tree) -> None:
        token = tree.children[0]
        if isinstance(token, Token):
            self.refs.add(str(token))


def extract_refs(tree: Tree) -> set[str]:
    """Extract all referenced names from a parsed formula tree.

    Function names are not included; constants such as ``pi`` are, since
    a column may shadow them.

    Args:
        tree: A parse tree from ``parse_formula()``.

    Returns:
        Set of referenced names.
    """
    collector = _RefCollector()
    collector.visit(tree)
    return collector.refs
