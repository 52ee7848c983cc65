"""Formula function registry and built-in math functions."""

# Ensure built-in functions are registered on import
import measgrid.functions.scalar  # noqa: F401
from measgrid.functions.registry import get_function, list_functions, register_function

__all__ = ["get_function", "list_functions", "register_function"]
