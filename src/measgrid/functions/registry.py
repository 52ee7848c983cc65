"""Central registry for formula functions."""

from __future__ import annotations

from typing import Callable


_FORMULA_FUNCTIONS: dict[str, Callable[..., float]] = {}


def register_function(name: str) -> Callable:
    """Decorator that registers a formula function by name.

    Names are stored lower-case; lookups are case-insensitive.

    Args:
        name: The name formulas use to call this function.

    Returns:
        The original function, unmodified.
    """

    def decorator(fn: Callable[..., float]) -> Callable[..., float]:
        _FORMULA_FUNCTIONS[name.lower()] = fn
        return fn

    return decorator


def get_function(name: str) -> Callable[..., float]:
    """Look up a registered formula function.

    Args:
        name: The function name (any case).

    Returns:
        The callable.

    Raises:
        KeyError: If no function is registered under *name*.
    """
    key = name.lower()
    if key not in _FORMULA_FUNCTIONS:
        raise KeyError(f"Unknown formula function: {name!r}")
    return _FORMULA_FUNCTIONS[key]


def list_functions() -> list[str]:
    """Return the sorted names of all registered formula functions."""
    return sorted(_FORMULA_FUNCTIONS)
