"""Grid cells, rows and raw-text parsing."""

from __future__ import annotations

import math
from typing import Sequence

from measgrid.columns import Column


def parse_value(text: str) -> float:
    """Parse a raw value; anything unparseable (including empty) is NaN."""
    try:
        return float(text.strip())
    except ValueError:
        return math.nan


def parse_uncertainty(text: str) -> float:
    """Parse a raw uncertainty; empty text is exactly zero, junk is NaN."""
    text = text.strip()
    if not text:
        return 0.0
    return parse_value(text)


class Cell:
    """One grid entry.

    ``raw_value`` and ``raw_uncertainty`` are the authoritative text for
    input columns.  ``value`` and ``uncertainty`` are the numeric cache:
    parsed from the text for input columns, computed by the engine for
    derived columns.
    """

    __slots__ = ("raw_value", "raw_uncertainty", "value", "uncertainty")

    def __init__(
        self,
        raw_value: str = "",
        raw_uncertainty: str = "",
        value: float = math.nan,
        uncertainty: float = 0.0,
    ) -> None:
        self.raw_value = raw_value
        self.raw_uncertainty = raw_uncertainty
        self.value = value
        self.uncertainty = uncertainty

    def __repr__(self) -> str:
        return (
            f"Cell(raw_value={self.raw_value!r}, raw_uncertainty={self.raw_uncertainty!r}, "
            f"value={self.value!r}, uncertainty={self.uncertainty!r})"
        )

    @property
    def has_text(self) -> bool:
        return bool(self.raw_value or self.raw_uncertainty)

    def reparse(self) -> None:
        """Refresh ``value`` and ``uncertainty`` from the raw text."""
        self.value = parse_value(self.raw_value)
        self.uncertainty = parse_uncertainty(self.raw_uncertainty)


Row = list[Cell]


def new_row(width: int) -> Row:
    """Return a row of *width* fresh cells."""
    return [Cell() for _ in range(width)]


def is_blank_row(row: Row, columns: Sequence[Column]) -> bool:
    """True when no input column of *row* carries any raw text."""
    return not any(
        column.is_input and cell.has_text for column, cell in zip(columns, row)
    )
