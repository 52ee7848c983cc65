"""Column descriptors and the ordered column registry.

Column order encodes the only legal dependency direction: the formula of
the column at index ``i`` may reference only columns at indices ``> i``.
Evaluating from the last column to the first therefore always sees every
dependency already computed, and cycles cannot be expressed.
"""

from __future__ import annotations

from typing import Iterator

from pydantic import BaseModel, Field

DEFAULT_PRECISION = 3

# Columns 0 and 1 are the dependent/independent pair used by charting.
PRIVILEGED_COLUMNS = 2


class Column(BaseModel):
    """A grid column: name, formula text and display precision.

    An empty formula marks an input column, whose cells are typed in.
    Any other formula marks a derived column, whose cells are computed.
    """

    name: str = Field(min_length=1)
    formula: str = ""
    precision: int = Field(default=DEFAULT_PRECISION, ge=0)

    @property
    def is_input(self) -> bool:
        return not self.formula

    @property
    def is_derived(self) -> bool:
        return bool(self.formula)


class ColumnRegistry:
    """Ordered list of columns plus a name -> index map.

    The map is rebuilt on every structural change (append, removal,
    rename).  When two columns share a name the higher index wins, which
    is the one visible from every lower column's formula.
    """

    def __init__(self, columns: list[Column] | None = None) -> None:
        self._columns: list[Column] = list(columns or [])
        self._index: dict[str, int] = {}
        self._reindex()

    def __len__(self) -> int:
        return len(self._columns)

    def __iter__(self) -> Iterator[Column]:
        return iter(self._columns)

    def __getitem__(self, index: int) -> Column:
        return self._columns[index]

    def append(self, column: Column) -> int:
        """Append *column* and return its index."""
        self._columns.append(column)
        self._reindex()
        return len(self._columns) - 1

    def pop(self, index: int) -> Column:
        """Remove and return the column at *index*."""
        column = self._columns.pop(index)
        self._reindex()
        return column

    def rename(self, index: int, name: str) -> None:
        self._columns[index].name = name
        self._reindex()

    def index_of(self, name: str) -> int:
        """Return the index of the column called *name*.

        Raises:
            KeyError: If no column has that name.
        """
        return self._index[name]

    def names(self) -> list[str]:
        return [c.name for c in self._columns]

    def names_after(self, index: int) -> list[str]:
        """Names a formula at *index* may reference."""
        return [c.name for c in self._columns[index + 1:]]

    def input_indices(self) -> list[int]:
        return [i for i, c in enumerate(self._columns) if c.is_input]

    def is_privileged(self, index: int) -> bool:
        return 0 <= index < PRIVILEGED_COLUMNS

    def _reindex(self) -> None:
        self._index = {c.name: i for i, c in enumerate(self._columns)}
