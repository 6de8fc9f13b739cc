"""Plain-text report tables with live (row-at-a-time) printing.

Columns are declared as dicts:

    {"name": "WindowLoad", "title": "WindowLoad", "min_width": 0, "format": None}

``format`` is an optional callable ``(row, column_name) -> value`` applied when
a row is added. Column widths only ever grow to fit their content, rounded up
to the next tab stop plus one tab of padding.
"""

from __future__ import annotations

import math
from collections.abc import Callable
from functools import cmp_to_key
from typing import NamedTuple

TAB_SIZE = 4


class LiveTable(NamedTuple):
    """Thunks for printing a table while its rows arrive."""

    start: Callable[[], str]
    print: Callable[[], str]
    end: Callable[[], str]


# ---------------------------------------------------------------------------
# Sorting
# ---------------------------------------------------------------------------


def _as_number(value) -> float | None:
    """Return value as a float if it looks numeric, else None."""
    if isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(number):
        return None
    return number


def _is_absent(value) -> bool:
    return value is None or value == ""


def compare_values(a, b) -> int:
    """Numbers numerically, text case-insensitively, numbers before text.

    An absent value (None or "") compares equal to anything, so rows missing
    the sort column keep their place relative to their neighbours.
    """
    if _is_absent(a) or _is_absent(b):
        return 0
    number_a = _as_number(a)
    number_b = _as_number(b)
    if number_a is not None and number_b is not None:
        return (number_a > number_b) - (number_a < number_b)
    if number_a is not None:
        return -1
    if number_b is not None:
        return 1
    text_a = str(a).casefold()
    text_b = str(b).casefold()
    return (text_a > text_b) - (text_a < text_b)


_value_key = cmp_to_key(compare_values)


class _ColumnSort:
    def __init__(self, table: ReportTable) -> None:
        self._table = table

    def asc(self) -> ReportTable:
        self._table._column_order.sort(key=_value_key)
        return self._table

    def desc(self) -> ReportTable:
        self._table._column_order.sort(key=_value_key, reverse=True)
        return self._table

    def reset(self) -> ReportTable:
        self._table._column_order = list(self._table._declared_order)
        return self._table


class _RowSort:
    def __init__(self, table: ReportTable, column_name: str | None) -> None:
        self._table = table
        self._column_name = column_name

    def asc(self) -> ReportTable:
        self._table._rows.sort(key=self._key)
        return self._table

    def desc(self) -> ReportTable:
        self._table._rows.sort(key=self._key, reverse=True)
        return self._table

    def reset(self) -> ReportTable:
        self._table._rows.sort(key=lambda row: row["index"])
        return self._table

    def _key(self, row: dict):
        return _value_key(row["values"].get(self._column_name))


class _TableSort:
    def __init__(self, table: ReportTable) -> None:
        self._table = table

    def columns(self) -> _ColumnSort:
        return _ColumnSort(self._table)

    def rows(self, column_name: str | None = None) -> _RowSort:
        return _RowSort(self._table, column_name)


# ---------------------------------------------------------------------------
# Table
# ---------------------------------------------------------------------------


class ReportTable:
    """Ordered columns and rows rendered as tab-aligned plain text."""

    def __init__(self, columns: list[dict] | None = None) -> None:
        self._columns: dict[str, dict] = {}
        self._column_order: list[str] = []
        self._declared_order: list[str] = []
        self._rows: list[dict] = []
        for column in columns or []:
            self.add_column(column)

    @property
    def column_order(self) -> list[str]:
        return list(self._column_order)

    @property
    def rows(self) -> list[dict]:
        """Stored rows (display values keyed by column name) in current order."""
        return [dict(row["values"]) for row in self._rows]

    def add_column(self, column: dict, index: int | None = None) -> ReportTable:
        """Append a column, or insert it at index when index is non-negative."""
        name = column["name"]
        title = column.get("title", "")
        if index is not None and index > -1:
            self._column_order.insert(index, name)
            self._declared_order.insert(index, name)
        else:
            self._column_order.append(name)
            self._declared_order.append(name)

        self._columns[name] = {
            "title": title,
            "max_length": max(column.get("min_width", 0), len(title)),
            "format": column.get("format"),
        }
        return self

    def add_row(self, row: dict) -> int:
        """Store a row, widening columns as needed. Returns the row index."""
        index = len(self._rows)
        values = {}
        for name, column in self._columns.items():
            formatter = column["format"]
            value = formatter(row, name) if formatter else row.get(name)
            length = len(_display(value))
            if column["max_length"] < length:
                column["max_length"] = length
            values[name] = value

        self._rows.append({"index": index, "values": values})
        return index

    def column_width(self, name: str) -> int:
        max_length = self._columns[name]["max_length"]
        return math.ceil(max_length / TAB_SIZE) * TAB_SIZE + TAB_SIZE

    def sort(self) -> _TableSort:
        return _TableSort(self)

    # -- rendering ----------------------------------------------------------

    def print(self) -> str:
        """Print the whole table to stdout and return the rendered text."""
        return self._print_header() + self._print_rows() + self._print_footer()

    def get(self) -> str:
        """Render the whole table without printing it."""
        return (
            self._print_header(suppress=True)
            + self._print_rows(suppress=True)
            + self._print_footer(suppress=True)
        )

    def live(self) -> LiveTable:
        return LiveTable(start=self._print_header, print=self._print_current_row, end=self._print_footer)

    def _print_header(self, suppress: bool = False) -> str:
        header = {name: column["title"] for name, column in self._columns.items()}
        return _emit(self._render_row(header), suppress)

    def _print_rows(self, suppress: bool = False) -> str:
        return "".join(_emit(self._render_row(row["values"]), suppress) for row in self._rows)

    def _print_current_row(self) -> str:
        if not self._rows:
            return ""
        # The most recently added row, even after a sort
        latest = max(self._rows, key=lambda row: row["index"])
        return _emit(self._render_row(latest["values"]))

    def _print_footer(self, suppress: bool = False) -> str:
        return _emit("", suppress)

    def _render_row(self, values: dict) -> str:
        cells = []
        for name in self._column_order:
            text = _display(values.get(name))
            cells.append(text.ljust(self.column_width(name)))
        return "".join(cells)


def _display(value) -> str:
    return "" if value is None else str(value)


def _emit(line: str, suppress: bool = False) -> str:
    if not suppress:
        print(line)
    return line + "\n"
