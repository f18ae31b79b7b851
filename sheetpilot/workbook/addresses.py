"""A1-style cell and range addresses."""
from __future__ import annotations

import re
from dataclasses import dataclass

_CELL_RE = re.compile(r"^\$?([A-Za-z]{1,3})\$?([1-9][0-9]*)$")


class AddressError(ValueError):
    pass


def column_to_index(column: str) -> int:
    """'A' -> 0, 'Z' -> 25, 'AA' -> 26."""
    result = 0
    for char in column.upper():
        if not "A" <= char <= "Z":
            raise AddressError(f"Invalid column: {column}")
        result = result * 26 + (ord(char) - 64)
    if result == 0:
        raise AddressError(f"Invalid column: {column}")
    return result - 1


def index_to_column(index: int) -> str:
    if index < 0:
        raise AddressError(f"Invalid column index: {index}")
    letters = ""
    index += 1
    while index:
        index, remainder = divmod(index - 1, 26)
        letters = chr(65 + remainder) + letters
    return letters


def parse_cell(address: str) -> tuple[int, int]:
    """Return the zero-based (row, column) of a single-cell address."""
    match = _CELL_RE.match(address.strip())
    if not match:
        raise AddressError(f"Invalid cell address: {address}")
    return int(match.group(2)) - 1, column_to_index(match.group(1))


def format_cell(row: int, column: int) -> str:
    return f"{index_to_column(column)}{row + 1}"


@dataclass(frozen=True, slots=True)
class CellRange:
    top: int
    left: int
    bottom: int
    right: int
    sheet: str | None = None

    @property
    def row_count(self) -> int:
        return self.bottom - self.top + 1

    @property
    def column_count(self) -> int:
        return self.right - self.left + 1

    @property
    def address(self) -> str:
        return f"{format_cell(self.top, self.left)}:{format_cell(self.bottom, self.right)}"

    def resized(self, rows: int, columns: int) -> CellRange:
        """Range anchored at this range's top-left corner with the given size."""
        if rows < 1 or columns < 1:
            raise AddressError("A range needs at least one row and one column.")
        return CellRange(
            top=self.top,
            left=self.left,
            bottom=self.top + rows - 1,
            right=self.left + columns - 1,
            sheet=self.sheet,
        )

    def cells(self):
        for row in range(self.top, self.bottom + 1):
            for column in range(self.left, self.right + 1):
                yield row, column


def parse_range(address: str) -> CellRange:
    """Parse 'A1', 'A1:C3' or 'Sheet1!A1:C3' into a normalized CellRange."""
    text = address.strip()
    sheet: str | None = None
    if "!" in text:
        sheet, text = text.rsplit("!", 1)
        sheet = sheet.strip("'")
    start, _, end = text.partition(":")
    top, left = parse_cell(start)
    bottom, right = parse_cell(end) if end else (top, left)
    return CellRange(
        top=min(top, bottom),
        left=min(left, right),
        bottom=max(top, bottom),
        right=max(left, right),
        sheet=sheet or None,
    )
