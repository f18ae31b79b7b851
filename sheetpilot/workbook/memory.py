"""In-memory Workbook for local runs and tests."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Sequence

from sheetpilot.workbook.addresses import (
    CellRange,
    column_to_index,
    parse_cell,
    parse_range,
)
from sheetpilot.workbook.base import (
    CHART_TYPES,
    CONDITIONAL_FORMAT_TYPES,
    FILTER_TYPES,
    PIVOT_AGGREGATIONS,
    Values2D,
    Workbook,
)

DEFAULT_COLUMN_WIDTH = 8.43
DEFAULT_ROW_HEIGHT = 15.0


def display_value(value: Any) -> str:
    """Text of a cell value the way a spreadsheet shows it."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _as_number(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            return None
    return None


@dataclass(slots=True)
class Worksheet:
    name: str
    cells: dict[tuple[int, int], Any] = field(default_factory=dict)
    formats: dict[tuple[int, int], dict[str, Any]] = field(default_factory=dict)
    merges: list[CellRange] = field(default_factory=list)
    charts: list[dict[str, Any]] = field(default_factory=list)
    pivot_tables: list[dict[str, Any]] = field(default_factory=list)
    conditional_formats: list[dict[str, Any]] = field(default_factory=list)
    column_widths: dict[int, float] = field(default_factory=dict)
    row_heights: dict[int, float] = field(default_factory=dict)
    hidden_rows: set[int] = field(default_factory=set)
    auto_filter: CellRange | None = None

    def get(self, row: int, column: int) -> Any:
        return self.cells.get((row, column))

    def put(self, row: int, column: int, value: Any) -> None:
        if value is None or value == "":
            self.cells.pop((row, column), None)
        else:
            self.cells[(row, column)] = value

    def block(self, rng: CellRange) -> list[list[Any]]:
        return [
            ["" if self.get(row, column) is None else self.get(row, column) for column in range(rng.left, rng.right + 1)]
            for row in range(rng.top, rng.bottom + 1)
        ]

    def used_range(self) -> CellRange:
        if not self.cells:
            return CellRange(0, 0, 0, 0, self.name)
        rows = [row for row, _ in self.cells]
        columns = [column for _, column in self.cells]
        return CellRange(min(rows), min(columns), max(rows), max(columns), self.name)


class InMemoryWorkbook(Workbook):
    def __init__(self, sheet_names: Sequence[str] = ("Sheet1",), *, selection: str = "A1") -> None:
        if not sheet_names:
            raise ValueError("A workbook needs at least one worksheet.")
        self.sheets: dict[str, Worksheet] = {name: Worksheet(name=name) for name in sheet_names}
        self.active_sheet = sheet_names[0]
        self.selection = parse_range(selection)

    # helpers

    @property
    def active(self) -> Worksheet:
        return self.sheets[self.active_sheet]

    def select(self, address: str) -> None:
        self.selection = parse_range(address)

    def activate(self, sheet_name: str) -> None:
        self._sheet(sheet_name)
        self.active_sheet = sheet_name

    def _sheet(self, name: str | None) -> Worksheet:
        if name is None:
            return self.active
        for sheet_name, sheet in self.sheets.items():
            if sheet_name.lower() == name.lower():
                return sheet
        raise ValueError(f"Worksheet '{name}' does not exist.")

    def _resolve(self, address: str | None) -> tuple[Worksheet, CellRange]:
        rng = parse_range(address) if address else self.selection
        return self._sheet(rng.sheet), rng

    # cells

    async def write_range(self, start_cell: str, values: Values2D) -> str:
        if not values or not values[0]:
            raise ValueError("values must contain at least one row and one column.")
        sheet, anchor = self._resolve(start_cell)
        target = anchor.resized(len(values), max(len(row) for row in values))
        for offset, row in enumerate(values):
            for column_offset, value in enumerate(row):
                sheet.put(target.top + offset, target.left + column_offset, value)
        return target.address

    async def write_to_selected_range(self, values: Values2D) -> str:
        if not values or not values[0]:
            raise ValueError("values must contain at least one row and one column.")
        sheet, rng = self._resolve(None)
        trimmed = [row[: rng.column_count] for row in values[: rng.row_count]]
        for offset, row in enumerate(trimmed):
            for column_offset, value in enumerate(row):
                sheet.put(rng.top + offset, rng.left + column_offset, value)
        if len(values) > rng.row_count or any(len(row) > rng.column_count for row in values):
            return f"{rng.address} (Note: Data was trimmed to fit the range)"
        return rng.address

    async def read_cell(self, cell_address: str) -> str:
        sheet, rng = self._resolve(cell_address)
        return display_value(sheet.get(rng.top, rng.left))

    async def format_cell(
        self,
        cell_address: str,
        *,
        font_color: str | None = None,
        background_color: str | None = None,
        bold: bool | None = None,
    ) -> str:
        sheet, rng = self._resolve(cell_address)
        for cell in rng.cells():
            fmt = sheet.formats.setdefault(cell, {})
            if font_color:
                fmt["font_color"] = font_color
            if background_color:
                fmt["background_color"] = background_color
            if bold is not None:
                fmt["bold"] = bold
        return f"Formatted cell {cell_address} successfully"

    async def get_selected_range_info(self) -> dict[str, Any]:
        sheet, rng = self._resolve(None)
        return {
            "address": rng.address,
            "rowCount": rng.row_count,
            "columnCount": rng.column_count,
            "values": sheet.block(rng),
        }

    # charts and pivots

    async def add_chart(self, data_range: str, chart_type: str) -> None:
        if chart_type not in CHART_TYPES:
            raise ValueError(f"Unsupported chart type: {chart_type}")
        sheet, rng = self._resolve(data_range)
        sheet.charts.append({
            "type": chart_type,
            "source": rng.address,
            "title": "New Chart",
            "position": ("A15", "F30"),
        })

    async def add_pivot_table(
        self,
        source_data_range: str,
        destination_cell: str,
        row_fields: Sequence[str],
        column_fields: Sequence[str],
        data_fields: Sequence[dict[str, str]],
        filter_fields: Sequence[str] = (),
    ) -> None:
        sheet, source = self._resolve(source_data_range)
        parse_cell(destination_cell.split("!")[-1])
        headers = [display_value(value) for value in sheet.block(source)[0]]
        requested = [*row_fields, *column_fields, *(item["name"] for item in data_fields), *filter_fields]
        for name in requested:
            if name not in headers:
                raise ValueError(f"Field '{name}' was not found in {source.address}.")
        for item in data_fields:
            if item["function"] not in PIVOT_AGGREGATIONS:
                raise ValueError(f"Unsupported aggregation: {item['function']}")
        sheet.pivot_tables.append({
            "name": "NewPivotTable",
            "source": source.address,
            "destination": destination_cell,
            "rows": list(row_fields),
            "columns": list(column_fields),
            "data": [dict(item) for item in data_fields],
            "filters": list(filter_fields),
        })

    # ranges

    async def read_range(self, range_address: str | None = None) -> dict[str, Any]:
        sheet, rng = self._resolve(range_address)
        return {"address": rng.address, "values": sheet.block(rng)}

    async def merge_cells(self, range_address: str, across: bool = False) -> str:
        sheet, rng = self._resolve(range_address)
        if across:
            for row in range(rng.top, rng.bottom + 1):
                sheet.merges.append(CellRange(row, rng.left, row, rng.right, sheet.name))
        else:
            sheet.merges.append(rng)
        return f"Merged cells in range {range_address}"

    async def unmerge_cells(self, range_address: str) -> str:
        sheet, rng = self._resolve(range_address)
        sheet.merges = [merged for merged in sheet.merges if not _overlaps(merged, rng)]
        return f"Unmerged cells in range {range_address}"

    async def autofit_columns(self, range_address: str) -> str:
        sheet, rng = self._resolve(range_address)
        for column in range(rng.left, rng.right + 1):
            longest = max(
                (len(display_value(sheet.get(row, column))) for row in range(rng.top, rng.bottom + 1)),
                default=0,
            )
            sheet.column_widths[column] = max(DEFAULT_COLUMN_WIDTH, float(longest) + 1)
        return f"Auto-fitted columns in range {range_address}"

    async def autofit_rows(self, range_address: str) -> str:
        sheet, rng = self._resolve(range_address)
        for row in range(rng.top, rng.bottom + 1):
            lines = max(
                (display_value(sheet.get(row, column)).count("\n") + 1 for column in range(rng.left, rng.right + 1)),
                default=1,
            )
            sheet.row_heights[row] = DEFAULT_ROW_HEIGHT * lines
        return f"Auto-fitted rows in range {range_address}"

    # data

    async def filter_data(
        self,
        range_address: str | None,
        column: str,
        filter_type: str,
        criteria: dict[str, Any],
    ) -> dict[str, Any]:
        if filter_type not in FILTER_TYPES:
            raise ValueError(f"Unsupported filter type: {filter_type}")
        predicate = _filter_predicate(filter_type, criteria or {})
        sheet, rng = self._resolve(range_address)
        column_index = column_to_index(column)
        if not rng.left <= column_index <= rng.right:
            raise ValueError(f"Column {column} is outside the range {rng.address}.")

        sheet.auto_filter = rng
        sheet.hidden_rows.difference_update(range(rng.top, rng.bottom + 1))
        visible = 1
        for row in range(rng.top + 1, rng.bottom + 1):
            if predicate(sheet.get(row, column_index)):
                visible += 1
            else:
                sheet.hidden_rows.add(row)
        return {"range": rng.address, "filteredCount": visible}

    async def sort_data(
        self,
        range_address: str | None,
        sort_fields: Sequence[dict[str, Any]],
        match_case: bool = False,
        has_headers: bool = False,
    ) -> str:
        sheet, rng = self._resolve(range_address)
        if not sort_fields:
            raise ValueError("sortFields must name at least one column.")
        first_row = rng.top + 1 if has_headers else rng.top
        rows = [
            [sheet.get(row, column) for column in range(rng.left, rng.right + 1)]
            for row in range(first_row, rng.bottom + 1)
        ]
        for sort_field in reversed(list(sort_fields)):
            key = int(sort_field["key"])
            if not 0 <= key < rng.column_count:
                raise ValueError(f"Sort key {key} is outside the range {rng.address}.")
            rows = _sort_rows(
                rows,
                key,
                ascending=bool(sort_field.get("ascending", True)),
                match_case=match_case,
                text_as_number=sort_field.get("dataOption") == "textAsNumber",
            )
        for offset, values in enumerate(rows):
            for column_offset, value in enumerate(values):
                sheet.put(first_row + offset, rng.left + column_offset, value)
        return f"Sorted range {rng.address}"

    async def enable_filter_ui(self, range_address: str | None = None, has_headers: bool = True) -> str:
        sheet, rng = self._resolve(range_address)
        sheet.auto_filter = rng
        return f"AutoFilter UI enabled on range {rng.address}"

    # conditional formats

    async def apply_conditional_format(
        self,
        range_address: str,
        format_type: str,
        rule: dict[str, Any],
        format: dict[str, Any] | None = None,
    ) -> str:
        if format_type not in CONDITIONAL_FORMAT_TYPES:
            raise ValueError(f"Unsupported conditional format type: {format_type}")
        if format_type == "Custom" and "formula" not in rule:
            raise ValueError("Custom conditional formats require a 'formula' in the rule.")
        sheet, rng = self._resolve(range_address)
        sheet.conditional_formats.append({
            "range": rng,
            "type": format_type,
            "rule": dict(rule),
            "format": dict(format or {}),
        })
        return f"Conditional format applied to range {range_address}"

    async def clear_conditional_formats(self, range_address: str) -> str:
        sheet, rng = self._resolve(range_address)
        sheet.conditional_formats = [
            item for item in sheet.conditional_formats if not _overlaps(item["range"], rng)
        ]
        return f"Conditional formats cleared from range {range_address}"

    # worksheets

    async def manage_worksheet(self, action: str, sheet_name: str) -> str:
        if action == "create":
            if any(name.lower() == sheet_name.lower() for name in self.sheets):
                raise ValueError(f"Worksheet '{sheet_name}' already exists.")
            self.sheets[sheet_name] = Worksheet(name=sheet_name)
            return f'New worksheet "{sheet_name}" has been created.'
        if action == "delete":
            sheet = self._sheet(sheet_name)
            if len(self.sheets) == 1:
                raise ValueError("A workbook must contain at least one visible worksheet.")
            del self.sheets[sheet.name]
            if self.active_sheet == sheet.name:
                self.active_sheet = next(iter(self.sheets))
            return f'Worksheet "{sheet_name}" has been deleted.'
        raise ValueError('Invalid action. Use "create" or "delete".')

    async def get_worksheet_names(self) -> list[str]:
        return list(self.sheets)

    async def get_active_worksheet_name(self) -> str:
        return self.active_sheet

    async def get_sheet_content(
        self,
        sheet_name: str | None = None,
        *,
        include_metadata: bool = True,
        row_separator: str = "\n",
        column_separator: str = "\t",
    ) -> str:
        sheet = self._sheet(sheet_name)
        used = sheet.used_range()
        content = row_separator.join(
            column_separator.join(display_value(value) for value in row) for row in sheet.block(used)
        )
        if include_metadata:
            return f"Sheet {sheet.name} ({used.address}):{row_separator}{content}"
        return content


def _overlaps(a: CellRange, b: CellRange) -> bool:
    return not (a.right < b.left or b.right < a.left or a.bottom < b.top or b.bottom < a.top)


def _require(criteria: dict[str, Any], *keys: str, filter_type: str) -> None:
    if all(criteria.get(key) is not None for key in keys):
        return
    if len(keys) == 1:
        raise ValueError(f"{filter_type} filter requires a '{keys[0]}' property in criteria")
    names = " and ".join(f"'{key}'" for key in keys)
    raise ValueError(f"{filter_type} filter requires {names} properties in criteria")


def _filter_predicate(filter_type: str, criteria: dict[str, Any]):
    if filter_type == "Equals":
        _require(criteria, "value", filter_type=filter_type)
        expected = display_value(criteria["value"]).lower()
        return lambda cell: display_value(cell).lower() == expected

    if filter_type in {"GreaterThan", "LessThan"}:
        _require(criteria, "value", filter_type=filter_type)
        bound = _as_number(criteria["value"])
        if bound is None:
            raise ValueError(f"{filter_type} filter requires a numeric 'value'")

        def compare(cell: Any) -> bool:
            number = _as_number(cell)
            if number is None:
                return False
            return number > bound if filter_type == "GreaterThan" else number < bound

        return compare

    if filter_type == "Between":
        _require(criteria, "lowerBound", "upperBound", filter_type=filter_type)
        lower = _as_number(criteria["lowerBound"])
        upper = _as_number(criteria["upperBound"])
        if lower is None or upper is None:
            raise ValueError("Between filter requires numeric bounds")

        def between(cell: Any) -> bool:
            number = _as_number(cell)
            return number is not None and lower <= number <= upper

        return between

    if filter_type == "Contains":
        _require(criteria, "value", filter_type=filter_type)
        needle = display_value(criteria["value"]).lower()
        return lambda cell: needle in display_value(cell).lower()

    values = criteria.get("values")
    if not isinstance(values, list) or not values:
        raise ValueError("Values filter requires a non-empty 'values' array property in criteria")
    allowed = {display_value(value).lower() for value in values}
    return lambda cell: display_value(cell).lower() in allowed


def _sort_rows(
    rows: list[list[Any]],
    key: int,
    *,
    ascending: bool,
    match_case: bool,
    text_as_number: bool,
) -> list[list[Any]]:
    # Blanks stay at the bottom in either direction.
    filled = [row for row in rows if row[key] not in (None, "")]
    blank = [row for row in rows if row[key] in (None, "")]

    def sort_key(row: list[Any]) -> tuple[int, Any]:
        value = row[key]
        if isinstance(value, bool):
            return (2, value)
        if isinstance(value, (int, float)):
            return (0, value)
        if text_as_number and _as_number(value) is not None:
            return (0, _as_number(value))
        text = str(value)
        return (1, text if match_case else text.lower())

    filled.sort(key=sort_key, reverse=not ascending)
    return filled + blank

