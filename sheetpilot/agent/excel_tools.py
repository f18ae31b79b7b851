"""Spreadsheet operation catalog bound to a Workbook.

Each entry carries the one JSON Schema that is both advertised to the model
and used to validate its arguments. Argument names follow the model-facing
camelCase contract; ``_delegate`` maps them onto the workbook's keywords.
"""
from __future__ import annotations

from typing import Any, Awaitable, Callable

from sheetpilot.agent.operations import Operation, OperationRegistry
from sheetpilot.workbook.analysis import ANALYSIS_TYPES, analyze_data
from sheetpilot.workbook.base import (
    CHART_TYPES,
    FILTER_TYPES,
    PIVOT_AGGREGATIONS,
    SORT_DATA_OPTIONS,
    WORKSHEET_ACTIONS,
    Workbook,
)

HEX_COLOR_PATTERN = "^#[0-9A-Fa-f]{6}$"

VALUES_2D = {
    "type": "array",
    "description": "2D array of values (rows of cells).",
    "items": {
        "type": "array",
        "items": {"type": ["string", "number", "boolean", "null"]},
    },
}

NO_ARGUMENTS = {"type": "object", "properties": {}, "additionalProperties": False}


def _object(properties: dict[str, Any], required: list[str] | None = None) -> dict[str, Any]:
    schema: dict[str, Any] = {
        "type": "object",
        "properties": properties,
        "additionalProperties": False,
    }
    if required:
        schema["required"] = required
    return schema


def _range(description: str = "Range address, e.g. A1:D10") -> dict[str, str]:
    return {"type": "string", "description": description}


def _delegate(method: Callable[..., Awaitable[Any]], **renamed: str) -> Callable[..., Awaitable[Any]]:
    async def executor(**arguments: Any) -> Any:
        kwargs = {renamed.get(key, key): value for key, value in arguments.items()}
        return await method(**kwargs)

    executor.__name__ = getattr(method, "__name__", "executor")
    return executor


def build_excel_operations(workbook: Workbook) -> list[Operation]:
    """Build the spreadsheet operations bound to ``workbook``."""
    return [
        Operation(
            name="write_to_excel",
            description=(
                "Write a 2D array of values starting at a cell. Returns the written range address. "
                "Read first if unsure about existing data."
            ),
            argument_schema=_object(
                {
                    "startCell": {"type": "string", "description": "Starting cell address, e.g. A1"},
                    "values": VALUES_2D,
                },
                ["startCell", "values"],
            ),
            executor=_delegate(workbook.write_range, startCell="start_cell"),
            mutating=True,
        ),
        Operation(
            name="write_to_selected_range",
            description="Write values to the current selection; values are trimmed to fit the selection size.",
            argument_schema=_object({"values": VALUES_2D}, ["values"]),
            executor=_delegate(workbook.write_to_selected_range),
            mutating=True,
        ),
        Operation(
            name="read_from_excel",
            description="Read the value of a single cell.",
            argument_schema=_object(
                {"cellAddress": {"type": "string", "description": "Cell address, e.g. B2"}},
                ["cellAddress"],
            ),
            executor=_delegate(workbook.read_cell, cellAddress="cell_address"),
        ),
        Operation(
            name="format_cell",
            description="Format a cell or range: font color, background color, bold.",
            argument_schema=_object(
                {
                    "cellAddress": {"type": "string"},
                    "fontColor": {"type": "string", "pattern": HEX_COLOR_PATTERN, "description": "#RRGGBB"},
                    "backgroundColor": {"type": "string", "pattern": HEX_COLOR_PATTERN, "description": "#RRGGBB"},
                    "bold": {"type": "boolean"},
                },
                ["cellAddress"],
            ),
            executor=_delegate(
                workbook.format_cell,
                cellAddress="cell_address",
                fontColor="font_color",
                backgroundColor="background_color",
            ),
            mutating=True,
        ),
        Operation(
            name="analyze_selected_range",
            description="Return the address, size and values of the currently selected range.",
            argument_schema=NO_ARGUMENTS,
            executor=_delegate(workbook.get_selected_range_info),
        ),
        Operation(
            name="add_chart",
            description="Add a chart for a data range to the active worksheet.",
            argument_schema=_object(
                {
                    "dataRange": _range("Source data range, e.g. A1:B10"),
                    "chartType": {"type": "string", "enum": list(CHART_TYPES)},
                },
                ["dataRange", "chartType"],
            ),
            executor=_delegate(workbook.add_chart, dataRange="data_range", chartType="chart_type"),
            mutating=True,
        ),
        Operation(
            name="add_pivot_table",
            description="Add a pivot table built from a source range at a destination cell.",
            argument_schema=_object(
                {
                    "sourceDataRange": _range("Source data range including the header row"),
                    "destinationCell": {"type": "string"},
                    "rowFields": {"type": "array", "items": {"type": "string"}},
                    "columnFields": {"type": "array", "items": {"type": "string"}},
                    "dataFields": {
                        "type": "array",
                        "items": _object(
                            {
                                "name": {"type": "string"},
                                "function": {"type": "string", "enum": list(PIVOT_AGGREGATIONS)},
                            },
                            ["name", "function"],
                        ),
                    },
                    "filterFields": {"type": "array", "items": {"type": "string"}},
                },
                ["sourceDataRange", "destinationCell", "rowFields", "columnFields", "dataFields"],
            ),
            executor=_delegate(
                workbook.add_pivot_table,
                sourceDataRange="source_data_range",
                destinationCell="destination_cell",
                rowFields="row_fields",
                columnFields="column_fields",
                dataFields="data_fields",
                filterFields="filter_fields",
            ),
            mutating=True,
        ),
        Operation(
            name="read_range",
            description="Read values from a range, or from the current selection when no address is given.",
            argument_schema=_object({"rangeAddress": _range()}),
            executor=_delegate(workbook.read_range, rangeAddress="range_address"),
        ),
        Operation(
            name="merge_cells",
            description="Merge cells in a range; 'across' merges each row separately.",
            argument_schema=_object({"range": _range(), "across": {"type": "boolean"}}, ["range"]),
            executor=_delegate(workbook.merge_cells, range="range_address"),
            mutating=True,
        ),
        Operation(
            name="unmerge_cells",
            description="Unmerge cells in a range.",
            argument_schema=_object({"range": _range()}, ["range"]),
            executor=_delegate(workbook.unmerge_cells, range="range_address"),
            mutating=True,
        ),
        Operation(
            name="autofit_columns",
            description="Auto-fit column widths in a range.",
            argument_schema=_object({"range": _range()}, ["range"]),
            executor=_delegate(workbook.autofit_columns, range="range_address"),
            mutating=True,
        ),
        Operation(
            name="autofit_rows",
            description="Auto-fit row heights in a range.",
            argument_schema=_object({"range": _range()}, ["range"]),
            executor=_delegate(workbook.autofit_rows, range="range_address"),
            mutating=True,
        ),
        Operation(
            name="analyze_data",
            description="Analyze a 2D array of values: summary, trend or distribution.",
            argument_schema=_object(
                {
                    "values": VALUES_2D,
                    "analysisType": {"type": "string", "enum": list(ANALYSIS_TYPES)},
                },
                ["values", "analysisType"],
            ),
            executor=lambda values, analysisType: analyze_data(values, analysisType),
        ),
        Operation(
            name="filter_data",
            description=(
                "Filter a range (or the selection) on one column. Criteria: 'value' for Equals, "
                "GreaterThan, LessThan and Contains; 'lowerBound' and 'upperBound' for Between; "
                "'values' for Values."
            ),
            argument_schema=_object(
                {
                    "range": _range(),
                    "column": {"type": "string", "description": "Column letter, e.g. B"},
                    "filterType": {"type": "string", "enum": list(FILTER_TYPES)},
                    "criteria": {"type": "object"},
                },
                ["column", "filterType", "criteria"],
            ),
            executor=_delegate(workbook.filter_data, range="range_address", filterType="filter_type"),
            mutating=True,
        ),
        Operation(
            name="sort_data",
            description="Sort a range (or the selection). Each sort field's key is a zero-based column offset.",
            argument_schema=_object(
                {
                    "range": _range(),
                    "sortFields": {
                        "type": "array",
                        "items": _object(
                            {
                                "key": {"type": "integer", "minimum": 0},
                                "ascending": {"type": "boolean"},
                                "color": {"type": "string"},
                                "dataOption": {"type": "string", "enum": list(SORT_DATA_OPTIONS)},
                            },
                            ["key", "ascending"],
                        ),
                    },
                    "matchCase": {"type": "boolean"},
                    "hasHeaders": {"type": "boolean"},
                },
                ["sortFields"],
            ),
            executor=_delegate(
                workbook.sort_data,
                range="range_address",
                sortFields="sort_fields",
                matchCase="match_case",
                hasHeaders="has_headers",
            ),
            mutating=True,
        ),
        Operation(
            name="enable_filter_ui",
            description="Enable the native AutoFilter dropdowns on a range or the selection.",
            argument_schema=_object({"range": _range(), "hasHeaders": {"type": "boolean"}}),
            executor=_delegate(workbook.enable_filter_ui, range="range_address", hasHeaders="has_headers"),
            mutating=True,
        ),
        Operation(
            name="apply_conditional_format",
            description="Apply a conditional format (CellValue, ColorScale, DataBar, ...) to a range.",
            argument_schema=_object(
                {
                    "range": _range(),
                    "formatType": {"type": "string"},
                    "rule": {"type": "object"},
                    "format": {"type": "object"},
                },
                ["range", "formatType", "rule"],
            ),
            executor=_delegate(workbook.apply_conditional_format, range="range_address", formatType="format_type"),
            mutating=True,
        ),
        Operation(
            name="clear_conditional_formats",
            description="Clear all conditional formats from a range.",
            argument_schema=_object({"range": _range()}, ["range"]),
            executor=_delegate(workbook.clear_conditional_formats, range="range_address"),
            mutating=True,
        ),
        Operation(
            name="manage_worksheet",
            description="Create or delete a worksheet.",
            argument_schema=_object(
                {
                    "action": {"type": "string", "enum": list(WORKSHEET_ACTIONS)},
                    "sheetName": {"type": "string"},
                },
                ["action", "sheetName"],
            ),
            executor=_delegate(workbook.manage_worksheet, sheetName="sheet_name"),
            mutating=True,
        ),
        Operation(
            name="get_worksheet_names",
            description="List the worksheet names in the workbook.",
            argument_schema=NO_ARGUMENTS,
            executor=_delegate(workbook.get_worksheet_names),
        ),
        Operation(
            name="get_active_worksheet_name",
            description="Get the name of the active worksheet.",
            argument_schema=NO_ARGUMENTS,
            executor=_delegate(workbook.get_active_worksheet_name),
        ),
    ]


def build_excel_registry(workbook: Workbook) -> OperationRegistry:
    return OperationRegistry(build_excel_operations(workbook)).freeze()
