"""Workbook collaborator interface.

The run loop never touches a spreadsheet directly; every operation in the
catalog delegates to one of these methods. A host (the Office add-in bridge,
a file-backed workbook, the in-memory workbook used for local runs) supplies
the implementation.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Sequence

CellValue = Any  # str | int | float | bool | None
Values2D = Sequence[Sequence[CellValue]]

CHART_TYPES = (
    "3DArea", "3DAreaStacked", "3DAreaStacked100", "3DBarClustered", "3DBarStacked",
    "3DBarStacked100", "3DColumn", "3DColumnClustered", "3DColumnStacked",
    "3DColumnStacked100", "3DLine", "3DPie", "3DPieExploded", "Area", "AreaStacked",
    "AreaStacked100", "BarClustered", "BarOfPie", "BarStacked", "BarStacked100",
    "Boxwhisker", "Bubble", "Bubble3DEffect", "ColumnClustered", "ColumnStacked",
    "ColumnStacked100", "ConeBarClustered", "ConeBarStacked", "ConeBarStacked100",
    "ConeCol", "ConeColClustered", "ConeColStacked", "ConeColStacked100",
    "CylinderBarClustered", "CylinderBarStacked", "CylinderBarStacked100", "CylinderCol",
    "CylinderColClustered", "CylinderColStacked", "CylinderColStacked100", "Doughnut",
    "DoughnutExploded", "Funnel", "Histogram", "Invalid", "Line", "LineMarkers",
    "LineMarkersStacked", "LineMarkersStacked100", "LineStacked", "LineStacked100",
    "Pareto", "Pie", "PieExploded", "PieOfPie", "PyramidBarClustered", "PyramidBarStacked",
    "PyramidBarStacked100", "PyramidCol", "PyramidColClustered", "PyramidColStacked",
    "PyramidColStacked100", "Radar", "RadarFilled", "RadarMarkers", "RegionMap",
    "StockHLC", "StockOHLC", "StockVHLC", "StockVOHLC", "Sunburst", "Surface",
    "SurfaceTopView", "SurfaceTopViewWireframe", "SurfaceWireframe", "Treemap",
    "Waterfall", "XYScatter",
)

PIVOT_AGGREGATIONS = (
    "sum", "count", "average", "max", "min", "product",
    "countNumbers", "stdDev", "stdDevP", "var", "varP",
)

FILTER_TYPES = ("Equals", "GreaterThan", "LessThan", "Between", "Contains", "Values")

SORT_DATA_OPTIONS = ("normal", "textAsNumber")

CONDITIONAL_FORMAT_TYPES = (
    "CellValue", "ColorScale", "ContainsText", "Custom",
    "DataBar", "IconSet", "PresetCriteria", "TopBottom",
)

WORKSHEET_ACTIONS = ("create", "delete")


class Workbook(ABC):
    """Async spreadsheet surface. Addresses are A1-style on the active worksheet."""

    # cells
    @abstractmethod
    async def write_range(self, start_cell: str, values: Values2D) -> str:
        """Write a 2D block anchored at start_cell; returns the written address."""

    @abstractmethod
    async def write_to_selected_range(self, values: Values2D) -> str:
        """Write into the selection, trimming values that do not fit."""

    @abstractmethod
    async def read_cell(self, cell_address: str) -> str: ...

    @abstractmethod
    async def format_cell(
        self,
        cell_address: str,
        *,
        font_color: str | None = None,
        background_color: str | None = None,
        bold: bool | None = None,
    ) -> str: ...

    @abstractmethod
    async def get_selected_range_info(self) -> dict[str, Any]:
        """Address, row/column counts and values of the current selection."""

    # charts and pivots
    @abstractmethod
    async def add_chart(self, data_range: str, chart_type: str) -> None: ...

    @abstractmethod
    async def add_pivot_table(
        self,
        source_data_range: str,
        destination_cell: str,
        row_fields: Sequence[str],
        column_fields: Sequence[str],
        data_fields: Sequence[dict[str, str]],
        filter_fields: Sequence[str] = (),
    ) -> None: ...

    # ranges
    @abstractmethod
    async def read_range(self, range_address: str | None = None) -> dict[str, Any]: ...

    @abstractmethod
    async def merge_cells(self, range_address: str, across: bool = False) -> str: ...

    @abstractmethod
    async def unmerge_cells(self, range_address: str) -> str: ...

    @abstractmethod
    async def autofit_columns(self, range_address: str) -> str: ...

    @abstractmethod
    async def autofit_rows(self, range_address: str) -> str: ...

    # data
    @abstractmethod
    async def filter_data(
        self,
        range_address: str | None,
        column: str,
        filter_type: str,
        criteria: dict[str, Any],
    ) -> dict[str, Any]: ...

    @abstractmethod
    async def sort_data(
        self,
        range_address: str | None,
        sort_fields: Sequence[dict[str, Any]],
        match_case: bool = False,
        has_headers: bool = False,
    ) -> str: ...

    @abstractmethod
    async def enable_filter_ui(self, range_address: str | None = None, has_headers: bool = True) -> str: ...

    # conditional formats
    @abstractmethod
    async def apply_conditional_format(
        self,
        range_address: str,
        format_type: str,
        rule: dict[str, Any],
        format: dict[str, Any] | None = None,
    ) -> str: ...

    @abstractmethod
    async def clear_conditional_formats(self, range_address: str) -> str: ...

    # worksheets
    @abstractmethod
    async def manage_worksheet(self, action: str, sheet_name: str) -> str: ...

    @abstractmethod
    async def get_worksheet_names(self) -> list[str]: ...

    @abstractmethod
    async def get_active_worksheet_name(self) -> str: ...

    @abstractmethod
    async def get_sheet_content(
        self,
        sheet_name: str | None = None,
        *,
        include_metadata: bool = True,
        row_separator: str = "\n",
        column_separator: str = "\t",
    ) -> str:
        """Used-range values as delimited text, optionally prefixed with a header line."""
