"""Pure analysis over a 2D block of cell values (the analyze_data operation)."""
from __future__ import annotations

from typing import Any, Sequence

ANALYSIS_TYPES = ("summary", "trend", "distribution")


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _format_number(value: float) -> str:
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _format_key(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if _is_number(value):
        return _format_number(value)
    return str(value)


def analyze_data(values: Sequence[Sequence[Any]], analysis_type: str) -> str:
    if analysis_type == "summary":
        numbers = [value for row in values for value in row if _is_number(value)]
        if not numbers:
            return "Summary:\nNo numeric values to summarize."
        total = sum(numbers)
        return (
            "Summary:\n"
            f"Sum: {_format_number(total)}\n"
            f"Average: {_format_number(total / len(numbers))}\n"
            f"Max: {_format_number(max(numbers))}\n"
            f"Min: {_format_number(min(numbers))}"
        )

    if analysis_type == "trend":
        if not values:
            return "Trend (last value - first value for each column):\n"
        first = [value for value in values[0] if _is_number(value)]
        last = [value for value in values[-1] if _is_number(value)]
        deltas = [_format_number(end - start) for start, end in zip(first, last)]
        return "Trend (last value - first value for each column):\n" + ", ".join(deltas)

    if analysis_type == "distribution":
        counts: dict[str, int] = {}
        for row in values:
            for value in row:
                key = _format_key(value)
                counts[key] = counts.get(key, 0) + 1
        lines = [f"{key}: {count}" for key, count in counts.items()]
        return "Distribution:\n" + "\n".join(lines)

    return "Unknown analysis type"
