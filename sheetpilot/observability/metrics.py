from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict


@dataclass(slots=True)
class RuntimeMetrics:
    exchanges_total: int = 0
    exchanges_failed_total: int = 0
    model_calls_total: int = 0
    tool_calls_total: Dict[str, int] = field(default_factory=dict)
    tool_errors_total: Dict[str, int] = field(default_factory=dict)

    def increment_tool_call(self, operation: str) -> None:
        self.tool_calls_total[operation] = self.tool_calls_total.get(operation, 0) + 1

    def increment_tool_error(self, kind: str) -> None:
        self.tool_errors_total[kind] = self.tool_errors_total.get(kind, 0) + 1

    def snapshot(self) -> dict:
        return {
            "exchanges_total": self.exchanges_total,
            "exchanges_failed_total": self.exchanges_failed_total,
            "model_calls_total": self.model_calls_total,
            "tool_calls_total": dict(self.tool_calls_total),
            "tool_errors_total": dict(self.tool_errors_total),
        }

    def reset(self) -> None:
        self.exchanges_total = 0
        self.exchanges_failed_total = 0
        self.model_calls_total = 0
        self.tool_calls_total.clear()
        self.tool_errors_total.clear()


_runtime_metrics = RuntimeMetrics()


def get_runtime_metrics() -> RuntimeMetrics:
    return _runtime_metrics
