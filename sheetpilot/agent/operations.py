"""Operation registry: definitions, schema advertisement and lookup."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Iterable

from sheetpilot.agent.providers.base import ToolSchema
from sheetpilot.agent.schema import check_schema


class DuplicateOperationError(ValueError):
    pass


@dataclass(frozen=True, slots=True)
class Operation:
    name: str
    description: str
    argument_schema: dict[str, Any]
    executor: Callable[..., Any]
    mutating: bool = False


class OperationRegistry:
    def __init__(self, operations: Iterable[Operation] = ()) -> None:
        self._operations: dict[str, Operation] = {}
        self._frozen = False
        for operation in operations:
            self.register(operation)

    def register(self, operation: Operation) -> None:
        if self._frozen:
            raise RuntimeError("operation registry is frozen")
        if operation.name in self._operations:
            raise DuplicateOperationError(f"operation already registered: {operation.name}")
        check_schema(operation.argument_schema)
        self._operations[operation.name] = operation

    def freeze(self) -> OperationRegistry:
        self._frozen = True
        return self

    @property
    def frozen(self) -> bool:
        return self._frozen

    def lookup(self, name: str) -> Operation | None:
        return self._operations.get(name)

    def list(self) -> list[Operation]:
        return list(self._operations.values())

    def names(self) -> list[str]:
        return list(self._operations)

    def to_schemas(self) -> list[ToolSchema]:
        return [
            ToolSchema(
                name=op.name,
                description=op.description,
                input_schema=op.argument_schema,
            )
            for op in self._operations.values()
        ]

    def __contains__(self, name: object) -> bool:
        return name in self._operations

    def __len__(self) -> int:
        return len(self._operations)
