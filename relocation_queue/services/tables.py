from __future__ import annotations

import copy
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol, Sequence

from relocation_queue.services.errors import TableStoreError

Cell = str | int | float | bool | datetime | None


def normalize_code(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip().upper()


def cell_text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


@dataclass(slots=True)
class TableGrid:
    header: list[str]
    rows: list[list[Cell]] = field(default_factory=list)

    def column_index(self, name: str) -> int | None:
        wanted = normalize_code(name)
        for index, label in enumerate(self.header):
            if normalize_code(label) == wanted:
                return index
        return None

    def missing_columns(self, names: Sequence[str]) -> list[str]:
        return [name for name in names if self.column_index(name) is None]

    def value(self, row: Sequence[Cell], name: str) -> Cell:
        index = self.column_index(name)
        if index is None or index >= len(row):
            return None
        return row[index]

    def text(self, row: Sequence[Cell], name: str) -> str:
        return cell_text(self.value(row, name))


@dataclass(frozen=True, slots=True)
class CellUpdate:
    """A single data-cell write. ``row`` is a 0-based data-row index, header excluded."""

    row: int
    column: str
    value: Cell


class TableStore(Protocol):
    async def read_table(self, name: str) -> TableGrid | None: ...

    async def write_table(self, name: str, header: Sequence[str], rows: Sequence[Sequence[Cell]]) -> None: ...

    async def delete_row(self, name: str, index: int) -> None: ...

    async def batch_update(self, name: str, updates: Sequence[CellUpdate]) -> None: ...

    async def append_row(self, name: str, row: Sequence[Cell]) -> None: ...

    async def append_columns_if_missing(self, name: str, columns: Sequence[str]) -> list[str]: ...


class InMemoryTableStore:
    """Process-local table store for tests and local development."""

    def __init__(self, tables: dict[str, TableGrid] | None = None) -> None:
        self.tables: dict[str, TableGrid] = tables or {}

    def put(self, name: str, header: Sequence[str], rows: Sequence[Sequence[Cell]] = ()) -> None:
        self.tables[name] = TableGrid(header=list(header), rows=[list(row) for row in rows])

    async def read_table(self, name: str) -> TableGrid | None:
        grid = self.tables.get(name)
        if grid is None:
            return None
        # Callers get a snapshot; later mutations go through the store.
        return copy.deepcopy(grid)

    async def write_table(self, name: str, header: Sequence[str], rows: Sequence[Sequence[Cell]]) -> None:
        self.put(name, header, rows)

    async def delete_row(self, name: str, index: int) -> None:
        grid = self._require(name)
        if not 0 <= index < len(grid.rows):
            raise TableStoreError(f"row {index} out of range for table {name!r}")
        del grid.rows[index]

    async def batch_update(self, name: str, updates: Sequence[CellUpdate]) -> None:
        grid = self._require(name)
        resolved: list[tuple[int, int, Cell]] = []
        for update in updates:
            column = grid.column_index(update.column)
            if column is None:
                raise TableStoreError(f"unknown column {update.column!r} in table {name!r}")
            if not 0 <= update.row < len(grid.rows):
                raise TableStoreError(f"row {update.row} out of range for table {name!r}")
            resolved.append((update.row, column, update.value))

        # Validate everything before touching the grid so a bad update writes nothing.
        for row_index, column, value in resolved:
            row = grid.rows[row_index]
            if column >= len(row):
                row.extend([None] * (column + 1 - len(row)))
            row[column] = value

    async def append_row(self, name: str, row: Sequence[Cell]) -> None:
        self._require(name).rows.append(list(row))

    async def append_columns_if_missing(self, name: str, columns: Sequence[str]) -> list[str]:
        grid = self.tables.get(name)
        if grid is None:
            self.put(name, columns)
            return list(columns)
        added = grid.missing_columns(columns)
        grid.header.extend(added)
        return added

    def _require(self, name: str) -> TableGrid:
        grid = self.tables.get(name)
        if grid is None:
            raise TableStoreError(f"table {name!r} does not exist")
        return grid
