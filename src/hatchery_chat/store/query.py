"""Relational store contract and an in-memory adapter."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol

from hatchery_chat.errors import StoreError


@dataclass(slots=True)
class Filter:
    column: str
    op: str
    value: Any


@dataclass(slots=True)
class TableQuery:
    """A single-table read described as data.

    Predicates compose fluently, mirroring the PostgREST builder:
    `TableQuery("batches").eq("status", "hatching").order("set_date").limit(10)`.
    """

    table: str
    columns: str = "*"
    filters: list[Filter] = field(default_factory=list)
    order_by: str | None = None
    descending: bool = True
    row_limit: int | None = None

    def eq(self, column: str, value: Any) -> "TableQuery":
        self.filters.append(Filter(column, "eq", value))
        return self

    def in_(self, column: str, values: list[Any]) -> "TableQuery":
        self.filters.append(Filter(column, "in", list(values)))
        return self

    def gte(self, column: str, value: Any) -> "TableQuery":
        self.filters.append(Filter(column, "gte", value))
        return self

    def ilike(self, column: str, pattern: str) -> "TableQuery":
        self.filters.append(Filter(column, "ilike", pattern))
        return self

    def order(self, column: str, *, desc: bool = True) -> "TableQuery":
        self.order_by = column
        self.descending = desc
        return self

    def limit(self, count: int) -> "TableQuery":
        self.row_limit = count
        return self


@dataclass(slots=True)
class QueryResult:
    """`{data, error}` pair; clients report failures here instead of raising."""

    data: list[dict[str, Any]] = field(default_factory=list)
    error: str | None = None

    def rows_or_raise(self, table: str) -> list[dict[str, Any]]:
        if self.error is not None:
            raise StoreError(table, self.error)
        return self.data


class QueryClient(Protocol):
    """Minimal read contract consumed by the data tools."""

    async def execute(self, query: TableQuery) -> QueryResult:
        """Run a query and return its rows or an error message."""


class InMemoryQueryClient:
    """Deterministic store used for tests and local prototyping."""

    def __init__(self, tables: dict[str, list[dict[str, Any]]] | None = None) -> None:
        self._tables: dict[str, list[dict[str, Any]]] = {
            name: [dict(row) for row in rows] for name, rows in (tables or {}).items()
        }
        self.executed: list[TableQuery] = []

    async def execute(self, query: TableQuery) -> QueryResult:
        self.executed.append(query)
        if query.table not in self._tables:
            return QueryResult(error=f'relation "{query.table}" does not exist')

        rows = [
            row
            for row in self._tables[query.table]
            if all(_matches(row, flt) for flt in query.filters)
        ]
        if query.order_by is not None:
            present = [row for row in rows if row.get(query.order_by) is not None]
            missing = [row for row in rows if row.get(query.order_by) is None]
            present.sort(key=lambda row: row[query.order_by], reverse=query.descending)
            rows = present + missing
        if query.row_limit is not None:
            rows = rows[: query.row_limit]
        return QueryResult(data=[_project(row, query.columns) for row in rows])


def _matches(row: dict[str, Any], flt: Filter) -> bool:
    value = row.get(flt.column)
    if flt.op == "eq":
        return value == flt.value
    if flt.op == "in":
        return value in flt.value
    if value is None:
        return False
    if flt.op == "gte":
        return value >= flt.value
    if flt.op == "ilike":
        needle = str(flt.value).strip("%").lower()
        return needle in str(value).lower()
    raise ValueError(f"Unsupported filter operator: {flt.op}")


def _project(row: dict[str, Any], columns: str) -> dict[str, Any]:
    if columns.strip() == "*":
        return dict(row)
    wanted = [column.strip() for column in columns.split(",") if column.strip()]
    return {column: row.get(column) for column in wanted}
