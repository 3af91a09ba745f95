"""
Row store abstractions for crmflow.

The integration core treats its backing store as a set of named tables
holding plain dict rows. Only four operations are needed:

- insert: append a row
- update: patch rows matching a filter
- select: read rows matching equality/range filters
- upsert: insert or replace on a set of conflict columns

Row-level scoping to the calling user is the caller's concern: every
query the core issues carries a ``user_id`` filter when a user is known.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Protocol


class FilterOp(str, Enum):
    """Comparison operators supported by row filters."""

    EQ = "eq"
    GT = "gt"
    GTE = "gte"
    LT = "lt"
    LTE = "lte"


@dataclass(frozen=True, slots=True)
class Filter:
    """A single column predicate."""

    column: str
    op: FilterOp
    value: Any

    @classmethod
    def eq(cls, column: str, value: Any) -> Filter:
        return cls(column, FilterOp.EQ, value)

    @classmethod
    def gte(cls, column: str, value: Any) -> Filter:
        return cls(column, FilterOp.GTE, value)

    @classmethod
    def lte(cls, column: str, value: Any) -> Filter:
        return cls(column, FilterOp.LTE, value)

    def matches(self, row: dict[str, Any]) -> bool:
        """Evaluate the predicate against a row (missing columns never match ranges)."""
        actual = row.get(self.column)
        if self.op is FilterOp.EQ:
            return actual == self.value
        if actual is None:
            return False
        if self.op is FilterOp.GT:
            return actual > self.value
        if self.op is FilterOp.GTE:
            return actual >= self.value
        if self.op is FilterOp.LT:
            return actual < self.value
        return actual <= self.value


class StorageError(Exception):
    """Raised when the backing store rejects an operation."""


class RowStore(Protocol):
    """
    Protocol for the persistent row store.

    Implementations:
    - InMemoryRowStore (tests, local development)
    - MongoRowStore (production, one collection per table)
    """

    async def insert(self, table: str, row: dict[str, Any]) -> dict[str, Any]:
        """Append a row and return it as stored."""
        ...

    async def update(
        self,
        table: str,
        filters: list[Filter],
        values: dict[str, Any],
    ) -> int:
        """Patch matching rows, returning the number updated."""
        ...

    async def select(
        self,
        table: str,
        filters: list[Filter] | None = None,
        *,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        """Return matching rows."""
        ...

    async def upsert(
        self,
        table: str,
        row: dict[str, Any],
        on_conflict: tuple[str, ...],
    ) -> dict[str, Any]:
        """Insert, or replace the row whose ``on_conflict`` columns match."""
        ...


__all__ = [
    "Filter",
    "FilterOp",
    "RowStore",
    "StorageError",
]
