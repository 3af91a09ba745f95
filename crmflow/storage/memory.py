"""In-memory row store. Suitable for tests and single-process development."""

from __future__ import annotations

import copy
import uuid
from dataclasses import dataclass, field
from typing import Any

from .base import Filter


@dataclass
class InMemoryRowStore:
    """
    Dict-of-lists row store.

    Rows are deep-copied on the way in and out so callers can never
    mutate stored state by accident.
    """

    tables: dict[str, list[dict[str, Any]]] = field(default_factory=dict)

    def _table(self, table: str) -> list[dict[str, Any]]:
        return self.tables.setdefault(table, [])

    async def insert(self, table: str, row: dict[str, Any]) -> dict[str, Any]:
        stored = copy.deepcopy(row)
        stored.setdefault("id", str(uuid.uuid4()))
        self._table(table).append(stored)
        return copy.deepcopy(stored)

    async def update(
        self,
        table: str,
        filters: list[Filter],
        values: dict[str, Any],
    ) -> int:
        count = 0
        for row in self._table(table):
            if all(f.matches(row) for f in filters):
                row.update(copy.deepcopy(values))
                count += 1
        return count

    async def select(
        self,
        table: str,
        filters: list[Filter] | None = None,
        *,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        rows = [r for r in self._table(table) if all(f.matches(r) for f in filters or [])]

        if order_by is not None:
            rows.sort(key=lambda r: r.get(order_by), reverse=descending)

        if limit is not None:
            rows = rows[:limit]

        return copy.deepcopy(rows)

    async def upsert(
        self,
        table: str,
        row: dict[str, Any],
        on_conflict: tuple[str, ...],
    ) -> dict[str, Any]:
        rows = self._table(table)
        for existing in rows:
            if all(existing.get(col) == row.get(col) for col in on_conflict):
                existing.update(copy.deepcopy(row))
                return copy.deepcopy(existing)
        return await self.insert(table, row)

    def clear(self) -> None:
        self.tables.clear()


__all__ = ["InMemoryRowStore"]
