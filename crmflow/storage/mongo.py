"""
MongoDB row store for crmflow.

Each table maps to one collection. Rows are stored as documents; the
Mongo ``_id`` is stripped from everything returned to callers.
"""

from __future__ import annotations

import logging
from typing import Any

from motor.motor_asyncio import AsyncIOMotorClient

from .base import Filter, FilterOp, StorageError

logger = logging.getLogger(__name__)

_MONGO_OPS = {
    FilterOp.GT: "$gt",
    FilterOp.GTE: "$gte",
    FilterOp.LT: "$lt",
    FilterOp.LTE: "$lte",
}


def build_query(filters: list[Filter] | None) -> dict[str, Any]:
    """Translate row filters into a Mongo query document."""
    query: dict[str, Any] = {}
    for f in filters or []:
        if f.op is FilterOp.EQ:
            query[f.column] = f.value
        else:
            clause = query.setdefault(f.column, {})
            clause[_MONGO_OPS[f.op]] = f.value
    return query


def _strip_id(doc: dict[str, Any]) -> dict[str, Any]:
    doc = dict(doc)
    doc.pop("_id", None)
    return doc


class MongoRowStore:
    """
    Row store backed by MongoDB via motor.

    Connects lazily on first use.
    """

    def __init__(self, mongodb_url: str, database_name: str = "crmflow"):
        self._mongodb_url = mongodb_url
        self._database_name = database_name
        self._client = None
        self._db = None

    @property
    def connected(self) -> bool:
        return self._db is not None

    async def connect(self) -> None:
        """Connect to MongoDB."""
        self._client = AsyncIOMotorClient(self._mongodb_url)
        self._db = self._client[self._database_name]
        logger.info(f"Connected to MongoDB database: {self._database_name}")

    async def close(self) -> None:
        """Close MongoDB connection."""
        if self._client:
            self._client.close()
            self._client = None
            self._db = None

    async def _collection(self, table: str):
        if self._db is None:
            await self.connect()
        return self._db[table]

    async def insert(self, table: str, row: dict[str, Any]) -> dict[str, Any]:
        collection = await self._collection(table)
        doc = dict(row)
        try:
            await collection.insert_one(doc)
        except Exception as e:
            raise StorageError(f"Insert into '{table}' failed: {e}") from e
        return _strip_id(doc)

    async def update(
        self,
        table: str,
        filters: list[Filter],
        values: dict[str, Any],
    ) -> int:
        collection = await self._collection(table)
        try:
            result = await collection.update_many(build_query(filters), {"$set": values})
        except Exception as e:
            raise StorageError(f"Update of '{table}' failed: {e}") from e
        return result.modified_count

    async def select(
        self,
        table: str,
        filters: list[Filter] | None = None,
        *,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        collection = await self._collection(table)
        cursor = collection.find(build_query(filters))
        if order_by is not None:
            cursor = cursor.sort(order_by, -1 if descending else 1)
        if limit is not None:
            cursor = cursor.limit(limit)

        rows = []
        try:
            async for doc in cursor:
                rows.append(_strip_id(doc))
        except Exception as e:
            raise StorageError(f"Select from '{table}' failed: {e}") from e
        return rows

    async def upsert(
        self,
        table: str,
        row: dict[str, Any],
        on_conflict: tuple[str, ...],
    ) -> dict[str, Any]:
        collection = await self._collection(table)
        key = {col: row.get(col) for col in on_conflict}
        try:
            await collection.update_one(key, {"$set": dict(row)}, upsert=True)
        except Exception as e:
            raise StorageError(f"Upsert into '{table}' failed: {e}") from e
        return dict(row)


__all__ = ["MongoRowStore", "build_query"]
