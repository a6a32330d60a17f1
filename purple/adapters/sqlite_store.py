"""SQLite store adapter — implements StorePort on top of LifeDB.

LifeDB is synchronous; every call is wrapped with asyncio.to_thread so
core coroutines never block the event loop.
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3

from purple.data.db import LifeDB
from purple.ports.store_port import Filters, StoreError

logger = logging.getLogger(__name__)


class SQLiteStore:
    """SQLite implementation of StorePort."""

    def __init__(self, db: LifeDB | None = None) -> None:
        self._db = db or LifeDB()

    async def _run(self, op: str, table: str, fn, *args, **kwargs):
        try:
            return await asyncio.to_thread(fn, *args, **kwargs)
        except (sqlite3.Error, ValueError) as exc:
            logger.error("SQLite %s on %s failed: %s", op, table, exc)
            raise StoreError(f"Failed to {op} {table}: {exc}") from exc

    async def insert(self, table: str, record: dict) -> dict:
        return await self._run("insert", table, self._db.insert, table, record)

    async def update(self, table: str, values: dict, filters: Filters) -> int:
        return await self._run("update", table, self._db.update, table, values, filters)

    async def delete(self, table: str, filters: Filters) -> int:
        return await self._run("delete", table, self._db.delete, table, filters)

    async def select(
        self,
        table: str,
        filters: Filters | None = None,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
        offset: int = 0,
        columns: list[str] | None = None,
    ) -> list[dict]:
        return await self._run(
            "select", table, self._db.select, table,
            filters=filters, order_by=order_by, descending=descending,
            limit=limit, offset=offset, columns=columns,
        )
