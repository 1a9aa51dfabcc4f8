"""Table-oriented storage used by the pipeline.

``SupabaseStore`` is the production backend. ``MemoryStore`` implements the
same contract in-process and backs dry runs and the test suite.

Filters are ``(column, op, value)`` tuples with ``op`` in ``eq``, ``gte``,
``lt`` and ``in``.
"""

from __future__ import annotations

import asyncio
import copy
from typing import Any, Dict, List, Optional, Sequence, Tuple

from supabase import create_client

Filter = Tuple[str, str, Any]
Row = Dict[str, Any]

SELECT_PAGE_SIZE = 1000


class TableStore:
    async def insert(self, table: str, rows: List[Row]) -> None:
        raise NotImplementedError

    async def upsert(self, table: str, rows: List[Row], conflict_key: Sequence[str]) -> None:
        raise NotImplementedError

    async def delete(self, table: str, filters: Sequence[Filter]) -> None:
        raise NotImplementedError

    async def select(
        self,
        table: str,
        filters: Sequence[Filter] = (),
        range_: Optional[Tuple[int, int]] = None,
        order: Optional[str] = None,
    ) -> List[Row]:
        raise NotImplementedError

    async def select_all(
        self,
        table: str,
        filters: Sequence[Filter] = (),
        order: Optional[str] = None,
        page_size: int = SELECT_PAGE_SIZE,
    ) -> List[Row]:
        rows: List[Row] = []
        start = 0
        while True:
            page = await self.select(table, filters, range_=(start, start + page_size - 1), order=order)
            rows.extend(page)
            if len(page) < page_size:
                return rows
            start += page_size


def _matches(row: Row, filters: Sequence[Filter]) -> bool:
    for column, op, value in filters:
        current = row.get(column)
        if op == "eq" and current != value:
            return False
        if op == "gte" and (current is None or current < value):
            return False
        if op == "lt" and (current is None or current >= value):
            return False
        if op == "in" and current not in value:
            return False
        if op not in ("eq", "gte", "lt", "in"):
            raise ValueError(f"Unsupported filter op: {op}")
    return True


class MemoryStore(TableStore):
    def __init__(self) -> None:
        self.tables: Dict[str, List[Row]] = {}
        self.calls: List[Tuple[str, str, int]] = []

    async def insert(self, table: str, rows: List[Row]) -> None:
        self.calls.append(("insert", table, len(rows)))
        self.tables.setdefault(table, []).extend(copy.deepcopy(rows))

    async def upsert(self, table: str, rows: List[Row], conflict_key: Sequence[str]) -> None:
        self.calls.append(("upsert", table, len(rows)))
        existing = self.tables.setdefault(table, [])
        index = {tuple(r.get(k) for k in conflict_key): i for i, r in enumerate(existing)}
        for row in rows:
            key = tuple(row.get(k) for k in conflict_key)
            if key in index:
                merged = dict(existing[index[key]])
                merged.update(copy.deepcopy(row))
                existing[index[key]] = merged
            else:
                index[key] = len(existing)
                existing.append(copy.deepcopy(row))

    async def delete(self, table: str, filters: Sequence[Filter]) -> None:
        self.calls.append(("delete", table, 0))
        rows = self.tables.get(table, [])
        self.tables[table] = [r for r in rows if not _matches(r, filters)]

    async def select(
        self,
        table: str,
        filters: Sequence[Filter] = (),
        range_: Optional[Tuple[int, int]] = None,
        order: Optional[str] = None,
    ) -> List[Row]:
        rows = [copy.deepcopy(r) for r in self.tables.get(table, []) if _matches(r, filters)]
        if order:
            rows.sort(key=lambda r: r.get(order))
        if range_ is not None:
            start, end = range_
            rows = rows[start : end + 1]
        return rows


class SupabaseStore(TableStore):
    """Supabase/PostgREST backend; blocking client calls run in a worker thread."""

    def __init__(self, url: str, key: str, schema: str = "public", client=None) -> None:
        if client is None:
            client = create_client(url, key)
        self._client = client
        self.schema = schema

    def _table(self, name: str):
        return self._client.schema(self.schema).table(name)

    async def insert(self, table: str, rows: List[Row]) -> None:
        if not rows:
            return
        await asyncio.to_thread(lambda: self._table(table).insert(rows).execute())

    async def upsert(self, table: str, rows: List[Row], conflict_key: Sequence[str]) -> None:
        if not rows:
            return
        on_conflict = ",".join(conflict_key)
        await asyncio.to_thread(lambda: self._table(table).upsert(rows, on_conflict=on_conflict).execute())

    async def delete(self, table: str, filters: Sequence[Filter]) -> None:
        if not filters:
            raise ValueError("refusing to delete without filters")

        def _run():
            query = _apply_filters(self._table(table).delete(), filters)
            return query.execute()

        await asyncio.to_thread(_run)

    async def select(
        self,
        table: str,
        filters: Sequence[Filter] = (),
        range_: Optional[Tuple[int, int]] = None,
        order: Optional[str] = None,
    ) -> List[Row]:
        def _run():
            query = _apply_filters(self._table(table).select("*"), filters)
            if order:
                query = query.order(order)
            if range_ is not None:
                query = query.range(range_[0], range_[1])
            return query.execute()

        resp = await asyncio.to_thread(_run)
        return list(resp.data or [])


def _apply_filters(query, filters: Sequence[Filter]):
    for column, op, value in filters:
        if op == "eq":
            query = query.eq(column, value)
        elif op == "gte":
            query = query.gte(column, value)
        elif op == "lt":
            query = query.lt(column, value)
        elif op == "in":
            query = query.in_(column, list(value))
        else:
            raise ValueError(f"Unsupported filter op: {op}")
    return query
