"""Tests for chunked insert/upsert against the table store."""

from __future__ import annotations

import pytest

from topsellers_etl.batch_writer import BatchWriteError, chunked, write_chunked
from topsellers_etl.store import MemoryStore


class FailingStore(MemoryStore):
    """MemoryStore that raises on the n-th write call (1-based)."""

    def __init__(self, fail_on: int) -> None:
        super().__init__()
        self.fail_on = fail_on
        self.write_calls = 0

    async def insert(self, table, rows):
        self.write_calls += 1
        if self.write_calls == self.fail_on:
            raise ConnectionError("store unavailable")
        await super().insert(table, rows)

    async def upsert(self, table, rows, conflict_key):
        self.write_calls += 1
        if self.write_calls == self.fail_on:
            raise ConnectionError("store unavailable")
        await super().upsert(table, rows, conflict_key)


def _rows(n):
    return [{"item_id": i, "ts": 100, "value": i * 1.5} for i in range(n)]


def test_chunked_sizes():
    assert [len(c) for c in chunked(_rows(5), 2)] == [2, 2, 1]
    with pytest.raises(ValueError):
        chunked(_rows(1), 0)


class TestWriteChunked:
    async def test_five_rows_in_three_chunks(self, memory_store):
        written = await write_chunked(memory_store, "t", _rows(5), mode="insert", chunk_size=2)
        assert written == 3
        assert [c for c in memory_store.calls if c[0] == "insert"] == [
            ("insert", "t", 2),
            ("insert", "t", 2),
            ("insert", "t", 1),
        ]
        assert len(memory_store.tables["t"]) == 5

    async def test_failure_keeps_earlier_chunks_and_stops(self):
        store = FailingStore(fail_on=2)
        with pytest.raises(BatchWriteError) as exc_info:
            await write_chunked(store, "t", _rows(5), mode="insert", chunk_size=2)
        assert exc_info.value.chunk_index == 1
        assert exc_info.value.written_chunks == 1
        assert isinstance(exc_info.value.__cause__, ConnectionError)
        # first chunk stays, third chunk never issued
        assert [r["item_id"] for r in store.tables["t"]] == [0, 1]
        assert store.write_calls == 2

    async def test_failure_in_concurrent_wave_stops_later_waves(self):
        store = FailingStore(fail_on=1)
        with pytest.raises(BatchWriteError):
            await write_chunked(store, "t", _rows(6), mode="insert", chunk_size=2, concurrency=2)
        assert store.write_calls == 2
        assert [r["item_id"] for r in store.tables["t"]] == [2, 3]

    async def test_upsert_is_idempotent(self, memory_store):
        rows = _rows(3)
        await write_chunked(memory_store, "t", rows, mode="upsert", conflict_key=("item_id", "ts"), chunk_size=2)
        await write_chunked(memory_store, "t", rows, mode="upsert", conflict_key=("item_id", "ts"), chunk_size=2)
        assert len(memory_store.tables["t"]) == 3

    async def test_upsert_requires_conflict_key(self, memory_store):
        with pytest.raises(ValueError):
            await write_chunked(memory_store, "t", _rows(1), mode="upsert")

    async def test_unknown_mode(self, memory_store):
        with pytest.raises(ValueError):
            await write_chunked(memory_store, "t", _rows(1), mode="merge")

    async def test_empty_rows_issue_nothing(self, memory_store):
        assert await write_chunked(memory_store, "t", [], mode="insert") == 0
        assert memory_store.calls == []
