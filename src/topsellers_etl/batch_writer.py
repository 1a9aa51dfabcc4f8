from __future__ import annotations

import asyncio
from typing import Any, Dict, List, Optional, Sequence

from .store import TableStore


class BatchWriteError(RuntimeError):
    def __init__(self, table: str, chunk_index: int, written_chunks: int, cause: BaseException) -> None:
        super().__init__(f"write to {table} failed at chunk {chunk_index}: {cause}")
        self.table = table
        self.chunk_index = chunk_index
        self.written_chunks = written_chunks


def chunked(rows: List[Dict[str, Any]], size: int) -> List[List[Dict[str, Any]]]:
    if size <= 0:
        raise ValueError("chunk size must be positive")
    return [rows[i : i + size] for i in range(0, len(rows), size)]


async def write_chunked(
    store: TableStore,
    table: str,
    rows: List[Dict[str, Any]],
    mode: str = "insert",
    conflict_key: Optional[Sequence[str]] = None,
    chunk_size: int = 1000,
    concurrency: int = 1,
) -> int:
    """Write ``rows`` in chunks, ``concurrency`` chunks at a time.

    The first failing wave raises ``BatchWriteError`` and no further chunks
    are issued. Chunks already written stay written, so every caller relies
    on conflict keys for idempotent re-runs. Returns the number of chunks
    written.
    """
    if mode not in ("insert", "upsert"):
        raise ValueError(f"Unknown write mode: {mode}")
    if mode == "upsert" and not conflict_key:
        raise ValueError("upsert requires a conflict key")
    chunks = chunked(rows, chunk_size)
    concurrency = max(1, concurrency)

    async def _write(chunk: List[Dict[str, Any]]) -> None:
        if mode == "insert":
            await store.insert(table, chunk)
        else:
            await store.upsert(table, chunk, conflict_key)

    written = 0
    for wave_start in range(0, len(chunks), concurrency):
        wave = chunks[wave_start : wave_start + concurrency]
        results = await asyncio.gather(*(_write(c) for c in wave), return_exceptions=True)
        for offset, res in enumerate(results):
            if isinstance(res, BaseException):
                raise BatchWriteError(table, wave_start + offset, written, res) from res
            written += 1
    return written
