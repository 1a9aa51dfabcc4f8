"""Bulk metric-history backfill onto the master timestamp grid.

Walks a fixed list of items, pages through each item's history with the
source cursor, reconciles every page against the master grid and upserts the
points. The progress file is rewritten after each page so an interrupted run
resumes at the same item and cursor.

History pages are assumed to arrive oldest first; a grid point whose forward
sample lives on the next page is filled when that page is processed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional

from .batch_writer import write_chunked
from .fetcher import RetryingFetcher
from .logging_utils import log_json, warn_json
from .progress import Progress, ProgressFile
from .reconcile import TimeGridReconciler
from .sources import MetricHistorySource
from .store import TableStore


@dataclass
class BackfillSummary:
    items_total: int
    items_done: int
    points_written: int
    completed: bool


def load_item_ids(path: str) -> List[int]:
    item_ids: List[int] = []
    for line in Path(path).read_text(encoding="utf-8").splitlines():
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        if line.isdigit() and int(line) > 0:
            item_ids.append(int(line))
    return item_ids


class MetricBackfill:
    def __init__(
        self,
        fetcher: RetryingFetcher,
        source: MetricHistorySource,
        store: TableStore,
        tables: Dict[str, str],
        progress: ProgressFile,
        window_seconds: int,
        chunk_size: int = 1000,
        max_pages_per_item: int = 1000,
        logger=None,
    ) -> None:
        self.fetcher = fetcher
        self.source = source
        self.store = store
        self.tables = tables
        self.progress = progress
        self.window_seconds = window_seconds
        self.chunk_size = chunk_size
        self.max_pages_per_item = max_pages_per_item
        self.logger = logger or logging.getLogger(__name__)
        self.reconciler = TimeGridReconciler()

    async def run(self, item_ids: List[int], cutoff: Optional[int] = None) -> BackfillSummary:
        state = self.progress.load()
        total = len(item_ids)
        if state.item_index > 0 or state.cursor:
            self._log("backfill_resume", item_index=state.item_index, cursor=state.cursor)
        rows = await self.store.select_all(self.tables["master_timestamps"], order="ts")
        grid = [int(r["ts"]) for r in rows]
        points_written = 0

        for index in range(state.item_index, total):
            item_id = item_ids[index]
            resuming = index == state.item_index
            cursor = state.cursor if resuming else None
            resolved_upto = state.resolved_upto if resuming else None
            pages = 0
            while True:
                page = await self.source.fetch_page(self.fetcher, item_id, cursor)
                if page is None:
                    warn_json(self.logger, "backfill_page_failed", item_id=item_id, item_index=index, cursor=cursor)
                    return BackfillSummary(total, index, points_written, completed=False)
                # grid points at or before an earlier page's last sample were settled by that page
                open_grid = grid if resolved_upto is None else [ts for ts in grid if ts > resolved_upto]
                points = self.reconciler.reconcile(open_grid, page.samples, self.window_seconds, cutoff=cutoff)
                if page.samples:
                    latest = max(s.captured_at for s in page.samples)
                    resolved_upto = latest if resolved_upto is None else max(resolved_upto, latest)
                if points:
                    await write_chunked(
                        self.store,
                        self.tables["reconciled"],
                        [p.to_row() for p in points],
                        mode="upsert",
                        conflict_key=("item_id", "ts"),
                        chunk_size=self.chunk_size,
                    )
                    points_written += len(points)
                pages += 1
                if not page.next_cursor or pages >= self.max_pages_per_item:
                    break
                cursor = page.next_cursor
                self.progress.save(Progress(item_index=index, cursor=cursor, resolved_upto=resolved_upto))
            self.progress.save(Progress(item_index=index + 1, cursor=None))
            self._log("backfill_item_done", item_id=item_id, item_index=index, pages=pages)

        # a finished run leaves no resume point; the next run starts over
        self.progress.clear()
        self._log("backfill_done", items=total, points=points_written)
        return BackfillSummary(total, total, points_written, completed=True)

    def _log(self, event: str, **fields) -> None:
        log_json(self.logger, event, **fields)
