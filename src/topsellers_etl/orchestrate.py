from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional

from .assembler import AssembledSnapshot, SnapshotAssembler
from .batch_writer import write_chunked
from .config import Config
from .fetcher import RetryingFetcher
from .logging_utils import log_json, warn_json
from .models import RankStatsRecord
from .rank_tracker import RankTracker
from .reconcile import TimeGridReconciler
from .scheduler import SchedulingPolicy, build_policy
from .scraper import PartitionScraper
from .sources import ListingSource, MetricHistorySource
from .store import TableStore

CURRENT_KEY = ("partition", "item_id")
RANK_STATS_KEY = ("partition", "item_id")
RECONCILED_KEY = ("item_id", "ts")
PAGES_KEY = ("partition",)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class PartitionOutcome:
    partition: str
    status: str  # ok | rejected | failed
    items: int = 0
    pages: int = 0
    error: Optional[str] = None


@dataclass
class CycleSummary:
    observed_at: int
    group_index: int
    outcomes: List[PartitionOutcome] = field(default_factory=list)
    reconciled_points: int = 0

    @property
    def ok_partitions(self) -> List[str]:
        return [o.partition for o in self.outcomes if o.status == "ok"]


class SnapshotOrchestrator:
    def __init__(
        self,
        config: Config,
        logger,
        store: TableStore,
        fetcher: RetryingFetcher,
        policy: Optional[SchedulingPolicy] = None,
        metric_source: Optional[MetricHistorySource] = None,
        now_fn: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.config = config
        self.logger = logger
        self.store = store
        self.fetcher = fetcher
        self.tables = config.tables
        self.policy = policy or build_policy(config.schedule, config.partition_groups)
        self.now_fn = now_fn

        snap = config.snapshot
        self.min_valid_items = int(snap.get("min_valid_items", 500))
        self.chunk_size = int(snap.get("chunk_size", 1000))
        self.insert_concurrency = int(snap.get("insert_concurrency", 2))
        self.clear_before_write = bool(snap.get("clear_before_write", False))
        listing = config.listing
        self.scraper = PartitionScraper(
            fetcher,
            ListingSource(listing["base_url"], listing.get("params")),
            max_pages=int(snap.get("max_pages", 100)),
            page_delay_seconds=float(snap.get("page_delay_seconds", 0.03)),
            first_page=int(snap.get("first_page", 1)),
            logger=logger,
        )
        self.assembler = SnapshotAssembler(front_page_size=int(snap.get("front_page_size", 10)))
        self.tracker = RankTracker(
            window_seconds=int(snap.get("rank_window_seconds", 86400)),
            history_cap=int(snap.get("rank_history_cap", 288)),
        )
        self.reconciler = TimeGridReconciler()
        self.metric_source = metric_source
        self._partition_slots = asyncio.Semaphore(int(snap.get("partition_concurrency", 4)))
        self._running = False
        self._cycle_task: Optional[asyncio.Task] = None

    async def run_forever(self) -> None:
        log_json(self.logger, "scheduler_start", policy=self.policy.kind)
        while True:
            now = self.now_fn()
            wake = self.policy.next_wake(now)
            log_json(self.logger, "scheduler_sleep", until=wake.isoformat())
            await asyncio.sleep(max(0.0, (wake - now).total_seconds()))
            if self._cycle_task is not None and not self._cycle_task.done():
                warn_json(self.logger, "cycle_skipped_busy", tick=wake.isoformat())
                continue
            self._cycle_task = asyncio.create_task(self._guarded_cycle(wake))

    async def _guarded_cycle(self, now: datetime) -> None:
        try:
            await self.run_cycle(now)
        except Exception as exc:
            # the loop keeps ticking; the next cycle starts from fresh state
            self.logger.exception("cycle_failed", extra={"extra": {"error": str(exc)}})

    async def run_cycle(
        self, now: Optional[datetime] = None, partitions: Optional[List[str]] = None
    ) -> Optional[CycleSummary]:
        if self._running:
            warn_json(self.logger, "cycle_skipped_busy")
            return None
        self._running = True
        try:
            return await self._run_cycle(now or self.now_fn(), partitions)
        finally:
            self._running = False

    async def _run_cycle(self, now: datetime, partitions: Optional[List[str]]) -> CycleSummary:
        group_index, selected = self.policy.current_group(now)
        if partitions is not None:
            selected = partitions
        observed_at = int(now.timestamp())
        log_json(self.logger, "cycle_start", observed_at=observed_at, group=group_index, partitions=selected)

        results = await asyncio.gather(*(self._run_partition(cc, observed_at) for cc in selected))
        summary = CycleSummary(observed_at=observed_at, group_index=group_index)
        snapshots: List[AssembledSnapshot] = []
        for outcome, snapshot in results:
            summary.outcomes.append(outcome)
            if snapshot is not None:
                snapshots.append(snapshot)

        if self.metric_source is not None and self.config.metrics.get("enabled"):
            summary.reconciled_points = await self._reconcile_metrics(snapshots, observed_at)

        log_json(
            self.logger,
            "cycle_done",
            observed_at=observed_at,
            ok=summary.ok_partitions,
            rejected=[o.partition for o in summary.outcomes if o.status == "rejected"],
            failed=[o.partition for o in summary.outcomes if o.status == "failed"],
            reconciled_points=summary.reconciled_points,
        )
        return summary

    async def _run_partition(self, partition: str, observed_at: int):
        async with self._partition_slots:
            try:
                scraped = await self.scraper.scrape(partition, observed_at)
                snapshot = self.assembler.assemble(scraped.rows, self.min_valid_items, partition=partition)
                if snapshot is None:
                    warn_json(
                        self.logger,
                        "partition_rejected",
                        partition=partition,
                        rows=scraped.item_count,
                        min_valid_items=self.min_valid_items,
                    )
                    return PartitionOutcome(partition, "rejected", scraped.item_count, scraped.pages_fetched), None
                await self._write_partition(snapshot, observed_at)
            except Exception as exc:
                warn_json(self.logger, "partition_failed", partition=partition, error=str(exc))
                return PartitionOutcome(partition, "failed", error=str(exc)), None
        log_json(self.logger, "partition_written", partition=partition, items=snapshot.item_count)
        return PartitionOutcome(partition, "ok", snapshot.item_count, scraped.pages_fetched), snapshot

    async def _write_partition(self, snapshot: AssembledSnapshot, observed_at: int) -> None:
        cc = snapshot.partition
        await write_chunked(
            self.store,
            self.tables["history"],
            [row.to_row() for row in snapshot.history],
            mode="insert",
            chunk_size=self.chunk_size,
            concurrency=self.insert_concurrency,
        )
        if self.clear_before_write:
            await self.store.delete(self.tables["current"], [("partition", "eq", cc)])
        await write_chunked(
            self.store,
            self.tables["current"],
            [row.to_row() for row in snapshot.current],
            mode="upsert",
            conflict_key=CURRENT_KEY,
            chunk_size=self.chunk_size,
            concurrency=self.insert_concurrency,
        )
        await self.store.upsert(
            self.tables["pages"],
            [{"partition": cc, "total_pages": snapshot.total_pages, "updated_at": observed_at}],
            PAGES_KEY,
        )

        prior_rows = await self.store.select_all(self.tables["rank_stats"], [("partition", "eq", cc)])
        prior = [RankStatsRecord.from_row(r) for r in prior_rows]
        merged = self.tracker.merge(cc, snapshot.current, prior)
        await write_chunked(
            self.store,
            self.tables["rank_stats"],
            [rec.to_row() for rec in merged],
            mode="upsert",
            conflict_key=RANK_STATS_KEY,
            chunk_size=self.chunk_size,
            concurrency=self.insert_concurrency,
        )

    def _tracked_items(self, snapshots: List[AssembledSnapshot]) -> List[int]:
        metrics = self.config.metrics
        configured = metrics.get("item_ids")
        if configured:
            return [int(i) for i in configured]
        top_n = int(metrics.get("top_n", 100))
        best: Dict[int, int] = {}
        for snapshot in snapshots:
            for row in snapshot.current[:top_n]:
                best[row.item_id] = min(best.get(row.item_id, row.rank), row.rank)
        return sorted(best, key=lambda item_id: (best[item_id], item_id))[:top_n]

    async def _reconcile_metrics(self, snapshots: List[AssembledSnapshot], observed_at: int) -> int:
        metrics = self.config.metrics
        item_ids = self._tracked_items(snapshots)
        if not item_ids:
            return 0
        lookback = int(metrics.get("lookback_seconds", 86400))
        window = int(metrics.get("window_seconds", 600))
        grid_rows = await self.store.select_all(
            self.tables["master_timestamps"],
            [("ts", "gte", observed_at - lookback), ("ts", "lt", observed_at)],
            order="ts",
        )
        grid = [int(r["ts"]) for r in grid_rows]
        if not grid:
            warn_json(self.logger, "reconcile_no_master_timestamps", since=observed_at - lookback)
            return 0

        slots = asyncio.Semaphore(int(metrics.get("concurrency", 4)))
        max_pages = int(metrics.get("max_pages", 50))

        async def _history(item_id: int):
            async with slots:
                return await self.metric_source.fetch_history(self.fetcher, item_id, max_pages=max_pages)

        histories = await asyncio.gather(*(_history(i) for i in item_ids))
        samples = []
        for item_id, (item_samples, complete) in zip(item_ids, histories):
            if not complete:
                warn_json(self.logger, "metric_history_incomplete", item_id=item_id, samples=len(item_samples))
            samples.extend(item_samples)

        points = self.reconciler.reconcile(grid, samples, window, cutoff=observed_at)
        await write_chunked(
            self.store,
            self.tables["reconciled"],
            [p.to_row() for p in points],
            mode="upsert",
            conflict_key=RECONCILED_KEY,
            chunk_size=self.chunk_size,
            concurrency=self.insert_concurrency,
        )
        log_json(self.logger, "reconcile_done", items=len(item_ids), points=len(points), grid=len(grid))
        return len(points)
