from __future__ import annotations

import argparse
import asyncio
import sys
from typing import Optional

from .backfill import MetricBackfill, load_item_ids
from .compare import run_compare
from .config import (
    Config,
    ConfigError,
    get_source_token,
    get_supabase_credentials,
    load_config,
    load_env,
)
from .credentials import SourceCredentials, refresh_loop
from .fetcher import RetryingFetcher, RetryPolicy
from .logging_utils import log_json, setup_logging
from .orchestrate import SnapshotOrchestrator
from .progress import ProgressFile
from .sources import MetricHistorySource, StoreQuerySource
from .store import MemoryStore, SupabaseStore, TableStore


def _parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="topsellers_etl")
    parser.add_argument("--config", default="config.yaml", help="Path to config.yaml")
    parser.add_argument("--env-file", help="Optional .env file with credentials")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("run", help="Run snapshot cycles forever on the configured schedule")

    once = sub.add_parser("once", help="Run a single snapshot cycle now")
    once.add_argument("--partitions", help="Comma-separated partition codes (default: scheduled group)")
    once.add_argument("--group", type=int, help="Index into partitions.groups")
    once.add_argument("--dry-run", action="store_true", help="Write to an in-memory store")

    backfill = sub.add_parser("backfill-metrics", help="Backfill reconciled metric history")
    backfill.add_argument("--items-file", required=True, help="File with one item id per line")
    backfill.add_argument("--progress-file", default="tmp/metric_backfill_progress.json")

    compare = sub.add_parser("compare-regions", help="Write a cross-region overlap report")
    compare.add_argument("--output-dir", default="output")
    compare.add_argument("--count", type=int)
    compare.add_argument("--baseline")

    return parser.parse_args(argv)


def _build_store(cfg: Config, dry_run: bool = False) -> TableStore:
    storage = cfg.storage
    if dry_run or storage.get("backend") == "memory":
        return MemoryStore()
    url, key = get_supabase_credentials()
    return SupabaseStore(url, key, schema=storage.get("schema", "public"))


def _build_fetcher(cfg: Config, credentials: SourceCredentials, logger) -> RetryingFetcher:
    fetcher = RetryingFetcher(
        RetryPolicy.from_dict(cfg.fetch.get("retry", {})),
        credentials=credentials,
        headers=cfg.fetch.get("headers"),
    )
    fetcher.set_logger(logger)
    return fetcher


def _parse_list(raw: Optional[str]) -> Optional[list[str]]:
    if not raw:
        return None
    return [x.strip() for x in raw.split(",") if x.strip()]


def main(argv: Optional[list[str]] = None) -> None:
    args = _parse_args(argv)
    logger = setup_logging()
    load_env(args.env_file)
    try:
        cfg = load_config(args.config)
        store = _build_store(cfg, dry_run=getattr(args, "dry_run", False))
    except ConfigError as exc:
        logger.error("startup_config_error", extra={"extra": {"error": str(exc)}})
        sys.exit(2)

    credentials = SourceCredentials.static(get_source_token())
    fetcher = _build_fetcher(cfg, credentials, logger)

    async def _run() -> None:
        refresher = asyncio.create_task(
            refresh_loop(credentials, float(cfg.fetch.get("credential_check_seconds", 60)), logger)
        )
        try:
            if args.command == "run":
                await _orchestrator(cfg, logger, store, fetcher).run_forever()
            elif args.command == "once":
                partitions = _parse_list(args.partitions)
                if partitions is None and args.group is not None:
                    partitions = cfg.partition_groups[args.group % len(cfg.partition_groups)]
                summary = await _orchestrator(cfg, logger, store, fetcher).run_cycle(partitions=partitions)
                if summary is not None:
                    log_json(logger, "once_done", ok=summary.ok_partitions)
            elif args.command == "backfill-metrics":
                metrics = cfg.metrics
                backfill = MetricBackfill(
                    fetcher,
                    MetricHistorySource(metrics["base_url"]),
                    store,
                    cfg.tables,
                    ProgressFile(args.progress_file),
                    window_seconds=int(metrics.get("window_seconds", 600)),
                    chunk_size=int(cfg.snapshot.get("chunk_size", 1000)),
                    logger=logger,
                )
                await backfill.run(load_item_ids(args.items_file))
            elif args.command == "compare-regions":
                compare = cfg.compare
                await run_compare(
                    fetcher,
                    StoreQuerySource(compare["base_url"], api_key=get_source_token()),
                    cfg.all_partitions,
                    args.output_dir,
                    logger,
                    baseline=args.baseline or compare.get("baseline", "us"),
                    count=args.count or int(compare.get("count", 1000)),
                )
        finally:
            refresher.cancel()
            await fetcher.close()

    asyncio.run(_run())


def _orchestrator(cfg: Config, logger, store: TableStore, fetcher: RetryingFetcher) -> SnapshotOrchestrator:
    metrics = cfg.metrics
    metric_source = None
    if metrics.get("enabled") and metrics.get("base_url"):
        metric_source = MetricHistorySource(metrics["base_url"])
    return SnapshotOrchestrator(cfg, logger, store, fetcher, metric_source=metric_source)


if __name__ == "__main__":
    main()
