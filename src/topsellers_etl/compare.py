"""Cross-region overlap report for the first N top sellers of each region."""

from __future__ import annotations

import asyncio
import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Tuple

from .fetcher import RetryingFetcher
from .logging_utils import log_json
from .sources import StoreQuerySource


def compare_two(list_a: List[int], list_b: List[int]) -> Dict[str, Any]:
    set_a = set(list_a)
    set_b = set(list_b)
    rank_b = {item_id: rank for rank, item_id in enumerate(list_b, start=1)}
    overlap = sum(1 for item_id in list_a if item_id in set_b)
    deltas = [
        rank_b[item_id] - rank
        for rank, item_id in enumerate(list_a, start=1)
        if item_id in rank_b
    ]
    avg_delta = sum(deltas) / len(deltas) if deltas else 0.0
    return {
        "overlap": overlap,
        "only_a": len(list_a) - overlap,
        "only_b": sum(1 for item_id in list_b if item_id not in set_a),
        "total_a": len(list_a),
        "total_b": len(list_b),
        "same_order": all(d == 0 for d in deltas),
        "avg_rank_delta": round(avg_delta, 2),
        "overlap_pct": round(overlap / len(list_a) * 100) if list_a else 0,
    }


def build_report(
    lists: Dict[str, List[int]], failed: Dict[str, str], baseline: str, count: int
) -> Dict[str, Any]:
    ok = [cc for cc, items in lists.items() if items]
    comparisons = []
    for i, cc_a in enumerate(ok):
        for cc_b in ok[i + 1 :]:
            comparisons.append({"a": cc_a, "b": cc_b, **compare_two(lists[cc_a], lists[cc_b])})
    vs_baseline = []
    if baseline in ok:
        vs_baseline = [
            {"region": cc, **compare_two(lists[baseline], lists[cc])} for cc in ok if cc != baseline
        ]
    return {
        "fetched_at": datetime.now(timezone.utc).isoformat(),
        "regions_total": len(lists) + len(failed),
        "regions_ok": len(ok),
        "regions_failed": len(failed),
        "failed": failed,
        "per_region_count": count,
        "baseline": baseline,
        "comparisons": comparisons,
        "vs_baseline": vs_baseline,
    }


async def fetch_region_lists(
    fetcher: RetryingFetcher, source: StoreQuerySource, partitions: List[str], count: int
) -> Tuple[Dict[str, List[int]], Dict[str, str]]:
    results = await asyncio.gather(
        *(fetcher.fetch(source.request(cc, 0, count), parse=source.parse) for cc in partitions)
    )
    lists: Dict[str, List[int]] = {}
    failed: Dict[str, str] = {}
    for cc, res in zip(partitions, results):
        if res.ok:
            lists[cc] = res.payload
        else:
            failed[cc] = res.error or "unknown"
    return lists, failed


async def run_compare(
    fetcher: RetryingFetcher,
    source: StoreQuerySource,
    partitions: List[str],
    output_dir: str,
    logger,
    baseline: str = "us",
    count: int = 1000,
) -> Dict[str, Any]:
    out = Path(output_dir)
    out.mkdir(parents=True, exist_ok=True)
    stamp = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H-%M-%S")
    log_json(logger, "compare_start", regions=len(partitions), count=count)

    lists, failed = await fetch_region_lists(fetcher, source, partitions, count)
    raw = {cc: {"count": len(items), "items": items} for cc, items in lists.items()}
    raw.update({cc: {"error": err} for cc, err in failed.items()})
    (out / f"regions-first{count}-{stamp}.json").write_text(json.dumps(raw, indent=2), encoding="utf-8")

    report = build_report(lists, failed, baseline, count)
    (out / f"regions-compare-{stamp}.json").write_text(json.dumps(report, indent=2), encoding="utf-8")
    log_json(
        logger,
        "compare_done",
        regions_ok=report["regions_ok"],
        regions_failed=report["regions_failed"],
        same_order_pairs=sum(1 for c in report["comparisons"] if c["same_order"]),
        different_order_pairs=sum(1 for c in report["comparisons"] if not c["same_order"]),
    )
    return report
