"""Align irregular metric samples onto the shared master timestamp grid.

For each item and each grid point ``ts``:

1. a sample captured exactly at ``ts`` wins;
2. otherwise the earliest sample in ``(ts, ts + window_seconds]`` is used;
3. otherwise nothing is emitted for that (item, ts).

Values only ever move backwards onto an earlier-or-equal grid point from a
later sample. Nothing is carried forward from an older sample and nothing is
zero-filled.
"""

from __future__ import annotations

import bisect
from collections import defaultdict
from typing import Dict, Iterable, List, Optional

from .models import MetricSample, ReconciledPoint


def _normalize_grid(master_timestamps: Iterable[int], cutoff: Optional[int]) -> List[int]:
    grid = sorted({int(ts) for ts in master_timestamps})
    if cutoff is not None:
        grid = grid[: bisect.bisect_left(grid, cutoff)]
    return grid


class TimeGridReconciler:
    def reconcile(
        self,
        master_timestamps: Iterable[int],
        samples: Iterable[MetricSample],
        window_seconds: int,
        cutoff: Optional[int] = None,
    ) -> List[ReconciledPoint]:
        grid = _normalize_grid(master_timestamps, cutoff)
        if not grid:
            return []

        values_by_item: Dict[int, Dict[int, float]] = defaultdict(dict)
        for sample in samples:
            # a repeated capture time keeps the last reported value
            values_by_item[sample.item_id][sample.captured_at] = sample.value

        points: List[ReconciledPoint] = []
        for item_id in sorted(values_by_item):
            points.extend(self._reconcile_item(item_id, grid, values_by_item[item_id], window_seconds))
        return points

    def _reconcile_item(
        self, item_id: int, grid: List[int], values: Dict[int, float], window_seconds: int
    ) -> List[ReconciledPoint]:
        times = sorted(values)
        out: List[ReconciledPoint] = []
        cursor = bisect.bisect_left(times, grid[0])
        for ts in grid:
            while cursor < len(times) and times[cursor] < ts:
                cursor += 1
            if cursor == len(times):
                break
            t = times[cursor]
            if t <= ts + window_seconds:
                out.append(ReconciledPoint(item_id=item_id, ts=ts, value=values[t]))
        return out
