from __future__ import annotations

from typing import Dict, Iterable, List, Optional, Tuple

from .models import CurrentRow, RankStatsRecord


class RankTracker:
    """Merges a partition's fresh ranks into stored best-rank bookkeeping.

    The all-time best only ratchets. The window best comes from
    ``window_history``, kept as a monotone list: ranks strictly increase from
    oldest to newest, because an entry followed by an equal or better rank can
    never be the window best again. The oldest entry is therefore always the
    best rank inside the trailing window, and old bests expire once they fall
    out of it.

    ``history_cap`` only bites when more than ``history_cap`` strictly
    worsening ranks land inside one window. Middle entries are dropped then,
    never the oldest (current best) or the newest.
    """

    def __init__(self, window_seconds: int = 86400, history_cap: int = 288) -> None:
        self.window_seconds = window_seconds
        self.history_cap = history_cap

    def merge(
        self,
        partition: str,
        observations: Iterable[CurrentRow],
        prior_records: Iterable[RankStatsRecord],
    ) -> List[RankStatsRecord]:
        prior_by_key: Dict[Tuple[str, int], RankStatsRecord] = {
            (rec.partition, rec.item_id): rec for rec in prior_records
        }
        merged: List[RankStatsRecord] = []
        for obs in observations:
            prior = prior_by_key.get((partition, obs.item_id))
            merged.append(self._merge_one(partition, obs.item_id, obs.rank, obs.updated_at, prior))
        return merged

    def _merge_one(
        self,
        partition: str,
        item_id: int,
        rank: int,
        ts: int,
        prior: Optional[RankStatsRecord],
    ) -> RankStatsRecord:
        history = self._window_history(prior, ts)
        if history and history[-1][1] == ts:
            history.pop()
        _push(history, rank, ts)
        cap = max(2, self.history_cap)
        if len(history) > cap:
            history = history[:1] + history[len(history) - cap + 1 :]
        best_window_rank, best_window_ts = history[0]

        if prior is None or rank < prior.best_all_time_rank:
            best_all_time, best_all_time_ts = rank, ts
        else:
            best_all_time, best_all_time_ts = prior.best_all_time_rank, prior.best_all_time_rank_ts

        return RankStatsRecord(
            partition=partition,
            item_id=item_id,
            rank_now=rank,
            best_window_rank=best_window_rank,
            best_window_rank_ts=best_window_ts,
            best_all_time_rank=best_all_time,
            best_all_time_rank_ts=best_all_time_ts,
            updated_at=ts,
            window_history=history,
        )

    def _window_history(self, prior: Optional[RankStatsRecord], ts: int) -> List[List[int]]:
        if prior is None:
            return []
        window_start = ts - self.window_seconds
        kept = sorted(
            ([r, t] for r, t in prior.window_history if window_start <= t <= ts),
            key=lambda h: h[1],
        )
        history: List[List[int]] = []
        for r, t in kept:
            _push(history, r, t)
        return history


def _push(history: List[List[int]], rank: int, ts: int) -> None:
    # ties resolve to the most recent observation
    while history and history[-1][0] >= rank:
        history.pop()
    history.append([rank, ts])
