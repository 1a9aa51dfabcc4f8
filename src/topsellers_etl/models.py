"""Row types shared by the snapshot and reconciliation pipeline."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional


@dataclass(frozen=True)
class RankedRow:
    item_id: int
    partition: str
    rank: int  # 1-based scrape order
    observed_at: int  # unix seconds

    def to_row(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class CurrentRow:
    partition: str
    item_id: int
    rank: int
    updated_at: int

    def to_row(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class MetricSample:
    item_id: int
    captured_at: int
    value: float


@dataclass(frozen=True)
class ReconciledPoint:
    item_id: int
    ts: int
    value: float

    def to_row(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class RankStatsRecord:
    partition: str
    item_id: int
    rank_now: int
    best_window_rank: int
    best_window_rank_ts: int
    best_all_time_rank: int
    best_all_time_rank_ts: int
    updated_at: int
    window_history: List[List[int]] = field(default_factory=list)  # [[rank, ts], ...] oldest first

    def to_row(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "RankStatsRecord":
        history = row.get("window_history") or []
        return cls(
            partition=str(row["partition"]),
            item_id=int(row["item_id"]),
            rank_now=int(row["rank_now"]),
            best_window_rank=int(row["best_window_rank"]),
            best_window_rank_ts=int(row["best_window_rank_ts"]),
            best_all_time_rank=int(row["best_all_time_rank"]),
            best_all_time_rank_ts=int(row["best_all_time_rank_ts"]),
            updated_at=int(row["updated_at"]),
            window_history=[[int(r), int(t)] for r, t in history],
        )


@dataclass
class MetricPage:
    samples: List[MetricSample]
    next_cursor: Optional[str]
