from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional

from .models import CurrentRow, RankedRow


@dataclass
class AssembledSnapshot:
    partition: str
    history: List[RankedRow]
    current: List[CurrentRow]
    total_pages: int

    @property
    def item_count(self) -> int:
        return len(self.current)


class SnapshotAssembler:
    def __init__(self, front_page_size: int = 10) -> None:
        self.front_page_size = front_page_size

    def assemble(
        self,
        raw_rows: Iterable[RankedRow],
        min_valid_items: int,
        partition: Optional[str] = None,
    ) -> Optional[AssembledSnapshot]:
        """Dedupe one partition's scrape and build its history/current row sets.

        The first occurrence of an item wins, so history keeps the lowest
        scrape rank. Current ranks are renumbered 1..N in that same order.
        Returns None when fewer than ``min_valid_items`` distinct items remain.
        """
        first_seen: Dict[int, RankedRow] = {}
        for row in raw_rows:
            if not row.item_id:
                continue
            if row.item_id not in first_seen:
                first_seen[row.item_id] = row
        unique = list(first_seen.values())
        if len(unique) < min_valid_items:
            return None

        if partition is None:
            partition = unique[0].partition if unique else ""
        current = [
            CurrentRow(partition=partition, item_id=row.item_id, rank=i, updated_at=row.observed_at)
            for i, row in enumerate(unique, start=1)
        ]
        return AssembledSnapshot(
            partition=partition,
            history=unique,
            current=current,
            total_pages=math.ceil(len(unique) / self.front_page_size),
        )
