from __future__ import annotations

import asyncio
import itertools
from dataclasses import dataclass, field
from typing import List

from .fetcher import RetryingFetcher
from .logging_utils import log_json
from .models import RankedRow
from .sources import ListingSource


@dataclass
class ScrapeResult:
    partition: str
    rows: List[RankedRow] = field(default_factory=list)
    pages_fetched: int = 0
    failed: bool = False

    @property
    def item_count(self) -> int:
        return len(self.rows)


class PartitionScraper:
    def __init__(
        self,
        fetcher: RetryingFetcher,
        source: ListingSource,
        max_pages: int = 100,
        page_delay_seconds: float = 0.03,
        first_page: int = 1,
        logger=None,
    ) -> None:
        self.fetcher = fetcher
        self.source = source
        self.max_pages = max_pages
        self.page_delay_seconds = page_delay_seconds
        self.first_page = first_page
        self.logger = logger

    async def scrape(self, partition: str, observed_at: int) -> ScrapeResult:
        result = ScrapeResult(partition=partition)
        ranks = itertools.count(1)
        for page in range(self.first_page, self.first_page + self.max_pages):
            await asyncio.sleep(self.page_delay_seconds)
            fetched = await self.fetcher.fetch(self.source.request(partition, page), parse=self.source.parse)
            if not fetched.ok:
                # keep what we have; the assembler threshold decides if it is usable
                result.failed = True
                if self.logger:
                    log_json(
                        self.logger,
                        "partition_page_failed",
                        partition=partition,
                        page=page,
                        error=fetched.error,
                        rows_so_far=len(result.rows),
                    )
                break
            result.pages_fetched += 1
            item_ids = fetched.payload
            if not item_ids:
                break
            for item_id in item_ids:
                result.rows.append(
                    RankedRow(item_id=item_id, partition=partition, rank=next(ranks), observed_at=observed_at)
                )
        if self.logger:
            log_json(
                self.logger,
                "partition_scraped",
                partition=partition,
                rows=result.item_count,
                pages=result.pages_fetched,
                failed=result.failed,
            )
        return result
