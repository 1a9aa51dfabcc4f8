"""Tests for PartitionScraper pagination and rank assignment."""

from __future__ import annotations

import httpx

from topsellers_etl.scraper import PartitionScraper
from topsellers_etl.sources import ListingSource

SOURCE = ListingSource("https://store.test/search/results/", {"filter": "topsellers"})


def _pages_handler(pages, listing_html, fail_pages=(), calls=None):
    def handler(request: httpx.Request) -> httpx.Response:
        page = int(request.url.params["page"])
        if calls is not None:
            calls.append((request.url.params["cc"], page))
        if page in fail_pages:
            return httpx.Response(500)
        return httpx.Response(200, text=listing_html(pages.get(page, [])))

    return handler


class TestScrape:
    async def test_ranks_follow_page_order(self, make_fetcher, listing_html):
        calls = []
        pages = {1: [10, 20], 2: [30, 40], 3: []}
        scraper = PartitionScraper(
            make_fetcher(_pages_handler(pages, listing_html, calls=calls)), SOURCE, page_delay_seconds=0
        )
        result = await scraper.scrape("us", observed_at=1000)

        assert [r.item_id for r in result.rows] == [10, 20, 30, 40]
        assert [r.rank for r in result.rows] == [1, 2, 3, 4]
        assert all(r.partition == "us" and r.observed_at == 1000 for r in result.rows)
        assert result.pages_fetched == 3
        assert not result.failed
        assert calls == [("us", 1), ("us", 2), ("us", 3)]

    async def test_stops_at_max_pages(self, make_fetcher, listing_html):
        pages = {p: [p * 10] for p in range(1, 20)}
        scraper = PartitionScraper(
            make_fetcher(_pages_handler(pages, listing_html)), SOURCE, max_pages=3, page_delay_seconds=0
        )
        result = await scraper.scrape("gb", observed_at=1)
        assert result.item_count == 3
        assert result.pages_fetched == 3

    async def test_failed_page_returns_partial_rows(self, make_fetcher, listing_html):
        pages = {1: [1, 2], 2: [3], 3: [4]}
        scraper = PartitionScraper(
            make_fetcher(_pages_handler(pages, listing_html, fail_pages={2})), SOURCE, page_delay_seconds=0
        )
        result = await scraper.scrape("jp", observed_at=5)
        assert result.failed
        assert [r.item_id for r in result.rows] == [1, 2]

    async def test_undecodable_page_keeps_partial_rows(self, make_fetcher, listing_html):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.params["page"] == "2":
                return httpx.Response(200, headers={"Content-Encoding": "gzip"}, content=b"<html>")
            return httpx.Response(200, text=listing_html([1, 2]))

        scraper = PartitionScraper(make_fetcher(handler), SOURCE, page_delay_seconds=0)
        result = await scraper.scrape("jp", observed_at=5)
        assert result.failed
        assert [r.item_id for r in result.rows] == [1, 2]

    async def test_first_page_offset(self, make_fetcher, listing_html):
        calls = []
        pages = {0: [7], 1: []}
        scraper = PartitionScraper(
            make_fetcher(_pages_handler(pages, listing_html, calls=calls)),
            SOURCE,
            page_delay_seconds=0,
            first_page=0,
        )
        result = await scraper.scrape("us", observed_at=5)
        assert [r.item_id for r in result.rows] == [7]
        assert calls[0] == ("us", 0)

    async def test_separate_scrapes_restart_ranks(self, make_fetcher, listing_html):
        pages = {1: [5, 6], 2: []}
        scraper = PartitionScraper(
            make_fetcher(_pages_handler(pages, listing_html)), SOURCE, page_delay_seconds=0
        )
        first = await scraper.scrape("us", observed_at=1)
        second = await scraper.scrape("gb", observed_at=1)
        assert [r.rank for r in first.rows] == [1, 2]
        assert [r.rank for r in second.rows] == [1, 2]
