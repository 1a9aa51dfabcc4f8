"""Shared test fixtures for the topsellers_etl test suite.

HTTP is served by ``httpx.MockTransport`` and storage by the in-process
``MemoryStore``, so nothing here touches the network.
"""

from __future__ import annotations

import logging
from typing import Callable, Iterable, List

import httpx
import pytest

from topsellers_etl.config import Config
from topsellers_etl.fetcher import RetryingFetcher, RetryPolicy
from topsellers_etl.store import MemoryStore


# ---------------------------------------------------------------------------
# HTTP helpers
# ---------------------------------------------------------------------------

def _listing_html(item_ids: Iterable[int]) -> str:
    rows = "\n".join(
        f'<a href="https://store.steampowered.com/app/{i}/Game_{i}/?snr=1_7" class="search_result_row">'
        f"<span>Game {i}</span></a>"
        for i in item_ids
    )
    return f"<html><body><div id=\"search_resultsRows\">{rows}</div></body></html>"


@pytest.fixture()
def listing_html() -> Callable[[Iterable[int]], str]:
    """Render a search results page containing the given item ids."""
    return _listing_html


@pytest.fixture()
def fast_policy() -> RetryPolicy:
    return RetryPolicy(
        max_attempts=3,
        base_delay_seconds=0.001,
        throttle_delay_seconds=0.002,
        max_delay_seconds=0.01,
        attempt_timeout_seconds=1,
    )


@pytest.fixture()
async def make_fetcher(fast_policy):
    """Factory building RetryingFetchers over a mock transport; closed on teardown."""
    created: List[RetryingFetcher] = []

    def _make(handler, policy: RetryPolicy = None, **kwargs) -> RetryingFetcher:
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        fetcher = RetryingFetcher(policy or fast_policy, client=client, **kwargs)
        created.append(fetcher)
        return fetcher

    yield _make
    for fetcher in created:
        await fetcher.close()


# ---------------------------------------------------------------------------
# Configuration / storage
# ---------------------------------------------------------------------------

@pytest.fixture()
def sample_config() -> Config:
    """Return a Config with small thresholds and no delays."""
    return Config({
        "listing": {
            "base_url": "https://store.test/search/results/",
            "params": {"filter": "topsellers"},
        },
        "fetch": {"retry": {"max_attempts": 2, "base_delay_seconds": 0.001}},
        "partitions": {"groups": [["us", "gb"], ["jp"]]},
        "schedule": {"policy": "rotating_group", "interval_minutes": 10},
        "snapshot": {
            "max_pages": 5,
            "page_delay_seconds": 0,
            "front_page_size": 2,
            "min_valid_items": 3,
            "partition_concurrency": 2,
            "insert_concurrency": 2,
            "chunk_size": 2,
            "clear_before_write": True,
            "rank_window_seconds": 3600,
        },
        "storage": {"backend": "memory"},
        "metrics": {"enabled": False},
    })


@pytest.fixture()
def memory_store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture()
def test_logger() -> logging.Logger:
    return logging.getLogger("topsellers_etl.tests")
