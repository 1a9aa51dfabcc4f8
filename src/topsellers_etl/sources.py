"""Source adapters: request builders and payload parsers.

Three collaborators sit behind ``RetryingFetcher``:

* the search listing (HTML, ``.search_result_row`` anchors, paged by ``page``)
* the store query API (JSON, used by the region comparison report)
* the metric history API (JSON, cursor paginated)
"""

from __future__ import annotations

import json
import re
from typing import Any, Dict, List, Optional, Tuple

import httpx
from bs4 import BeautifulSoup

from .fetcher import FetchRequest, RetryingFetcher
from .models import MetricPage, MetricSample

_ITEM_URL_PATTERN = re.compile(r"/app/(\d+)")


def extract_item_id(url: Optional[str]) -> Optional[int]:
    if not url:
        return None
    m = _ITEM_URL_PATTERN.search(url)
    if not m:
        return None
    item_id = int(m.group(1))
    return item_id or None


def parse_listing_page(resp: httpx.Response) -> List[int]:
    soup = BeautifulSoup(resp.text, "html.parser")
    item_ids: List[int] = []
    for row in soup.select(".search_result_row"):
        item_id = extract_item_id(row.get("href"))
        if item_id is not None:
            item_ids.append(item_id)
    return item_ids


class ListingSource:
    def __init__(self, base_url: str, extra_params: Optional[Dict[str, Any]] = None) -> None:
        self.base_url = base_url
        self.extra_params = extra_params or {}

    def request(self, partition: str, page: int) -> FetchRequest:
        params = dict(self.extra_params)
        params.update({"cc": partition, "page": page})
        return FetchRequest(url=self.base_url, params=params, label=f"{partition}:{page}")

    def parse(self, resp: httpx.Response) -> List[int]:
        return parse_listing_page(resp)


def build_store_query_input(partition: str, start: int = 0, count: int = 1000) -> Dict[str, Any]:
    return {
        "query": {
            "start": start,
            "count": count,
            "sort": 11,
            "filters": {"regional_top_n_sellers": count},
        },
        "context": {"language": "en", "country_code": partition.upper()},
        "data_request": {"include_basic_info": True},
    }


def parse_store_query(resp: httpx.Response) -> List[int]:
    data = resp.json()
    items = (data.get("response") or {}).get("store_items") or []
    item_ids: List[int] = []
    for it in items:
        item_id = it.get("appid") or it.get("id")
        if item_id:
            item_ids.append(int(item_id))
    return item_ids


class StoreQuerySource:
    def __init__(self, base_url: str, api_key: Optional[str] = None) -> None:
        self.base_url = base_url
        self.api_key = api_key

    def request(self, partition: str, start: int = 0, count: int = 1000) -> FetchRequest:
        params: Dict[str, Any] = {"input_json": json.dumps(build_store_query_input(partition, start, count))}
        if self.api_key:
            params["key"] = self.api_key
        return FetchRequest(url=self.base_url, params=params, label=f"store_query:{partition}")

    def parse(self, resp: httpx.Response) -> List[int]:
        return parse_store_query(resp)


def parse_metric_page(resp: httpx.Response) -> MetricPage:
    data = resp.json()
    history = data["history"]
    if not isinstance(history, list):
        raise ValueError("history must be a list")
    samples = [
        MetricSample(
            item_id=int(h.get("itemId", h.get("item_id"))),
            captured_at=int(h.get("capturedAt", h.get("captured_at"))),
            value=float(h["value"]),
        )
        for h in history
    ]
    next_cursor = data.get("nextCursor", data.get("next_cursor"))
    return MetricPage(samples=samples, next_cursor=str(next_cursor) if next_cursor else None)


class MetricHistorySource:
    def __init__(self, base_url: str) -> None:
        self.base_url = base_url

    def request(self, item_id: int, cursor: Optional[str] = None) -> FetchRequest:
        params: Dict[str, Any] = {"itemId": item_id}
        if cursor:
            params["cursor"] = cursor
        return FetchRequest(url=self.base_url, params=params, label=f"metric:{item_id}")

    async def fetch_page(
        self, fetcher: RetryingFetcher, item_id: int, cursor: Optional[str] = None
    ) -> Optional[MetricPage]:
        result = await fetcher.fetch(self.request(item_id, cursor), parse=parse_metric_page)
        if not result.ok:
            return None
        return result.payload

    async def fetch_history(
        self, fetcher: RetryingFetcher, item_id: int, max_pages: int = 1000
    ) -> Tuple[List[MetricSample], bool]:
        samples: List[MetricSample] = []
        cursor: Optional[str] = None
        for _ in range(max_pages):
            page = await self.fetch_page(fetcher, item_id, cursor)
            if page is None:
                return samples, False
            samples.extend(page.samples)
            if not page.next_cursor:
                break
            cursor = page.next_cursor
        return samples, True
