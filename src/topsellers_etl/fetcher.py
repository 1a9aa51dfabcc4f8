from __future__ import annotations

import asyncio
from dataclasses import dataclass, field, fields
from typing import Any, Callable, Dict, Optional

import httpx

from .credentials import SourceCredentials
from .logging_utils import log_json

THROTTLE_STATUSES = (429, 503)

DEFAULT_HEADERS = {"User-Agent": "Mozilla/5.0"}


@dataclass
class RetryPolicy:
    max_attempts: int = 6
    base_delay_seconds: float = 3.0
    throttle_delay_seconds: float = 5.0
    max_delay_seconds: float = 30.0
    attempt_timeout_seconds: float = 40.0

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "RetryPolicy":
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in raw.items() if k in known})


@dataclass
class FetchRequest:
    url: str
    params: Dict[str, Any] = field(default_factory=dict)
    label: str = ""


@dataclass
class FetchResult:
    ok: bool
    payload: Any = None
    status: Optional[int] = None
    attempts: int = 0
    error: Optional[str] = None
    fatal: bool = False


def _text(resp: httpx.Response) -> str:
    return resp.text


class RetryingFetcher:
    """Issues one logical GET with bounded retries.

    Request-level failures never raise: callers get ``FetchResult(ok=False)``
    and decide whether to stop paginating or drop the partition.
    """

    def __init__(
        self,
        policy: RetryPolicy,
        credentials: Optional[SourceCredentials] = None,
        headers: Optional[Dict[str, str]] = None,
        client: Optional[httpx.AsyncClient] = None,
        logger=None,
    ) -> None:
        self.policy = policy
        self.credentials = credentials
        self._headers = dict(DEFAULT_HEADERS)
        self._headers.update(headers or {})
        self._client = client or httpx.AsyncClient(
            timeout=policy.attempt_timeout_seconds,
            follow_redirects=True,
        )
        self._logger = logger

    def set_logger(self, logger) -> None:
        self._logger = logger

    async def close(self) -> None:
        await self._client.aclose()

    async def fetch(
        self,
        request: FetchRequest,
        parse: Optional[Callable[[httpx.Response], Any]] = None,
    ) -> FetchResult:
        parse = parse or _text
        max_attempts = self.policy.max_attempts
        last_status: Optional[int] = None
        last_error: Optional[str] = None
        attempt = 0
        while attempt < max_attempts:
            attempt += 1
            headers = await self._request_headers()
            try:
                resp = await asyncio.wait_for(
                    self._client.get(request.url, params=request.params, headers=headers),
                    timeout=self.policy.attempt_timeout_seconds,
                )
            except (httpx.TimeoutException, asyncio.TimeoutError):
                last_error = "timeout"
                self._log("http_timeout", request, attempt=attempt)
                await self._sleep_before_retry(attempt, self._transient_delay(attempt))
                continue
            except httpx.TransportError as exc:
                last_error = f"transport:{exc}"
                self._log("http_error", request, attempt=attempt, error=str(exc))
                await self._sleep_before_retry(attempt, self._transient_delay(attempt))
                continue
            except httpx.RequestError as exc:
                # undecodable body, redirect loop: the source is misbehaving, retry to the ceiling
                last_error = f"request:{type(exc).__name__}:{exc}"
                self._log("http_error", request, attempt=attempt, error=str(exc), kind=type(exc).__name__)
                await self._sleep_before_retry(attempt, self._transient_delay(attempt))
                continue

            last_status = resp.status_code
            if resp.status_code in THROTTLE_STATUSES:
                last_error = f"http_{resp.status_code}"
                delay = self._throttle_delay(resp, attempt)
                self._log("http_throttled", request, attempt=attempt, status=resp.status_code, delay=delay)
                await self._sleep_before_retry(attempt, delay)
                continue
            if 400 <= resp.status_code < 500:
                self._log("http_fatal", request, attempt=attempt, status=resp.status_code)
                return FetchResult(
                    ok=False,
                    status=resp.status_code,
                    attempts=attempt,
                    error=f"http_{resp.status_code}",
                    fatal=True,
                )
            if not resp.is_success:
                last_error = f"http_{resp.status_code}"
                delay = self._transient_delay(attempt)
                self._log("http_retry", request, attempt=attempt, status=resp.status_code, delay=delay)
                await self._sleep_before_retry(attempt, delay)
                continue

            try:
                payload = parse(resp)
            except (ValueError, KeyError, TypeError) as exc:
                last_error = f"malformed:{exc}"
                self._log("payload_malformed", request, attempt=attempt, error=str(exc))
                await self._sleep_before_retry(attempt, self._transient_delay(attempt))
                continue
            return FetchResult(ok=True, payload=payload, status=resp.status_code, attempts=attempt)

        self._log("fetch_exhausted", request, attempts=attempt, status=last_status, error=last_error)
        return FetchResult(ok=False, status=last_status, attempts=attempt, error=last_error)

    async def _request_headers(self) -> Dict[str, str]:
        headers = dict(self._headers)
        if self.credentials is not None:
            token = await self.credentials.acquire()
            if token:
                headers["Authorization"] = f"Bearer {token}"
        return headers

    def _transient_delay(self, attempt: int) -> float:
        return min(self.policy.max_delay_seconds, self.policy.base_delay_seconds * attempt)

    def _throttle_delay(self, resp: httpx.Response, attempt: int) -> float:
        retry_after = resp.headers.get("Retry-After")
        if retry_after:
            try:
                return min(self.policy.max_delay_seconds, float(retry_after))
            except ValueError:
                pass
        # never shorter than a transient backoff at the same attempt
        scaled = self.policy.throttle_delay_seconds * attempt
        return min(self.policy.max_delay_seconds, max(scaled, self._transient_delay(attempt)))

    async def _sleep_before_retry(self, attempt: int, delay: float) -> None:
        if attempt >= self.policy.max_attempts:
            return
        await asyncio.sleep(delay)

    def _log(self, event: str, request: FetchRequest, **fields_: Any) -> None:
        if self._logger:
            log_json(self._logger, event, url=request.url, label=request.label, **fields_)
