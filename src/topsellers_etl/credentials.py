from __future__ import annotations

import asyncio
import time
from typing import Awaitable, Callable, Optional, Tuple

from .logging_utils import log_json, warn_json

# Returns (token, expires_at_unix_seconds); expires_at None means never expires.
RefreshFn = Callable[[], Awaitable[Tuple[str, Optional[float]]]]


class SourceCredentials:
    """Process-wide source token shared by every fetcher.

    Fetchers only call ``acquire``. Renewal happens through ``refresh``, driven
    by ``refresh_loop`` on its own timer, independent of the snapshot cycle.
    """

    def __init__(
        self,
        token: Optional[str] = None,
        expires_at: Optional[float] = None,
        refresh_fn: Optional[RefreshFn] = None,
        skew_seconds: float = 300,
    ) -> None:
        self._token = token
        self._expires_at = expires_at
        self._refresh_fn = refresh_fn
        self._skew = skew_seconds
        self._lock = asyncio.Lock()

    @classmethod
    def static(cls, token: Optional[str]) -> "SourceCredentials":
        return cls(token=token)

    async def acquire(self) -> Optional[str]:
        if self._token is None and self._refresh_fn is not None:
            await self.refresh()
        return self._token

    def is_expiring(self, now: Optional[float] = None) -> bool:
        if self._expires_at is None:
            return False
        now = time.time() if now is None else now
        return now >= self._expires_at - self._skew

    async def refresh(self) -> None:
        if self._refresh_fn is None:
            return
        async with self._lock:
            token, expires_at = await self._refresh_fn()
            self._token = token
            self._expires_at = expires_at


async def refresh_loop(credentials: SourceCredentials, interval_seconds: float, logger) -> None:
    while True:
        await asyncio.sleep(interval_seconds)
        if not credentials.is_expiring():
            continue
        try:
            await credentials.refresh()
            log_json(logger, "credentials_refreshed")
        except Exception as exc:
            # keep the old token; the next tick retries
            warn_json(logger, "credentials_refresh_failed", error=str(exc))
