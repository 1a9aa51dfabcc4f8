from __future__ import annotations

import asyncio
import logging

from topsellers_etl.credentials import SourceCredentials, refresh_loop


async def test_static_token():
    creds = SourceCredentials.static("abc")
    assert await creds.acquire() == "abc"
    assert not creds.is_expiring()


async def test_lazy_refresh_on_first_acquire():
    calls = []

    async def refresh_fn():
        calls.append(1)
        return "fresh", 2000.0

    creds = SourceCredentials(refresh_fn=refresh_fn)
    assert await creds.acquire() == "fresh"
    assert await creds.acquire() == "fresh"
    assert len(calls) == 1


def test_is_expiring_with_skew():
    creds = SourceCredentials(token="t", expires_at=1000.0, skew_seconds=60)
    assert not creds.is_expiring(now=900)
    assert creds.is_expiring(now=940)
    assert creds.is_expiring(now=1200)


async def test_refresh_loop_renews_expiring_token():
    tokens = iter(["second", "third"])

    async def refresh_fn():
        return next(tokens), None

    creds = SourceCredentials(token="first", expires_at=0.0, refresh_fn=refresh_fn)
    task = asyncio.create_task(refresh_loop(creds, 0.001, logging.getLogger("test")))
    for _ in range(100):
        await asyncio.sleep(0.001)
        if await creds.acquire() != "first":
            break
    task.cancel()
    assert await creds.acquire() == "second"


async def test_refresh_failure_keeps_old_token():
    async def refresh_fn():
        raise RuntimeError("auth down")

    creds = SourceCredentials(token="old", expires_at=0.0, refresh_fn=refresh_fn)
    task = asyncio.create_task(refresh_loop(creds, 0.001, logging.getLogger("test")))
    await asyncio.sleep(0.01)
    task.cancel()
    assert await creds.acquire() == "old"
